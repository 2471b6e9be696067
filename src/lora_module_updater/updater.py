"""OTA transfer engine: drives one firmware update over the gateway link.

State machine::

    IDLE -> QUERYING -> [ABORTING] -> INITIALIZING -> TRANSFERRING
         -> COMPLETING -> DONE

with ``FAILED`` and ``ABORTED`` as terminal outcomes.

Query, abort and init are one-shot handshakes: any timeout or unexpected
answer ends the run. The transfer loop is the opposite. Each round sends
one message (a NACKed block, the frontier block, or a done request) and
waits briefly for feedback; lost frames, timeouts and stray messages are
logged and the next round simply goes on. Only a dead serial channel, the
round/time budget, or cancellation stops it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from .config import UpdaterConfig
from .control import SessionControl
from .errors import (
    ChannelError,
    FrameOverflow,
    GatewayError,
    OtaCancelled,
    OtaError,
    OtaHandshakeError,
    OtaTimeout,
    ReadTimeout,
    SerializationError,
)
from .models.ota import OtaSession
from .models.progress import ProgressSample, ProgressSink
from .protocol.commands import build_ota_init
from .protocol.parser import OtaDoneAck, OtaStatus

logger = logging.getLogger(__name__)


class OtaState(str, Enum):
    """States of one update run."""

    IDLE = "idle"
    QUERYING = "querying"
    ABORTING = "aborting"          # clearing a stale session on the module
    INITIALIZING = "initializing"
    TRANSFERRING = "transferring"
    COMPLETING = "completing"      # every block sent, done requested
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass
class OtaResult:
    """Summary of a finished run."""

    state: OtaState
    block_count: int
    rounds: int
    blocks_sent: int
    retransmits: int
    elapsed: float
    sha256: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "block_count": self.block_count,
            "rounds": self.rounds,
            "blocks_sent": self.blocks_sent,
            "retransmits": self.retransmits,
            "elapsed": round(self.elapsed, 3),
            "sha256": self.sha256,
        }


class OtaUpdater:
    """Runs one OTA session against the module behind ``control``.

    Usage::

        with GatewayDriver.open(config.port, config.baudrate) as driver:
            updater = OtaUpdater(SessionControl(driver), image, config)
            result = updater.run()
    """

    def __init__(
        self,
        control: SessionControl,
        image: bytes,
        config: UpdaterConfig | None = None,
        progress: ProgressSink | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._control = control
        self._config = config or UpdaterConfig()
        self._progress = progress
        self._clock = clock
        self._sleep = sleep
        self.session = OtaSession(
            image,
            block_size=self._config.block_size,
            window=self._config.window,
        )
        self.state = OtaState.IDLE
        self.rounds = 0
        self._started_at = 0.0
        self._cancel_requested = False
        self._abort_on_cancel = True

    def cancel(self, send_abort: bool = True) -> None:
        """Ask the transfer loop to stop before its next round.

        Args:
            send_abort: Also tell the module to drop the session.
        """
        self._cancel_requested = True
        self._abort_on_cancel = send_abort

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def run(self) -> OtaResult:
        """Execute the whole update.

        Returns:
            The result, in state ``DONE``.

        Raises:
            ChannelError: If the serial link fails.
            OtaHandshakeError: If query, abort or init fails.
            OtaTimeout: If the round or time budget runs out.
            OtaCancelled: If :meth:`cancel` was called.
        """
        if self.state is not OtaState.IDLE:
            raise RuntimeError(f"OTA session already ran (state {self.state.value})")
        self._started_at = self._clock()
        try:
            self._query()
            self._initialize()
            self._transfer()
        except OtaCancelled:
            self._set_state(OtaState.ABORTED)
            raise
        except (ChannelError, OtaError):
            self._set_state(OtaState.FAILED)
            raise
        self._set_state(OtaState.DONE)
        result = self.result()
        logger.info(
            "Update complete: %d blocks in %d rounds (%d retransmits) in %.1fs",
            result.block_count,
            result.rounds,
            result.retransmits,
            result.elapsed,
        )
        return result

    def result(self) -> OtaResult:
        return OtaResult(
            state=self.state,
            block_count=self.session.block_count,
            rounds=self.rounds,
            blocks_sent=self.session.blocks_sent,
            retransmits=self.session.retransmits,
            elapsed=self._clock() - self._started_at if self._started_at else 0.0,
            sha256=self.session.sha256.hex(),
        )

    # -- handshake -----------------------------------------------------------

    def _set_state(self, state: OtaState) -> None:
        if state is not self.state:
            logger.info("OTA state %s -> %s", self.state.value, state.value)
            self.state = state

    def _handshake(self, step: str, request: Callable[[], Any]) -> Any:
        try:
            return request()
        except ChannelError:
            raise
        except GatewayError as e:
            raise OtaHandshakeError(f"{step} failed: {e}") from e

    def _query(self) -> None:
        self._set_state(OtaState.QUERYING)
        status = self._handshake(
            "Status query",
            lambda: self._control.get_ota_status(self._config.handshake_timeout),
        )
        if not status.in_progress:
            return
        logger.warning("Module reports an unfinished OTA session, aborting it")
        self._set_state(OtaState.ABORTING)
        self._handshake(
            "Abort",
            lambda: self._control.abort(self._config.handshake_timeout),
        )

    def _initialize(self) -> None:
        self._set_state(OtaState.INITIALIZING)
        session = self.session
        packet = build_ota_init(
            session.image,
            session.sha256,
            session.block_size,
            session.block_count,
            dest_addr=self._config.dest_addr,
        )
        logger.info(
            "Starting OTA: %d bytes, %d blocks of %d, sha256 %s",
            session.image_len,
            session.block_count,
            session.block_size,
            session.sha256.hex(),
        )
        self._handshake(
            "Init",
            lambda: self._control.init(packet, self._config.handshake_timeout),
        )

    # -- transfer loop -------------------------------------------------------

    def _transfer(self) -> None:
        self._set_state(OtaState.TRANSFERRING)
        loop_start = self._clock()
        while True:
            if self._cancel_requested:
                self._cancel()
            self._check_budget(loop_start)
            self.rounds += 1
            finished = self.play_round()
            if self._progress is not None:
                self._progress.record(
                    ProgressSample(
                        elapsed=self._clock() - loop_start,
                        blocks_sent=self.session.blocks_sent,
                        last_acked_index=self.session.last_acked_index,
                    )
                )
            if finished:
                return

    def _check_budget(self, loop_start: float) -> None:
        max_rounds = self._config.max_rounds
        if max_rounds is not None and self.rounds >= max_rounds:
            raise OtaTimeout(
                f"No completion after {self.rounds} rounds "
                f"({self.session.last_acked_index + 1}/{self.session.block_count} acknowledged)"
            )
        limit = self._config.transfer_timeout
        if limit is not None and self._clock() - loop_start >= limit:
            raise OtaTimeout(
                f"No completion after {limit:.0f}s "
                f"({self.session.last_acked_index + 1}/{self.session.block_count} acknowledged)"
            )

    def _cancel(self) -> None:
        if self._abort_on_cancel:
            try:
                self._control.abort(self._config.handshake_timeout)
            except ChannelError:
                raise
            except GatewayError as e:
                logger.warning("Module did not confirm abort: %s", e)
        raise OtaCancelled("OTA session cancelled")

    def play_round(self) -> bool:
        """Send one message and process at most one response.

        Returns:
            True once the module confirmed completion.
        """
        session = self.session
        index = session.next_index()
        if index is None:
            self._set_state(OtaState.COMPLETING)
            self._control.send_done()
        else:
            self._set_state(OtaState.TRANSFERRING)
            self._control.send_block(index, session.block(index))
            session.mark_sent(index)

        try:
            response = self._control.poll(self._config.round_timeout)
        except ReadTimeout:
            logger.debug("Round %d: no response", self.rounds)
            return False
        except (FrameOverflow, SerializationError) as e:
            logger.warning("Round %d: unreadable response: %s", self.rounds, e)
            return False

        if isinstance(response, OtaDoneAck):
            return True
        if isinstance(response, OtaStatus):
            self._handle_status(response)
            return False
        logger.warning("Round %d: unexpected response %r", self.rounds, response)
        return False

    def _handle_status(self, status: OtaStatus) -> None:
        if not status.in_progress:
            logger.warning("Module reports no OTA session in progress")
        fresh = self.session.apply_status(status)
        if fresh:
            logger.warning("Module NACKed blocks %s", sorted(fresh))
        logger.debug(
            "Acked up to %d, frontier %d, pending %s",
            self.session.last_acked_index,
            self.session.highest_sent_index,
            sorted(self.session.retransmit),
        )
        if self._config.status_delay:
            self._sleep(self._config.status_delay)
