"""Data models for OTA sessions and progress reporting."""

from .ota import OtaSession, WINDOW, DEFAULT_BLOCK_SIZE, MAX_BLOCK_SIZE
from .progress import ProgressSample, ProgressRecorder, LoggingProgressSink
