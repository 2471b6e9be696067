"""Protocol layer: frame codec, request serialization, and response parsing."""

from .framing import encode_frame, decode_frame, FrameDecoder
from .commands import HostCommand, serialize_request
from .parser import GatewayCommand, parse_response
