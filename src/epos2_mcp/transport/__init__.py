"""Serial transport: port ownership and framed request/response exchange."""

from .serial_connection import ConnectionState, SerialConnection
from .frame_transport import FrameTransport, RetryPolicy, SendState
