"""Protocol layer: frame encoding, CRC, command builders, and response parsing."""

from .framing import Frame, LinkVariant, encode_frame
from .commands import Opcode, build_read_object, build_write_object
from .parser import Response
