"""Frame builder for the EPOS2 serial protocol.

Frame layout (all words little-endian, low byte first)::

    +--------+--------+---------+-----------------------+----------+
    | OpCode | Len-1  | Data[0] |  ...   Data[Len-1]    |   CRC    |
    | 1 byte | 1 byte | 2 bytes |  2 bytes per word     | 2 bytes  |
    +--------+--------+---------+-----------------------+----------+

- RS-232 link: the opcode is sent on its own and acknowledged by the
  controller before the rest of the frame (the "body") is transmitted.
- USB link: the frame is prefixed with ``DLE STX`` (0x90 0x02) and every
  0x90 byte after the prefix is doubled (byte stuffing). The prefix is not
  stuffed and is not part of the CRC.
- Data word 2 carries the node id in its high byte.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from ..errors import FramingError
from ..utils.crc import CrcFunction, frame_crc

DLE = 0x90
STX = 0x02
PREAMBLE = bytes([DLE, STX])
ACK = ord("O")
NAK = ord("F")
RESPONSE_OPCODE = 0x00
MAX_WORDS = 256


class LinkVariant(str, Enum):
    """Physical link encapsulation."""

    RS232 = "rs232"
    USB = "usb"


@dataclass(frozen=True)
class Frame:
    """An outgoing request: opcode plus 16-bit data words.

    The CRC is not part of the frame; it is computed at encode time.
    """

    opcode: int
    data: tuple[int, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", tuple(self.data))
        if not 0 <= self.opcode <= 0xFF:
            raise ValueError(f"Opcode must be 0-255, got {self.opcode}")
        if not 1 <= len(self.data) <= MAX_WORDS:
            raise ValueError(
                f"Frame must carry 1-{MAX_WORDS} data words, got {len(self.data)}"
            )
        for word in self.data:
            if not 0 <= word <= 0xFFFF:
                raise ValueError(f"Data word out of range: {word}")

    @property
    def length(self) -> int:
        """Value of the length byte on the wire (word count minus one)."""
        return len(self.data) - 1

    def with_node_id(self, node_id: int) -> Frame:
        """Return a copy with ``node_id`` in the high byte of data word 2."""
        if not 0 <= node_id <= 0xFF:
            raise ValueError(f"Node id must be 0-255, got {node_id}")
        if len(self.data) < 2:
            return self
        data = list(self.data)
        data[1] = (node_id << 8) | (data[1] & 0x00FF)
        return replace(self, data=tuple(data))

    def __repr__(self) -> str:
        words = " ".join(f"0x{w:04X}" for w in self.data)
        return f"Frame(opcode=0x{self.opcode:02X}, data=[{words}])"


def encode_word(word: int) -> bytes:
    """Serialize a 16-bit word, low byte first."""
    return (word & 0xFFFF).to_bytes(2, "little")


def stuff(data: bytes) -> bytes:
    """Double every DLE byte."""
    return data.replace(bytes([DLE]), bytes([DLE, DLE]))


def destuff(data: bytes) -> bytes:
    """Undo :func:`stuff`.

    Raises:
        FramingError: If a DLE is not followed by a second DLE.
    """
    out = bytearray()
    i = 0
    while i < len(data):
        b = data[i]
        if b == DLE:
            if i + 1 >= len(data) or data[i + 1] != DLE:
                raise FramingError(f"Unpaired DLE at offset {i}")
            i += 1
        out.append(b)
        i += 1
    return bytes(out)


def encode_body(frame: Frame, crc_func: CrcFunction = frame_crc) -> bytes:
    """Length byte, data words and CRC word of ``frame``, unstuffed.

    The frame is encoded as given; node id injection is the caller's job
    (see :func:`encode_frame`).
    """
    crc = crc_func(frame.opcode, frame.length, frame.data)
    body = bytes([frame.length])
    body += b"".join(encode_word(w) for w in frame.data)
    body += encode_word(crc)
    return body


def encode_frame(
    frame: Frame,
    node_id: int,
    variant: LinkVariant,
    crc_func: CrcFunction = frame_crc,
) -> bytes:
    """Build the bytes to transmit for ``frame`` on the given link.

    Args:
        frame: Request frame. It is not modified.
        node_id: Target node address, injected into data word 2.
        variant: Link encapsulation.
        crc_func: CRC function over (opcode, length, words).

    Returns:
        For RS-232, the body only (the opcode goes out during the handshake).
        For USB, the complete stuffed frame including the preamble.
    """
    addressed = frame.with_node_id(node_id)
    body = encode_body(addressed, crc_func)
    if LinkVariant(variant) is LinkVariant.RS232:
        return body
    return PREAMBLE + stuff(bytes([addressed.opcode]) + body)
