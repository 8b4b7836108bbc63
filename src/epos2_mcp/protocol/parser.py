"""Response parsing for controller answers."""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import CrcMismatch
from ..utils.crc import CrcFunction, frame_crc
from .framing import RESPONSE_OPCODE


@dataclass(frozen=True)
class Response:
    """A decoded answer frame.

    ``data`` holds the ``length + 1`` data words; ``crc`` is the checksum
    word as received.
    """

    data: tuple[int, ...]
    crc: int
    opcode: int = RESPONSE_OPCODE

    @property
    def length(self) -> int:
        return len(self.data) - 1

    @property
    def error_code(self) -> int:
        """Device error code carried in the first two words (0 means OK)."""
        if len(self.data) < 2:
            return self.data[0] if self.data else 0
        return self.data[0] | (self.data[1] << 16)

    @property
    def value(self) -> int | None:
        """32-bit value of a ReadObject answer (words 3-4), if present."""
        if len(self.data) < 4:
            return None
        return self.data[2] | (self.data[3] << 16)

    def verify(self, crc_func: CrcFunction = frame_crc) -> None:
        """Check the received CRC against the frame contents.

        Raises:
            CrcMismatch: If the checksums differ.
        """
        calculated = crc_func(self.opcode, self.length, self.data)
        if calculated != self.crc:
            raise CrcMismatch(self.crc, calculated)

    def to_dict(self) -> dict:
        result = {
            "error_code": f"0x{self.error_code:08X}",
            "data": [f"0x{w:04X}" for w in self.data],
        }
        if self.value is not None:
            result["value"] = self.value
        return result

    def __repr__(self) -> str:
        words = " ".join(f"0x{w:04X}" for w in self.data)
        return f"Response(data=[{words}], crc=0x{self.crc:04X})"


def decode_words(raw: bytes) -> tuple[int, ...]:
    """Split ``raw`` into 16-bit little-endian words.

    Raises:
        ValueError: If ``raw`` has an odd length.
    """
    if len(raw) % 2:
        raise ValueError(f"Word data must have an even length, got {len(raw)}")
    return tuple(
        int.from_bytes(raw[i : i + 2], "little") for i in range(0, len(raw), 2)
    )


def to_signed32(value: int) -> int:
    """Interpret a 32-bit unsigned value as two's complement."""
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value
