"""CRC-16 used by the EPOS2 frame protocol.

The controller computes CRC-CCITT (polynomial 0x1021, initial value 0) over
the frame as a stream of 16-bit words::

    [(opcode << 8) | length, data[0], data[1], ..., data[n-1]]

Each word is fed most significant bit first, which is the same as running
CRC-16/XMODEM over the big-endian byte representation of those words.
"""

from __future__ import annotations

from typing import Callable, Sequence

CRC_POLYNOMIAL = 0x1021

CrcFunction = Callable[[int, int, Sequence[int]], int]


def crc16_ccitt(data: bytes, poly: int = CRC_POLYNOMIAL, init: int = 0x0000) -> int:
    """Bitwise CRC-16/CCITT, MSB first, no reflection, no final XOR."""
    crc = init
    for b in data:
        crc ^= b << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = (crc << 1) ^ poly
            else:
                crc <<= 1
            crc &= 0xFFFF
    return crc


def frame_crc(opcode: int, length: int, words: Sequence[int]) -> int:
    """CRC of a frame from its opcode, length byte and data words.

    This is the default ``crc_func`` used by the encoder and the transport.
    Any function with the same signature can be injected instead.
    """
    stream = bytearray([opcode & 0xFF, length & 0xFF])
    for word in words:
        stream += (word & 0xFFFF).to_bytes(2, "big")
    return crc16_ccitt(bytes(stream))
