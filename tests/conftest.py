"""Shared fixtures: a scripted stand-in for the serial connection."""

from __future__ import annotations

from collections import deque

import pytest

from epos2_mcp.protocol.framing import ACK, RESPONSE_OPCODE, encode_word
from epos2_mcp.utils.crc import frame_crc


class FakeLink:
    """Serial connection double.

    ``script`` is a sequence of inbound chunks. A read consumes bytes from
    the first chunk; an empty chunk makes exactly one read time out.
    """

    def __init__(self, *script: bytes) -> None:
        self.inbound: deque[bytearray] = deque(bytearray(c) for c in script)
        self.writes: list[bytes] = []
        self.flushes = 0
        self.opens = 0

    def feed(self, *chunks: bytes) -> None:
        self.inbound.extend(bytearray(c) for c in chunks)

    def ensure_open(self) -> None:
        self.opens += 1

    def write(self, data: bytes) -> None:
        self.writes.append(bytes(data))

    def read(self, size: int) -> bytes:
        if not self.inbound:
            return b""
        chunk = self.inbound[0]
        if not chunk:
            self.inbound.popleft()
            return b""
        data = bytes(chunk[:size])
        del chunk[:size]
        if not chunk:
            self.inbound.popleft()
        return data

    def flush_input(self) -> None:
        self.flushes += 1

    @property
    def written(self) -> bytes:
        return b"".join(self.writes)


def response_body(words: list[int], crc: int | None = None) -> bytes:
    """Length byte, data words and CRC of an answer frame, unstuffed."""
    length = len(words) - 1
    if crc is None:
        crc = frame_crc(RESPONSE_OPCODE, length, words)
    return bytes([length]) + b"".join(encode_word(w) for w in words) + encode_word(crc)


ACK_BYTE = bytes([ACK])


@pytest.fixture
def link() -> FakeLink:
    return FakeLink()
