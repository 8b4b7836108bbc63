"""Exceptions raised by the EPOS2 protocol stack."""

from __future__ import annotations


class Epos2Error(Exception):
    """Base class for every failure reported by the protocol stack."""


class Epos2ConnectionError(Epos2Error, ConnectionError):
    """The serial port could not be opened, or is not open."""


class TransportTimeout(Epos2Error, TimeoutError):
    """A required read returned fewer bytes than expected."""


class ProtocolError(Epos2Error):
    """An ACK, echo or preamble byte did not have the expected value."""


class FramingError(ProtocolError):
    """Byte-stuffed data could not be decoded."""


class CrcMismatch(ProtocolError):
    """The CRC of a received frame does not match its contents."""

    def __init__(self, received: int, calculated: int) -> None:
        super().__init__(
            f"CRC mismatch: received 0x{received:04X}, calculated 0x{calculated:04X}"
        )
        self.received = received
        self.calculated = calculated


class RetryExhausted(ProtocolError):
    """The opcode was never acknowledged within the allowed attempts."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Opcode not acknowledged after {attempts} attempts")
        self.attempts = attempts
