"""Request/response exchange with the controller over either link variant.

RS-232 exchange::

    host                           controller
    OpCode            ------------>
                      <------------ 'O'          (retried, see RetryPolicy)
    Len-1, Data, CRC  ------------>
                      <------------ 'O'
                      <------------ 0x00         (response opcode)
    'O'               ------------>
                      <------------ Len-1, Data, CRC
    'O'               ------------>

USB exchange: one stuffed frame each way, ``DLE STX`` prefixed, no ACKs.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol, TypeVar

from ..errors import (
    CrcMismatch,
    Epos2Error,
    FramingError,
    ProtocolError,
    RetryExhausted,
    TransportTimeout,
)
from ..models.settings import SUMMARY, TRACE, ConnectionSettings
from ..protocol.framing import (
    ACK,
    DLE,
    NAK,
    PREAMBLE,
    RESPONSE_OPCODE,
    Frame,
    LinkVariant,
    encode_frame,
)
from ..protocol.parser import Response, decode_words
from ..utils.crc import CrcFunction, frame_crc

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ByteLink(Protocol):
    """The subset of :class:`SerialConnection` used by the transport."""

    def ensure_open(self) -> None: ...

    def write(self, data: bytes) -> None: ...

    def read(self, size: int) -> bytes: ...

    def flush_input(self) -> None: ...


class SendState(Enum):
    IDLE = "idle"
    OPCODE_SENT = "opcode_sent"
    OPCODE_ACKED = "opcode_acked"
    BODY_SENT = "body_sent"
    RESPONSE_WAIT = "response_wait"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RetryPolicy:
    """Bounded retry for the opcode handshake.

    ``attempts`` counts every try, including the first. Before each retry
    ``before_retry`` is called (the transport flushes its input there) and
    the policy sleeps ``delay`` seconds.
    """

    attempts: int = 5
    delay: float = 0.1
    sleep: Callable[[float], None] = time.sleep

    def run(
        self,
        attempt: Callable[[], T],
        before_retry: Callable[[], None] | None = None,
    ) -> T:
        """Call ``attempt`` until it returns without a retryable error.

        Timeouts and protocol errors are retried; anything else propagates
        immediately.

        Raises:
            RetryExhausted: After ``attempts`` failed tries. The last error
                is chained as ``__cause__``.
        """
        last_error: Exception | None = None
        for n in range(1, self.attempts + 1):
            if n > 1:
                if before_retry is not None:
                    before_retry()
                self.sleep(self.delay)
            try:
                return attempt()
            except (TransportTimeout, ProtocolError) as e:
                last_error = e
        raise RetryExhausted(self.attempts) from last_error


class FrameTransport:
    """Sends frames and reads answers over a :class:`ByteLink`.

    Only one exchange may be in progress at a time; the caller is
    responsible for serializing access.
    """

    def __init__(
        self,
        link: ByteLink,
        settings: ConnectionSettings | None = None,
        crc_func: CrcFunction = frame_crc,
        retry: RetryPolicy | None = None,
        verify_crc: bool = True,
    ) -> None:
        self._link = link
        self._settings = settings or ConnectionSettings()
        self._crc_func = crc_func
        self._retry = retry or RetryPolicy(
            attempts=self._settings.retry_attempts,
            delay=self._settings.retry_delay,
        )
        self._verify_crc = verify_crc
        self.state = SendState.IDLE

    @property
    def variant(self) -> LinkVariant:
        return self._settings.link

    @property
    def node_id(self) -> int:
        return self._settings.node_id

    # ─── low level ────────────────────────────────────────────────────

    def _read_exact(self, size: int, what: str) -> bytes:
        data = self._link.read(size)
        if len(data) < size:
            raise TransportTimeout(
                f"Timeout waiting for {what} ({len(data)}/{size} bytes)"
            )
        return data

    def _expect(self, expected: int, what: str) -> None:
        c = self._read_exact(1, what)[0]
        if c != expected:
            raise ProtocolError(
                f"Expected {what} 0x{expected:02X}, received 0x{c:02X}"
            )

    def _read_unstuffed(self, size: int, what: str) -> bytes:
        """Read ``size`` payload bytes from a stuffed stream."""
        out = bytearray()
        while len(out) < size:
            b = self._read_exact(1, what)[0]
            if b == DLE:
                second = self._read_exact(1, what)[0]
                if second != DLE:
                    raise FramingError(
                        f"Unpaired DLE in {what}: followed by 0x{second:02X}"
                    )
            out.append(b)
        return bytes(out)

    def _fail(self, error: Exception) -> None:
        self.state = SendState.FAILED
        if self._settings.verbosity >= SUMMARY:
            logger.warning("%s", error)

    # ─── send ─────────────────────────────────────────────────────────

    def send(self, frame: Frame) -> None:
        """Transmit ``frame`` and, on RS-232, complete the ACK handshake.

        The node id is injected into a copy of the frame; ``frame`` itself
        is never modified.

        Raises:
            Epos2ConnectionError: If the port cannot be opened or a write fails.
            RetryExhausted: If the opcode was never acknowledged.
            TransportTimeout: If the final ACK did not arrive.
            ProtocolError: If the final ACK had the wrong value.
        """
        self.state = SendState.IDLE
        data = encode_frame(frame, self.node_id, self.variant, self._crc_func)
        if self._settings.verbosity >= TRACE:
            logger.debug("Sending %r to node %d", frame, self.node_id)

        try:
            self._link.ensure_open()
            if self.variant is LinkVariant.USB:
                self._link.write(data)
            else:
                self._send_rs232(frame.opcode, data)
        except Epos2Error as e:
            self._fail(e)
            raise
        self.state = SendState.DONE

    def _send_rs232(self, opcode: int, body: bytes) -> None:
        self._retry.run(
            lambda: self._send_opcode(opcode),
            before_retry=self._link.flush_input,
        )
        self.state = SendState.OPCODE_ACKED

        self._link.write(body)
        self.state = SendState.BODY_SENT
        self._expect(ACK, "end ACK")
        if self._settings.verbosity >= TRACE:
            logger.debug("ACK OK")

    def _send_opcode(self, opcode: int) -> None:
        self._link.write(bytes([opcode]))
        self.state = SendState.OPCODE_SENT
        try:
            self._expect(ACK, "opcode ACK")
        except (TransportTimeout, ProtocolError) as e:
            if self._settings.verbosity >= SUMMARY:
                logger.info("Opcode 0x%02X not acknowledged: %s", opcode, e)
            raise

    # ─── receive ──────────────────────────────────────────────────────

    def receive(self) -> Response:
        """Read the controller's answer to the last frame sent.

        Raises:
            TransportTimeout: If any part of the answer did not arrive.
            ProtocolError: If the opcode or preamble is wrong, or the CRC
                does not match while ``verify_crc`` is enabled. An unpaired
                DLE on the USB link raises its FramingError subclass.
            Epos2ConnectionError: If a read or write on the port fails.
        """
        self.state = SendState.RESPONSE_WAIT
        try:
            if self.variant is LinkVariant.USB:
                response = self._receive_usb()
            else:
                response = self._receive_rs232()
        except Epos2Error as e:
            self._fail(e)
            raise
        self.state = SendState.DONE
        if self._settings.verbosity >= TRACE:
            logger.debug("Response: %r", response)
        return response

    def _receive_rs232(self) -> Response:
        self._expect(RESPONSE_OPCODE, "response opcode")
        self._link.write(bytes([ACK]))
        length = self._read_exact(1, "response length")[0]
        n_words = length + 1
        raw = self._read_exact(2 * (n_words + 1), "response data")
        words = decode_words(raw)
        response = Response(data=words[:-1], crc=words[-1])
        try:
            self._check_crc(response)
        except CrcMismatch:
            self._link.write(bytes([NAK]))
            raise
        self._link.write(bytes([ACK]))
        return response

    def _receive_usb(self) -> Response:
        for expected, what in zip(PREAMBLE, ("DLE", "STX")):
            self._expect(expected, what)
        opcode = self._read_unstuffed(1, "response opcode")[0]
        if opcode != RESPONSE_OPCODE:
            raise ProtocolError(
                f"Expected response opcode 0x{RESPONSE_OPCODE:02X}, "
                f"received 0x{opcode:02X}"
            )
        length = self._read_unstuffed(1, "response length")[0]
        n_words = length + 1
        raw = self._read_unstuffed(2 * (n_words + 1), "response data")
        words = decode_words(raw)
        response = Response(data=words[:-1], crc=words[-1])
        self._check_crc(response)
        return response

    def _check_crc(self, response: Response) -> None:
        if self._verify_crc:
            response.verify(self._crc_func)

    def send_and_wait_answer(self, frame: Frame) -> Response:
        """Send ``frame`` and return the controller's answer."""
        self.send(frame)
        return self.receive()
