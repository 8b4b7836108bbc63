"""Serial port connection to an EPOS2 controller.

The port is opened lazily by :meth:`SerialConnection.ensure_open` and
released by :meth:`SerialConnection.close`, on context manager exit, or
when the object is garbage collected.
"""

from __future__ import annotations

import logging
from enum import Enum

import serial

from ..errors import Epos2ConnectionError
from ..models.settings import SUMMARY, TRACE, ConnectionSettings

logger = logging.getLogger(__name__)

INPUT_BUFFER_SIZE = 1024
OUTPUT_BUFFER_SIZE = 1024


class ConnectionState(Enum):
    CLOSED = "closed"
    OPEN = "open"


class SerialConnection:
    """Owns the serial port handle for one controller.

    Usage::

        with SerialConnection(ConnectionSettings(port="/dev/ttyUSB0")) as conn:
            conn.write(b"\\x11")
            ack = conn.read(1)
    """

    def __init__(self, settings: ConnectionSettings | None = None) -> None:
        self._settings = settings or ConnectionSettings()
        self._serial: serial.Serial | None = None

    @property
    def settings(self) -> ConnectionSettings:
        return self._settings

    @property
    def state(self) -> ConnectionState:
        if self._serial is not None:
            return ConnectionState.OPEN
        return ConnectionState.CLOSED

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.OPEN

    def ensure_open(self) -> None:
        """Open the port unless it is already open.

        Raises:
            Epos2ConnectionError: If the port cannot be opened or does not
                report itself open afterwards.
        """
        if self._serial is not None:
            return

        s = self._settings
        if s.verbosity >= SUMMARY:
            logger.info("Opening serial port %s at %d baud", s.port, s.baudrate)

        port = None
        try:
            port = serial.Serial(
                port=s.port,
                baudrate=s.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=s.read_timeout,
                write_timeout=s.read_timeout,
            )
            if not port.is_open:
                raise Epos2ConnectionError(f"Serial port {s.port} did not open")
            try:
                port.set_buffer_size(
                    rx_size=INPUT_BUFFER_SIZE, tx_size=OUTPUT_BUFFER_SIZE
                )
            except AttributeError:
                # Only the Windows backend supports buffer sizing
                pass
        except (serial.SerialException, OSError, ValueError, Epos2ConnectionError) as e:
            if port is not None:
                port.close()
            if s.verbosity >= SUMMARY:
                logger.error("Could not open serial port %s: %s", s.port, e)
            if isinstance(e, Epos2ConnectionError):
                raise
            raise Epos2ConnectionError(
                f"Could not open serial port {s.port!r}: {e}"
            ) from e

        self._serial = port

    def close(self) -> None:
        """Release the port. Does nothing if it is not open."""
        if self._serial is None:
            return

        port, self._serial = self._serial, None
        if self._settings.verbosity >= SUMMARY:
            logger.info("Closing serial port %s", self._settings.port)
        try:
            port.close()
        except (serial.SerialException, OSError) as e:
            logger.warning("Error closing serial port: %s", e)

    def _require_port(self) -> serial.Serial:
        if self._serial is None:
            raise Epos2ConnectionError("Serial port is not open")
        return self._serial

    def write(self, data: bytes) -> None:
        """Write ``data`` to the port.

        Raises:
            Epos2ConnectionError: If the port is closed or the write fails.
        """
        port = self._require_port()
        if self._settings.verbosity >= TRACE:
            logger.debug("TX %s", data.hex(" "))
        try:
            port.write(data)
        except (serial.SerialException, OSError) as e:
            raise Epos2ConnectionError(f"Serial write failed: {e}") from e

    def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes, blocking for at most the read timeout.

        A short result means the timeout expired.
        """
        port = self._require_port()
        try:
            data = bytes(port.read(size))
        except (serial.SerialException, OSError) as e:
            raise Epos2ConnectionError(f"Serial read failed: {e}") from e
        if self._settings.verbosity >= TRACE:
            logger.debug("RX %s", data.hex(" ") if data else "(timeout)")
        return data

    def flush_input(self) -> None:
        """Discard any bytes waiting in the input buffer."""
        self._require_port().reset_input_buffer()

    def __enter__(self) -> SerialConnection:
        self.ensure_open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __del__(self) -> None:
        try:
            self.close()
        except Exception:
            pass
