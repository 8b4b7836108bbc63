"""Connection settings for a controller on a serial link."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from typing import Mapping

from ..protocol.framing import LinkVariant

DEFAULT_PORT = "COM3"
DEFAULT_BAUDRATE = 115200
DEFAULT_NODE_ID = 1
DEFAULT_READ_TIMEOUT = 0.5
DEFAULT_RETRY_ATTEMPTS = 5
DEFAULT_RETRY_DELAY = 0.1

# Verbosity levels
QUIET = 0
SUMMARY = 1
TRACE = 2


@dataclass
class ConnectionSettings:
    """Everything needed to talk to one controller.

    ``verbosity`` only controls diagnostic output: 0 is silent, 1 logs
    connection events and failures, 2 adds a hex trace of every byte.
    """

    port: str = DEFAULT_PORT
    baudrate: int = DEFAULT_BAUDRATE
    node_id: int = DEFAULT_NODE_ID
    link: LinkVariant = LinkVariant.RS232
    verbosity: int = TRACE
    read_timeout: float = DEFAULT_READ_TIMEOUT
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_delay: float = DEFAULT_RETRY_DELAY

    def __post_init__(self) -> None:
        self.link = LinkVariant(self.link)
        if not 0 <= self.node_id <= 255:
            raise ValueError(f"Node id must be 0-255, got {self.node_id}")
        if self.verbosity not in (QUIET, SUMMARY, TRACE):
            raise ValueError(f"Verbosity must be 0, 1 or 2, got {self.verbosity}")
        if self.retry_attempts < 1:
            raise ValueError(
                f"Retry attempts must be at least 1, got {self.retry_attempts}"
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ConnectionSettings:
        """Build settings from ``EPOS2_*`` environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            port=env.get("EPOS2_PORT", DEFAULT_PORT),
            baudrate=int(env.get("EPOS2_BAUDRATE", DEFAULT_BAUDRATE)),
            node_id=int(env.get("EPOS2_NODE_ID", str(DEFAULT_NODE_ID)), 0),
            link=LinkVariant(env.get("EPOS2_LINK", LinkVariant.RS232.value).lower()),
            verbosity=int(env.get("EPOS2_VERBOSITY", TRACE)),
            read_timeout=float(env.get("EPOS2_TIMEOUT", DEFAULT_READ_TIMEOUT)),
        )

    def to_dict(self) -> dict:
        result = asdict(self)
        result["link"] = self.link.value
        return result
