"""MCP server entry point for Maxon EPOS2 motion controllers.

Exposes tools, resources, and prompts via the Model Context Protocol
using the official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from mcp.server.fastmcp import FastMCP

from .errors import Epos2Error
from .models.settings import TRACE, ConnectionSettings
from .protocol.commands import (
    DEFAULT_MAX_FOLLOWING_ERROR,
    OperationMode,
    build_current_mode,
    build_disable,
    build_enable_sequence,
    build_homing_mode,
    build_max_following_error,
    build_position_mode,
    build_profile_position_mode,
    build_read_object,
    build_read_statusword,
    build_target_current,
    build_target_position,
    build_target_velocity,
    build_velocity_mode,
    build_write_object,
)
from .protocol.framing import Frame
from .protocol.parser import Response, to_signed32
from .transport.frame_transport import FrameTransport
from .transport.serial_connection import SerialConnection

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "epos2",
    instructions="MCP server for Maxon EPOS2 motion controllers over a serial link",
)

# Pause between the controlword writes of the enable sequence
ENABLE_STEP_DELAY = 0.25

# Global connection state
_connection: SerialConnection | None = None
_transport: FrameTransport | None = None


def _get_transport() -> FrameTransport:
    """Get the active frame transport, raising if not connected."""
    if _transport is None or _connection is None or not _connection.connected:
        raise RuntimeError("Not connected to controller. Use the 'connect' tool first.")
    return _transport


def _exchange(frames: list[Frame], delay: float = 0.0) -> list[Response]:
    """Send frames in order, waiting for each answer."""
    transport = _get_transport()
    responses = []
    for i, frame in enumerate(frames):
        if i and delay:
            time.sleep(delay)
        responses.append(transport.send_and_wait_answer(frame))
    return responses


def _run(frames: list[Frame], delay: float = 0.0, **extra: Any) -> dict[str, Any]:
    """Run an exchange and turn the outcome into a tool result."""
    try:
        responses = _exchange(frames, delay)
    except Epos2Error as e:
        logger.error("Exchange failed: %s", e)
        return {"ok": False, "error": str(e), "error_type": type(e).__name__}

    result: dict[str, Any] = {
        "ok": all(r.error_code == 0 for r in responses),
        "responses": [r.to_dict() for r in responses],
    }
    result.update(extra)
    return result


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(
    port: str | None = None,
    baudrate: int | None = None,
    node_id: int | None = None,
    link: str | None = None,
    verbosity: int | None = None,
) -> dict[str, Any]:
    """Open the serial port to an EPOS2 controller.

    Unset arguments fall back to the EPOS2_* environment variables, then to
    the built-in defaults (COM3, 115200 baud, node 1, RS-232).

    Args:
        port: Serial port name, e.g. '/dev/ttyUSB0' or 'COM3'.
        baudrate: Link speed.
        node_id: Target node address (0-255).
        link: 'rs232' for the ACK handshake link, 'usb' for the framed link.
        verbosity: 0 silent, 1 summary events, 2 full byte trace.
    """
    global _connection, _transport
    if _connection is not None and _connection.connected:
        return {
            "connected": True,
            "message": "Already connected",
            "settings": _connection.settings.to_dict(),
        }

    try:
        settings = ConnectionSettings.from_env()
        overrides = {
            "port": port,
            "baudrate": baudrate,
            "node_id": node_id,
            "link": link.lower() if link else None,
            "verbosity": verbosity,
        }
        settings = ConnectionSettings(
            **{**settings.to_dict(), **{k: v for k, v in overrides.items() if v is not None}}
        )
    except ValueError as e:
        return {"connected": False, "error": str(e)}

    connection = SerialConnection(settings)
    try:
        connection.ensure_open()
    except Epos2Error as e:
        return {"connected": False, "error": str(e)}

    _connection = connection
    _transport = FrameTransport(connection, settings)
    return {"connected": True, "settings": settings.to_dict()}


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Close the serial port."""
    global _connection, _transport
    if _connection is not None:
        _connection.close()
    _connection = None
    _transport = None
    return {"disconnected": True}


def _last_value(result: dict[str, Any]) -> int | None:
    responses = result.get("responses") or []
    if not responses:
        return None
    return responses[-1].get("value")


# ─── OBJECT DICTIONARY TOOLS ─────────────────────────────────────────

@mcp.tool()
def read_object(index: int, subindex: int = 0) -> dict[str, Any]:
    """Read an object dictionary entry.

    The answer carries the raw 32-bit ``value`` and its two's complement
    reading as ``signed_value`` (positions and velocities are signed).

    Args:
        index: Object index, e.g. 0x6041 (24641) for the statusword.
        subindex: Object subindex.
    """
    try:
        frame = build_read_object(index, subindex)
    except ValueError as e:
        return {"ok": False, "error": str(e)}
    result = _run([frame], index=index, subindex=subindex)
    raw = _last_value(result)
    if raw is not None:
        result["signed_value"] = to_signed32(raw)
    return result


@mcp.tool()
def write_object(index: int, subindex: int, value: int, bits: int = 32) -> dict[str, Any]:
    """Write an object dictionary entry.

    Args:
        index: Object index.
        subindex: Object subindex.
        value: Value to write (negative values are sent as two's complement).
        bits: Object width: 8, 16 or 32.
    """
    try:
        frame = build_write_object(index, subindex, value, bits)
    except ValueError as e:
        return {"ok": False, "error": str(e)}
    return _run([frame], index=index, subindex=subindex, value=value)


@mcp.tool()
def get_statusword() -> dict[str, Any]:
    """Read the drive statusword (0x6041)."""
    result = _run([build_read_statusword()])
    if result.get("ok"):
        raw = _last_value(result)
        if raw is not None:
            result["statusword"] = f"0x{raw & 0xFFFF:04X}"
    return result


# ─── DRIVE CONTROL TOOLS ─────────────────────────────────────────────

@mcp.tool()
def enable() -> dict[str, Any]:
    """Enable the power stage (shutdown → switch on → enable operation)."""
    return _run(build_enable_sequence(), delay=ENABLE_STEP_DELAY, enabled=True)


@mcp.tool()
def disable() -> dict[str, Any]:
    """Disable operation (controlword shutdown)."""
    return _run([build_disable()], enabled=False)


@mcp.tool()
def start_homing_mode() -> dict[str, Any]:
    """Switch to Homing mode."""
    return _run([build_homing_mode()], mode=OperationMode.HOMING.name)


@mcp.tool()
def start_profile_position_mode(profile_velocity: int) -> dict[str, Any]:
    """Set the profile velocity and switch to Profile Position mode.

    Args:
        profile_velocity: Profile velocity in rpm.
    """
    try:
        frames = build_profile_position_mode(profile_velocity)
    except ValueError as e:
        return {"ok": False, "error": str(e)}
    return _run(frames, mode=OperationMode.PROFILE_POSITION.name)


@mcp.tool()
def start_position_mode() -> dict[str, Any]:
    """Switch to Position mode."""
    return _run([build_position_mode()], mode=OperationMode.POSITION.name)


@mcp.tool()
def start_velocity_mode() -> dict[str, Any]:
    """Switch to Velocity mode."""
    return _run([build_velocity_mode()], mode=OperationMode.VELOCITY.name)


@mcp.tool()
def start_current_mode() -> dict[str, Any]:
    """Switch to Current mode."""
    return _run([build_current_mode()], mode=OperationMode.CURRENT.name)


@mcp.tool()
def set_max_following_error(value: int = DEFAULT_MAX_FOLLOWING_ERROR) -> dict[str, Any]:
    """Set the maximal following error.

    Args:
        value: Limit in quadcounts.
    """
    try:
        frame = build_max_following_error(value)
    except ValueError as e:
        return {"ok": False, "error": str(e)}
    return _run([frame], max_following_error=value)


@mcp.tool()
def set_target_position(position: int) -> dict[str, Any]:
    """Set the Position mode setting value.

    Args:
        position: Absolute position in quadcounts (int32).
    """
    try:
        frame = build_target_position(position)
    except ValueError as e:
        return {"ok": False, "error": str(e)}
    return _run([frame], position=position)


@mcp.tool()
def set_velocity(velocity: int) -> dict[str, Any]:
    """Set the Velocity mode setting value.

    Args:
        velocity: Velocity in rpm (int32).
    """
    try:
        frame = build_target_velocity(velocity)
    except ValueError as e:
        return {"ok": False, "error": str(e)}
    return _run([frame], velocity=velocity)


@mcp.tool()
def set_current(current_ma: int) -> dict[str, Any]:
    """Set the Current mode setting value.

    Args:
        current_ma: Current in mA (int16).
    """
    try:
        frame = build_target_current(current_ma)
    except ValueError as e:
        return {"ok": False, "error": str(e)}
    return _run([frame], current_ma=current_ma)


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("epos2://device/status")
def resource_device_status() -> str:
    """Connection state and settings."""
    if _connection is None or not _connection.connected:
        return json.dumps({"connected": False})
    return json.dumps({
        "connected": True,
        "settings": _connection.settings.to_dict(),
        "last_exchange": _transport.state.value if _transport else None,
    })


@mcp.resource("epos2://catalog/modes")
def resource_modes_catalog() -> str:
    """Operation modes and their Modes of Operation values."""
    modes = [{"name": m.name, "value": int(m)} for m in OperationMode]
    return json.dumps({"modes": modes})


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def move_to_position(position: int) -> str:
    """Guide the AI through an absolute move in Position mode.

    Args:
        position: Target position in quadcounts.
    """
    return f"""Move the drive to position {position}.
Steps:
- connect, if not already connected
- set_max_following_error to a safe limit
- start_position_mode
- enable
- set_target_position with {position}
- get_statusword to check for faults

Stop and report if any tool returns ok=false."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    verbosity = ConnectionSettings.from_env().verbosity
    logging.basicConfig(level=logging.DEBUG if verbosity >= TRACE else logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
