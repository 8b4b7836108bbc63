"""Tests for the MCP tool layer."""

from __future__ import annotations

import json
import os
import sys
from unittest.mock import MagicMock, patch

import pytest

from conftest import ACK_BYTE, FakeLink, response_body
from epos2_mcp.errors import RetryExhausted
from epos2_mcp.models.settings import ConnectionSettings
from epos2_mcp.protocol.commands import ObjectIndex
from epos2_mcp.protocol.parser import Response
from epos2_mcp.transport.frame_transport import FrameTransport, RetryPolicy


def _get_server_module():
    """Import server module with FastMCP mocked to avoid init issues."""
    mock_fastmcp_cls = MagicMock()
    mock_fastmcp_instance = MagicMock()
    # Make the @mcp.tool() decorator a no-op that returns the function unchanged
    mock_fastmcp_instance.tool.return_value = lambda fn: fn
    mock_fastmcp_instance.resource.return_value = lambda fn: fn
    mock_fastmcp_instance.prompt.return_value = lambda fn: fn
    mock_fastmcp_cls.return_value = mock_fastmcp_instance

    with patch("mcp.server.fastmcp.FastMCP", mock_fastmcp_cls):
        # Remove cached server module so it re-imports with our mock
        sys.modules.pop("epos2_mcp.server", None)
        import epos2_mcp.server as server_mod

    return server_mod


def _ok(extra_words=()):
    return Response(data=(0, 0, *extra_words), crc=0)


def test_tool_reports_not_connected_error():
    server = _get_server_module()
    with pytest.raises(RuntimeError, match="connect"):
        server.enable()


def test_enable_sends_three_controlwords():
    server = _get_server_module()
    transport = MagicMock()
    transport.send_and_wait_answer.return_value = _ok()

    with patch.object(server, "_get_transport", return_value=transport), \
            patch.object(server.time, "sleep") as sleep:
        result = server.enable()

    assert result["ok"] is True
    frames = [c.args[0] for c in transport.send_and_wait_answer.call_args_list]
    assert [f.data[2] for f in frames] == [0x0006, 0x000F, 0x010F]
    assert sleep.call_count == 2


def test_device_error_code_makes_result_not_ok():
    server = _get_server_module()
    transport = MagicMock()
    transport.send_and_wait_answer.return_value = Response(data=(0x0000, 0x0602), crc=0)

    with patch.object(server, "_get_transport", return_value=transport):
        result = server.set_target_position(1000)

    assert result["ok"] is False
    assert result["responses"][0]["error_code"] == "0x06020000"


def test_protocol_failure_is_returned_not_raised():
    server = _get_server_module()
    transport = MagicMock()
    transport.send_and_wait_answer.side_effect = RetryExhausted(5)

    with patch.object(server, "_get_transport", return_value=transport):
        result = server.disable()

    assert result["ok"] is False
    assert result["error_type"] == "RetryExhausted"


def test_invalid_argument_is_reported():
    server = _get_server_module()
    result = server.set_current(100000)
    assert result["ok"] is False
    assert "int16" in result["error"]


def test_get_statusword_over_rs232():
    server = _get_server_module()
    link = FakeLink(ACK_BYTE, ACK_BYTE, b"\x00", response_body([0, 0, 0x0237, 0]))
    settings = ConnectionSettings(verbosity=0)
    transport = FrameTransport(link, settings, retry=RetryPolicy(sleep=lambda s: None))

    with patch.object(server, "_get_transport", return_value=transport):
        result = server.get_statusword()

    assert result["ok"] is True
    assert result["statusword"] == "0x0237"
    # opcode 0x10, then body with the statusword index and node 1
    assert link.writes[0] == b"\x10"
    assert link.writes[1][1:5] == bytes.fromhex("41 60 00 01")


def test_connect_failure_returns_error():
    server = _get_server_module()
    with patch.object(server.SerialConnection, "ensure_open", side_effect=server.Epos2Error("nope")):
        result = server.connect(port="/dev/null0", node_id=2)
    assert result == {"connected": False, "error": "nope"}
    assert server._connection is None


def test_connect_rejects_bad_node_id():
    server = _get_server_module()
    result = server.connect(node_id=300)
    assert result["connected"] is False


def test_connect_and_disconnect():
    server = _get_server_module()
    with patch.object(server.SerialConnection, "ensure_open"), \
            patch.object(server.SerialConnection, "connected", True), \
            patch.object(server.SerialConnection, "close") as close:
        result = server.connect(port="/dev/ttyUSB1", link="USB", verbosity=1)
        assert result["connected"] is True
        assert result["settings"]["link"] == "usb"
        assert result["settings"]["port"] == "/dev/ttyUSB1"

        status = json.loads(server.resource_device_status())
        assert status["connected"] is True

        again = server.connect()
        assert again["message"] == "Already connected"

        assert server.disconnect() == {"disconnected": True}
        close.assert_called_once()
    assert server._connection is None


def test_modes_catalog():
    server = _get_server_module()
    modes = json.loads(server.resource_modes_catalog())["modes"]
    assert {"name": "HOMING", "value": 6} in modes


def test_read_object_passes_index():
    server = _get_server_module()
    transport = MagicMock()
    transport.send_and_wait_answer.return_value = _ok((5, 0))

    with patch.object(server, "_get_transport", return_value=transport):
        result = server.read_object(ObjectIndex.STATUSWORD, 0)

    assert result["responses"][0]["value"] == 5
    assert result["signed_value"] == 5
    frame = transport.send_and_wait_answer.call_args.args[0]
    assert frame.data == (0x6041, 0)


def test_read_object_reports_signed_value():
    server = _get_server_module()
    transport = MagicMock()
    transport.send_and_wait_answer.return_value = _ok((0xFC18, 0xFFFF))

    with patch.object(server, "_get_transport", return_value=transport):
        result = server.read_object(ObjectIndex.POSITION_SETTING_VALUE)

    assert result["responses"][0]["value"] == 0xFFFFFC18
    assert result["signed_value"] == -1000


def test_read_object_failure_has_no_signed_value():
    server = _get_server_module()
    transport = MagicMock()
    transport.send_and_wait_answer.side_effect = RetryExhausted(5)

    with patch.object(server, "_get_transport", return_value=transport):
        result = server.read_object(ObjectIndex.STATUSWORD)

    assert result["ok"] is False
    assert "signed_value" not in result


@pytest.mark.parametrize(
    "env",
    [{"EPOS2_LINK": "can"}, {"EPOS2_NODE_ID": "node-one"}, {"EPOS2_BAUDRATE": "fast"}],
)
def test_connect_reports_bad_environment(env):
    server = _get_server_module()
    with patch.dict(os.environ, env), \
            patch.object(server.SerialConnection, "ensure_open") as ensure_open:
        result = server.connect()
    assert result["connected"] is False
    assert result["error"]
    ensure_open.assert_not_called()
    assert server._connection is None


def test_write_object_rejects_unsupported_width():
    server = _get_server_module()
    result = server.write_object(0x2062, 0, 2**40, bits=64)
    assert result["ok"] is False
    assert "width" in result["error"]
