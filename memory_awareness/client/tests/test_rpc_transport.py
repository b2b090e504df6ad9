"""Tests for the MCP stdio transport against a scripted server."""

import sys

import pytest

from ...errors import ProtocolError, TransportError
from ..rpc_transport import RpcTransport


FAKE_SERVER = r'''
import json
import sys

def reply(message, result):
    print(json.dumps({"jsonrpc": "2.0", "id": message["id"], "result": result}), flush=True)

def text(payload):
    return {"content": [{"type": "text", "text": json.dumps(payload)}], "isError": False}

for line in sys.stdin:
    message = json.loads(line)
    if "id" not in message or "method" not in message:
        continue
    method = message["method"]
    if method == "initialize":
        reply(message, {"protocolVersion": message["params"]["protocolVersion"], "capabilities": {},
                        "serverInfo": {"name": "fake-memory", "version": "1.0"}})
        continue
    if method != "tools/call":
        reply(message, {})
        continue
    name = message["params"]["name"]
    if name == "slow_tool":
        continue
    if name == "retrieve_memory":
        reply(message, text({"results": [{"memory": {"content_hash": "h1", "content": "Use SQLite",
                                                     "tags": ["db"], "created_at": 1700000000},
                                          "similarity_score": 0.9}]}))
    elif name == "check_database_health":
        reply(message, text({"status": "healthy"}))
    elif name == "recall_memory":
        reply(message, {"content": [{"type": "text", "text": "storage offline"}], "isError": True})
    else:
        print(json.dumps({"jsonrpc": "2.0", "id": message["id"],
                          "error": {"code": -32601, "message": "Unknown tool"}}), flush=True)
'''


def make_transport(tmp_path, tool_call_timeout=5000):
    return RpcTransport([sys.executable, "-c", FAKE_SERVER], working_dir=str(tmp_path),
                        connection_timeout=5000, tool_call_timeout=tool_call_timeout)


@pytest.fixture
def transport(tmp_path):
    rpc = make_transport(tmp_path)
    rpc.connect()
    yield rpc
    rpc.disconnect()


class TestRpcTransport:
    """Tests for handshake, tool calls and failure handling."""

    def test_handshake(self, transport):
        assert transport.connected is True
        assert transport.is_running is True
        assert transport.server_info["serverInfo"]["name"] == "fake-memory"

    def test_connect_is_idempotent(self, transport):
        info = transport.server_info
        assert transport.connect() is info

    def test_query_memories_normalizes_timestamps(self, transport):
        memories = transport.query_memories("sqlite", 5)
        assert [m.content_hash for m in memories] == ["h1"]
        assert memories[0].created_at == 1_700_000_000_000

    def test_tool_error_result_yields_nothing(self, transport):
        assert transport.query_memories_by_time("last-week", 5) == []

    def test_health(self, transport):
        assert transport.get_health_status() == {"success": True, "data": {"status": "healthy"}}

    def test_error_response(self, transport):
        with pytest.raises(ProtocolError, match="Unknown tool"):
            transport.call_tool("no_such_tool")

    def test_disconnect_stops_session(self, transport):
        transport.disconnect()
        assert transport.is_running is False
        with pytest.raises(TransportError):
            transport.call_tool("retrieve_memory", {"query": "x"})
        assert transport.get_health_status()["fallback"] is True


def test_timeout_rejects_only_that_call(tmp_path):
    rpc = make_transport(tmp_path, tool_call_timeout=300)
    rpc.connect()
    try:
        with pytest.raises(TransportError, match="timeout"):
            rpc.call_tool("slow_tool")
        assert rpc.is_running
        assert len(rpc.query_memories("sqlite", 5)) == 1
    finally:
        rpc.disconnect()


class TestConnectFailures:
    """Tests for servers that cannot start."""

    def test_empty_command(self):
        with pytest.raises(TransportError):
            RpcTransport([])

    def test_missing_command(self, tmp_path):
        rpc = RpcTransport(["definitely-not-a-memory-server-binary"], working_dir=str(tmp_path),
                           connection_timeout=2000)
        with pytest.raises(TransportError):
            rpc.connect()
        assert rpc.is_running is False

    def test_server_exits_immediately(self, tmp_path):
        rpc = RpcTransport([sys.executable, "-c", "pass"], working_dir=str(tmp_path), connection_timeout=2000)
        with pytest.raises(TransportError):
            rpc.connect()
        assert rpc.is_running is False

    def test_env_file_seeds_server_env(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("MEMORY_TEST_ONLY=from-file\nPATH=ignored\n")
        monkeypatch.setenv("MEMORY_TEST_ONLY_OTHER", "x")
        params = RpcTransport(["server"], working_dir=str(tmp_path))._server_params()

        assert params.command == "server"
        assert params.env["MEMORY_TEST_ONLY"] == "from-file"
        assert params.env["PATH"] != "ignored"
        assert str(params.cwd) == str(tmp_path)
