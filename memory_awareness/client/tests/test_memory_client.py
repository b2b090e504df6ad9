"""Tests for the unified memory client."""

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from ...config_loader import MemoryServiceConfig
from ...errors import TransportError
from .. import memory_client
from ..memory_client import MemoryClient, filter_by_age, parse_time_window_days, wait_for_background_tasks
from ..models import Memory


def aged(days, content_hash):
    created = datetime.now(timezone.utc) - timedelta(days=days)
    return Memory(content_hash=content_hash, content="x", created_at=created.timestamp() * 1000)


class TestTimeWindows:
    """Tests for natural-language time windows."""

    def test_known_windows(self):
        assert parse_time_window_days("yesterday") == 1
        assert parse_time_window_days("last-week") == 7
        assert parse_time_window_days("last 2 weeks") == 14
        assert parse_time_window_days("last-month") == 30

    def test_default(self):
        assert parse_time_window_days("a while ago") == 30
        assert parse_time_window_days(None) == 30

    def test_filter_by_age(self):
        memories = [aged(2, "new"), aged(20, "old"), Memory(content_hash="undated")]
        assert [m.content_hash for m in filter_by_age(memories, 7)] == ["new"]


class TestConnect:
    """Tests for transport selection."""

    def test_prefers_mcp_then_falls_back_to_http(self):
        client = MemoryClient(MemoryServiceConfig())
        with patch.object(MemoryClient, "_connect_mcp", side_effect=TransportError("no server")) as mcp, \
                patch.object(MemoryClient, "_connect_http") as http:
            assert client.connect() == "http"
        mcp.assert_called_once()
        http.assert_called_once()

    def test_selection_is_sticky(self):
        client = MemoryClient(MemoryServiceConfig(preferred_protocol="http"))
        with patch.object(MemoryClient, "_connect_http") as http, \
                patch.object(MemoryClient, "_connect_mcp") as mcp:
            client.connect()
            client.connect()
        http.assert_called_once()
        mcp.assert_not_called()
        assert client.active_protocol == "http"

    def test_fixed_protocol(self):
        client = MemoryClient(MemoryServiceConfig(protocol="mcp"))
        with patch.object(MemoryClient, "_connect_mcp", side_effect=TransportError("no server")), \
                patch.object(MemoryClient, "_connect_http") as http:
            with pytest.raises(TransportError):
                client.connect()
        http.assert_not_called()

    def test_fallback_disabled(self):
        client = MemoryClient(MemoryServiceConfig(fallback_enabled=False))
        with patch.object(MemoryClient, "_connect_mcp", side_effect=TransportError("no server")), \
                patch.object(MemoryClient, "_connect_http") as http:
            with pytest.raises(TransportError) as exc_info:
                client.connect()
        http.assert_not_called()
        assert "Failed to connect using any available protocol" in str(exc_info.value)

    def test_query_requires_connection(self):
        with pytest.raises(TransportError):
            MemoryClient(MemoryServiceConfig()).query_memories("anything")


class TestQueries:
    """Tests for query routing on an HTTP connection."""

    def connected(self):
        client = MemoryClient(MemoryServiceConfig(protocol="http"))
        client.active_protocol = "http"
        client.http = MagicMock()
        return client

    def test_tag_and_time_filters_client_side(self):
        client = self.connected()
        client.http.search_by_tag.return_value = [aged(1, "a"), aged(10, "b"), aged(3, "c"), aged(2, "d")]

        result = client.query_memories_by_tag_and_time(["myapp"], "last-week", limit=2, semantic_query="q")

        assert [m.content_hash for m in result] == ["a", "c"]
        client.http.search_by_tag.assert_called_once_with(["myapp"], 8, "q")

    def test_tag_failure_falls_back_to_time_search(self):
        client = self.connected()
        client.http.search_by_tag.return_value = None
        client.http.search_by_time.return_value = [aged(1, "t")]

        result = client.query_memories_by_tag_and_time(["myapp"], "last-week", limit=5)

        assert [m.content_hash for m in result] == ["t"]
        client.http.search_by_time.assert_called_once_with("last-week", 5, None)

    def test_mcp_routing(self):
        client = MemoryClient(MemoryServiceConfig())
        client.active_protocol = "mcp"
        client.rpc = MagicMock()
        client.query_memories("sqlite", 4)
        client.rpc.query_memories.assert_called_once_with("sqlite", 4)

    def test_storage_info_from_health(self):
        client = self.connected()
        client.http.check_health.return_value = {"success": True, "data": {"storage": {"backend": "sqlite_vec"}}}
        assert client.get_storage_info().type == "local"

    def test_storage_info_without_connection(self):
        client = MemoryClient(MemoryServiceConfig())
        with patch.dict("os.environ", {"MCP_MEMORY_STORAGE_BACKEND": "cloudflare"}):
            assert client.get_storage_info().backend == "cloudflare"

    def test_disconnect_resets_state(self):
        client = self.connected()
        rpc = MagicMock()
        client.rpc = rpc
        client.disconnect()
        rpc.disconnect.assert_called_once()
        assert client.active_protocol is None
        assert client.http is None


class TestQualityEvaluation:
    """Tests for the background quality evaluation request."""

    def test_background_request_is_issued_and_joinable(self):
        client = MemoryClient(MemoryServiceConfig())
        client.http = MagicMock()
        release = threading.Event()
        client.http.evaluate_quality.side_effect = lambda content_hash: release.wait(2)

        client.evaluate_memory_quality("abcdef123456", background=True)

        pending = [t for t in memory_client._background_tasks if t.is_alive()]
        assert pending and all(not t.daemon for t in pending)
        assert wait_for_background_tasks(0.05) is False

        release.set()
        assert wait_for_background_tasks(2) is True
        client.http.evaluate_quality.assert_called_once_with("abcdef123456")

    def test_foreground_request(self):
        client = MemoryClient(MemoryServiceConfig())
        client.http = MagicMock()

        client.evaluate_memory_quality("abc", background=False)

        client.http.evaluate_quality.assert_called_once_with("abc")
        assert wait_for_background_tasks(0) is True
