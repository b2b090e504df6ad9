"""MCP stdio transport to a long-lived memory server subprocess.

The session is the MCP SDK's ClientSession over stdio_client. It runs in a
background thread that owns an asyncio event loop; synchronous callers hand
it requests through a queue and wait on a per-request reply queue.
"""

import asyncio
import logging
import os
import queue
import threading
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import dotenv_values
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError

from ..errors import ProtocolError, TransportError
from .models import Memory
from .tool_output import extract_text, parse_tool_object, parse_tool_response


logger = logging.getLogger(__name__)

# Message types for background thread communication
MSG_CALL_TOOL = "call_tool"

# Slack on top of the SDK timeouts before a caller gives up on the thread.
REPLY_GRACE_SECONDS = 1.0
SHUTDOWN_JOIN_SECONDS = 5
# JSON-RPC error code the SDK uses for a read timeout.
REQUEST_TIMEOUT_CODE = 408


class RpcTransport:
    """Owner-exclusive MCP session with a memory server on stdio.

    Args:
        command: Server command line, e.g. ["uv", "run", "memory", "server"].
        working_dir: Server working directory; its .env file seeds the server env.
        connection_timeout: Handshake timeout in milliseconds.
        tool_call_timeout: Per-request timeout in milliseconds.
    """

    def __init__(
        self,
        command: List[str],
        working_dir: Optional[str] = None,
        connection_timeout: int = 5000,
        tool_call_timeout: int = 10000,
    ):
        if not command:
            raise TransportError("Server command is empty")
        self.command = list(command)
        self.working_dir = working_dir or os.getcwd()
        self.connection_timeout = connection_timeout / 1000
        self.tool_call_timeout = tool_call_timeout / 1000

        self._thread: Optional[threading.Thread] = None
        self._request_queue: Optional[queue.Queue] = None
        self._init_lock = threading.Lock()
        self.connected = False
        self.server_info: Dict[str, Any] = {}

    def _build_env(self) -> Dict[str, str]:
        env_file = Path(self.working_dir) / ".env"
        file_values = {}
        if env_file.exists():
            file_values = {k: v for k, v in dotenv_values(env_file).items() if v is not None}
        # Variables already set in the environment win over the .env file.
        return {**file_values, **os.environ}

    def _server_params(self) -> StdioServerParameters:
        return StdioServerParameters(
            command=self.command[0],
            args=self.command[1:],
            env=self._build_env(),
            cwd=self.working_dir,
        )

    @property
    def is_running(self) -> bool:
        return self.connected and self._thread is not None and self._thread.is_alive()

    def connect(self) -> Dict[str, Any]:
        """Start the session thread and wait for the initialize handshake.

        Raises:
            TransportError: If the process cannot start or the handshake fails.
        """
        with self._init_lock:
            if self.is_running:
                return self.server_info

            ready: queue.Queue = queue.Queue()
            self._request_queue = queue.Queue()
            self._thread = threading.Thread(
                target=self._thread_main, args=(ready, self._request_queue),
                name="memory-mcp-session", daemon=True,
            )
            self._thread.start()

            try:
                status, payload = ready.get(timeout=self.connection_timeout + REPLY_GRACE_SECONDS)
            except queue.Empty:
                self.disconnect()
                raise TransportError("Server failed to initialize: handshake timed out")

            if status == "error":
                self.disconnect()
                if isinstance(payload, TransportError):
                    raise payload
                raise TransportError(f"Server failed to initialize: {payload}") from payload

            self.server_info = payload
            self.connected = True
            return self.server_info

    def _thread_main(self, ready: queue.Queue, requests: queue.Queue) -> None:
        """Background thread running the MCP event loop."""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self._run_session(ready, requests))
        except OSError as exc:
            ready.put(("error", TransportError(f"Server process error: {exc}")))
        except Exception as exc:
            logger.debug("[MCP Client] Session ended with error: %s", exc)
            ready.put(("error", exc))
        finally:
            self.connected = False
            self._reject_queued(requests, TransportError("Connection closed"))
            loop.close()

    async def _run_session(self, ready: queue.Queue, requests: queue.Queue) -> None:
        async with stdio_client(self._server_params()) as (read, write):
            async with ClientSession(read, write) as session:
                result = await asyncio.wait_for(session.initialize(), timeout=self.connection_timeout)
                ready.put(("ok", result.model_dump(by_alias=True, exclude_none=True)))
                await self._serve(session, requests)

    async def _serve(self, session: ClientSession, requests: queue.Queue) -> None:
        while True:
            try:
                req = requests.get_nowait()
            except queue.Empty:
                await asyncio.sleep(0.01)
                continue

            msg_type, data = req
            if msg_type is None:
                break
            reply = data["reply"]
            try:
                result = await session.call_tool(
                    data["name"],
                    data["arguments"],
                    read_timeout_seconds=timedelta(seconds=self.tool_call_timeout),
                )
                reply.put(("ok", result))
            except McpError as exc:
                reply.put(("error", exc))
            except Exception as exc:
                logger.debug("[MCP Client] Tool call %s failed: %s", data["name"], exc)
                reply.put(("error", TransportError(f"Tool call failed: {exc}")))

    @staticmethod
    def _reject_queued(requests: queue.Queue, error: Exception) -> None:
        while True:
            try:
                msg_type, data = requests.get_nowait()
            except queue.Empty:
                return
            if msg_type is not None:
                data["reply"].put(("error", error))

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Invoke a server tool and return the result as a dict.

        A timeout rejects only this call; the server keeps running.

        Raises:
            TransportError: On timeout or a closed session.
            ProtocolError: If the server answers with a JSON-RPC error.
        """
        if not self.is_running:
            raise TransportError("Server not running")

        reply: queue.Queue = queue.Queue(maxsize=1)
        self._request_queue.put((MSG_CALL_TOOL, {"name": name, "arguments": arguments or {}, "reply": reply}))
        try:
            status, payload = reply.get(timeout=self.tool_call_timeout + REPLY_GRACE_SECONDS)
        except queue.Empty:
            raise TransportError(f"Request timeout: {name}")

        if status == "ok":
            return payload.model_dump()
        if isinstance(payload, McpError):
            if payload.error.code == REQUEST_TIMEOUT_CODE:
                raise TransportError(f"Request timeout: {name}")
            raise ProtocolError(payload.error.message or "MCP Error")
        raise payload

    def _query_tool(self, tool: str, query: str, limit: int) -> List[Memory]:
        try:
            result = self.call_tool(tool, {"query": query, "n_results": limit})
        except (TransportError, ProtocolError) as e:
            logger.warning("[MCP Client] %s error: %s", tool, e)
            return []
        if result.get("isError"):
            logger.warning("[MCP Client] %s error: %s", tool, extract_text(result.get("content")))
            return []
        return [Memory.from_dict(item, normalize=True) for item in parse_tool_response(result.get("content"))]

    def query_memories(self, query: str, limit: int = 10) -> List[Memory]:
        return self._query_tool("retrieve_memory", query, limit)

    def query_memories_by_time(self, time_query: str, limit: int = 10) -> List[Memory]:
        return self._query_tool("recall_memory", time_query, limit)

    def get_health_status(self) -> Dict[str, Any]:
        try:
            result = self.call_tool("check_database_health")
        except (TransportError, ProtocolError) as e:
            return {"success": False, "error": str(e), "fallback": True}
        content = result.get("content")
        data = parse_tool_object(content) if extract_text(content) else result
        return {"success": True, "data": data}

    def disconnect(self) -> None:
        """Signal the session thread to exit; stdio_client stops the server."""
        self.connected = False
        if self._request_queue is not None:
            self._request_queue.put((None, None))
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=SHUTDOWN_JOIN_SECONDS)
        self._thread = None
        self._request_queue = None
