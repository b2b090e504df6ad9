"""Direct retrieval through the memory service's Python API.

When the memory service package is importable by a local interpreter, a short
search script avoids the cost of a server round trip. Any failure returns None
so the caller can fall back to the regular memory client.
"""

import json
import logging
import subprocess
from datetime import datetime, timezone
from typing import List, Optional

from ..config_loader import CodeExecutionConfig
from .models import Memory


logger = logging.getLogger(__name__)

SEARCH_SCRIPT = """
import json
import sys
from datetime import datetime
from mcp_memory_service.api import search

args = json.loads(sys.argv[1])
try:
    results = search(args["query"], limit=args["limit"])
    output = {
        "success": True,
        "memories": [
            {
                "hash": m.hash,
                "tags": list(m.tags),
                "created": m.created,
                "created_at_iso": datetime.fromtimestamp(m.created).isoformat(),
                "score": m.score,
                "content": m.preview,
            }
            for m in results.memories
        ],
        "total": results.total,
    }
    print(json.dumps(output))
except Exception as e:
    print(json.dumps({"success": False, "error": str(e)}))
    sys.exit(1)
"""


def _to_memory(item: dict) -> Memory:
    created = item.get("created")
    return Memory.from_dict({
        "content_hash": item.get("hash", ""),
        "content": item.get("content", ""),
        "tags": item.get("tags", []),
        "created_at": created,
        "created_at_iso": item.get("created_at_iso") or (
            datetime.fromtimestamp(created, tz=timezone.utc).isoformat() if created else None),
        "similarity_score": item.get("score"),
    }, normalize=True)


def query_via_code(query: str, limit: int, config: CodeExecutionConfig) -> Optional[List[Memory]]:
    """Run a semantic search through the service's Python API.

    Returns:
        Memories on success, None when the path is unavailable or failed.
    """
    try:
        completed = subprocess.run(
            [config.interpreter, "-W", "ignore", "-c", SEARCH_SCRIPT,
             json.dumps({"query": query or "", "limit": limit})],
            capture_output=True,
            text=True,
            timeout=config.timeout / 1000,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("[Memory Hook] Code execution unavailable: %s", e)
        return None

    try:
        parsed = json.loads(completed.stdout.strip().splitlines()[-1])
    except (IndexError, json.JSONDecodeError):
        logger.debug("[Memory Hook] Code execution produced no JSON (exit %s)", completed.returncode)
        return None

    if not isinstance(parsed, dict):
        return None
    if not parsed.get("success"):
        logger.debug("[Memory Hook] Code execution failed: %s", parsed.get("error"))
        return None
    return [_to_memory(item) for item in parsed.get("memories", []) if isinstance(item, dict)]
