"""On-demand memory retrieval, run when the user asks for a context refresh."""

import logging
from typing import Any, Dict, Optional

from ..client import MemoryClient
from ..config_loader import HooksConfig, load_config_safe
from ..errors import MemoryHooksError
from ..formatter import format_memories_for_context
from ..overrides import extract_user_message
from ..project_detector import ProjectContext, detect_project_context
from ..scoring import score_memory_relevance
from .base import CONNECT_TIMEOUT, MID_CONVERSATION_TIMEOUT, HookContext, call_with_timeout, run_with_timeout
from .session_start import query_memory_service


logger = logging.getLogger(__name__)


def build_retrieval_query(project: ProjectContext, user_query: str) -> str:
    if user_query:
        return f"{project.name} {user_query}"
    return f"{project.name} project context decisions architecture"


def _result(success: bool, message: str, found: int = 0, shown: int = 0, **extra: Any) -> Dict[str, Any]:
    return {"success": success, "memories_found": found, "memories_shown": shown, "context": message, **extra}


class MemoryRetrievalHook:
    """Retrieves, scores and displays memories for an explicit user request.

    Unlike the automatic hooks, scores are always shown and the result is
    reported back even when nothing relevant was found.
    """

    def __init__(self, config: HooksConfig, client_factory=None):
        self.config = config
        self.client_factory = client_factory or MemoryClient

    def run(self, context: HookContext) -> Dict[str, Any]:
        project = detect_project_context(context.working_directory)
        logger.info("[Memory Retrieval] Project context: %s (%s)", project.name, project.language)

        user_query = (extract_user_message(context) or "").strip()
        limit = self.config.memory_service.max_memories_per_session

        client = self.client_factory(self.config.memory_service)
        try:
            try:
                call_with_timeout(client.connect, CONNECT_TIMEOUT)
            except MemoryHooksError as e:
                logger.warning("[Memory Retrieval] Memory service unavailable: %s", e)
                message = (f"## ❌ Memory Retrieval Error\n\n{e}\n\n"
                           "Check your memory service configuration and connection.")
                context.inject(message)
                return _result(False, message, error=str(e))
            memories = query_memory_service(client, self.config, build_retrieval_query(project, user_query), limit)
        finally:
            client.disconnect()

        if not memories:
            message = (f"## 📋 Memory Retrieval\n\nNo relevant memories found for query: "
                       f"\"{user_query or 'project context'}\"\n\n"
                       "Try a different search term or check if your memory service is running.")
            context.inject(message)
            return _result(False, message)

        logger.info("[Memory Retrieval] Found %d relevant memories", len(memories))
        scoring = self.config.memory_scoring
        top = score_memory_relevance(memories, project, scoring.weights, scoring.time_decay_rate)[:limit]

        message = format_memories_for_context(
            top,
            project=project,
            max_memories=limit,
            include_score=True,
            group_by_category=len(top) > 3,
            include_timestamp=True,
        )
        if not context.inject(message):
            logger.info("[Memory Retrieval] Host cannot receive injected context")
        return _result(True, message, len(memories), len(top))


def on_memory_retrieval(context: HookContext, config: Optional[HooksConfig] = None) -> Optional[Dict[str, Any]]:
    """Host entry point. Never raises and never exceeds the mid-conversation budget."""
    hook = MemoryRetrievalHook(config or load_config_safe())
    try:
        completed, result = run_with_timeout(lambda: hook.run(context), MID_CONVERSATION_TIMEOUT,
                                             "memory-retrieval")
    except Exception as e:
        logger.error("[Memory Retrieval] Error retrieving memories: %s", e)
        return _result(False, f"## ❌ Memory Retrieval Error\n\n{e}", error=str(e))
    return result if completed else None
