"""Session-start hook: multi-phase memory retrieval and context injection.

Retrieval runs in a fixed order. Git-derived memories come first, then
recent project memories, then tagged key decisions, then a broad fallback
when little was found, and finally consolidated clusters. Each phase only
fills the remaining slots and drops content that duplicates what earlier
phases collected.
"""

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..client import MemoryClient, Memory, StorageInfo
from ..client.code_execution import query_via_code
from ..config_loader import HooksConfig, load_config_safe
from ..context_shift import (
    ConversationSnapshot,
    RefreshStrategy,
    detect_context_shift,
    extract_current_context,
    get_refresh_strategy,
)
from ..dedup import filter_new_memories
from ..errors import MemoryHooksError
from ..formatter import format_memories_for_context
from ..git_analyzer import GitContext, analyze_git_context, build_git_context_query
from ..overrides import describe_overrides, detect_user_overrides, extract_user_message
from ..project_detector import ProjectContext, detect_project_context
from ..scoring import (
    analyze_memory_age_distribution,
    apply_git_boost,
    calculate_adaptive_git_weight,
    score_memory_relevance,
)
from ..session_tracker import get_session_tracker
from .base import (
    CONNECT_TIMEOUT,
    QUERY_TIMEOUT,
    SESSION_START_TIMEOUT,
    HookContext,
    call_with_timeout,
    run_with_timeout,
)


logger = logging.getLogger(__name__)

START_TRIGGERS = ("session-start", "start")
GIT_TIME_WINDOW = "last-2-weeks"
TAGGED_TIME_WINDOW = "last-2-weeks"
CLUSTER_TIME_WINDOW = "last-month"
MAX_GIT_QUERY_LIMIT = 3
MAX_CLUSTERS = 3
MIN_RECENT_LIMIT = 2
FALLBACK_BELOW = 3


def query_memory_service(client: Optional[MemoryClient], config: HooksConfig, query: str, limit: int,
                         time_filter: Optional[str] = None) -> List[Memory]:
    """One bounded query. Failures and timeouts yield an empty list.

    The code-execution path is tried first when enabled; the client is used
    when it returns nothing usable and MCP fallback is allowed.
    """
    if config.code_execution.enabled:
        memories = query_via_code(query, limit, config.code_execution)
        if memories is not None:
            return memories
        if not config.code_execution.fallback_to_mcp:
            return []

    if client is None:
        return []

    try:
        if time_filter:
            return call_with_timeout(client.query_memories_by_time, QUERY_TIMEOUT, time_filter, limit, query)
        return call_with_timeout(client.query_memories, QUERY_TIMEOUT, query, limit)
    except MemoryHooksError as e:
        logger.warning("[Memory Hook] Query failed: %s", e)
        return []


class SessionStartHook:
    """Builds and injects the memory context for a new (or refreshed) session.

    Args:
        config: Full hooks configuration.
        client_factory: Callable building a memory client from the
            `memoryService` section. Defaults to MemoryClient.
    """

    def __init__(self, config: HooksConfig, client_factory=None):
        self.config = config
        self.client_factory = client_factory or MemoryClient

    def run(self, context: HookContext) -> Optional[str]:
        """Run the pipeline.

        Returns:
            The injected context block, or None when nothing was injected.
        """
        service = self.config.memory_service
        user_message = extract_user_message(context) or ""

        overrides = detect_user_overrides(user_message)
        if overrides["force_skip"]:
            logger.info("[Memory Hook] Memory retrieval skipped by %s", describe_overrides(overrides))
            return None

        if context.trigger == "compacting" and not service.inject_after_compacting:
            logger.info("[Memory Hook] Skipping injection after compacting")
            return None

        shift_reason = None
        if context.trigger not in START_TRIGGERS and context.previous_context:
            current = extract_current_context(context.conversation_state, context.working_directory)
            if not current.user_message:
                current.user_message = user_message
            previous = ConversationSnapshot.from_dict(context.previous_context)
            detection = detect_context_shift(current, previous,
                                             self.config.context_shift.time_threshold_minutes)
            if not detection.should_refresh:
                logger.info("[Memory Hook] No significant context shift, skipping refresh")
                return None
            shift_reason = detection.reason
            logger.info("[Memory Hook] Context shift: %s", detection.description)

        project = detect_project_context(context.working_directory)

        client = self._connect()
        try:
            return self._inject_context(context, project, client, user_message, shift_reason)
        finally:
            if client is not None:
                client.disconnect()

    def _connect(self) -> Optional[MemoryClient]:
        client = self.client_factory(self.config.memory_service)
        try:
            protocol = call_with_timeout(client.connect, CONNECT_TIMEOUT)
        except MemoryHooksError as e:
            logger.warning("[Memory Hook] Memory service unavailable: %s", e)
            client.disconnect()
            return None
        logger.info("[Memory Hook] Connected via %s", protocol.upper())
        return client

    def _storage_info(self, client: Optional[MemoryClient]) -> StorageInfo:
        env_backend = os.environ.get("MCP_MEMORY_STORAGE_BACKEND")
        if client is None:
            return StorageInfo.from_health(None, env_backend)
        try:
            return call_with_timeout(client.get_storage_info, QUERY_TIMEOUT)
        except MemoryHooksError as e:
            logger.debug("[Memory Hook] Storage info unavailable: %s", e)
            return StorageInfo.from_health(None, env_backend)

    def _inject_context(self, context: HookContext, project: ProjectContext,
                        client: Optional[MemoryClient], user_message: str,
                        shift_reason: Optional[str]) -> Optional[str]:
        storage = self._storage_info(client)
        git_context = None
        if self.config.git_analysis.enabled:
            git_context = analyze_git_context(context.working_directory, self.config.git_analysis)

        memories = self.collect_memories(client, project, git_context, user_message)
        if not memories:
            logger.info("[Memory Hook] No relevant memories found")
            return None

        memories, git_weight = self.rank_memories(memories, project, git_context)
        if not memories:
            logger.info("[Memory Hook] No memories passed relevance scoring")
            return None

        strategy = self._strategy(shift_reason)
        if shift_reason:
            logger.info("[Memory Hook] %s", strategy.message)
        selected = memories[:strategy.max_memories]

        formatted = format_memories_for_context(
            selected,
            project=project,
            max_memories=strategy.max_memories,
            include_score=strategy.include_scores,
            group_by_category=strategy.max_memories > 3,
            storage_info=storage if self.config.memory_service.show_storage_source else None,
            include_project_summary=self.config.output.show_project_details,
        )

        if not context.inject(formatted):
            logger.info("[Memory Hook] Host cannot receive injected context")
        logger.info("[Memory Hook] Injected %d memories for %s", len(selected), project.name)

        if self.config.output.show_memory_details:
            for memory in selected:
                logger.info("[Memory Hook]   %.2f %.70s", memory.relevance_score or 0.0, memory.content)

        self._write_context_log(project, storage, git_context, git_weight, selected, formatted)
        self._track_session(context, project)
        return formatted

    def _strategy(self, shift_reason: Optional[str]) -> RefreshStrategy:
        if shift_reason:
            return get_refresh_strategy(shift_reason)
        return RefreshStrategy(
            priority="high",
            max_memories=self.config.memory_service.max_memories_per_session,
            include_scores=self.config.output.show_scoring_details,
            message="🧠 Loading relevant memory context...",
        )

    def collect_memories(self, client: Optional[MemoryClient], project: ProjectContext,
                         git_context: Optional[GitContext], user_message: str = "") -> List[Memory]:
        """Run the retrieval phases and return deduplicated memories."""
        if client is None and not self.config.code_execution.enabled:
            return []

        service = self.config.memory_service
        max_memories = service.max_memories_per_session
        collected: List[Memory] = []

        if service.recent_first_mode:
            self._git_phase(client, project, git_context, user_message, collected)

            remaining = max_memories - len(collected)
            if remaining > 0:
                limit = max(int(remaining * service.recent_memory_ratio), MIN_RECENT_LIMIT)
                query = self._recent_query(project, git_context, user_message)
                self._add(collected, query_memory_service(client, self.config, query, limit,
                                                          service.recent_time_window), "recent")

            remaining = max_memories - len(collected)
            if remaining > 0 and client is not None:
                tags = [project.name, "key-decisions", "architecture", "assistant-reference"]
                self._add(collected, self._tagged(client, tags, TAGGED_TIME_WINDOW, remaining), "tagged")

            remaining = max_memories - len(collected)
            if remaining > 0 and len(collected) < FALLBACK_BELOW:
                query = f"{project.name} project context"
                self._add(collected, query_memory_service(client, self.config, query, remaining,
                                                          service.fallback_time_window), "fallback")
        else:
            collected = self._legacy_query(client, project, user_message, max_memories)

        if client is not None:
            clusters = [m for m in self._tagged(client, ["cluster"], CLUSTER_TIME_WINDOW, MAX_CLUSTERS)
                        if m.is_cluster]
            self._add(collected, clusters, "cluster")

        logger.info("[Memory Hook] Retrieved %d memories", len(collected))
        return collected

    def _git_phase(self, client, project: ProjectContext, git_context: Optional[GitContext],
                   user_message: str, collected: List[Memory]) -> None:
        if git_context is None or not git_context.development_keywords.keywords:
            return
        queries = build_git_context_query(project, git_context.development_keywords, user_message)
        if not queries:
            return

        git_config = self.config.git_analysis
        limit = min(git_config.max_git_memories - len(collected), MAX_GIT_QUERY_LIMIT)
        if limit <= 0:
            return

        query = max(queries, key=lambda q: q.weight)
        found = query_memory_service(client, self.config, query.semantic_query, limit, GIT_TIME_WINDOW)
        annotated = [m.with_git_context(query.type, query.source, git_config.git_context_weight) for m in found]
        self._add(collected, annotated, "git-context")

    def _recent_query(self, project: ProjectContext, git_context: Optional[GitContext],
                      user_message: str) -> str:
        if user_message:
            query = f"recent {project.name} {user_message}"
        else:
            query = f"recent {project.name} development decisions insights"
        if project.git.branch:
            query += f" {project.git.branch}"
        if project.git.last_commit:
            query += " latest changes commit"
        if git_context is not None and git_context.development_keywords.keywords:
            query += " " + " ".join(git_context.development_keywords.keywords[:3])
        return query

    def _legacy_query(self, client, project: ProjectContext, user_message: str,
                      max_memories: int) -> List[Memory]:
        tags = [project.name, f"language:{project.language}", "key-decisions", "architecture",
                "recent-insights", "assistant-reference"]
        query = f"{project.name} {user_message}" if user_message else \
            f"{project.name} project context decisions architecture"
        if client is None:
            return query_memory_service(client, self.config, query, max_memories)
        collected: List[Memory] = []
        self._add(collected, self._tagged(client, tags, TAGGED_TIME_WINDOW, max_memories, query), "legacy")
        return collected

    def _tagged(self, client: MemoryClient, tags: List[str], time_window: str, limit: int,
                semantic_query: Optional[str] = None) -> List[Memory]:
        try:
            return call_with_timeout(client.query_memories_by_tag_and_time, QUERY_TIMEOUT,
                                     tags, time_window, limit, semantic_query)
        except MemoryHooksError as e:
            logger.warning("[Memory Hook] Tagged query failed: %s", e)
            return []

    def _add(self, collected: List[Memory], found: List[Memory], phase: str) -> None:
        dedup = self.config.deduplication
        new = filter_new_memories(found, collected, dedup.similarity_threshold, dedup.min_length)
        collected.extend(new)
        logger.debug("[Memory Hook] Phase %s: %d found, %d new", phase, len(found), len(new))

    def rank_memories(self, memories: List[Memory], project: ProjectContext,
                      git_context: Optional[GitContext]):
        """Score, boost and filter.

        Returns:
            Tuple of (ranked memories with positive scores, applied git weight or None).
        """
        scoring = self.config.memory_scoring
        memories = memories[:self.config.memory_service.max_memories_per_session]

        weights = dict(scoring.weights)
        age_analysis = analyze_memory_age_distribution(memories)
        if scoring.auto_calibrate and age_analysis.is_stale:
            weights.update(age_analysis.recommended_adjustments)
            logger.info("[Memory Hook] %s", age_analysis.reason)

        scored = score_memory_relevance(memories, project, weights, scoring.time_decay_rate)

        git_weight = None
        if git_context is not None and self.config.git_analysis.use_adaptive_git_weight:
            adaptive = calculate_adaptive_git_weight(git_context, age_analysis,
                                                     self.config.git_analysis.git_context_weight)
            if adaptive["adjusted"]:
                logger.info("[Memory Hook] %s", adaptive["reason"])
            git_weight = adaptive["weight"]
        boosted = apply_git_boost(scored, git_weight)

        kept = [m for m in boosted
                if (m.relevance_score or 0.0) > 0 and m.relevance_score >= scoring.min_relevance_score]
        return kept, git_weight

    def _write_context_log(self, project: ProjectContext, storage: StorageInfo,
                           git_context: Optional[GitContext], git_weight: Optional[float],
                           memories: List[Memory], formatted: str) -> None:
        path = self.config.output.context_log_path
        if not path:
            return

        record: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "project": {
                "name": project.name,
                "language": project.language,
                "frameworks": project.frameworks,
                "directory": project.directory,
            },
            "storage": {"backend": storage.backend, "type": storage.type, "location": storage.location},
            "statistics": {
                "memories_loaded": len(memories),
                "git_memories": sum(1 for m in memories if m.git_context_type),
                "clusters": sum(1 for m in memories if m.is_cluster),
                "boosted": sum(1 for m in memories if m.was_boosted),
            },
            "git_context": None,
            "memories": [
                {"content_hash": m.content_hash, "score": m.relevance_score, "tags": list(m.tags),
                 "preview": m.content[:120]}
                for m in memories[:5]
            ],
            "context": formatted,
        }
        if git_context is not None:
            record["git_context"] = {
                "branch": git_context.git_info.branch,
                "commits": len(git_context.commits),
                "keywords": git_context.development_keywords.keywords[:8],
                "weight": git_weight,
            }

        try:
            log_path = Path(path).expanduser()
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(log_path, "w", encoding="utf-8") as f:
                json.dump(record, f, indent=2)
        except OSError as e:
            logger.warning("[Memory Hook] Failed to write context log: %s", e)

    def _track_session(self, context: HookContext, project: ProjectContext) -> None:
        tracker = get_session_tracker()
        session_id = context.session_id or f"session-{uuid.uuid4().hex[:12]}"
        tracker.start_session(session_id, project.name, context.working_directory, project.frameworks)

        continuity = tracker.get_conversation_context(project.name)
        if continuity:
            logger.info("[Memory Hook] %d recent sessions for %s",
                        len(continuity["recent_sessions"]), project.name)


def on_session_start(context: HookContext, config: Optional[HooksConfig] = None) -> Optional[str]:
    """Host entry point. Never raises and never exceeds the session-start budget."""
    config = config or load_config_safe()
    hook = SessionStartHook(config)
    try:
        completed, result = run_with_timeout(lambda: hook.run(context), SESSION_START_TIMEOUT, "session-start")
    except Exception as e:
        logger.error("[Memory Hook] Session start failed: %s", e)
        return None
    return result if completed else None
