"""Cross-session tracking for conversation continuity.

Sessions of the same project that end close together are linked into a
conversation thread. The state lives in a single JSON file; load and save
failures are reported and otherwise ignored.
"""

import json
import logging
import os
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)

DEFAULT_TRACKING_PATH = Path.home() / ".memory-hooks" / "session-tracking.json"
MAX_SESSION_HISTORY = 50
MAX_PROJECT_LOOKBACK = 10
SESSION_EXPIRY_DAYS = 30
THREAD_WINDOW_HOURS = 24
RELATEDNESS_THRESHOLD = 0.3


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


@dataclass
class SessionRecord:
    """One tracked session."""

    id: str
    start_time: str
    project: Optional[str] = None
    working_directory: Optional[str] = None
    frameworks: List[str] = field(default_factory=list)
    end_time: Optional[str] = None
    status: str = "active"
    topics: List[str] = field(default_factory=list)
    outcome: Dict[str, Any] = field(default_factory=dict)
    thread_id: Optional[str] = None
    parent_session_id: Optional[str] = None
    child_session_ids: List[str] = field(default_factory=list)

    @property
    def last_activity(self) -> Optional[datetime]:
        return _parse(self.end_time or self.start_time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionRecord':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class ConversationThread:
    id: str
    created_at: str
    project: Optional[str] = None
    session_ids: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    last_updated: Optional[str] = None
    status: str = "active"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConversationThread':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


class SessionTracker:
    """Tracks sessions and threads them per project.

    Args:
        path: Tracking file location (default ~/.memory-hooks/session-tracking.json).
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else DEFAULT_TRACKING_PATH
        self.sessions: Dict[str, SessionRecord] = {}
        self.threads: Dict[str, ConversationThread] = {}
        self._loaded = False

    def load(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            for item in data.get("sessions", []):
                record = SessionRecord.from_dict(item)
                self.sessions[record.id] = record
            for item in data.get("threads", []):
                thread = ConversationThread.from_dict(item)
                self.threads[thread.id] = thread
        except (json.JSONDecodeError, OSError, TypeError, AttributeError) as e:
            logger.warning("[Session Tracker] Failed to load tracking data: %s", e)
            self.sessions, self.threads = {}, {}
        self._cleanup()

    def save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump({
                    "sessions": [s.to_dict() for s in self.sessions.values()],
                    "threads": [t.to_dict() for t in self.threads.values()],
                    "last_saved": _now().isoformat(),
                }, f, indent=2)
        except OSError as e:
            logger.warning("[Session Tracker] Failed to save tracking data: %s", e)

    def _cleanup(self) -> None:
        cutoff = _now() - timedelta(days=SESSION_EXPIRY_DAYS)
        expired = [sid for sid, s in self.sessions.items()
                   if s.last_activity is None or s.last_activity < cutoff]
        for sid in expired:
            del self.sessions[sid]

        if len(self.sessions) > MAX_SESSION_HISTORY:
            ordered = sorted(self.sessions.values(), key=lambda s: s.start_time)
            for record in ordered[:len(self.sessions) - MAX_SESSION_HISTORY]:
                del self.sessions[record.id]

        for thread in self.threads.values():
            thread.session_ids = [sid for sid in thread.session_ids if sid in self.sessions]
        self.threads = {tid: t for tid, t in self.threads.items() if t.session_ids}

    def _project_sessions(self, project: str) -> List[SessionRecord]:
        matching = [s for s in self.sessions.values() if s.project == project]
        matching.sort(key=lambda s: s.start_time)
        return matching[-MAX_PROJECT_LOOKBACK:]

    @staticmethod
    def calculate_relatedness(existing: SessionRecord, project: Optional[str],
                              working_directory: Optional[str], frameworks: List[str]) -> float:
        score = 0.0
        if existing.project and existing.project == project:
            score += 0.4
        if existing.working_directory and existing.working_directory == working_directory:
            score += 0.3
        if existing.frameworks:
            overlap = sum(1 for fw in existing.frameworks if fw in frameworks)
            score += overlap / len(existing.frameworks) * 0.3
        return min(score, 1.0)

    def start_session(self, session_id: str, project: Optional[str] = None,
                      working_directory: Optional[str] = None,
                      frameworks: Optional[List[str]] = None) -> SessionRecord:
        """Record a new session, linking it to a recent related thread when one exists."""
        self.load()
        frameworks = list(frameworks or [])
        record = SessionRecord(
            id=session_id,
            start_time=_now().isoformat(),
            project=project,
            working_directory=working_directory,
            frameworks=frameworks,
        )

        parent = self._find_related(record)
        if parent is not None and parent.thread_id in self.threads:
            record.thread_id = parent.thread_id
            record.parent_session_id = parent.id
            parent.child_session_ids.append(session_id)
            self.threads[parent.thread_id].session_ids.append(session_id)
            logger.debug("[Session Tracker] Linked %s to thread %s", session_id, parent.thread_id)
        else:
            thread = ConversationThread(
                id=f"thread-{uuid.uuid4().hex[:16]}",
                created_at=record.start_time,
                project=project,
                session_ids=[session_id],
            )
            self.threads[thread.id] = thread
            record.thread_id = thread.id

        self.sessions[session_id] = record
        self._cleanup()
        self.save()
        return record

    def _find_related(self, record: SessionRecord) -> Optional[SessionRecord]:
        if not record.project:
            return None
        cutoff = _now() - timedelta(hours=THREAD_WINDOW_HOURS)
        candidates = []
        for session in self._project_sessions(record.project):
            if session.status == "active" or session.id == record.id:
                continue
            activity = session.last_activity
            if activity is None or activity <= cutoff:
                continue
            score = self.calculate_relatedness(session, record.project, record.working_directory,
                                               record.frameworks)
            if score > RELATEDNESS_THRESHOLD:
                candidates.append((score, session))
        if not candidates:
            return None
        candidates.sort(key=lambda pair: pair[0], reverse=True)
        return candidates[0][1]

    def end_session(self, session_id: str, outcome: Optional[Dict[str, Any]] = None) -> Optional[SessionRecord]:
        """Close a session with its outcome ({type, summary, topics, ...})."""
        self.load()
        record = self.sessions.get(session_id)
        if record is None:
            logger.debug("[Session Tracker] Session %s not found", session_id)
            return None

        outcome = outcome or {}
        record.end_time = _now().isoformat()
        record.status = "completed"
        record.outcome = outcome
        record.topics = list(outcome.get("topics", []))

        thread = self.threads.get(record.thread_id or "")
        if thread is not None:
            for topic in record.topics:
                if topic not in thread.topics:
                    thread.topics.append(topic)
            thread.last_updated = record.end_time

        self.save()
        return record

    def get_conversation_context(self, project: Optional[str], max_previous: int = 3,
                                 max_days_back: int = 7) -> Optional[Dict[str, Any]]:
        """Summary of the project's recent completed sessions, or None."""
        if not project:
            return None
        self.load()

        cutoff = _now() - timedelta(days=max_days_back)
        recent = [s for s in self._project_sessions(project)
                  if s.status != "active" and s.last_activity and s.last_activity > cutoff]
        recent.sort(key=lambda s: s.last_activity, reverse=True)
        recent = recent[:max_previous]
        if not recent:
            return None

        topic_counts: Dict[str, int] = {}
        for session in recent:
            for topic in session.topics:
                topic_counts[topic] = topic_counts.get(topic, 0) + 1
        recurring = sorted(((t, c) for t, c in topic_counts.items() if c > 1), key=lambda p: p[1], reverse=True)

        return {
            "project_name": project,
            "recent_sessions": [
                {"id": s.id, "end_time": s.end_time, "outcome": s.outcome, "topics": s.topics}
                for s in recent
            ],
            "recurring_topics": [{"topic": t, "frequency": c} for t, c in recurring[:5]],
            "uncompleted_tasks": [
                {"session_id": s.id, "description": s.outcome.get("summary"), "timestamp": s.end_time}
                for s in recent if s.outcome.get("type") in ("planning", "partial")
            ],
            "active_threads": [
                {"id": t.id, "session_count": len(t.session_ids), "topics": list(t.topics),
                 "last_updated": t.last_updated}
                for t in self.threads.values() if t.project == project and t.status == "active"
            ],
        }


_tracker: Optional[SessionTracker] = None


def get_session_tracker(path: Optional[str] = None) -> SessionTracker:
    """Process-wide tracker; `MEMORY_HOOKS_SESSION_TRACKING` overrides the path."""
    global _tracker
    if _tracker is None:
        _tracker = SessionTracker(path or os.environ.get("MEMORY_HOOKS_SESSION_TRACKING"))
    return _tracker


def reset_session_tracker() -> None:
    global _tracker
    _tracker = None
