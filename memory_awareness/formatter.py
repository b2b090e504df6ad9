"""Markdown rendering of memory context and session summaries."""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .client.models import Memory, StorageInfo
from .dedup import filter_new_memories, normalize_content


logger = logging.getLogger(__name__)

GENERIC_SUMMARY_PATTERNS = [
    re.compile(r"## 🎯 Topics Discussed\s*implementation\s*architecture\s*performance\s*testing", re.IGNORECASE),
    re.compile(r"We decided to use hooks for session management and implement automatic context injection",
               re.IGNORECASE),
    re.compile(r"I learned that we need project detection and memory scoring algorithms", re.IGNORECASE),
    re.compile(r"I implemented the project detector in project-detector", re.IGNORECASE),
    re.compile(r"Next we need to test the complete system", re.IGNORECASE),
]

HIDDEN_TAG_PREFIXES = ("source:", "project-assistant-session", "session-consolidation")
HIDDEN_TAGS = {"auto-generated", "implementation"}

CATEGORY_TITLES = {
    "recent-work": "### 🕒 Recent Work (Last Week)",
    "current-problems": "### 🐛 Current Problems",
    "key-decisions": "### 🎯 Key Decisions",
    "consolidated-memories": "### 🗂️ Consolidated Memories",
    "additional-context": "### 📝 Additional Context",
}

PROBLEM_TAGS = {"issue", "bug", "blocked", "todo", "problem", "blocker"}
DECISION_TAGS = {"decision", "architecture", "design", "key-decisions", "why"}

SECTION_MARKERS = [
    ("decisions", "🏛️", ("Decision",)),
    ("insights", "💡", ("Insight", "Key")),
    ("code_changes", "💻", ("Code",)),
    ("next_steps", "📋", ("Next",)),
    ("topics", "🎯", ("Topic",)),
]
SECTION_LABELS = [("decisions", "Decisions"), ("insights", "Insights"),
                  ("code_changes", "Changes"), ("next_steps", "Next")]

FOOTER = (
    "---\n"
    "*This context was automatically loaded based on your project and recent activities. "
    "Use this information to maintain continuity with your previous work and decisions.*"
)


def is_generic_session_summary(content: str) -> bool:
    """True for placeholder summaries matching three or more known boilerplate lines."""
    if not content:
        return True
    return sum(1 for p in GENERIC_SUMMARY_PATTERNS if p.search(content)) >= 3


def _sanitize(content: str) -> str:
    text = re.sub(r"[✅✓✔]", "", content)
    text = re.sub(r"^\s*[•▪▫]\s*", "", text, flags=re.MULTILINE)
    text = re.sub(r"\*\*Date\*\*:.*?\n", "", text, flags=re.IGNORECASE)
    text = re.sub(r"^Date:.*?\n", "", text, flags=re.IGNORECASE | re.MULTILINE)
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r"\*\*([^*]+)\*\*", r"\1", text)
    text = re.sub(r"__([^_]+)__", r"\1", text)
    return text.strip()


def _extract_sections(text: str) -> Dict[str, List[str]]:
    sections: Dict[str, List[str]] = {key: [] for key, _, _ in SECTION_MARKERS}
    current = None
    for line in text.splitlines():
        stripped = line.strip()
        marker = next((key for key, icon, words in SECTION_MARKERS
                       if icon in stripped and any(w in stripped for w in words)), None)
        if marker:
            current = marker
            continue
        if stripped.startswith("#"):
            current = None
            continue
        if current and stripped.startswith("- "):
            item = stripped[2:].strip()
            if len(item) > 5 and item not in ("implementation", "..."):
                sections[current].append(item)
    return sections


def extract_meaningful_content(content: str, max_length: int = 500) -> str:
    """Condense a memory for display.

    Structured session summaries collapse to their decisions, insights,
    changes and next steps; other content is truncated at a sentence or
    line boundary when one falls late enough.
    """
    if not content:
        return "No content available"

    text = _sanitize(content)
    if "# Session Summary" in text or "## 🎯" in text or "## 🏛️" in text or "## 💡" in text:
        sections = _extract_sections(text)
        parts = [f"{label}: {'; '.join(sections[key][:2])}" for key, label in SECTION_LABELS if sections[key]]
        if parts:
            extracted = " | ".join(parts)
            return extracted if len(extracted) <= max_length else extracted[:max_length - 3] + "..."

    text = re.sub(r"^\s*[-*]\s+", "", text, flags=re.MULTILINE)
    if len(text) <= max_length:
        return text

    for breakpoint in (". ", "\n\n", "\n", "; "):
        cut = text.rfind(breakpoint, 0, max_length - 3)
        if cut > max_length * 0.7:
            return text[:cut + (1 if breakpoint == ". " else 0)].strip()
    return text[:max_length - 3].strip() + "..."


def _display_tags(tags: List[str]) -> List[str]:
    shown = []
    for tag in tags:
        lowered = tag.lower()
        if lowered.startswith(HIDDEN_TAG_PREFIXES) or lowered in HIDDEN_TAGS or len(lowered) <= 2:
            continue
        shown.append(tag)
    return shown


def format_memory(memory: Memory, index: int = 0, include_score: bool = False,
                  include_date: bool = True, max_content_length: int = 500) -> Optional[str]:
    """Render one numbered memory, or None for generic summaries."""
    if is_generic_session_summary(memory.content) and not include_score:
        return None

    text = f"{index + 1}. {extract_meaningful_content(memory.content, max_content_length)}"
    created = memory.created_datetime()
    if include_date and created is not None:
        text += f" ({created.strftime('%b')} {created.day})"
    if include_score and memory.relevance_score is not None:
        text += f" [score: {memory.relevance_score:.2f}]"

    tags = _display_tags(memory.tags)
    if 0 < len(tags) <= 5:
        text += f"\n   Tags: {', '.join(tags[:3])}"
    return text


def _categorize(memory: Memory, now: datetime) -> str:
    memory_type = (memory.memory_type or "other").lower()
    tags = {t.lower() for t in memory.tags}
    content = memory.content.lower()
    age = memory.age_days(now)
    is_recent = age is not None and age <= 7

    is_session = memory_type in ("session", "session-summary") or "session-summary" in tags
    is_problem = not is_session and (
        memory_type in ("issue", "bug", "bug-fix")
        or bool(tags & PROBLEM_TAGS)
        or "issue #" in content or "bug:" in content or "blocked" in content
    )
    is_decision = (memory_type in ("decision", "architecture") or bool(tags & DECISION_TAGS)
                   or "decided to" in content or "architecture:" in content)

    if memory.is_cluster:
        return "consolidated-memories"
    if is_recent and memory.git_context_type:
        return "recent-work"
    if is_problem:
        return "current-problems"
    if is_recent:
        return "recent-work"
    if is_decision:
        return "key-decisions"
    return "additional-context"


def group_memories_by_category(memories: List[Memory], now: Optional[datetime] = None) -> Dict[str, List[Memory]]:
    """Deduplicate, then bucket memories into display categories (newest first)."""
    now = now or datetime.now(timezone.utc)
    ordered = sorted(
        memories,
        key=lambda m: (m.relevance_score or 0.0, m.created_at or 0),
        reverse=True,
    )
    candidates = [m for m in ordered
                  if m.is_cluster or (len(normalize_content(m.content)) >= 20
                                      and not is_generic_session_summary(m.content))]
    unique = filter_new_memories(candidates, [])
    if len(unique) != len(memories):
        logger.debug("[Context Formatter] Deduplicated %d -> %d memories", len(memories), len(unique))

    groups: Dict[str, List[Memory]] = {key: [] for key in CATEGORY_TITLES}
    for memory in unique:
        groups[_categorize(memory, now)].append(memory)

    oldest = datetime.min.replace(tzinfo=timezone.utc)
    for members in groups.values():
        members.sort(key=lambda m: m.created_datetime() or oldest, reverse=True)
    return groups


def create_project_summary(project: Any) -> str:
    summary = f"**Project**: {project.name}"
    if project.language and project.language != "Unknown":
        summary += f" ({project.language})"
    if project.frameworks:
        summary += f"\n**Frameworks**: {', '.join(project.frameworks)}"
    if project.tools:
        summary += f"\n**Tools**: {', '.join(project.tools)}"
    git = getattr(project, "git", None)
    if git is not None and git.is_repo:
        summary += f"\n**Branch**: {git.branch or 'unknown'}"
        if git.last_commit:
            summary += f"\n**Last Commit**: {git.last_commit}"
    return summary


def format_storage_info(storage: StorageInfo) -> str:
    text = f"**Storage**: {storage.icon} {storage.description}"
    if storage.total_memories:
        text += f" - {storage.total_memories} memories"
        if storage.database_size_mb:
            text += f", {storage.database_size_mb}MB"
        if storage.unique_tags:
            text += f", {storage.unique_tags} unique tags"
    text += "\n"
    if storage.location:
        text += f"**Location**: `{storage.location}`\n"
    if storage.embedding_model and storage.embedding_model != "Unknown":
        text += f"**Embedding Model**: {storage.embedding_model}\n"
    return text


def format_memories_for_context(
    memories: List[Memory],
    project: Any = None,
    max_memories: int = 8,
    include_score: bool = False,
    group_by_category: bool = True,
    include_timestamp: bool = True,
    max_content_length: int = 500,
    storage_info: Optional[StorageInfo] = None,
    include_project_summary: bool = True,
) -> str:
    """Render the memory context block injected into the conversation."""
    if not memories:
        return "## 📋 Memory Context\n\nNo relevant memories found for this session.\n"

    selected = []
    for memory in memories:
        if len(selected) >= max_memories:
            break
        formatted = format_memory(memory, len(selected), include_score, include_timestamp, max_content_length)
        if formatted:
            selected.append((memory, formatted))

    if not selected:
        return ("## 📋 Memory Context\n\n"
                "No meaningful memories found for this session (filtered out generic content).\n")

    parts = ["## 🧠 Memory Context Loaded\n\n"]
    if include_project_summary and project is not None:
        parts.append(create_project_summary(project) + "\n\n")
    if storage_info is not None:
        parts.append(format_storage_info(storage_info) + "\n")
    parts.append(f"**Loaded {len(selected)} relevant memories from your project history:**\n\n")

    grouped = False
    if group_by_category and len(selected) > 3:
        for key, members in group_memories_by_category([m for m, _ in selected]).items():
            rendered = [format_memory(m, i, include_score, include_timestamp, max_content_length)
                        for i, m in enumerate(members)]
            rendered = [r for r in rendered if r]
            if rendered:
                grouped = True
                parts.append(f"{CATEGORY_TITLES[key]}\n")
                parts.extend(f"{r}\n\n" for r in rendered)

    if not grouped:
        parts.extend(f"{formatted}\n\n" for _, formatted in selected)

    parts.append(FOOTER)
    return "".join(parts)


def format_session_consolidation(analysis: Any, project: Any) -> str:
    """Render a session analysis as the markdown summary stored at session end."""
    lines = [
        f"# Session Summary - {project.name}",
        f"**Project**: {project.name} ({project.language})",
        "",
    ]
    sections = [
        ("## 🎯 Topics Discussed", analysis.topics),
        ("## 🏛️ Decisions Made", analysis.decisions),
        ("## 💡 Key Insights", analysis.insights),
        ("## 💻 Code Changes", analysis.code_changes),
        ("## 📋 Next Steps", analysis.next_steps),
    ]
    for title, items in sections:
        if items:
            lines.append(title)
            lines.extend(f"- {item}" for item in items)
            lines.append("")

    lines.append("---")
    lines.append(f"*Session captured by memory-awareness hooks at {datetime.now(timezone.utc).isoformat()}*")
    return "\n".join(lines)
