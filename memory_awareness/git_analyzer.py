"""Git repository analysis for development-aware memory retrieval.

Reads recent commits, the changelog and the working tree state, and derives
keywords, themes and file patterns used to build git-context queries. Every
function is fail-soft: git errors, timeouts and unreadable files produce empty
results instead of exceptions.
"""

import logging
import os
import re
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config_loader import GitAnalysisConfig


logger = logging.getLogger(__name__)

LOG_TIMEOUT = 10
SHOW_TIMEOUT = 5
INFO_TIMEOUT = 3
FILES_FOR_RECENT = 5
CHANGELOG_NAMES = ("CHANGELOG.md", "changelog.md", "HISTORY.md", "RELEASES.md")
CHANGELOG_MAX_AGE_DAYS = 30

VERSION_HEADING = re.compile(r"^##\s*\[?v?([^\]]+)\]?\s*-?\s*(.*)$")
SUBSECTION_HEADING = re.compile(r"^###\s")
ACTION_PATTERN = re.compile(r"^(feat|fix|refactor|docs|test|chore|improve|add|update|enhance)([:(]|\s)")
VERSION_PATTERN = re.compile(r"v?\d+\.\d+\.\d+")
COMMIT_TERMS = re.compile(
    r"\b(hook|memory|context|retrieval|phase|query|storage|backend|session|git|recent|scoring|"
    r"config|timestamp|parsing|sort|sorting|date|age|dashboard|analytics|footer|layout|async|sync|"
    r"bugfix|release|version|embedding|consolidation|stats|display|grid|css|api|endpoint|server|"
    r"http|mcp|client|protocol)\b"
)
CHANGELOG_TERMS = re.compile(
    r"\b(added|fixed|improved|enhanced|updated|removed|deprecated|breaking|feature|bug|performance|"
    r"security|bugfix|release|dashboard|hooks|timestamp|parsing|sorting|analytics|footer|async|sync|"
    r"embedding|consolidation|memory|retrieval|scoring)\b"
)


@dataclass
class GitCommit:
    """A commit from `git log`."""

    hash: str
    full_hash: str
    date: Optional[datetime]
    message: str = ""
    author: str = ""
    files: List[str] = field(default_factory=list)
    days_ago: int = 0

    def days_since(self, now: Optional[datetime] = None) -> float:
        if self.date is None:
            return float(self.days_ago)
        now = now or datetime.now(timezone.utc)
        return (now - self.date).total_seconds() / 86400


@dataclass
class ChangelogEntry:
    version: str
    date: Optional[str]
    changes: List[str] = field(default_factory=list)

    @property
    def raw(self) -> str:
        return "\n".join(self.changes)


@dataclass
class GitInfo:
    branch: Optional[str] = None
    last_commit: Optional[str] = None
    has_uncommitted_changes: bool = False
    is_git_repo: bool = False


@dataclass
class DevelopmentKeywords:
    keywords: List[str] = field(default_factory=list)
    themes: List[str] = field(default_factory=list)
    file_patterns: List[str] = field(default_factory=list)
    recent_commit_messages: List[str] = field(default_factory=list)


@dataclass
class GitQuery:
    """A semantic query derived from git activity."""

    type: str
    semantic_query: str
    weight: float
    source: str


@dataclass
class GitContext:
    git_info: GitInfo
    commits: List[GitCommit] = field(default_factory=list)
    changelog_entries: Optional[List[ChangelogEntry]] = None
    development_keywords: DevelopmentKeywords = field(default_factory=DevelopmentKeywords)
    analysis_timestamp: str = ""
    repository_activity: Dict[str, Any] = field(default_factory=dict)


def run_git(directory: str, args: List[str], timeout: float) -> Optional[str]:
    """Run git and return stdout, or None on any failure."""
    try:
        proc = subprocess.run(
            ["git", *args],
            cwd=os.path.abspath(directory),
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("[Git Analyzer] git %s failed: %s", args[0], e)
        return None
    if proc.returncode != 0:
        return None
    return proc.stdout


def _parse_iso(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def get_recent_commits(directory: str, days: int = 14, max_commits: int = 20,
                       include_merges: bool = False) -> List[GitCommit]:
    """Commits from the last `days` days, newest first.

    Changed files are fetched only for the five most recent commits.
    """
    since = datetime.now(timezone.utc) - timedelta(days=days)
    args = ["log", "--pretty=format:%H|%aI|%s|%an", f"--max-count={max_commits}"]
    if not include_merges:
        args.append("--no-merges")
    args.append(f"--since={since.isoformat()}")

    output = run_git(directory, args, LOG_TIMEOUT)
    if not output or not output.strip():
        return []

    now = datetime.now(timezone.utc)
    commits = []
    for line in output.strip().splitlines():
        parts = line.split("|")
        if not parts[0]:
            continue
        full_hash = parts[0]
        date = _parse_iso(parts[1]) if len(parts) > 1 else None
        # Subjects may themselves contain "|"
        message = "|".join(parts[2:-1]) if len(parts) > 3 else (parts[2] if len(parts) > 2 else "")
        author = parts[-1] if len(parts) > 3 else ""
        commits.append(GitCommit(
            hash=full_hash[:8],
            full_hash=full_hash,
            date=date,
            message=message,
            author=author,
            days_ago=int((now - date).total_seconds() // 86400) if date else 0,
        ))

    for commit in commits[:FILES_FOR_RECENT]:
        files = run_git(directory, ["show", "--name-only", "--pretty=", commit.full_hash], SHOW_TIMEOUT)
        commit.files = [f for f in (files or "").strip().splitlines() if f]

    return commits


def find_changelog(directory: str) -> Optional[Path]:
    for name in CHANGELOG_NAMES:
        candidate = Path(directory) / name
        if candidate.is_file():
            return candidate
    return None


def parse_changelog_text(content: str) -> List[ChangelogEntry]:
    """Parse markdown release headings and the bullet lines beneath them."""
    entries: List[ChangelogEntry] = []
    current: Optional[ChangelogEntry] = None

    for line in content.splitlines():
        if SUBSECTION_HEADING.match(line):
            continue
        match = VERSION_HEADING.match(line)
        if match:
            if current and current.changes:
                entries.append(current)
            current = ChangelogEntry(version=match.group(1), date=match.group(2) or None)
            continue
        if current and line.strip():
            current.changes.append(line.strip())

    if current and current.changes:
        entries.append(current)
    return entries


def _is_recent_entry(entry: ChangelogEntry, cutoff: datetime) -> bool:
    if not entry.date:
        return True
    date_match = re.search(r"\d{4}-\d{2}-\d{2}", entry.date)
    if not date_match:
        return True
    parsed = _parse_iso(date_match.group(0))
    return parsed is None or parsed >= cutoff


def parse_changelog(directory: str) -> Optional[List[ChangelogEntry]]:
    """Up to three most recent changelog entries dated within 30 days (or undated)."""
    path = find_changelog(directory)
    if path is None:
        return None
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.debug("[Git Analyzer] Cannot read %s: %s", path, e)
        return None

    cutoff = datetime.now(timezone.utc) - timedelta(days=CHANGELOG_MAX_AGE_DAYS)
    recent = [e for e in parse_changelog_text(content)[:3] if _is_recent_entry(e, cutoff)]
    return recent or None


def get_current_git_info(directory: str) -> GitInfo:
    branch = run_git(directory, ["rev-parse", "--abbrev-ref", "HEAD"], INFO_TIMEOUT)
    if branch is None:
        return GitInfo()
    last_commit = run_git(directory, ["log", "-1", "--pretty=format:%h %s"], INFO_TIMEOUT)
    status = run_git(directory, ["status", "--porcelain"], INFO_TIMEOUT)
    return GitInfo(
        branch=branch.strip() or None,
        last_commit=(last_commit or "").strip() or None,
        has_uncommitted_changes=bool((status or "").strip()),
        is_git_repo=True,
    )


def _add(items: List[str], value: str) -> None:
    if value not in items:
        items.append(value)


def extract_development_keywords(commits: List[GitCommit],
                                 changelog_entries: Optional[List[ChangelogEntry]] = None) -> DevelopmentKeywords:
    keywords: List[str] = []
    themes: List[str] = []
    file_patterns: List[str] = []

    for commit in commits:
        message = commit.message.lower()
        action = ACTION_PATTERN.match(message)
        if action:
            _add(keywords, action.group(1))
        for term in COMMIT_TERMS.findall(message):
            _add(keywords, term)
        for version in VERSION_PATTERN.findall(message):
            _add(keywords, version)

        for file_path in commit.files:
            stem = os.path.splitext(os.path.basename(file_path))[0]
            if len(stem) > 2:
                _add(file_patterns, stem)
            parent = os.path.dirname(file_path)
            if parent and parent not in (".", "/") and not parent.startswith("."):
                _add(themes, parent.split("/")[0])

    for entry in changelog_entries or []:
        text = entry.raw.lower()
        for term in CHANGELOG_TERMS.findall(text):
            _add(keywords, term)
        for version in VERSION_PATTERN.findall(text):
            _add(keywords, version)
        if entry.version:
            _add(themes, f"v{entry.version}")
            _add(themes, f"version-{entry.version}")

    return DevelopmentKeywords(
        keywords=keywords[:20],
        themes=themes[:12],
        file_patterns=file_patterns[:12],
        recent_commit_messages=[c.message for c in commits[:5]],
    )


def build_git_context_query(project: Any, keywords: DevelopmentKeywords,
                            user_message: str = "") -> List[GitQuery]:
    """Build up to four git-derived semantic queries, each with a weight."""
    name = (project.get("name") if isinstance(project, dict) else getattr(project, "name", None)) or "project"

    def with_message(query: str) -> str:
        return f"{query} {user_message}" if user_message else query

    queries = []
    if keywords.keywords:
        queries.append(GitQuery(
            type="recent-development",
            semantic_query=with_message(f"{name} recent development {' '.join(keywords.keywords[:8])}"),
            weight=1.0,
            source="git-commits",
        ))
    if keywords.file_patterns:
        queries.append(GitQuery(
            type="file-context",
            semantic_query=with_message(f"{name} {' '.join(keywords.file_patterns[:5])} implementation changes"),
            weight=0.8,
            source="git-files",
        ))
    if keywords.themes:
        queries.append(GitQuery(
            type="theme-context",
            semantic_query=with_message(f"{name} {' '.join(keywords.themes[:5])} features decisions"),
            weight=0.6,
            source="git-themes",
        ))
    if keywords.recent_commit_messages:
        queries.append(GitQuery(
            type="commit-context",
            semantic_query=with_message(f"{name} {keywords.recent_commit_messages[0]}"),
            weight=0.9,
            source="recent-commit",
        ))
    return queries


def analyze_git_context(directory: str, config: Optional[GitAnalysisConfig] = None) -> Optional[GitContext]:
    """Aggregate git info, commits, changelog and keywords.

    Returns:
        GitContext, or None when `directory` is not inside a git repository.
    """
    config = config or GitAnalysisConfig()
    git_info = get_current_git_info(directory)
    if not git_info.is_git_repo:
        return None

    commits = get_recent_commits(directory, days=config.commit_lookback, max_commits=config.max_commits)
    changelog = parse_changelog(directory) if config.include_changelog else None
    keywords = extract_development_keywords(commits, changelog)

    count = len(commits)
    context = GitContext(
        git_info=git_info,
        commits=commits[:10],
        changelog_entries=changelog,
        development_keywords=keywords,
        analysis_timestamp=datetime.now(timezone.utc).isoformat(),
        repository_activity={
            "recent_commit_count": count,
            "active_days": max(1, min(config.commit_lookback, commits[0].days_ago if commits else config.commit_lookback)),
            "has_changelog": changelog is not None,
            "development_intensity": "high" if count > 5 else "medium" if count > 2 else "low",
        },
    )
    logger.info("[Git Analyzer] Analyzed %d commits, %d changelog entries",
                count, len(changelog) if changelog else 0)
    logger.debug("[Git Analyzer] Keywords: %s", ", ".join(keywords.keywords))
    return context
