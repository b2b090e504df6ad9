"""Project context detection for the working directory.

Determines the project name, primary language, frameworks, tools and git
state. Detection never raises; unreadable files and missing git simply lower
the confidence.
"""

import json
import logging
import os
import re
import sys
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from .git_analyzer import INFO_TIMEOUT, run_git


logger = logging.getLogger(__name__)

LANGUAGE_BY_EXTENSION = {
    ".js": "JavaScript",
    ".ts": "TypeScript",
    ".jsx": "React/JavaScript",
    ".tsx": "React/TypeScript",
    ".py": "Python",
    ".rs": "Rust",
    ".go": "Go",
    ".java": "Java",
    ".cpp": "C++",
    ".c": "C",
    ".cs": "C#",
    ".php": "PHP",
    ".rb": "Ruby",
    ".swift": "Swift",
    ".kt": "Kotlin",
    ".scala": "Scala",
    ".sh": "Shell",
    ".md": "Documentation",
}

REQUIREMENT_NAME_PATTERN = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")
GO_MODULE_PATTERN = re.compile(r"^module\s+(.+)$", re.MULTILINE)
REPO_NAME_PATTERN = re.compile(r"([^/:]+?)(?:\.git)?/?$")


@dataclass
class LanguageInfo:
    primary: str = "Unknown"
    extensions: Dict[str, int] = field(default_factory=dict)
    confidence: float = 0.0


@dataclass
class ProjectGitInfo:
    is_repo: bool = False
    branch: Optional[str] = None
    remote_url: Optional[str] = None
    repo_name: Optional[str] = None
    last_commit: Optional[str] = None


@dataclass
class ProjectContext:
    """What the hooks know about the project in the working directory."""

    name: str
    directory: str
    language: str = "Unknown"
    language_details: LanguageInfo = field(default_factory=LanguageInfo)
    frameworks: List[str] = field(default_factory=list)
    tools: List[str] = field(default_factory=list)
    git: ProjectGitInfo = field(default_factory=ProjectGitInfo)
    confidence: float = 0.5
    detected_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def detect_language(directory: str) -> LanguageInfo:
    """Primary language by the most common known file extension at the top level."""
    try:
        entries = list(os.scandir(directory))
    except OSError:
        return LanguageInfo()

    extensions = Counter(
        os.path.splitext(entry.name)[1].lower()
        for entry in entries
        if entry.is_file() and os.path.splitext(entry.name)[1]
    )

    primary, best = "Unknown", 0
    for ext, count in extensions.items():
        if ext in LANGUAGE_BY_EXTENSION and count > best:
            primary, best = LANGUAGE_BY_EXTENSION[ext], count

    return LanguageInfo(
        primary=primary,
        extensions=dict(extensions),
        confidence=min(best / 10, 1.0) if best else 0.0,
    )


def _read(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def _from_package_json(path: Path, frameworks: List[str], tools: List[str]) -> Optional[str]:
    package = json.loads(_read(path))
    deps = {**(package.get("dependencies") or {}), **(package.get("devDependencies") or {})}
    checks = [
        (("react", "@types/react"), "React"),
        (("vue", "@vue/cli"), "Vue.js"),
        (("angular", "@angular/core"), "Angular"),
        (("next",), "Next.js"),
        (("express",), "Express.js"),
        (("fastify",), "Fastify"),
        (("svelte",), "Svelte"),
    ]
    for names, framework in checks:
        if any(n in deps for n in names):
            frameworks.append(framework)
    tools.append("npm")
    return package.get("name") or "node-project"


def _load_toml(path: Path) -> Dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _requirement_name(requirement: Any) -> Optional[str]:
    if not isinstance(requirement, str):
        return None
    match = REQUIREMENT_NAME_PATTERN.match(requirement)
    return match.group(1).lower() if match else None


def _python_dependencies(data: Dict[str, Any]) -> Set[str]:
    """Distribution names from PEP 621, dependency groups and Poetry tables."""
    project = data.get("project") or {}
    requirements = list(project.get("dependencies") or [])
    for extra in (project.get("optional-dependencies") or {}).values():
        requirements.extend(extra or [])
    for group in (data.get("dependency-groups") or {}).values():
        requirements.extend(group or [])
    names = {name for name in map(_requirement_name, requirements) if name}

    poetry = (data.get("tool") or {}).get("poetry") or {}
    tables = [poetry.get("dependencies"), poetry.get("dev-dependencies")]
    tables.extend(group.get("dependencies") for group in (poetry.get("group") or {}).values())
    for table in tables:
        if isinstance(table, dict):
            names.update(name.lower() for name in table)
    return names


def _from_pyproject(path: Path, frameworks: List[str], tools: List[str]) -> Optional[str]:
    tools.append("Python")
    data = _load_toml(path)
    deps = _python_dependencies(data)
    for package, framework in (("django", "Django"), ("flask", "Flask"), ("fastapi", "FastAPI")):
        if package in deps:
            frameworks.append(framework)

    tool_tables = data.get("tool") or {}
    if "pytest" in deps or "pytest" in tool_tables:
        tools.append("pytest")
    poetry = tool_tables.get("poetry") or {}
    if poetry:
        tools.append("Poetry")
    return (data.get("project") or {}).get("name") or poetry.get("name") or "python-project"


def _from_cargo(path: Path, frameworks: List[str], tools: List[str]) -> Optional[str]:
    tools.append("Cargo")
    data = _load_toml(path)
    deps: Set[str] = set()
    for table in ("dependencies", "dev-dependencies", "build-dependencies"):
        deps.update(data.get(table) or {})
    deps.update((data.get("workspace") or {}).get("dependencies") or {})
    for crate, framework in (("actix-web", "Actix Web"), ("rocket", "Rocket"),
                             ("warp", "Warp"), ("tokio", "Tokio")):
        if crate in deps:
            frameworks.append(framework)
    return (data.get("package") or {}).get("name") or "rust-project"


def _from_go_mod(path: Path, frameworks: List[str], tools: List[str]) -> Optional[str]:
    tools.append("Go Modules")
    content = _read(path)
    for needle, framework in (("gin-gonic/gin", "Gin"), ("gorilla/mux", "Gorilla Mux"), ("fiber", "Fiber")):
        if needle in content:
            frameworks.append(framework)
    match = GO_MODULE_PATTERN.search(content)
    return os.path.basename(match.group(1).strip()) if match else "go-project"


def _marker(tool: str, framework: Optional[str] = None,
            name: Optional[str] = None) -> Callable[[Path, List[str], List[str]], Optional[str]]:
    def detect(path: Path, frameworks: List[str], tools: List[str]) -> Optional[str]:
        tools.append(tool)
        if framework:
            frameworks.append(framework)
        return name
    return detect


CONFIG_DETECTORS: List[Tuple[str, Callable[[Path, List[str], List[str]], Optional[str]]]] = [
    ("package.json", _from_package_json),
    ("pyproject.toml", _from_pyproject),
    ("Cargo.toml", _from_cargo),
    ("go.mod", _from_go_mod),
    ("pom.xml", _marker("Maven", "Java/Maven", "java-maven-project")),
    ("build.gradle", _marker("Gradle", "Java/Gradle", "java-gradle-project")),
    ("docker-compose.yml", _marker("Docker Compose")),
    ("Dockerfile", _marker("Docker")),
    (".env", _marker("Environment Config")),
]


def detect_frameworks(directory: str) -> Tuple[List[str], List[str], Optional[str]]:
    """Frameworks, tools and a config-declared project name.

    Returns:
        Tuple of (frameworks, tools, project_name or None).
    """
    frameworks: List[str] = []
    tools: List[str] = []
    project_name = None

    for filename, detector in CONFIG_DETECTORS:
        path = Path(directory) / filename
        if not path.is_file():
            continue
        try:
            name = detector(path, frameworks, tools)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            logger.debug("[Project Detector] Cannot parse %s: %s", filename, e)
            continue
        if name and not project_name:
            project_name = name

    return frameworks, tools, project_name


def repo_name_from_url(remote_url: str) -> Optional[str]:
    match = REPO_NAME_PATTERN.search(remote_url.strip())
    return match.group(1) if match else None


def get_git_info(directory: str) -> ProjectGitInfo:
    if not (Path(directory) / ".git").exists():
        return ProjectGitInfo()

    branch = run_git(directory, ["branch", "--show-current"], INFO_TIMEOUT)
    remote = (run_git(directory, ["config", "--get", "remote.origin.url"], INFO_TIMEOUT) or "").strip()
    last_commit = run_git(directory, ["log", "-1", "--pretty=format:%h %s"], INFO_TIMEOUT)
    return ProjectGitInfo(
        is_repo=True,
        branch=(branch or "").strip() or None,
        remote_url=remote or None,
        repo_name=repo_name_from_url(remote) if remote else None,
        last_commit=(last_commit or "").strip() or None,
    )


def detect_project_context(directory: Optional[str] = None) -> ProjectContext:
    """Detect the project in `directory` (default: current directory)."""
    directory = os.path.abspath(directory or os.getcwd())
    directory_name = os.path.basename(directory.rstrip(os.sep)) or directory
    logger.debug("[Project Detector] Analyzing %s", directory_name)

    language = detect_language(directory)
    frameworks, tools, config_name = detect_frameworks(directory)
    git = get_git_info(directory)

    confidence = 0.5
    if git.is_repo:
        confidence += 0.3
    if frameworks:
        confidence += 0.2
    if language.confidence > 0.5:
        confidence += language.confidence * 0.3

    context = ProjectContext(
        name=config_name or git.repo_name or directory_name,
        directory=directory,
        language=language.primary,
        language_details=language,
        frameworks=frameworks,
        tools=tools,
        git=git,
        confidence=min(confidence, 1.0),
        detected_at=datetime.now(timezone.utc).isoformat(),
    )
    logger.info("[Project Detector] %s (%s) %d%%", context.name, context.language,
                round(context.confidence * 100))
    return context
