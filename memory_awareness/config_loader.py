"""Configuration loading and validation for the memory hooks.

Loads a hierarchical JSON document (camelCase keys) into section dataclasses.
Every section is optional; missing keys fall back to defaults.
"""

import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import ConfigValidationError


DEFAULT_CONFIG_ENV = "MEMORY_HOOKS_CONFIG"
DEFAULT_CONFIG_NAME = "config.json"

VALID_PROTOCOLS = ("auto", "http", "mcp")
VALID_PROFILES = ("speed_focused", "balanced", "memory_aware", "adaptive")
VALID_TIERS = ("instant", "fast", "intensive")

DEFAULT_SCORING_WEIGHTS = {
    "timeDecay": 0.35,
    "tagRelevance": 0.25,
    "contentRelevance": 0.2,
    "contentQuality": 0.1,
    "recencyBonus": 0.1,
    "backendQuality": 0.0,
}


@dataclass
class HttpSettings:
    """HTTP transport settings."""

    endpoint: str = "https://localhost:8443"
    api_key: str = ""
    health_check_timeout: int = 3000  # ms
    use_detailed_health_check: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HttpSettings':
        return cls(
            endpoint=os.environ.get("MCP_MEMORY_HTTP_ENDPOINT") or data.get("endpoint", "https://localhost:8443"),
            api_key=os.environ.get("MCP_MEMORY_API_KEY") or data.get("apiKey", ""),
            health_check_timeout=data.get("healthCheckTimeout", 3000),
            use_detailed_health_check=data.get("useDetailedHealthCheck", False),
        )


@dataclass
class McpSettings:
    """JSON-RPC subprocess transport settings."""

    server_command: List[str] = field(default_factory=lambda: ["uv", "run", "memory", "server"])
    server_working_dir: Optional[str] = None
    connection_timeout: int = 5000  # ms
    tool_call_timeout: int = 10000  # ms

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'McpSettings':
        command = data.get("serverCommand")
        if isinstance(command, str):
            command = command.split()
        return cls(
            server_command=command or ["uv", "run", "memory", "server"],
            server_working_dir=data.get("serverWorkingDir"),
            connection_timeout=data.get("connectionTimeout", 5000),
            tool_call_timeout=data.get("toolCallTimeout", 10000),
        )


@dataclass
class MemoryServiceConfig:
    """The `memoryService` section."""

    protocol: str = "auto"
    preferred_protocol: str = "mcp"
    fallback_enabled: bool = True
    http: HttpSettings = field(default_factory=HttpSettings)
    mcp: McpSettings = field(default_factory=McpSettings)
    max_memories_per_session: int = 8
    enable_session_consolidation: bool = True
    inject_after_compacting: bool = False
    recent_first_mode: bool = True
    recent_memory_ratio: float = 0.6
    recent_time_window: str = "last-week"
    fallback_time_window: str = "last-month"
    show_storage_source: bool = True
    source_display_mode: str = "brief"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MemoryServiceConfig':
        return cls(
            protocol=data.get("protocol", "auto"),
            preferred_protocol=data.get("preferredProtocol", "mcp"),
            fallback_enabled=data.get("fallbackEnabled", True),
            http=HttpSettings.from_dict(data.get("http", {})),
            mcp=McpSettings.from_dict(data.get("mcp", {})),
            max_memories_per_session=data.get("maxMemoriesPerSession", 8),
            enable_session_consolidation=data.get("enableSessionConsolidation", True),
            inject_after_compacting=data.get("injectAfterCompacting", False),
            recent_first_mode=data.get("recentFirstMode", True),
            recent_memory_ratio=data.get("recentMemoryRatio", 0.6),
            recent_time_window=data.get("recentTimeWindow", "last-week"),
            fallback_time_window=data.get("fallbackTimeWindow", "last-month"),
            show_storage_source=data.get("showStorageSource", True),
            source_display_mode=data.get("sourceDisplayMode", "brief"),
        )


@dataclass
class PerformanceConfig:
    """The `performance` section. Profiles are kept as raw camelCase dicts."""

    default_profile: str = "balanced"
    enable_monitoring: bool = True
    auto_adjust: bool = True
    profiles: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PerformanceConfig':
        return cls(
            default_profile=data.get("defaultProfile", "balanced"),
            enable_monitoring=data.get("enableMonitoring", True),
            auto_adjust=data.get("autoAdjust", True),
            profiles=dict(data.get("profiles", {})),
        )


@dataclass
class NaturalTriggersConfig:
    """The `naturalTriggers` section."""

    enabled: bool = True
    trigger_threshold: float = 0.6
    cooldown_period: int = 30000  # ms
    max_memories_per_trigger: int = 5
    per_project_cooldown: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NaturalTriggersConfig':
        return cls(
            enabled=data.get("enabled", True),
            trigger_threshold=data.get("triggerThreshold", 0.6),
            cooldown_period=data.get("cooldownPeriod", 30000),
            max_memories_per_trigger=data.get("maxMemoriesPerTrigger", 5),
            per_project_cooldown=data.get("perProjectCooldown", False),
        )


@dataclass
class PatternDetectorConfig:
    """The `patternDetector` section."""

    sensitivity: float = 1.0
    adaptive_learning: bool = True
    learning_rate: float = 0.05

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PatternDetectorConfig':
        return cls(
            sensitivity=data.get("sensitivity", 1.0),
            adaptive_learning=data.get("adaptiveLearning", True),
            learning_rate=data.get("learningRate", 0.05),
        )


@dataclass
class ConversationMonitorConfig:
    """The `conversationMonitor` section."""

    context_window: int = 10
    enable_caching: bool = True
    max_cache_size: int = 100

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConversationMonitorConfig':
        return cls(
            context_window=data.get("contextWindow", 10),
            enable_caching=data.get("enableCaching", True),
            max_cache_size=data.get("maxCacheSize", 100),
        )


@dataclass
class GitAnalysisConfig:
    """The `gitAnalysis` section."""

    enabled: bool = True
    commit_lookback: int = 14  # days
    max_commits: int = 20
    include_changelog: bool = True
    max_git_memories: int = 3
    git_context_weight: float = 1.2
    use_adaptive_git_weight: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GitAnalysisConfig':
        return cls(
            enabled=data.get("enabled", True),
            commit_lookback=data.get("commitLookback", 14),
            max_commits=data.get("maxCommits", 20),
            include_changelog=data.get("includeChangelog", True),
            max_git_memories=data.get("maxGitMemories", 3),
            git_context_weight=data.get("gitContextWeight", 1.2),
            use_adaptive_git_weight=data.get("useAdaptiveGitWeight", True),
        )


@dataclass
class MemoryScoringConfig:
    """The `memoryScoring` section."""

    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_SCORING_WEIGHTS))
    time_decay_rate: float = 0.1
    min_relevance_score: float = 0.0
    auto_calibrate: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MemoryScoringConfig':
        weights = dict(DEFAULT_SCORING_WEIGHTS)
        weights.update(data.get("weights", {}))
        return cls(
            weights=weights,
            time_decay_rate=data.get("timeDecayRate", 0.1),
            min_relevance_score=data.get("minRelevanceScore", 0.0),
            auto_calibrate=data.get("autoCalibrate", True),
        )


@dataclass
class DeduplicationConfig:
    """The `deduplication` section."""

    similarity_threshold: float = 0.8
    min_length: int = 20

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DeduplicationConfig':
        return cls(
            similarity_threshold=data.get("similarityThreshold", 0.8),
            min_length=data.get("minLength", 20),
        )


@dataclass
class ContextShiftConfig:
    """The `contextShift` section."""

    time_threshold_minutes: int = 30

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ContextShiftConfig':
        return cls(time_threshold_minutes=data.get("timeThresholdMinutes", 30))


@dataclass
class TopicChangeConfig:
    """The `topicChange` section (dynamic context updates)."""

    enabled: bool = True
    update_threshold: float = 0.3
    max_memories_per_update: int = 3
    cooldown_period: int = 30000  # ms
    max_updates_per_session: int = 10
    cross_session_context: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TopicChangeConfig':
        return cls(
            enabled=data.get("enabled", True),
            update_threshold=data.get("updateThreshold", 0.3),
            max_memories_per_update=data.get("maxMemoriesPerUpdate", 3),
            cooldown_period=data.get("cooldownPeriod", 30000),
            max_updates_per_session=data.get("maxUpdatesPerSession", 10),
            cross_session_context=data.get("crossSessionContext", True),
        )


@dataclass
class SessionAnalysisConfig:
    """The `sessionAnalysis` section."""

    min_session_length: int = 100
    min_confidence: float = 0.1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionAnalysisConfig':
        return cls(
            min_session_length=data.get("minSessionLength", 100),
            min_confidence=data.get("minConfidence", 0.1),
        )


@dataclass
class OutputConfig:
    """The `output` section."""

    verbose: bool = True
    show_memory_details: bool = False
    show_scoring_details: bool = False
    show_project_details: bool = True
    clean_mode: bool = False
    context_log_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OutputConfig':
        return cls(
            verbose=data.get("verbose", True),
            show_memory_details=data.get("showMemoryDetails", False),
            show_scoring_details=data.get("showScoringDetails", False),
            show_project_details=data.get("showProjectDetails", True),
            clean_mode=data.get("cleanMode", False),
            context_log_path=data.get("contextLogPath"),
        )


@dataclass
class CodeExecutionConfig:
    """The `codeExecution` section (alternative retrieval path)."""

    enabled: bool = False
    interpreter: str = "python3"
    timeout: int = 8000  # ms
    fallback_to_mcp: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CodeExecutionConfig':
        return cls(
            enabled=data.get("enabled", False),
            interpreter=data.get("interpreter", "python3"),
            timeout=data.get("timeout", 8000),
            fallback_to_mcp=data.get("fallbackToMCP", True),
        )


@dataclass
class HooksConfig:
    """Structured representation of the whole configuration document."""

    memory_service: MemoryServiceConfig = field(default_factory=MemoryServiceConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    natural_triggers: NaturalTriggersConfig = field(default_factory=NaturalTriggersConfig)
    pattern_detector: PatternDetectorConfig = field(default_factory=PatternDetectorConfig)
    conversation_monitor: ConversationMonitorConfig = field(default_factory=ConversationMonitorConfig)
    git_analysis: GitAnalysisConfig = field(default_factory=GitAnalysisConfig)
    memory_scoring: MemoryScoringConfig = field(default_factory=MemoryScoringConfig)
    deduplication: DeduplicationConfig = field(default_factory=DeduplicationConfig)
    context_shift: ContextShiftConfig = field(default_factory=ContextShiftConfig)
    topic_change: TopicChangeConfig = field(default_factory=TopicChangeConfig)
    session_analysis: SessionAnalysisConfig = field(default_factory=SessionAnalysisConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    code_execution: CodeExecutionConfig = field(default_factory=CodeExecutionConfig)
    source_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source_path: Optional[str] = None) -> 'HooksConfig':
        return cls(
            memory_service=MemoryServiceConfig.from_dict(data.get("memoryService", {})),
            performance=PerformanceConfig.from_dict(data.get("performance", {})),
            natural_triggers=NaturalTriggersConfig.from_dict(data.get("naturalTriggers", {})),
            pattern_detector=PatternDetectorConfig.from_dict(data.get("patternDetector", {})),
            conversation_monitor=ConversationMonitorConfig.from_dict(data.get("conversationMonitor", {})),
            git_analysis=GitAnalysisConfig.from_dict(data.get("gitAnalysis", {})),
            memory_scoring=MemoryScoringConfig.from_dict(data.get("memoryScoring", {})),
            deduplication=DeduplicationConfig.from_dict(data.get("deduplication", {})),
            context_shift=ContextShiftConfig.from_dict(data.get("contextShift", {})),
            topic_change=TopicChangeConfig.from_dict(data.get("topicChange", {})),
            session_analysis=SessionAnalysisConfig.from_dict(data.get("sessionAnalysis", {})),
            output=OutputConfig.from_dict(data.get("output", {})),
            code_execution=CodeExecutionConfig.from_dict(data.get("codeExecution", {})),
            source_path=source_path,
        )


def _check_unit_interval(value: Any, name: str, errors: List[str]) -> None:
    if value is None:
        return
    if not isinstance(value, (int, float)) or isinstance(value, bool) or not 0 <= value <= 1:
        errors.append(f"'{name}' must be a number between 0 and 1")


def _check_positive(value: Any, name: str, errors: List[str]) -> None:
    if value is None:
        return
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
        errors.append(f"'{name}' must be a positive number")


def validate_config(config: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Validate a configuration dict.

    Args:
        config: Raw configuration dict loaded from JSON

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors: List[str] = []

    if not isinstance(config, dict):
        return False, ["Configuration must be a JSON object"]

    for section in ("memoryService", "performance", "naturalTriggers", "patternDetector",
                    "conversationMonitor", "gitAnalysis", "memoryScoring", "deduplication",
                    "contextShift", "topicChange", "sessionAnalysis", "output", "codeExecution"):
        value = config.get(section)
        if value is not None and not isinstance(value, dict):
            errors.append(f"'{section}' must be an object")
    if errors:
        return False, errors

    for section, nested in (("memoryService", "http"), ("memoryService", "mcp"), ("memoryScoring", "weights")):
        value = config.get(section, {}).get(nested)
        if value is not None and not isinstance(value, dict):
            errors.append(f"'{section}.{nested}' must be an object")
    if errors:
        return False, errors

    service = config.get("memoryService", {})
    if service.get("protocol", "auto") not in VALID_PROTOCOLS:
        errors.append(f"Invalid memoryService.protocol: {service.get('protocol')}. "
                      f"Must be one of {', '.join(VALID_PROTOCOLS)}")
    if service.get("preferredProtocol", "mcp") not in ("http", "mcp"):
        errors.append(f"Invalid memoryService.preferredProtocol: {service.get('preferredProtocol')}")
    _check_unit_interval(service.get("recentMemoryRatio"), "memoryService.recentMemoryRatio", errors)
    _check_positive(service.get("maxMemoriesPerSession"), "memoryService.maxMemoriesPerSession", errors)
    command = service.get("mcp", {}).get("serverCommand")
    if command is not None and not isinstance(command, (list, str)):
        errors.append("'memoryService.mcp.serverCommand' must be an array or string")

    performance = config.get("performance", {})
    default_profile = performance.get("defaultProfile")
    if default_profile is not None and default_profile not in VALID_PROFILES:
        errors.append(f"Invalid performance.defaultProfile: {default_profile}")
    profiles = performance.get("profiles", {})
    if not isinstance(profiles, dict):
        errors.append("'performance.profiles' must be an object")
    else:
        for name, profile in profiles.items():
            tiers = profile.get("enabledTiers") if isinstance(profile, dict) else None
            if tiers is None:
                continue
            if not isinstance(tiers, list) or not tiers:
                errors.append(f"'performance.profiles.{name}.enabledTiers' must be a non-empty array")
            elif any(t not in VALID_TIERS for t in tiers):
                errors.append(f"'performance.profiles.{name}.enabledTiers' contains unknown tiers")

    triggers = config.get("naturalTriggers", {})
    _check_unit_interval(triggers.get("triggerThreshold"), "naturalTriggers.triggerThreshold", errors)
    cooldown = triggers.get("cooldownPeriod")
    if cooldown is not None and (not isinstance(cooldown, (int, float)) or cooldown < 0):
        errors.append("'naturalTriggers.cooldownPeriod' must be a non-negative number")

    _check_unit_interval(config.get("patternDetector", {}).get("sensitivity"),
                         "patternDetector.sensitivity", errors)
    _check_unit_interval(config.get("deduplication", {}).get("similarityThreshold"),
                         "deduplication.similarityThreshold", errors)
    _check_positive(config.get("gitAnalysis", {}).get("gitContextWeight"),
                    "gitAnalysis.gitContextWeight", errors)
    topic_change = config.get("topicChange", {})
    _check_unit_interval(topic_change.get("updateThreshold"), "topicChange.updateThreshold", errors)
    _check_positive(topic_change.get("maxMemoriesPerUpdate"), "topicChange.maxMemoriesPerUpdate", errors)

    weights = config.get("memoryScoring", {}).get("weights") or {}
    for key, weight in weights.items():
        if not isinstance(weight, (int, float)) or weight < 0:
            errors.append(f"'memoryScoring.weights.{key}' must be a non-negative number")

    return len(errors) == 0, errors


def find_config_path(path: Optional[str] = None, env_var: str = DEFAULT_CONFIG_ENV) -> Optional[Path]:
    """Resolve the config file location without reading it.

    Searches in order: explicit path, env var, ./.memory-hooks/config.json,
    ~/.config/memory-hooks/config.json.
    """
    if path is None:
        path = os.environ.get(env_var)
    if path is not None:
        return Path(path)

    default_paths = [
        Path.cwd() / ".memory-hooks" / DEFAULT_CONFIG_NAME,
        Path.home() / ".config" / "memory-hooks" / DEFAULT_CONFIG_NAME,
    ]
    for default_path in default_paths:
        if default_path.exists():
            return default_path
    return None


def load_config(
    path: Optional[str] = None,
    env_var: str = DEFAULT_CONFIG_ENV
) -> HooksConfig:
    """Load and validate the hooks configuration file.

    Args:
        path: Direct path to config file. If None, uses env_var or defaults.
        env_var: Environment variable name for config path

    Returns:
        HooksConfig instance (defaults when no file is found)

    Raises:
        FileNotFoundError: If an explicitly named config file doesn't exist
        ConfigValidationError: If config validation fails
        json.JSONDecodeError: If config file is not valid JSON
    """
    config_path = find_config_path(path, env_var)
    if config_path is None:
        return HooksConfig()

    if not config_path.exists():
        raise FileNotFoundError(f"Memory hooks config file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        raw_config = json.load(f)

    is_valid, errors = validate_config(raw_config)
    if not is_valid:
        raise ConfigValidationError(errors)

    return HooksConfig.from_dict(raw_config, source_path=str(config_path))


def load_config_safe(path: Optional[str] = None) -> HooksConfig:
    """Load configuration, falling back to defaults on any problem.

    Hook entry points use this so a broken config never blocks the host.
    """
    try:
        return load_config(path)
    except Exception as e:
        print(f"[MemoryHooks] Warning: Failed to load config: {e}", file=sys.stderr)
        return HooksConfig()


def update_config_value(config_path: str, section: str, key: str, value: Any) -> Dict[str, Any]:
    """Set one camelCase key in a config file section and save it.

    Args:
        config_path: Path to the JSON config file (created if missing).
        section: Top-level section name, e.g. "performance".
        key: Key inside the section, e.g. "defaultProfile".
        value: New value.

    Returns:
        The full updated raw configuration dict.
    """
    file_path = Path(config_path)
    data: Dict[str, Any] = {}
    if file_path.exists():
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)

    data.setdefault(section, {})[key] = value

    file_path.parent.mkdir(parents=True, exist_ok=True)
    with open(file_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)
    return data
