"""Topic, entity and intent extraction over conversation text.

Used to notice when a conversation moves onto new ground so that memories
for the new topics can be loaded mid-session.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .client.models import Memory


logger = logging.getLogger(__name__)

TOPIC_PATTERNS = [
    # Development activities
    ("debugging", re.compile(r"\b(debug|debugging|bug|error|exception|fix|fixing|issue|issues|problem)\b", re.I), 0.9),
    ("architecture", re.compile(r"\b(architect|architecture|design|structure|pattern|system|framework)\b", re.I), 1.0),
    ("implementation", re.compile(r"\b(implement|implementation|build|develop|code)\b", re.I), 0.7),
    ("testing", re.compile(r"\b(test|testing|unit test|integration|spec)\b", re.I), 0.7),
    ("deployment", re.compile(r"\b(deploy|deployment|release|production|staging)\b", re.I), 0.6),
    ("refactoring", re.compile(r"\b(refactor|refactoring|cleanup|optimize|performance)\b", re.I), 0.7),
    # Technologies
    ("database", re.compile(r"\b(database|db|sql|query|schema|migration|sqlite|postgres|mysql|performance)\b", re.I),
     0.9),
    ("api", re.compile(r"\b(api|endpoint|rest|graphql|request|response)\b", re.I), 0.7),
    ("frontend", re.compile(r"\b(frontend|ui|ux|interface|component|react|vue)\b", re.I), 0.7),
    ("backend", re.compile(r"\b(backend|server|service|microservice|lambda)\b", re.I), 0.7),
    ("security", re.compile(r"\b(security|auth|authentication|authorization|jwt|oauth)\b", re.I), 0.8),
    ("devops", re.compile(r"\b(docker|container|kubernetes|deployment|ci/cd)\b", re.I), 0.6),
    # Concepts
    ("memory-management", re.compile(r"\b(memory|storage|cache|persistence|state)\b", re.I), 0.7),
    ("integration", re.compile(r"\b(hook|plugin|extension|integration)\b", re.I), 0.6),
    ("ai-integration", re.compile(r"\b(claude|ai|gpt|llm|automation)\b", re.I), 0.8),
]

ENTITY_PATTERNS = [
    ("language", re.compile(r"\b(javascript|js|typescript|ts|python|java|rust|go|php|ruby)\b|c\+\+", re.I)),
    ("framework", re.compile(r"\b(react|vue|angular|next\.js|express|fastapi|django|flask|spring)\b", re.I)),
    ("database", re.compile(r"\b(postgresql|postgres|mysql|mongodb|sqlite|redis|elasticsearch)\b", re.I)),
    ("tool", re.compile(r"\b(docker|kubernetes|git|github|gitlab|jenkins|webpack|vite)\b", re.I)),
    ("cloud", re.compile(r"\b(aws|azure|gcp|vercel|netlify|heroku)\b", re.I)),
    ("project", re.compile(r"\b(claude|mcp|memory-service|sqlite-vec|chroma)\b", re.I)),
]

INTENT_PATTERNS = [
    ("learning", re.compile(r"\b(help|how|explain|understand|learn|guide)\b", re.I), 0.7),
    ("problem-solving", re.compile(r"\b(fix|solve|debug|error|problem|issue)\b", re.I), 0.8),
    ("development", re.compile(r"\b(build|create|implement|develop|add)\b", re.I), 0.7),
    ("optimization", re.compile(r"\b(optimize|improve|enhance|refactor|better)\b", re.I), 0.6),
    ("review", re.compile(r"\b(review|check|analyze|audit|validate)\b", re.I), 0.6),
    ("planning", re.compile(r"\b(plan|design|architect|structure|approach)\b", re.I), 0.7),
]

INTENT_KEYWORDS = {
    "learning": ("learn", "understand", "explain", "how", "tutorial", "guide"),
    "problem-solving": ("fix", "error", "debug", "issue", "problem", "solve"),
    "development": ("build", "create", "implement", "develop", "code", "feature"),
    "optimization": ("optimize", "improve", "performance", "faster", "better"),
    "review": ("review", "check", "analyze", "audit", "validate"),
    "planning": ("plan", "design", "architecture", "approach", "strategy"),
}
CODE_INDICATORS = ("code", "function", "class", "method", "variable", "api", "library")

CODE_CONTEXT_PATTERNS = {
    "has_code_blocks": re.compile(r"```[\s\S]*?```"),
    "has_inline_code": re.compile(r"`[^`]+`"),
    "has_file_paths": re.compile(r"\b[\w.-]+\.(js|ts|py|java|cpp|rs|go|php|rb|md|json|yaml|yml)\b", re.I),
    "has_error_messages": re.compile(r"\b(error|exception|failed|traceback|stack trace)\b", re.I),
    "has_commands": re.compile(r"\$\s+[\w\-./]+"),
    "has_urls": re.compile(r"https?://\S+"),
}
CODE_LANGUAGE = re.compile(r"```(\w+)")

MATCH_MULTIPLIER = 0.3
ENTITY_CONFIDENCE = 0.8
CODE_CONTEXT_CONFIDENCE = 0.8
MAX_TOPICS = 10

FIRST_TOPIC_CONFIDENCE = 0.3
NEW_TOPIC_CONFIDENCE = 0.4
FIRST_TOPIC_SIGNIFICANCE = 0.4
NEW_TOPIC_SIGNIFICANCE = 0.3
INTENT_CHANGE_SIGNIFICANCE = 0.4
TOPIC_SHIFT_THRESHOLD = 0.3

NEUTRAL_CONVERSATION_RELEVANCE = 0.3


@dataclass
class Topic:
    name: str
    confidence: float


@dataclass
class Entity:
    name: str
    type: str
    confidence: float = ENTITY_CONFIDENCE


@dataclass
class Intent:
    name: str
    confidence: float


@dataclass
class CodeContext:
    has_code_blocks: bool = False
    has_inline_code: bool = False
    has_file_paths: bool = False
    has_error_messages: bool = False
    has_commands: bool = False
    has_urls: bool = False
    languages: List[str] = field(default_factory=list)

    @property
    def is_code_related(self) -> bool:
        return bool(self.languages) or any((
            self.has_code_blocks, self.has_inline_code, self.has_file_paths,
            self.has_error_messages, self.has_commands, self.has_urls,
        ))


@dataclass
class ConversationAnalysis:
    """Topics, entities, intent and code signals found in a stretch of conversation."""

    topics: List[Topic] = field(default_factory=list)
    entities: List[Entity] = field(default_factory=list)
    intent: Optional[Intent] = None
    code_context: Optional[CodeContext] = None
    confidence: float = 0.0
    length: int = 0

    @property
    def topic_names(self) -> List[str]:
        return [t.name for t in self.topics]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topics": [{"name": t.name, "confidence": t.confidence} for t in self.topics],
            "entities": [{"name": e.name, "type": e.type, "confidence": e.confidence} for e in self.entities],
            "intent": {"name": self.intent.name, "confidence": self.intent.confidence} if self.intent else None,
            "is_code_related": bool(self.code_context and self.code_context.is_code_related),
            "confidence": self.confidence,
            "length": self.length,
        }


@dataclass
class TopicChanges:
    """Difference between two analyses."""

    has_topic_shift: bool = False
    new_topics: List[Topic] = field(default_factory=list)
    changed_intent: bool = False
    significance_score: float = 0.0


def extract_topics(text: str, min_confidence: float = 0.3) -> List[Topic]:
    """Score topic patterns by match count, strongest first."""
    scores: Dict[str, float] = {}
    for name, pattern, weight in TOPIC_PATTERNS:
        matches = len(pattern.findall(text))
        if not matches:
            continue
        score = min(matches * weight * MATCH_MULTIPLIER, 1.0)
        if score >= min_confidence:
            scores[name] = max(scores.get(name, 0.0), score)
    topics = [Topic(name, score) for name, score in scores.items()]
    topics.sort(key=lambda t: t.confidence, reverse=True)
    return topics[:MAX_TOPICS]


def extract_entities(text: str) -> List[Entity]:
    entities: List[Entity] = []
    seen = set()
    for entity_type, pattern in ENTITY_PATTERNS:
        for match in pattern.finditer(text):
            name = match.group(0).lower()
            if name not in seen:
                seen.add(name)
                entities.append(Entity(name, entity_type))
    return entities


def detect_intent(text: str) -> Optional[Intent]:
    """Strongest intent by match count, or None."""
    best: Optional[Intent] = None
    for name, pattern, confidence in INTENT_PATTERNS:
        matches = len(pattern.findall(text))
        if not matches:
            continue
        score = min(matches * confidence * MATCH_MULTIPLIER, 1.0)
        if best is None or score > best.confidence:
            best = Intent(name, score)
    return best


def detect_code_context(text: str) -> CodeContext:
    context = CodeContext(**{flag: bool(pattern.search(text)) for flag, pattern in CODE_CONTEXT_PATTERNS.items()})
    for lang in CODE_LANGUAGE.findall(text):
        lang = lang.lower()
        if lang not in context.languages:
            context.languages.append(lang)
    return context


def _analysis_confidence(analysis: ConversationAnalysis) -> float:
    factors: List[float] = []
    if analysis.topics:
        factors.append(sum(t.confidence for t in analysis.topics) / len(analysis.topics))
    if analysis.entities:
        factors.append(sum(e.confidence for e in analysis.entities) / len(analysis.entities))
    if analysis.intent:
        factors.append(analysis.intent.confidence)
    if analysis.code_context and analysis.code_context.is_code_related:
        factors.append(CODE_CONTEXT_CONFIDENCE)
    return sum(factors) / len(factors) if factors else 0.0


def analyze_conversation_text(text: str, min_topic_confidence: float = 0.3) -> ConversationAnalysis:
    """Run every extractor over `text`."""
    text = text or ""
    analysis = ConversationAnalysis(
        topics=extract_topics(text, min_topic_confidence),
        entities=extract_entities(text),
        intent=detect_intent(text),
        code_context=detect_code_context(text),
        length=len(text),
    )
    analysis.confidence = _analysis_confidence(analysis)
    logger.debug("[Topic Analysis] %d topics, %d entities, confidence %.2f",
                 len(analysis.topics), len(analysis.entities), analysis.confidence)
    return analysis


def detect_topic_changes(previous: Optional[ConversationAnalysis],
                         current: Optional[ConversationAnalysis]) -> TopicChanges:
    """Compare two analyses.

    Without a previous analysis every reasonably confident topic counts as
    new. Otherwise new topics and an intent change add to the significance,
    and a shift is reported from TOPIC_SHIFT_THRESHOLD upwards.
    """
    changes = TopicChanges()
    if current is None:
        return changes

    if previous is None:
        changes.new_topics = [t for t in current.topics if t.confidence > FIRST_TOPIC_CONFIDENCE]
        if changes.new_topics:
            changes.has_topic_shift = True
            changes.significance_score = min(len(changes.new_topics) * FIRST_TOPIC_SIGNIFICANCE, 1.0)
        return changes

    seen = set(previous.topic_names)
    changes.new_topics = [t for t in current.topics
                          if t.name not in seen and t.confidence > NEW_TOPIC_CONFIDENCE]

    previous_intent = previous.intent.name if previous.intent else None
    current_intent = current.intent.name if current.intent else None
    changes.changed_intent = current_intent is not None and current_intent != previous_intent

    significance = len(changes.new_topics) * NEW_TOPIC_SIGNIFICANCE
    if changes.changed_intent:
        significance += INTENT_CHANGE_SIGNIFICANCE
    changes.significance_score = min(significance, 1.0)
    changes.has_topic_shift = changes.significance_score >= TOPIC_SHIFT_THRESHOLD
    return changes


def calculate_conversation_relevance(memory: Memory, analysis: Optional[ConversationAnalysis]) -> float:
    """How well a memory matches the conversation's topics, entities and intent, in [0.1, 1]."""
    content = (memory.content or "").lower()
    if analysis is None or not content:
        return NEUTRAL_CONVERSATION_RELEVANCE

    factors: List[float] = []
    for topic in analysis.topics:
        hits = content.count(topic.name.lower())
        if hits:
            factors.append(topic.confidence * min(hits * 0.2, 0.8))
    for entity in analysis.entities:
        if entity.name.lower() in content:
            factors.append(entity.confidence * 0.3)
    if analysis.intent:
        words = INTENT_KEYWORDS.get(analysis.intent.name, ())
        hits = sum(1 for word in words if word in content)
        if hits:
            factors.append(analysis.intent.confidence * hits / len(words))
    if analysis.code_context and analysis.code_context.is_code_related:
        hits = sum(1 for word in CODE_INDICATORS if word in content)
        if hits:
            factors.append(0.4 * hits / len(CODE_INDICATORS))

    if not factors:
        return NEUTRAL_CONVERSATION_RELEVANCE
    return max(0.1, min(1.0, sum(factors) / len(factors)))
