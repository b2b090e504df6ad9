"""Relevance scoring for retrieved memories.

Each memory gets a weighted sum of factors (time decay, tag relevance, content
relevance, content quality, recency, optional backend quality) plus a
memory-type bonus, then penalties for low quality and missing project
affinity. Scores are clipped to [0, 1]. Scoring returns new Memory objects;
inputs are never modified.
"""

import logging
import math
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .client.models import Memory
from .config_loader import DEFAULT_SCORING_WEIGHTS


logger = logging.getLogger(__name__)

GENERIC_PATTERNS = [
    re.compile(r"## 🎯 Topics Discussed\s*-\s*implementation\s*-\s*\.\.\.?$", re.MULTILINE),
    re.compile(r"Topics Discussed.*implementation.*\.\.\..*$", re.DOTALL),
    re.compile(r"Session Summary.*implementation.*\.\.\..*$", re.DOTALL),
]

MEANINGFUL_INDICATORS = (
    "decided", "implemented", "changed", "fixed", "created", "updated",
    "because", "reason", "approach", "solution", "result", "impact",
    "learned", "discovered", "found", "issue", "problem", "challenge",
)

TECHNICAL_KEYWORDS = (
    "architecture", "decision", "implementation", "bug", "fix",
    "feature", "config", "setup", "deployment", "performance",
)

TYPE_BONUS = {
    "decision": 0.3,
    "architecture": 0.3,
    "reference": 0.2,
    "session": 0.15,
    "insight": 0.2,
    "bug-fix": 0.15,
    "feature": 0.1,
    "note": 0.05,
    "todo": 0.05,
    "temporary": -0.1,
}

STALE_MEDIAN_DAYS = 30
RECENT_DAYS = 14


def _project_terms(project: Any) -> Dict[str, Any]:
    if isinstance(project, dict):
        return {
            "name": project.get("name"),
            "language": project.get("language"),
            "frameworks": project.get("frameworks") or [],
            "tools": project.get("tools") or [],
        }
    return {
        "name": getattr(project, "name", None),
        "language": getattr(project, "language", None),
        "frameworks": getattr(project, "frameworks", None) or [],
        "tools": getattr(project, "tools", None) or [],
    }


def calculate_time_decay(age_days: Optional[float], decay_rate: float = 0.1) -> float:
    """exp(-rate * days), clipped to [0.01, 1]; 0.5 when the age is unknown."""
    if age_days is None:
        return 0.5
    return max(0.01, min(1.0, math.exp(-decay_rate * age_days)))


def calculate_recency_bonus(age_days: Optional[float]) -> float:
    """Step factor: today 1.0, this week 0.7, this month 0.3, else 0."""
    if age_days is None or age_days < 0:
        return 0.0
    if age_days <= 1:
        return 1.0
    if age_days <= 7:
        return 0.7
    if age_days <= 30:
        return 0.3
    return 0.0


def calculate_tag_relevance(tags: List[str], project: Any) -> float:
    if not tags:
        return 0.3

    terms = _project_terms(project)
    context_tags = [t.lower() for t in [terms["name"], terms["language"], *terms["frameworks"], *terms["tools"]] if t]
    if not context_tags:
        return 0.5

    memory_tags = [t.lower() for t in tags]
    overlap = sum(1 for tag in context_tags if tag in memory_tags) / len(context_tags)
    score = overlap
    if terms["name"] and terms["name"].lower() in memory_tags:
        score += 0.3
    if terms["language"] and terms["language"].lower() in memory_tags:
        score += 0.2
    score += 0.1 * sum(1 for fw in terms["frameworks"] if any(fw.lower() in tag for tag in memory_tags))
    return max(0.1, min(1.0, score))


def calculate_content_relevance(content: str, project: Any) -> float:
    if not content:
        return 0.3

    terms = _project_terms(project)
    lowered = content.lower()
    keywords = [k.lower() for k in [terms["name"], terms["language"], *terms["frameworks"], *terms["tools"]] if k]
    keywords.extend(TECHNICAL_KEYWORDS)

    matched = 0
    keyword_score = 0.0
    for keyword in keywords:
        occurrences = lowered.count(keyword)
        if occurrences:
            matched += 1
            keyword_score += math.log(1 + occurrences) * 0.1

    return max(0.1, min(1.0, matched / len(keywords) + keyword_score))


def calculate_content_quality(content: str) -> float:
    """Heuristic information density, heavily penalizing generic summaries."""
    if not content:
        return 0.1
    text = content.strip()

    if any(p.search(text) for p in GENERIC_PATTERNS):
        return 0.05
    if len(text) < 50:
        return 0.2

    lowered = text.lower()
    meaningful = sum(1 for indicator in MEANINGFUL_INDICATORS if indicator in lowered)
    words = [w for w in text.split() if len(w) > 2]
    diversity = len({w.lower() for w in words}) / max(len(words), 1)

    score = min(0.4, meaningful * 0.08) + min(0.3, diversity * 0.5) + min(0.3, len(text) / 1000)
    return max(0.05, min(1.0, score))


def calculate_type_bonus(memory_type: Optional[str]) -> float:
    return TYPE_BONUS.get((memory_type or "").lower(), 0.0)


def calculate_backend_quality(memory: Memory) -> float:
    quality = memory.metadata.get("quality_score")
    if isinstance(quality, (int, float)) and not isinstance(quality, bool):
        return float(quality)
    return 0.5


def has_project_affinity(memory: Memory, project: Any) -> bool:
    name = (_project_terms(project)["name"] or "").lower()
    if not name:
        return False
    return any(name in tag.lower() for tag in memory.tags) or name in memory.content.lower()


def calculate_relevance_score(memory: Memory, project: Any, weights: Optional[Dict[str, float]] = None,
                              time_decay_rate: float = 0.1,
                              now: Optional[datetime] = None) -> Dict[str, Any]:
    """Score one memory.

    Returns:
        Dict with `score` in [0, 1] and a per-factor `breakdown`.
    """
    w = dict(DEFAULT_SCORING_WEIGHTS)
    w.update(weights or {})

    age = memory.age_days(now)
    breakdown = {
        "timeDecay": calculate_time_decay(age, time_decay_rate),
        "tagRelevance": calculate_tag_relevance(memory.tags, project),
        "contentRelevance": calculate_content_relevance(memory.content, project),
        "contentQuality": calculate_content_quality(memory.content),
        "recencyBonus": calculate_recency_bonus(age),
        "backendQuality": calculate_backend_quality(memory),
        "typeBonus": calculate_type_bonus(memory.memory_type),
    }

    score = sum(breakdown[factor] * w.get(factor, 0.0) for factor in
                ("timeDecay", "tagRelevance", "contentRelevance", "contentQuality",
                 "recencyBonus", "backendQuality"))
    score += breakdown["typeBonus"]

    if breakdown["contentQuality"] < 0.2:
        score *= 0.5

    if not has_project_affinity(memory, project):
        if breakdown["tagRelevance"] < 0.3:
            score = 0.0
        else:
            score *= 0.5

    return {"score": max(0.0, min(1.0, score)), "breakdown": breakdown}


def score_memory_relevance(memories: List[Memory], project: Any, weights: Optional[Dict[str, float]] = None,
                           time_decay_rate: float = 0.1, now: Optional[datetime] = None) -> List[Memory]:
    """Score memories and return new copies sorted by relevance, highest first."""
    now = now or datetime.now(timezone.utc)
    scored = []
    for memory in memories:
        result = calculate_relevance_score(memory, project, weights, time_decay_rate, now)
        scored.append(memory.with_score(result["score"], result["breakdown"]))
    scored.sort(key=lambda m: m.relevance_score, reverse=True)

    for index, memory in enumerate(scored[:3], start=1):
        logger.debug("[Memory Scorer] %d. %.3f - %.60s", index, memory.relevance_score, memory.content)
    return scored


def filter_by_relevance(memories: List[Memory], min_score: float = 0.3) -> List[Memory]:
    return [m for m in memories if (m.relevance_score or 0.0) >= min_score]


@dataclass
class AgeAnalysis:
    """Age distribution of a retrieved memory set (ages in days)."""

    avg_age: float = 0.0
    median_age: float = 0.0
    p75_age: float = 0.0
    p90_age: float = 0.0
    recent_count: int = 0
    stale_count: int = 0
    total_count: int = 0
    is_stale: bool = False
    recommended_adjustments: Dict[str, float] = field(default_factory=dict)
    reason: str = ""


def analyze_memory_age_distribution(memories: List[Memory], now: Optional[datetime] = None) -> AgeAnalysis:
    if not memories:
        return AgeAnalysis()

    now = now or datetime.now(timezone.utc)
    ages = sorted(m.age_days(now) if m.age_days(now) is not None else 365.0 for m in memories)
    count = len(ages)
    avg = sum(ages) / count
    median = ages[count // 2]
    recent = sum(1 for a in ages if a <= RECENT_DAYS)

    analysis = AgeAnalysis(
        avg_age=avg,
        median_age=median,
        p75_age=ages[int(count * 0.75)],
        p90_age=ages[int(count * 0.9)],
        recent_count=recent,
        stale_count=sum(1 for a in ages if a > STALE_MEDIAN_DAYS),
        total_count=count,
        is_stale=median > STALE_MEDIAN_DAYS or recent / count < 0.2,
    )
    if analysis.is_stale:
        analysis.recommended_adjustments = {"timeDecay": 0.5, "tagRelevance": 0.2, "recencyBonus": 0.25}
        analysis.reason = (f"Stale memory set detected (median: {round(median)}d old, "
                           f"{round(recent / count * 100)}% recent)")
    elif avg < RECENT_DAYS:
        analysis.recommended_adjustments = {"timeDecay": 0.3, "tagRelevance": 0.3}
        analysis.reason = f"Recent memory set (avg: {round(avg)}d old)"
    return analysis


def calculate_adaptive_git_weight(git_context: Any, age_analysis: AgeAnalysis,
                                  configured_weight: float = 1.2,
                                  now: Optional[datetime] = None) -> Dict[str, Any]:
    """Reduce the git boost when commit activity and memory ages disagree."""
    commits = getattr(git_context, "commits", None) if git_context is not None else None
    if not commits:
        return {"weight": configured_weight, "reason": "No recent git activity", "adjusted": False}

    now = now or datetime.now(timezone.utc)
    days_since = commits[0].days_since(now)

    if days_since <= 7 and age_analysis.median_age > 30:
        weight = max(1.0, configured_weight * 0.7)
        return {"weight": weight, "adjusted": True,
                "reason": f"Recent commits ({round(days_since)}d ago) but stale memories "
                          f"(median: {round(age_analysis.median_age)}d) - reducing git boost"}
    if days_since <= 14 and age_analysis.avg_age <= 14:
        return {"weight": configured_weight, "adjusted": False,
                "reason": "Recent commits and memories aligned"}
    if days_since > 14 and age_analysis.recent_count > 0:
        weight = max(1.0, configured_weight * 0.85)
        return {"weight": weight, "adjusted": True,
                "reason": f"Older commits ({round(days_since)}d ago) with some recent memories"}
    return {"weight": configured_weight, "reason": "Using configured weight", "adjusted": False}


def apply_git_boost(memories: List[Memory], weight: Optional[float] = None) -> List[Memory]:
    """Multiply the score of git-context memories by their weight, clipped to 1.

    Args:
        memories: Scored memories.
        weight: Adaptive weight overriding each memory's own git weight.
    """
    boosted = []
    for memory in memories:
        own = memory.git_context_weight
        factor = weight if (weight is not None and own) else own
        if memory.relevance_score is not None and factor and factor > 1:
            boosted.append(replace(
                memory,
                original_score=memory.relevance_score,
                relevance_score=min(1.0, memory.relevance_score * factor),
                was_boosted=True,
            ))
        else:
            boosted.append(memory)
    boosted.sort(key=lambda m: m.relevance_score or 0.0, reverse=True)
    return boosted
