"""Natural trigger detection: pattern detector and conversation monitor."""

from .conversation_monitor import MessageAnalysis, TieredConversationMonitor
from .pattern_detector import AdaptivePatternDetector, PatternMatch, PatternResults

__all__ = [
    "AdaptivePatternDetector",
    "MessageAnalysis",
    "PatternMatch",
    "PatternResults",
    "TieredConversationMonitor",
]
