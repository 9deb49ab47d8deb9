"""Inference collaborators for the three pipeline stages."""

from src.inference.latency_tracker import LatencyTracker
from src.inference.rules import (
    RuleBasedEventExtractor,
    RuleBasedRecommender,
    RuleBasedRiskAnalyzer,
    build_rule_collaborators,
)

__all__ = [
    "LatencyTracker",
    "RuleBasedEventExtractor",
    "RuleBasedRecommender",
    "RuleBasedRiskAnalyzer",
    "build_rule_collaborators",
]
