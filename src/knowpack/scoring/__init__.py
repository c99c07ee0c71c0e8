"""Relevance scoring components."""

from .service import JaccardMatcher, RelevanceScorer, ScoringConfig, TokenOverlapMatcher, TopicMatcher

__all__ = ["JaccardMatcher", "RelevanceScorer", "ScoringConfig", "TokenOverlapMatcher", "TopicMatcher"]
