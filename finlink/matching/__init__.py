"""Matching package - receipt to transaction reconciliation."""

from finlink.matching.engine import MatchingEngine, MatchPreconditionError

__all__ = ["MatchingEngine", "MatchPreconditionError"]
