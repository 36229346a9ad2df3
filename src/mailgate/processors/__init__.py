"""Mail routing components."""

from .matching import MatchError, MatchEvaluator, RuleEvaluationError
from .rules import RulesEngine, UnsupportedActionError

__all__ = [
    "MatchError",
    "MatchEvaluator",
    "RuleEvaluationError",
    "RulesEngine",
    "UnsupportedActionError",
]
