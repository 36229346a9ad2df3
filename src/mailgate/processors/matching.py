"""Match predicate evaluation."""

import logging
import re
import time
from collections.abc import Callable, Sequence

from mailgate.models import Email, Match, MatchField, MatchType
from mailgate.utils.message import extract_address

logger = logging.getLogger(__name__)

_TIMESTAMP_RE = re.compile(r"[+-]?[0-9]+")


class RuleEvaluationError(Exception):
    """Raised when rules cannot be evaluated against an email."""


class MatchError(RuleEvaluationError):
    """Raised for a match that is malformed or of an unsupported kind."""


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the Unix epoch."""
    return time.time_ns() // 1_000_000


def compile_wildcard(pattern: str) -> re.Pattern[str]:
    """Compile a wildcard pattern into an anchored regular expression.

    "*" matches any run of characters (including none); every other
    character matches itself.
    """
    expr = ".*".join(re.escape(part) for part in pattern.split("*"))
    try:
        return re.compile(rf"\A{expr}\Z", re.DOTALL)
    except re.error as e:
        raise MatchError(f"invalid wildcard pattern {pattern!r}: {e}") from e


def parse_timestamp(value: str) -> int:
    """Parse a base-10 millisecond timestamp."""
    text = value.strip()
    if not _TIMESTAMP_RE.fullmatch(text):
        raise MatchError(f"invalid time_after value {value!r}: expected milliseconds since epoch")
    return int(text)


class MatchEvaluator:
    """Decides whether a set of matches holds for an email (logical AND)."""

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        """Initialize the evaluator.

        Args:
            clock: Returns the current time in milliseconds since the epoch.
        """
        self.clock = clock

    def evaluate(self, matches: Sequence[Match], email: Email) -> bool:
        """Evaluate matches in order, stopping at the first one that fails.

        An empty sequence holds.

        Raises:
            MatchError: If a match is malformed or unsupported.
        """
        for match in matches:
            if not self.evaluate_match(match, email):
                return False
        return True

    def evaluate_match(self, match: Match, email: Email) -> bool:
        """Evaluate a single match against an email."""
        kind = match.kind.lower()

        if kind == MatchType.ALL:
            return True

        elif kind == MatchType.LITERAL:
            field_value = self.get_field_value(match, email)
            return extract_address(field_value) == match.value

        elif kind == MatchType.REGEX:
            field_value = self.get_field_value(match, email)
            return compile_wildcard(match.value).match(field_value) is not None

        elif kind == MatchType.TIME_AFTER:
            threshold = parse_timestamp(match.value)
            return self.clock() > threshold

        raise MatchError(f"unsupported match kind {match.kind!r}")

    def get_field_value(self, match: Match, email: Email) -> str:
        """Get the raw value of the field a match selects.

        Header values win; the envelope is used when the header is missing.
        """
        field = (match.field or "").lower()

        if field == MatchField.FROM:
            value = email.get_header("From")
            if value is None:
                logger.debug("No From header, using envelope sender")
                return email.envelope.from_addr
            return value

        elif field == MatchField.TO:
            value = email.get_header("To")
            if value is None:
                logger.debug("No To header, using envelope recipients")
                return ", ".join(email.envelope.to_addrs)
            return value

        raise MatchError(f"unsupported field {match.field!r} for {match.kind} match")


def has_match(matches: Sequence[Match], email: Email) -> bool:
    """Evaluate matches against an email with the wall clock."""
    return MatchEvaluator().evaluate(matches, email)
