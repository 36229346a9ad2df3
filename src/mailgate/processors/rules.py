"""Rule-based mail routing engine."""

import logging
from collections.abc import Sequence
from typing import Any

from mailgate.channels import ActionChannels
from mailgate.models import (
    Action,
    ActionDrop,
    ActionSend,
    ActionType,
    Email,
    Match,
    MatchType,
    Rule,
)

from .matching import MatchEvaluator, RuleEvaluationError

logger = logging.getLogger(__name__)


class UnsupportedActionError(RuleEvaluationError):
    """Raised for an action kind the engine does not know."""


class RulesEngine:
    """Selects the first matching rule and streams its actions to a consumer."""

    def __init__(self, evaluator: MatchEvaluator | None = None) -> None:
        self.evaluator = evaluator or MatchEvaluator()

    def evaluate_rule(self, rule: Rule, email: Email) -> bool:
        """Evaluate if all matches of a rule hold for an email."""
        return self.evaluator.evaluate(rule.matches, email)

    def find_rule(self, rules: Sequence[Rule], email: Email) -> Rule | None:
        """Get the first rule that matches an email, if any."""
        for rule in rules:
            if self.evaluate_rule(rule, email):
                return rule
        return None

    async def apply(
        self, rules: Sequence[Rule], email: Email, channels: ActionChannels
    ) -> str | None:
        """Route an email through the rules, emitting actions on the channels.

        Only the first matching rule runs. When no rule matches, a single
        default drop is emitted. Every send blocks until the consumer has
        received the event.

        Args:
            rules: Rules in evaluation order. Not modified.
            email: The email to route.
            channels: Fresh channel bundle drained by a concurrent consumer.

        Returns:
            The id of the rule that fired, or None if none matched.

        Raises:
            RuleEvaluationError: If a match or action is malformed or unsupported.
        """
        rule = self.find_rule(rules, email)

        if rule is None:
            logger.debug("No rule matched, dropping by default")
            await channels.drop.send(ActionDrop(dropped_by_rule=False))
            return None

        logger.debug(f"Rule '{rule.id}' matched, running {len(rule.actions)} actions")
        for action in rule.actions:
            await self.run_action(action, email, channels)

        return rule.id

    async def run_action(self, action: Action, email: Email, channels: ActionChannels) -> None:
        """Emit the events for one action."""
        kind = action.kind.lower()

        if kind == ActionType.DROP:
            await channels.drop.send(ActionDrop(dropped_by_rule=True))

        elif kind == ActionType.FORWARD:
            for target in action.targets:
                await channels.send.send(ActionSend(to=target, email=email))

        elif kind == ActionType.WEBHOOK:
            # The consumer calls the webhook; its response is not interpreted here
            await channels.accept.send(True)

        else:
            raise UnsupportedActionError(f"unsupported action kind {action.kind!r}")


def describe_action(action: Action) -> str:
    """Generate a human-readable description of an action."""
    if action.kind == ActionType.DROP:
        return "drop"
    elif action.kind == ActionType.FORWARD:
        return f"forward to {', '.join(action.targets) or '?'}"
    elif action.kind == ActionType.WEBHOOK:
        return f"webhook {', '.join(action.targets) or '?'}"
    else:
        return f"{action.kind}: {action.targets}"


def describe_match(match: Match) -> str:
    """Generate a human-readable description of a match."""
    if match.kind == MatchType.ALL:
        return "always"
    elif match.kind == MatchType.TIME_AFTER:
        return f"after {match.value} ms"
    return f"{match.field} {match.kind} {match.value!r}"


def create_rule(
    rule_id: str,
    matches: list[tuple[str, str | None, Any]],
    actions: list[tuple[str, list[str]]],
) -> Rule:
    """Helper to create a rule from simple tuples.

    Args:
        rule_id: Identifier reported when the rule fires
        matches: List of (kind, field, value) tuples
        actions: List of (action_kind, targets) tuples

    Example:
        rule = create_rule(
            "newsletters",
            [("regex", "from", "*@news.example.com")],
            [("forward", ["archive@example.com"]), ("drop", [])],
        )
    """
    return Rule(
        id=rule_id,
        matches=[
            Match(kind=kind, field=field, value=str(value))
            for kind, field, value in matches
        ],
        actions=[Action(kind=kind, targets=targets) for kind, targets in actions],
    )
