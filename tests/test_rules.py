"""Tests for the rules engine."""

import asyncio
import time

import pytest

from mailgate.channels import ActionChannels
from mailgate.models import ActionDrop, ActionSend, Email, Rule
from mailgate.processors.matching import MatchError, MatchEvaluator
from mailgate.processors.rules import (
    RulesEngine,
    UnsupportedActionError,
    create_rule,
    describe_action,
)


def start(rules: list[Rule], email: Email, engine: RulesEngine | None = None):
    """Run the engine as a task and return (channels, task)."""
    channels = ActionChannels()
    engine = engine or RulesEngine()
    task = asyncio.create_task(engine.apply(rules, email, channels))
    return channels, task


async def collect(rules: list[Rule], email: Email) -> tuple[list[tuple[str, object]], str | None]:
    channels, task = start(rules, email)
    task.add_done_callback(lambda _: channels.close())
    events = [event async for event in channels.events()]
    return events, await task


class TestApplyRules:
    @pytest.mark.asyncio
    async def test_drop_by_default(self, email: Email) -> None:
        channels, task = start([], email)

        assert await channels.drop.receive() == ActionDrop(dropped_by_rule=False)
        assert await task is None

    @pytest.mark.asyncio
    async def test_drop_match_all(self, email: Email) -> None:
        rules = [create_rule("", [("all", None, "")], [("drop", [])])]
        channels, task = start(rules, email)

        assert await channels.drop.receive() == ActionDrop(dropped_by_rule=True)
        assert await task == ""

    @pytest.mark.asyncio
    async def test_forward_match_all(self, email: Email) -> None:
        rules = [create_rule("fwd", [("all", None, "")], [("forward", ["me"])])]
        channels, task = start(rules, email)

        assert await channels.send.receive() == ActionSend(to="me", email=email)
        assert await task == "fwd"

    @pytest.mark.asyncio
    async def test_forward_multiple_targets_in_order(self, email: Email) -> None:
        rules = [create_rule("", [("all", None, "")], [("forward", ["a", "b"])])]
        channels, task = start(rules, email)

        assert await channels.send.receive() == ActionSend(to="a", email=email)
        assert await channels.send.receive() == ActionSend(to="b", email=email)
        await task

    @pytest.mark.asyncio
    async def test_respect_rule_order(self, email: Email) -> None:
        rules = [
            create_rule("drop", [("all", None, "")], [("drop", [])]),
            create_rule("forward", [("all", None, "")], [("forward", ["me"])]),
        ]
        events, rule_id = await collect(rules, email)

        assert events == [("drop", ActionDrop(dropped_by_rule=True))]
        assert rule_id == "drop"

    @pytest.mark.asyncio
    async def test_first_rule_match_stops(self, email: Email) -> None:
        rules = [
            create_rule("1", [("literal", "from", "a")], [("drop", [])]),
            create_rule("2", [("all", None, "")], [("forward", ["me"])]),
            # Would raise if it were ever evaluated
            create_rule("3", [("time_after", None, "not-a-number")], [("drop", [])]),
        ]
        events, rule_id = await collect(rules, email)

        assert events == [("send", ActionSend(to="me", email=email))]
        assert rule_id == "2"

    @pytest.mark.asyncio
    async def test_call_multiple_actions(self, email: Email) -> None:
        rules = [
            create_rule(
                "",
                [("all", None, "")],
                [("forward", ["a"]), ("forward", ["b"]), ("drop", [])],
            )
        ]
        channels, task = start(rules, email)

        assert await channels.send.receive() == ActionSend(to="a", email=email)
        assert await channels.send.receive() == ActionSend(to="b", email=email)
        assert await channels.drop.receive() == ActionDrop(dropped_by_rule=True)
        await task

    @pytest.mark.asyncio
    async def test_webhook_action_accepts(self, email: Email) -> None:
        rules = [create_rule("", [("all", None, "")], [("webhook", ["https://a"])])]
        channels, task = start(rules, email)

        assert await channels.accept.receive() is True
        await task

    @pytest.mark.asyncio
    async def test_action_after_time_passed(self, email: Email) -> None:
        now_ms = time.time_ns() // 1_000_000
        rules = [
            create_rule("", [("time_after", None, now_ms - 3_600_000)], [("forward", ["me"])])
        ]
        channels, task = start(rules, email)

        assert await channels.send.receive() == ActionSend(to="me", email=email)
        await task

    @pytest.mark.asyncio
    async def test_no_action_before_time(self, email: Email) -> None:
        now_ms = time.time_ns() // 1_000_000
        rules = [
            create_rule("", [("time_after", None, now_ms + 3_600_000)], [("forward", ["me"])])
        ]
        channels, task = start(rules, email)

        assert await channels.drop.receive() == ActionDrop(dropped_by_rule=False)
        assert await task is None

    @pytest.mark.asyncio
    async def test_injected_clock(self, email: Email) -> None:
        engine = RulesEngine(MatchEvaluator(clock=lambda: 1_000))
        rules = [
            create_rule("late", [("time_after", None, "1000")], [("drop", [])]),
            create_rule("early", [("time_after", None, "999")], [("drop", [])]),
        ]
        channels, task = start(rules, email, engine)

        assert await channels.drop.receive() == ActionDrop(dropped_by_rule=True)
        assert await task == "early"

    @pytest.mark.asyncio
    async def test_match_error_aborts_without_events(self, email: Email) -> None:
        rules = [
            create_rule("1", [("regex", "to", "*@elsewhere.com")], [("drop", [])]),
            create_rule("2", [("time_after", None, "soon")], [("forward", ["me"])]),
            create_rule("3", [("all", None, "")], [("forward", ["me"])]),
        ]
        events = []
        with pytest.raises(MatchError):
            events, _ = await collect(rules, email)
        assert events == []

    @pytest.mark.asyncio
    async def test_unknown_action_aborts_remaining(self, email: Email) -> None:
        rules = [
            create_rule(
                "",
                [("all", None, "")],
                [("forward", ["a"]), ("bounce", []), ("forward", ["b"])],
            )
        ]
        channels, task = start(rules, email)
        task.add_done_callback(lambda _: channels.close())

        events = [event async for event in channels.events()]

        assert events == [("send", ActionSend(to="a", email=email))]
        with pytest.raises(UnsupportedActionError):
            await task

    @pytest.mark.asyncio
    async def test_same_result_on_repeat(self, email: Email) -> None:
        rules = [
            create_rule("1", [("literal", "from", "nobody@x.org")], [("drop", [])]),
            create_rule(
                "2",
                [("regex", "from", "*@b.ee")],
                [("forward", ["a", "b"]), ("webhook", ["https://hook"]), ("drop", [])],
            ),
        ]

        first = await collect(rules, email)
        second = await collect(rules, email)

        assert first == second
        assert [name for name, _ in first[0]] == ["send", "send", "accept", "drop"]

    @pytest.mark.asyncio
    async def test_rules_not_mutated(self, email: Email) -> None:
        rules = [create_rule("1", [("all", None, "")], [("forward", ["a"])])]
        before = [rule.model_copy(deep=True) for rule in rules]

        await collect(rules, email)

        assert rules == before


class TestFindRule:
    def test_first_matching_rule(self, make_email) -> None:
        engine = RulesEngine()
        rules = [
            create_rule("a", [("literal", "from", "x@y.z")], []),
            create_rule("b", [("regex", "from", "*@b.ee")], []),
            create_rule("c", [], []),
        ]

        assert engine.find_rule(rules, make_email()).id == "b"
        assert engine.find_rule(rules, make_email(from_header="q@q.q")).id == "c"

    def test_no_rules(self, email: Email) -> None:
        assert RulesEngine().find_rule([], email) is None


def test_describe_action() -> None:
    rule = create_rule("", [], [("forward", ["a", "b"]), ("drop", []), ("webhook", ["https://h"])])

    assert [describe_action(a) for a in rule.actions] == [
        "forward to a, b",
        "drop",
        "webhook https://h",
    ]
