"""Consumer side of the rules engine: drains action events into a handler."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

from ..channels import ActionChannels, ChannelTimeoutError
from ..maildb import MailDBClient
from ..models import ActionDrop, ActionSend, Decision, DecisionEvent, Email, Rule
from ..processors.matching import RuleEvaluationError
from ..processors.rules import RulesEngine

logger = logging.getLogger(__name__)


class ActionHandler(ABC):
    """Performs the side effects the rules engine decides on."""

    @abstractmethod
    async def on_drop(self, event: ActionDrop) -> None:
        """Drop the message."""
        ...

    @abstractmethod
    async def on_send(self, event: ActionSend) -> None:
        """Deliver the message to event.to."""
        ...

    @abstractmethod
    async def on_accept(self) -> None:
        """Provisionally accept the message pending webhook handling."""
        ...


class DryRunHandler(ActionHandler):
    """Handler that only logs what would happen."""

    async def on_drop(self, event: ActionDrop) -> None:
        reason = "by rule" if event.dropped_by_rule else "by default"
        logger.info(f"[dry-run] drop ({reason})")

    async def on_send(self, event: ActionSend) -> None:
        logger.info(f"[dry-run] forward to {event.to}")

    async def on_accept(self) -> None:
        logger.info("[dry-run] accept for webhook")


class MailDispatcher:
    """Runs the rules engine for each email and hands its actions to a handler."""

    def __init__(
        self,
        rules: Sequence[Rule],
        handler: ActionHandler,
        *,
        engine: RulesEngine | None = None,
        maildb: MailDBClient | None = None,
        domain: str | None = None,
        send_timeout: float | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            rules: Ordered rules, shared read-only across emails.
            handler: Performs drop/send/accept side effects.
            engine: Rules engine to use.
            maildb: Optional mail database client for status reporting.
            domain: Domain messages are recorded under; required for reporting.
            send_timeout: Seconds an event may wait for this consumer.
        """
        self.rules = rules
        self.handler = handler
        self.engine = engine or RulesEngine()
        self.maildb = maildb
        self.domain = domain
        self.send_timeout = send_timeout

    @property
    def reporting(self) -> bool:
        return self.maildb is not None and self.domain is not None

    async def process(self, email: Email, message_id: str | None = None) -> Decision:
        """Route one email and perform its actions in order.

        Rule errors are logged and recorded on the decision; the message is
        then left unprocessed for the caller's fallback policy.

        Raises:
            MailDBError: If status reporting is enabled and fails.
        """
        decision = Decision(message_id=message_id)
        report = self.reporting and message_id is not None

        if report:
            await self.maildb.new(self.domain, message_id)

        channels = ActionChannels(send_timeout=self.send_timeout)
        task = asyncio.create_task(self.engine.apply(self.rules, email, channels))
        task.add_done_callback(lambda _: channels.close())

        try:
            async for channel, item in channels.events():
                await self._handle(channel, item, decision)
        except BaseException:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise

        try:
            decision.rule_id = await task
        except (RuleEvaluationError, ChannelTimeoutError) as e:
            logger.error(f"Error applying rules to {message_id or 'message'}: {e}")
            decision.error = str(e)
        else:
            logger.info(
                f"Routed {message_id or 'message'}: rule={decision.rule_id!r} "
                f"forwarded={decision.forwarded_to} dropped={decision.dropped} "
                f"accepted={decision.accepted}"
            )

        if report:
            if decision.rule_id is not None:
                await self.maildb.set_field(self.domain, message_id, "rule", decision.rule_id)
            await self.maildb.update_status(self.domain, message_id, decision.status)

        return decision

    async def _handle(self, channel: str, item: object, decision: Decision) -> None:
        if isinstance(item, ActionDrop):
            decision.events.append(
                DecisionEvent(channel=channel, dropped_by_rule=item.dropped_by_rule)
            )
            decision.dropped = True
            decision.dropped_by_rule = decision.dropped_by_rule or item.dropped_by_rule
            await self.handler.on_drop(item)

        elif isinstance(item, ActionSend):
            decision.events.append(DecisionEvent(channel=channel, to=item.to))
            decision.forwarded_to.append(item.to)
            await self.handler.on_send(item)

        else:
            decision.events.append(DecisionEvent(channel=channel))
            decision.accepted = True
            await self.handler.on_accept()
