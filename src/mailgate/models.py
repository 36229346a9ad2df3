"""Core data models for mail routing."""

from collections.abc import Mapping
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MatchType(str, Enum):
    """Kinds of predicates a rule can test."""

    ALL = "all"
    LITERAL = "literal"
    REGEX = "regex"  # Glob-style wildcard, not a full regex
    TIME_AFTER = "time_after"


class MatchField(str, Enum):
    """Email fields a predicate can select."""

    FROM = "from"
    TO = "to"


class ActionType(str, Enum):
    """Kinds of actions a matching rule can take."""

    DROP = "drop"
    FORWARD = "forward"
    WEBHOOK = "webhook"


class MailStatus(IntEnum):
    """Lifecycle status reported to the mail database."""

    RECEIVED = 0
    ACCEPTED = 1
    FORWARDED = 2
    DROPPED = 3
    FAILED = 4


class EmailEnvelope(BaseModel):
    """SMTP envelope: who the message is from and who it is delivered to."""

    model_config = ConfigDict(frozen=True)

    from_addr: str = ""
    to_addrs: tuple[str, ...] = ()


class Email(BaseModel):
    """Represents an incoming email message.

    Instances are immutable; the rules engine only ever reads them.
    """

    model_config = ConfigDict(frozen=True)

    envelope: EmailEnvelope = Field(default_factory=EmailEnvelope)
    headers: tuple[tuple[str, str], ...] = ()  # (name, value) pairs as received
    raw: bytes = b""

    @field_validator("headers", mode="before")
    @classmethod
    def freeze_headers(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return tuple(value.items())
        return value

    def get_header(self, name: str) -> str | None:
        """Look up a header by name, ignoring case."""
        wanted = name.lower()
        for key, value in self.headers:
            if key.lower() == wanted:
                return value
        return None


class Match(BaseModel):
    """A predicate that must hold for a rule to fire."""

    kind: str  # e.g., "all", "literal", "regex", "time_after"
    field: str | None = None  # "from" or "to"; unused by "all" and "time_after"
    value: str = ""


class Action(BaseModel):
    """An action to take when a rule matches."""

    kind: str  # e.g., "drop", "forward", "webhook"
    targets: list[str] = Field(default_factory=list)


class Rule(BaseModel):
    """Routing rule definition."""

    id: str = ""

    # Matches (all must hold)
    matches: list[Match] = Field(default_factory=list)

    # Actions to take, in order, when the matches hold
    actions: list[Action] = Field(default_factory=list)


class ActionDrop(BaseModel):
    """Emitted when a message should be dropped."""

    model_config = ConfigDict(frozen=True)

    dropped_by_rule: bool


class ActionSend(BaseModel):
    """Emitted once per forwarding target."""

    model_config = ConfigDict(frozen=True)

    to: str
    email: Email


class DecisionEvent(BaseModel):
    """One event observed by a consumer, tagged with its channel."""

    channel: str  # "drop", "send" or "accept"
    to: str | None = None
    dropped_by_rule: bool | None = None


class Decision(BaseModel):
    """Outcome of routing one email through the rules."""

    message_id: str | None = None
    rule_id: str | None = None
    events: list[DecisionEvent] = Field(default_factory=list)
    forwarded_to: list[str] = Field(default_factory=list)
    dropped: bool = False
    dropped_by_rule: bool = False
    accepted: bool = False
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def status(self) -> MailStatus:
        """Status to report for this decision."""
        if self.error is not None:
            return MailStatus.FAILED
        if self.forwarded_to:
            return MailStatus.FORWARDED
        if self.accepted:
            return MailStatus.ACCEPTED
        return MailStatus.DROPPED

    def summary(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "forwarded_to": self.forwarded_to,
            "dropped": self.dropped,
            "accepted": self.accepted,
            "error": self.error,
        }
