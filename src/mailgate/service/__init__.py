"""Mail dispatch service: runs the rules engine and performs its actions."""

from .dispatcher import ActionHandler, DryRunHandler, MailDispatcher

__all__ = [
    "ActionHandler",
    "DryRunHandler",
    "MailDispatcher",
]
