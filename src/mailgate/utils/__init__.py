"""Utility modules for email processing."""

from mailgate.utils.message import extract_address, parse_email

__all__ = [
    "extract_address",
    "parse_email",
]
