"""Shared fixtures."""

from collections.abc import Callable

import pytest

from mailgate.models import Email
from mailgate.utils.message import parse_email


def make_message(from_header: str = "sven@b.ee", to_header: str = "sven@gmail.com") -> str:
    return (
        f"From: {from_header}\n"
        f"To: {to_header}\n"
        "Subject: test\n"
        "Date: Sun, 8 Jan 2017 20:37:44 +0200\n"
        "\n"
        "Hello world!\n"
    )


@pytest.fixture
def make_email() -> Callable[..., Email]:
    """Build an Email whose envelope mirrors its From/To headers."""

    def _make(from_header: str = "sven@b.ee", to_header: str = "sven@gmail.com") -> Email:
        return parse_email(
            make_message(from_header, to_header),
            mail_from=from_header,
            rcpt_to=[to_header],
        )

    return _make


@pytest.fixture
def email(make_email: Callable[..., Email]) -> Email:
    return make_email()
