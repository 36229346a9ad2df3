"""Header and envelope extraction from raw RFC 5322 messages."""

import email
import email.policy
from email.message import EmailMessage
from email.utils import getaddresses, parseaddr

from mailgate.models import Email, EmailEnvelope


def extract_address(value: str) -> str:
    """Strip a display name from an address header value.

    "Tom <mail@jack.uk>" -> "mail@jack.uk". Values that do not parse as an
    address are returned stripped but otherwise untouched.
    """
    _, addr = parseaddr(value)
    return addr or value.strip()


def parse_email(
    raw: bytes | str,
    *,
    mail_from: str | None = None,
    rcpt_to: list[str] | None = None,
) -> Email:
    """Parse a raw message into an Email.

    Args:
        raw: The message as received, headers and body.
        mail_from: Envelope sender. Defaults to the From header.
        rcpt_to: Envelope recipients. Defaults to the To header.

    Returns:
        Email with the first value of every header, keyed by name as received.
    """
    if isinstance(raw, str):
        raw = raw.encode("utf-8")

    # compat32 keeps header values exactly as received (no refolding)
    msg: EmailMessage = email.message_from_bytes(
        raw.lstrip(), policy=email.policy.compat32
    )  # type: ignore

    headers: dict[str, str] = {}
    for name, value in msg.items():
        if not any(existing.lower() == name.lower() for existing in headers):
            headers[name] = str(value).strip()

    if mail_from is None:
        mail_from = extract_address(msg.get("From", ""))
    if rcpt_to is None:
        rcpt_to = [addr for _, addr in getaddresses(msg.get_all("To", [])) if addr]

    return Email(
        envelope=EmailEnvelope(from_addr=mail_from, to_addrs=tuple(rcpt_to)),
        headers=headers,
        raw=raw,
    )
