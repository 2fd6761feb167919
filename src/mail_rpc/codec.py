# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Wire format of filter-control requests and replies.

A request is a plain-text email addressed to ``filterctl@<domain>`` whose
subject is the command line and whose body is the serialized payload. The
correlation id travels in the ``X-Filterctl-Request-Id`` header, enclosed in
angle brackets like a Message-ID. The service answers with a message whose
subject is ``filterctl response``, echoing the same header, and whose body is
a UTF-8 JSON object carrying the id again under ``request`` (or ``Request``).

Example:
    Building a request and decoding the reply::

        msg = build_request_message("Alice", "alice@example.com",
                                    "filterctl@example.com",
                                    "usage", "{}", request_id)
        incoming = IncomingMessage.from_bytes(raw, uid=42)
        response = parse_response_body(incoming.body)
"""

from __future__ import annotations

import email
import json
from dataclasses import dataclass, field
from email import policy
from email.message import EmailMessage
from email.utils import formataddr, getaddresses, make_msgid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .logger import get_logger

REQUEST_ID_HEADER = "X-Filterctl-Request-Id"
RESPONSE_SUBJECT = "filterctl response"
CONTROL_LOCAL_PART = "filterctl"

logger = get_logger("MailRpcCodec")


def domain_part(address: str) -> str:
    """Return the domain of an email address (lower-cased)."""
    _local, _sep, domain = address.rpartition("@")
    return domain.strip().lower()


def control_address(address: str, local_part: str = CONTROL_LOCAL_PART) -> str:
    """Return the filter-control mailbox serving ``address``'s domain."""
    return f"{local_part}@{domain_part(address)}"


def format_request_id(request_id: str) -> str:
    return f"<{request_id}>"


def strip_message_id(value: str | None) -> str | None:
    """Strip the Message-ID style brackets from a header value."""
    if value is None:
        return None
    value = value.strip()
    if value.startswith("<"):
        value = value[1:]
    if value.endswith(">"):
        value = value[:-1]
    return value or None


def encode_body(body: Any) -> str:
    """Serialize a request payload into the plain-text email body.

    Empty payloads become an empty JSON object, strings are sent verbatim and
    anything else is pretty-printed JSON.
    """
    if body is None or body == "":
        return "{}"
    if isinstance(body, str):
        return body
    return json.dumps(body, indent=2)


def parse_response_body(body: str | None) -> Optional[Dict[str, Any]]:
    """Decode a reply body, returning None when it is not a JSON object."""
    if not body:
        return None
    try:
        data = json.loads(body)
    except (TypeError, ValueError) as exc:
        logger.warning("Undecodable response body: %s", exc)
        return None
    if not isinstance(data, dict):
        logger.warning("Response body is not a JSON object: %r", type(data).__name__)
        return None
    return data


def body_request_id(response: Optional[Dict[str, Any]]) -> str | None:
    """Return the correlation id echoed inside a decoded reply."""
    if not isinstance(response, dict):
        return None
    value = response.get("request")
    if value is None:
        value = response.get("Request")
    return value


def build_request_message(
    from_name: str,
    from_email: str,
    to: str,
    command: str,
    body: str,
    request_id: str,
) -> EmailMessage:
    """Compose the outbound request email."""
    msg = EmailMessage()
    msg["From"] = formataddr((from_name, from_email)) if from_name else from_email
    msg["To"] = to
    msg["Subject"] = command
    msg["Message-ID"] = make_msgid(domain=domain_part(from_email) or None)
    msg[REQUEST_ID_HEADER] = format_request_id(request_id)
    msg.set_content(body)
    return msg


@dataclass
class Folder:
    """A mailbox folder as reported by the receive event source."""

    account_id: str
    path: str = "INBOX"
    role: str = "inbox"


@dataclass
class IncomingMessage:
    """A received message as seen by the controller.

    Attributes:
        id: Host/transport level identifier (IMAP UID, host message id).
        header_message_id: The RFC822 Message-ID, used for duplicate detection.
        headers: Header values keyed by lower-cased header name.
    """

    id: Any
    header_message_id: str | None
    subject: str = ""
    author: str = ""
    recipients: List[str] = field(default_factory=list)
    headers: Dict[str, List[str]] = field(default_factory=dict)
    body: str = ""
    read: bool = False

    def header(self, name: str) -> str | None:
        values = self.headers.get(name.lower())
        return values[0] if values else None

    @classmethod
    def from_email(cls, msg: email.message.Message, uid: Any = None, *, read: bool = False) -> "IncomingMessage":
        headers: Dict[str, List[str]] = {}
        for key, value in msg.items():
            headers.setdefault(key.lower(), []).append(str(value))
        recipients = [addr for _name, addr in getaddresses(msg.get_all("To", []) + msg.get_all("Cc", []))]
        return cls(
            id=uid,
            header_message_id=strip_message_id(msg.get("Message-ID")),
            subject=str(msg.get("Subject", "")).strip(),
            author=str(msg.get("From", "")),
            recipients=recipients,
            headers=headers,
            body=_plain_text_body(msg),
            read=read,
        )

    @classmethod
    def from_bytes(cls, raw: bytes, uid: Any = None, *, read: bool = False) -> "IncomingMessage":
        msg = email.message_from_bytes(raw, policy=policy.default)
        return cls.from_email(msg, uid, read=read)


def _plain_text_body(msg: email.message.Message) -> str:
    if msg.is_multipart():
        for part in msg.walk():
            if part.get_content_type() == "text/plain" and not part.is_attachment():
                return _decode_part(part)
        return ""
    if msg.get_content_type() == "text/plain":
        return _decode_part(msg)
    return ""


def _decode_part(part: email.message.Message) -> str:
    payload = part.get_payload(decode=True)
    if payload is None:
        return ""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


@dataclass
class MessageList:
    """One page of newly received messages.

    ``id`` is the continuation token of the next page, or None on the last one.
    """

    messages: List[IncomingMessage] = field(default_factory=list)
    id: str | None = None


ContinueList = Callable[[str], Awaitable[MessageList]]


async def iterate_message_list(page: MessageList, continue_list: ContinueList | None = None):
    """Yield every message of a paginated message list."""
    while page is not None:
        for message in page.messages:
            yield message
        if not page.id or continue_list is None:
            return
        page = await continue_list(page.id)


__all__ = [
    "CONTROL_LOCAL_PART",
    "ContinueList",
    "Folder",
    "IncomingMessage",
    "MessageList",
    "REQUEST_ID_HEADER",
    "RESPONSE_SUBJECT",
    "body_request_id",
    "build_request_message",
    "control_address",
    "domain_part",
    "encode_body",
    "format_request_id",
    "iterate_message_list",
    "parse_response_body",
    "strip_message_id",
]
