# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Send strategies and mailbox housekeeping interfaces.

Two interchangeable strategies deliver a request email, selected per request
by the ``backgroundSend`` preference:

- ``ComposeTransport`` drives a compose surface provided by the host mail
  client: open a compose, optionally minimize it, fill recipient, subject,
  body and the correlation header, submit, and optionally delete the sent
  copy.
- ``SMTPTransport`` sends directly with aiosmtplib through ``SMTPPool``,
  without any surface.

Both return a ``SentDescriptor``. ``Mailbox`` is the interface used by the
auto-delete housekeeping to remove request/response artifacts from folders.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Set

from .accounts import Account
from .codec import REQUEST_ID_HEADER, build_request_message, format_request_id, strip_message_id
from .errors import TransportError
from .logger import get_logger
from .smtp_pool import SMTPPool


@dataclass
class OutboundDraft:
    """Fields of a request email, independent of the send strategy."""

    account_id: str
    identity_id: str
    from_name: str
    from_email: str
    to: str
    subject: str
    body: str
    request_id: str

    @property
    def sender(self) -> str:
        return f"{self.from_name} <{self.from_email}>" if self.from_name else self.from_email

    @property
    def headers(self) -> Dict[str, str]:
        return {REQUEST_ID_HEADER: format_request_id(self.request_id)}

    def to_email_message(self):
        return build_request_message(
            self.from_name, self.from_email, self.to, self.subject, self.body, self.request_id
        )

    def compose_details(self) -> Dict[str, Any]:
        return {
            "identityId": self.identity_id,
            "to": [self.to],
            "from": self.sender,
            "subject": self.subject,
            "isPlainText": True,
            "plainTextBody": self.body,
            "customHeaders": [{"name": name, "value": value} for name, value in self.headers.items()],
        }


@dataclass
class SentDescriptor:
    """What the transport reports after a successful send."""

    mode: str
    message_ids: List[Any] = field(default_factory=list)
    header_message_id: str | None = None


class MailTransport(Protocol):
    async def send(self, account: Account, draft: OutboundDraft, *, minimize: bool = False,
                   auto_delete: bool = False) -> SentDescriptor: ...


class ComposeHost(Protocol):
    """Compose surface of the host mail client."""

    async def begin_new(self) -> Any: ...

    async def minimize(self, compose: Any) -> None: ...

    async def set_details(self, compose: Any, details: Dict[str, Any]) -> None: ...

    async def send(self, compose: Any) -> Dict[str, Any]: ...

    async def delete_messages(self, message_ids: List[Any]) -> None: ...


class Mailbox(Protocol):
    """Folder access used by auto-delete housekeeping."""

    async def delete_artifacts(self, account: Account, role: str, processed_ids: Set[str]) -> int: ...


class ComposeTransport:
    """Send through the host's compose surface."""

    mode = "compose"

    def __init__(self, host: ComposeHost, logger=None):
        self.host = host
        self.logger = logger or get_logger("ComposeTransport")

    async def send(self, account: Account, draft: OutboundDraft, *, minimize: bool = False,
                   auto_delete: bool = False) -> SentDescriptor:
        compose = await self.host.begin_new()
        if minimize:
            try:
                await self.host.minimize(compose)
            except Exception as exc:
                self.logger.warning("Could not minimize compose window: %s", exc)
        await self.host.set_details(compose, draft.compose_details())
        sent = await self.host.send(compose) or {}
        message_ids = [message.get("id") for message in sent.get("messages", [])]
        if auto_delete and message_ids:
            await self.host.delete_messages(message_ids)
            self.logger.debug("Deleted sent copies %s of request %s", message_ids, draft.request_id)
        return SentDescriptor(
            mode=self.mode,
            message_ids=message_ids,
            header_message_id=strip_message_id(sent.get("headerMessageId")),
        )


class SMTPTransport:
    """Send directly over SMTP, without any compose surface."""

    mode = "background"

    def __init__(self, pool: Optional[SMTPPool] = None, send_timeout: float = 30.0, logger=None):
        self.pool = pool or SMTPPool()
        self.send_timeout = send_timeout
        self.logger = logger or get_logger("SMTPTransport")

    async def send(self, account: Account, draft: OutboundDraft, *, minimize: bool = False,
                   auto_delete: bool = False) -> SentDescriptor:
        if account.smtp is None:
            raise TransportError(f"account {account.id} has no SMTP settings", request_id=draft.request_id)
        message = draft.to_email_message()
        try:
            smtp = await self.pool.get_connection(account.id, account.smtp)
            async with asyncio.timeout(self.send_timeout):
                await smtp.send_message(message, sender=draft.from_email)
        except Exception:
            await self.pool.discard(account.id)
            raise
        header_message_id = strip_message_id(message["Message-ID"])
        self.logger.debug("Request %s sent via SMTP as %s", draft.request_id, header_message_id)
        return SentDescriptor(mode=self.mode, message_ids=[header_message_id], header_message_id=header_message_id)

    async def cleanup(self) -> None:
        """Close pooled connections idle for longer than the pool TTL."""
        await self.pool.cleanup()

    async def close(self) -> None:
        await self.pool.close_all()


__all__ = [
    "ComposeHost",
    "ComposeTransport",
    "MailTransport",
    "Mailbox",
    "OutboundDraft",
    "SMTPTransport",
    "SentDescriptor",
]
