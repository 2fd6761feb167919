# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""IMAP side of the email RPC layer.

- ``IMAPClient``: thin aioimaplib wrapper (connect, select, fetch, delete).
- ``InboxPoller``: background task feeding newly arrived inbox messages of
  every account into ``EmailController.receive``.
- ``IMAPMailbox``: ``Mailbox`` implementation used by auto-delete to remove
  request copies from the sent folder and processed replies from the inbox.
"""

from __future__ import annotations

import asyncio
import re
import ssl
from dataclasses import dataclass
from email.parser import BytesHeaderParser
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Set

import aioimaplib

from .codec import REQUEST_ID_HEADER, RESPONSE_SUBJECT, Folder, IncomingMessage, MessageList, strip_message_id
from .logger import get_logger

if TYPE_CHECKING:
    from logging import Logger

    from .accounts import Account, AccountDirectory, IMAPSettings
    from .controller import EmailController

_FETCH_LINE = re.compile(rb"^\d+ FETCH \(")
_UID = re.compile(rb"UID (\d+)")


@dataclass
class IMAPMessage:
    """Represents a fetched IMAP message."""

    uid: int
    raw: bytes
    seen: bool = False


class IMAPClient:
    """Async IMAP client wrapper using aioimaplib."""

    def __init__(self, logger: Logger | None = None):
        self._client: aioimaplib.IMAP4_SSL | aioimaplib.IMAP4 | None = None
        self._logger = logger or get_logger("IMAPClient")
        self._uidvalidity: int | None = None

    async def connect(self, settings: IMAPSettings) -> None:
        """Connect and authenticate to the IMAP server of an account."""
        if settings.use_ssl:
            ssl_context = ssl.create_default_context()
            self._client = aioimaplib.IMAP4_SSL(host=settings.host, port=settings.port, ssl_context=ssl_context)
        else:
            self._client = aioimaplib.IMAP4(host=settings.host, port=settings.port)

        await self._client.wait_hello_from_server()
        response = await self._client.login(settings.user, settings.password)
        if response.result != "OK":
            raise ConnectionError(f"IMAP login failed: {response.lines}")
        self._logger.debug("IMAP connected to %s:%d as %s", settings.host, settings.port, settings.user)

    def _require_client(self):
        if not self._client:
            raise RuntimeError("Not connected")
        return self._client

    async def select_folder(self, folder: str = "INBOX") -> int:
        """Select mailbox folder. Returns UIDVALIDITY."""
        response = await self._require_client().select(folder)
        if response.result != "OK":
            raise RuntimeError(f"Failed to select folder {folder}: {response.lines}")

        for line in response.lines:
            if isinstance(line, (bytes, bytearray)):
                line = bytes(line).decode("utf-8", errors="replace")
            match = re.search(r"UIDVALIDITY\s+(\d+)", line)
            if match:
                self._uidvalidity = int(match.group(1))
                break

        self._logger.debug("Selected folder %s, UIDVALIDITY=%s", folder, self._uidvalidity)
        return self._uidvalidity or 0

    @property
    def uidvalidity(self) -> int | None:
        return self._uidvalidity

    async def search_uids(self, criteria: str) -> List[int]:
        """Return the UIDs matching an IMAP SEARCH expression."""
        response = await self._require_client().uid_search(criteria)
        if response.result != "OK":
            self._logger.warning("IMAP search %r failed: %s", criteria, response.lines)
            return []
        uids: List[int] = []
        for line in response.lines:
            if isinstance(line, (bytes, bytearray)):
                line = bytes(line).decode("utf-8", errors="replace")
            uids.extend(int(token) for token in line.split() if token.isdigit())
        return uids

    async def fetch_since_uid(self, last_uid: int) -> List[IMAPMessage]:
        """Fetch messages with UID greater than last_uid, without setting \\Seen."""
        client = self._require_client()
        uids = [uid for uid in await self.search_uids(f"UID {last_uid + 1}:*") if uid > last_uid]
        messages: List[IMAPMessage] = []
        if not uids:
            return messages
        self._logger.debug("Found %d new messages (UIDs: %s)", len(uids), uids[:10])

        for uid in uids:
            response = await client.uid("fetch", str(uid), "(FLAGS BODY.PEEK[])")
            if response.result != "OK":
                self._logger.warning("IMAP fetch of UID %d failed: %s", uid, response.lines)
                continue
            seen = False
            for item in response.lines:
                if isinstance(item, bytes) and _FETCH_LINE.match(item):
                    seen = b"\\Seen" in item
                    continue
                # aioimaplib returns the literal message content as bytearray
                if isinstance(item, bytearray) and item:
                    messages.append(IMAPMessage(uid=uid, raw=bytes(item), seen=seen))
                    break
        return messages

    async def fetch_message_ids(self, uids: Iterable[int]) -> Dict[int, str | None]:
        """Return the Message-ID header of each UID."""
        uids = list(uids)
        if not uids:
            return {}
        response = await self._require_client().uid(
            "fetch", ",".join(str(uid) for uid in uids), "(BODY.PEEK[HEADER.FIELDS (MESSAGE-ID)])"
        )
        result: Dict[int, str | None] = {}
        if response.result != "OK":
            self._logger.warning("IMAP header fetch failed: %s", response.lines)
            return result
        parser = BytesHeaderParser()
        current: int | None = None
        for item in response.lines:
            if isinstance(item, bytes) and _FETCH_LINE.match(item):
                match = _UID.search(item)
                current = int(match.group(1)) if match else None
            elif isinstance(item, bytearray) and current is not None:
                result[current] = strip_message_id(parser.parsebytes(bytes(item)).get("Message-ID"))
                current = None
        return result

    async def delete_uids(self, uids: Iterable[int]) -> int:
        """Flag the UIDs as deleted and expunge them."""
        uids = list(uids)
        if not uids:
            return 0
        client = self._require_client()
        response = await client.uid("store", ",".join(str(uid) for uid in uids), "+FLAGS", "(\\Deleted)")
        if response.result != "OK":
            raise RuntimeError(f"IMAP store failed: {response.lines}")
        await client.expunge()
        return len(uids)

    async def close(self) -> None:
        """Close IMAP connection."""
        if self._client:
            try:
                await self._client.logout()
            except Exception as exc:
                self._logger.debug("IMAP logout failed: %s", exc)
            self._client = None
            self._logger.debug("IMAP connection closed")


ClientFactory = Callable[[], IMAPClient]


@dataclass
class _PollState:
    last_uid: int | None = None
    uidvalidity: int | None = None


class InboxPoller:
    """Background task that polls every account inbox for replies."""

    def __init__(
        self,
        controller: EmailController,
        accounts: AccountDirectory,
        poll_interval: float = 5.0,
        client_factory: ClientFactory | None = None,
        logger: Logger | None = None,
    ):
        self._controller = controller
        self._accounts = accounts
        self._poll_interval = poll_interval
        self._client_factory = client_factory or IMAPClient
        self._logger = logger or get_logger("InboxPoller")
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._state: Dict[str, _PollState] = {}

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        # baseline pass: replies arriving after start returns are delivered
        await self.poll_once()
        self._task = asyncio.create_task(self._poll_loop(), name="inbox-poller")
        self._logger.info("InboxPoller started")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._logger.info("InboxPoller stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._poll_interval)
            await self.poll_once()

    async def poll_once(self) -> int:
        """Poll every account with IMAP settings; returns the messages handed to receive."""
        delivered = 0
        for account in (await self._accounts.get_accounts()).values():
            if account.imap is None:
                continue
            try:
                delivered += await self._poll_account(account)
            except Exception as exc:
                self._logger.error("Inbox poll of %s failed: %s", account.id, exc)
        return delivered

    async def _poll_account(self, account: Account) -> int:
        state = self._state.setdefault(account.id, _PollState())
        client = self._client_factory()
        try:
            await client.connect(account.imap)
            uidvalidity = await client.select_folder(account.imap.inbox_folder)

            # Reset the baseline if UIDVALIDITY changed (mailbox was recreated)
            if state.uidvalidity is not None and uidvalidity != state.uidvalidity:
                self._logger.warning(
                    "UIDVALIDITY of %s changed from %d to %d, resetting sync state",
                    account.id, state.uidvalidity, uidvalidity,
                )
                state.last_uid = 0
            state.uidvalidity = uidvalidity

            if state.last_uid is None:
                # first poll: only mail arriving from now on is of interest
                state.last_uid = max(await client.search_uids("ALL"), default=0)
                return 0

            fetched = await client.fetch_since_uid(state.last_uid)
            if not fetched:
                return 0
            state.last_uid = max(state.last_uid, *(msg.uid for msg in fetched))
            messages = [IncomingMessage.from_bytes(msg.raw, msg.uid, read=msg.seen) for msg in fetched]
            folder = Folder(account.id, account.imap.inbox_folder, "inbox")
            await self._controller.receive(folder, MessageList(messages))
            return len(messages)
        finally:
            await client.close()


class IMAPMailbox:
    """Deletes request/reply artifacts over IMAP."""

    def __init__(self, client_factory: ClientFactory | None = None, logger: Logger | None = None):
        self._client_factory = client_factory or IMAPClient
        self._logger = logger or get_logger("IMAPMailbox")

    async def delete_artifacts(self, account: Account, role: str, processed_ids: Set[str]) -> int:
        """Delete request copies (``sent``) or processed replies (``inbox``).

        Returns:
            Number of deleted messages.
        """
        if account.imap is None:
            return 0
        client = self._client_factory()
        try:
            await client.connect(account.imap)
            if role == "sent":
                await client.select_folder(account.imap.sent_folder)
                uids = await client.search_uids(f'HEADER {REQUEST_ID_HEADER} ""')
            else:
                await client.select_folder(account.imap.inbox_folder)
                candidates = await client.search_uids(f'SUBJECT "{RESPONSE_SUBJECT}"')
                message_ids = await client.fetch_message_ids(candidates)
                uids = [uid for uid in candidates if message_ids.get(uid) in processed_ids or str(uid) in processed_ids]
            deleted = await client.delete_uids(uids)
            if deleted:
                self._logger.debug("Deleted %d %s artifacts of %s", deleted, role, account.id)
            return deleted
        finally:
            await client.close()


__all__ = ["IMAPClient", "IMAPMailbox", "IMAPMessage", "InboxPoller"]
