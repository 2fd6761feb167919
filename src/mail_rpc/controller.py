# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Email transport controller: correlates email replies with requests.

The controller owns the ledgers shared by every request:

- ``pending_requests``: correlation id -> ``EmailRequest`` waiting for a reply
- ``pending_responses``: correlation id -> decoded reply with no request yet
- ``processed_messages``: transport Message-ID -> correlation id, for
  duplicate delivery detection
- ``resolved_requests``: correlation id -> True once a request completed
- ``auto_delete``: per (account, folder role) housekeeping state

``receive`` is called by the mail event source whenever new mail lands and
either resolves a pending request directly or stashes the reply. The
reconciliation tick (periodic, and run eagerly after every send and every
received reply) matches stashed replies to requests, purges replies whose
request already resolved, expires replies nobody asked for, and drives the
auto-delete state machine.

Consistency across ledgers is only guaranteed at tick boundaries: every
ledger has its own lock and no lock spans two ledgers, except the predicate
of ``pending_requests.scan`` popping from ``pending_responses`` and the purge
predicate reading ``resolved_requests`` under ``pending_responses``' lock.
No code path acquires those locks in the opposite order.
"""

from __future__ import annotations

import asyncio
import contextlib
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncContextManager, Callable, Dict, List, Optional

from .accounts import Account, AccountDirectory
from .async_map import AsyncMap
from .autodelete import AutoDeleteLedger, AutoDeleteReport
from .codec import (
    REQUEST_ID_HEADER,
    RESPONSE_SUBJECT,
    ContinueList,
    Folder,
    IncomingMessage,
    MessageList,
    body_request_id,
    iterate_message_list,
    parse_response_body,
    strip_message_id,
)
from .config import Config, Settings
from .errors import (
    AccountNotFoundError,
    AlreadyResolvedError,
    ControllerStoppedError,
    DuplicateRequestError,
    TransportError,
)
from .http_client import reset_body
from .logger import get_logger
from .metrics import RpcMetrics
from .request import EmailRequest, generate_request_id
from .transport import MailTransport, Mailbox, OutboundDraft, SentDescriptor

HTTP_CONFIRM_METHODS = {"dump": "GET"}


class ReceiveOutcome(str, Enum):
    """What happened to one received reply."""

    RESOLVED = "resolved"
    STASHED = "stashed"
    DUPLICATE = "duplicate"
    ALREADY_RESOLVED = "already_resolved"
    NO_REQUEST_ID = "no_request_id"
    MALFORMED = "malformed"
    ORPHANED = "orphaned"


@dataclass
class ReceiveResult:
    outcome: ReceiveOutcome
    message_id: str | None
    request_id: str | None = None
    mismatch: bool = False


@dataclass
class TickReport:
    idle: bool = False
    resolved: int = 0
    purged: int = 0
    expired: int = 0
    forgotten: int = 0
    auto_delete: Optional[AutoDeleteReport] = field(default=None)


class EmailController:
    """Send requests as email and match the replies back to them."""

    def __init__(
        self,
        accounts: AccountDirectory,
        *,
        transport: Optional[MailTransport] = None,
        compose_transport: Optional[MailTransport] = None,
        config: Optional[Config] = None,
        settings: Optional[Settings] = None,
        mailbox: Optional[Mailbox] = None,
        http=None,
        metrics: Optional[RpcMetrics] = None,
        logger=None,
        keepalive: Optional[Callable[[], AsyncContextManager]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.accounts = accounts
        self.settings = settings or Settings()
        self.config = config or Config.in_memory()
        self.transports: Dict[str, Optional[MailTransport]] = {
            "background": transport,
            "compose": compose_transport,
        }
        self.mailbox = mailbox
        self.http = http
        self.metrics = metrics or RpcMetrics()
        self.logger = logger or get_logger("EmailController")
        self._keepalive = keepalive

        self.pending_requests = AsyncMap("pendingRequests", clock=clock)
        self.pending_responses = AsyncMap("pendingResponses", clock=clock)
        self.processed_messages = AsyncMap("processedMessages", clock=clock)
        self.resolved_requests = AsyncMap("resolvedRequests", clock=clock)
        self.auto_delete = AutoDeleteLedger(self.settings.autodelete_expire_seconds, clock=clock, logger=self.logger)

        self._stop = asyncio.Event()
        self._wake_event = asyncio.Event()
        self._task_tick: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

    # ----------------------------------------------------------------- lifecycle
    async def start(self) -> None:
        """Start the periodic reconciliation tick; a no-op while already running."""
        if self._task_tick is not None and not self._task_tick.done():
            return
        self._stop.clear()
        self._task_tick = asyncio.create_task(self._tick_loop(), name="reconciliation-tick")
        self.logger.debug("EmailController started (tick every %ss)", self.settings.tick_interval)

    async def stop(self) -> None:
        """Stop ticking and reject every request still pending."""
        self._stop.set()
        self._wake_event.set()
        if self._task_tick is not None:
            await asyncio.gather(self._task_tick, return_exceptions=True)
            self._task_tick = None
        for request in (await self.pending_requests.clear()).values():
            await request.reject(ControllerStoppedError("controller stopped", request_id=request.id))
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.logger.debug("EmailController stopped")

    def wake(self) -> None:
        """Run the next periodic tick immediately."""
        self._wake_event.set()

    def spawn(self, coro, name: str | None = None) -> asyncio.Task:
        """Run ``coro`` in a task owned by the controller."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error("Task %s failed: %s", task.get_name(), task.exception())

    async def _tick_loop(self) -> None:
        while not self._stop.is_set():
            try:
                await self.check_pending()
            except Exception as exc:
                self.logger.exception("Unhandled error in reconciliation tick: %s", exc)
            await self._wait_for_wakeup(self.settings.tick_interval)

    async def _wait_for_wakeup(self, timeout: float | None) -> None:
        if self._stop.is_set():
            return
        if timeout is None or math.isinf(float(timeout)):
            await self._wake_event.wait()
        else:
            try:
                await asyncio.wait_for(self._wake_event.wait(), timeout=max(0.0, float(timeout)))
            except asyncio.TimeoutError:
                pass
        self._wake_event.clear()

    async def _eager_tick(self) -> None:
        try:
            await self.check_pending()
        except Exception as exc:
            self.logger.exception("Unhandled error in eager reconciliation tick: %s", exc)

    # ------------------------------------------------------------------- sending
    async def send_request(
        self,
        account_id: str,
        command: str,
        body: Any = None,
        timeout: float | None = None,
        request_id: str | None = None,
    ) -> Dict[str, Any]:
        """Send ``command`` to the account's filter-control service.

        Args:
            account_id: Account the request is sent from.
            command: Command line, e.g. ``"usage"`` or ``"mkbook friends"``.
            body: Optional payload, serialized as the email body.
            timeout: Seconds to wait for the reply; None uses the configured
                default, 0 waits forever.
            request_id: Correlation id; generated when omitted.

        Returns:
            The decoded reply payload.
        """
        account = await self.accounts.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"unknown account: {account_id}")
        request_id = request_id or generate_request_id()
        if await self.resolved_requests.get(request_id) is True:
            raise DuplicateRequestError(f"request {request_id} already resolved", request_id=request_id)

        words = command.split()
        verb = words[0].lower() if words else ""
        if self.http is None or verb not in self.settings.http_confirm_verbs:
            return await self.send_email_request(account, command, body, timeout, request_id)

        result, confirmation = await asyncio.gather(
            self.send_email_request(account, command, body, timeout, request_id),
            self._send_http_confirmation(account, verb, words[1:], body, request_id),
        )
        if confirmation is not None:
            self._compare_results(verb, request_id, result, confirmation)
        return result

    async def send_email_request(
        self,
        account: Account,
        command: str,
        body: Any,
        timeout: float | None,
        request_id: str | None = None,
    ) -> Dict[str, Any]:
        """Core transport call: one email request, one awaited reply."""
        local = self.config.local
        if timeout is None:
            configured = await local.get("emailResponseTimeout")
            timeout = float(configured) if configured not in (None, "") else self.settings.request_timeout
        request = EmailRequest(
            self,
            request_id,
            auto_delete=await local.get_bool("autoDelete"),
            minimize_compose=await local.get_bool("minimizeCompose"),
            background_send=await local.get_bool("backgroundSend"),
        )
        self.logger.debug("send_email_request: %s %r timeout=%s id=%s", account.id, command, timeout, request.id)
        self.metrics.inc_requests(account.id)
        return await request.send(account, command, body, timeout)

    def _select_transport(self, request: EmailRequest) -> MailTransport:
        preferred, fallback = ("background", "compose") if request.background_send else ("compose", "background")
        transport = self.transports.get(preferred)
        if transport is None:
            transport = self.transports.get(fallback)
            if transport is None:
                raise TransportError("no mail transport configured", request_id=request.id)
            self.logger.debug("No %s transport configured, using %s", preferred, fallback)
        return transport

    async def sendmail(self, request: EmailRequest) -> Optional[SentDescriptor]:
        """Compose and deliver the request email, then reconcile."""
        if not await self.pending_requests.has(request.id):
            self.logger.debug("sendmail: request %s is no longer pending, not sending", request.id)
            return None
        account = request.account
        identity = account.identity
        draft = OutboundDraft(
            account_id=account.id,
            identity_id=identity.id,
            from_name=identity.name,
            from_email=identity.email,
            to=account.control_address(self.settings.control_local_part),
            subject=request.command,
            body=request.body,
            request_id=request.id,
        )
        transport = self._select_transport(request)
        sent = await transport.send(
            account, draft, minimize=request.minimize_compose, auto_delete=request.auto_delete
        )
        if request.auto_delete:
            await self.auto_delete.mark_dirty(account.id, "sent")
        await self._eager_tick()
        return sent

    async def _send_http_confirmation(
        self, account: Account, verb: str, args: List[str], body: Any, request_id: str
    ) -> Optional[Dict[str, Any]]:
        path = f"/{verb}/"
        try:
            if HTTP_CONFIRM_METHODS.get(verb) == "GET":
                return await self.http.get(account.id, path, request_id=request_id)
            payload: Dict[str, Any] = reset_body(args) if verb == "reset" else {"Args": args}
            if isinstance(body, dict):
                payload.update(body)
            return await self.http.post(account.id, path, payload, request_id=request_id)
        except Exception as exc:
            self.logger.warning("HTTP confirmation of %s %s failed: %s", verb, request_id, exc)
            return None

    def _compare_results(self, verb: str, request_id: str, email_result: Any, http_result: Any) -> bool:
        """Log differences between the email and HTTP results; returns True when they agree."""

        def comparable(value: Any) -> Any:
            if isinstance(value, dict):
                return {k: v for k, v in value.items() if k not in ("request", "Request")}
            return value

        left, right = comparable(email_result), comparable(http_result)
        if left == right:
            self.logger.debug("%s %s: email and HTTP results agree", verb, request_id)
            return True
        if isinstance(left, dict) and isinstance(right, dict):
            keys = sorted(k for k in set(left) | set(right) if left.get(k) != right.get(k))
        else:
            keys = []
        self.logger.warning("%s %s: email and HTTP results differ on %s", verb, request_id, keys or "payload")
        return False

    # ----------------------------------------------------------------- receiving
    async def receive(
        self,
        folder: Folder,
        message_list: MessageList,
        continue_list: Optional[ContinueList] = None,
    ) -> List[ReceiveResult]:
        """Handle newly arrived mail in ``folder``.

        Only messages with the reply subject are considered; every other
        message is left alone. A failure on one message never stops the
        processing of the rest of the batch.
        """
        results: List[ReceiveResult] = []
        try:
            async for message in iterate_message_list(message_list, continue_list):
                if message.subject != RESPONSE_SUBJECT:
                    continue
                try:
                    result = await self._receive_message(message)
                except Exception as exc:
                    self.logger.exception("receive: failed to process message %s: %s", message.id, exc)
                    continue
                results.append(result)
                if await self.config.local.get_bool("autoDelete"):
                    await self.auto_delete.mark_dirty(folder.account_id, "inbox")
                await self._eager_tick()
        except Exception as exc:
            self.logger.exception("receive: failed to list messages of %s: %s", folder.path, exc)
        return results

    async def _receive_message(self, message: IncomingMessage) -> ReceiveResult:
        message_id = message.header_message_id or (str(message.id) if message.id is not None else None)
        if message_id is not None and await self.processed_messages.has(message_id):
            previous = await self.processed_messages.get(message_id)
            self.logger.debug("receive: Message-ID %s already processed (request %s), discarding", message_id, previous)
            self.metrics.inc_duplicate("message")
            return ReceiveResult(ReceiveOutcome.DUPLICATE, message_id, previous)

        request_id = strip_message_id(message.header(REQUEST_ID_HEADER))
        if not request_id:
            self.logger.error("receive: response message %s has no request id", message_id)
            return ReceiveResult(ReceiveOutcome.NO_REQUEST_ID, message_id)

        if message.read:
            self.logger.warning("receive: message %s has already been read", message_id)

        response = parse_response_body(message.body)
        echoed = body_request_id(response)
        mismatch = response is not None and echoed != request_id
        if mismatch:
            self.logger.error(
                "receive: response header id %s mismatches body request field %r (message %s)",
                request_id, echoed, message_id,
            )

        if message_id is not None:
            await self.processed_messages.set(message_id, request_id)

        if await self.resolved_requests.get(request_id) is True:
            self.logger.debug("receive: request %s already resolved, discarding reply %s", request_id, message_id)
            self.metrics.inc_duplicate("resolved")
            return ReceiveResult(ReceiveOutcome.ALREADY_RESOLVED, message_id, request_id, mismatch)

        request = await self.pending_requests.pop(request_id)
        if request is not None:
            if request.settled:
                self.logger.debug("receive: request %s is settling, dropping reply %s", request_id, message_id)
                return ReceiveResult(ReceiveOutcome.ORPHANED, message_id, request_id, mismatch)
            request.response = response
            await request.resolve(response)
            outcome = ReceiveOutcome.RESOLVED if response else ReceiveOutcome.MALFORMED
            return ReceiveResult(outcome, message_id, request_id, mismatch)

        if response is None:
            self.logger.error("receive: undecodable reply %s for request %s discarded", message_id, request_id)
            return ReceiveResult(ReceiveOutcome.MALFORMED, message_id, request_id, mismatch)

        await self.pending_responses.set(request_id, response)
        self.logger.debug("receive: stashed reply for request %s", request_id)
        return ReceiveResult(ReceiveOutcome.STASHED, message_id, request_id, mismatch)

    # ------------------------------------------------------------ reconciliation
    def _keepalive_context(self) -> AsyncContextManager:
        if self._keepalive is None:
            return contextlib.nullcontext()
        return self._keepalive()

    async def check_pending(self) -> TickReport:
        """Run one reconciliation tick."""
        report = TickReport()
        report.forgotten = await self._forget_old_entries()

        request_count = await self.pending_requests.size()
        response_count = await self.pending_responses.size()
        tracked = await self.auto_delete.size()
        self.metrics.set_pending(request_count, response_count)
        if not (request_count or response_count or tracked):
            report.idle = True
            return report

        async with self._keepalive_context():
            if request_count:
                found = await self.pending_requests.scan(self._check_pending_request)
                for request_id, request in found.items():
                    try:
                        await request.resolve(request.response)
                        report.resolved += 1
                    except AlreadyResolvedError as exc:
                        self.logger.error("check_pending: %s", exc)

            if response_count:
                purged = await self.pending_responses.scan(self._is_resolved)
                for request_id in purged:
                    self.logger.debug("check_pending: purged reply of already resolved request %s", request_id)
                report.purged = len(purged)

                expired = await self.pending_responses.expire(self.settings.response_expire_seconds)
                for request_id, response in expired.items():
                    self.logger.error("check_pending: response expired with no request: %s %s", request_id, response)
                if expired:
                    self.metrics.inc_expired_responses(len(expired))
                report.expired = len(expired)

            if await self.auto_delete.size():
                if await self.config.local.get_bool("autoDelete"):
                    report.auto_delete = await self.auto_delete.run(self._sweep)
                else:
                    await self.auto_delete.entries.clear()

        return report

    async def _check_pending_request(self, request_id: str, request: EmailRequest) -> bool:
        """Scan predicate: claim a stashed reply for ``request``.

        Runs under the ``pending_requests`` lock.
        """
        if request.settled:
            return False
        if request.response is not None:
            # claimed by a scan that failed before removing it
            return True
        response = await self.pending_responses.pop(request_id)
        if response is None:
            return False
        if body_request_id(response) != request_id:
            self.logger.error("check_pending: reply for %s echoes %r", request_id, body_request_id(response))
        request.response = response
        return True

    async def _is_resolved(self, request_id: str, _response: Any) -> bool:
        return await self.resolved_requests.get(request_id) is True

    async def _forget_old_entries(self) -> int:
        retention = self.settings.ledger_retention_seconds
        forgotten = await self.processed_messages.expire(retention)
        resolved = await self.resolved_requests.expire(retention)
        return len(forgotten) + len(resolved)

    async def _sweep(self, account_id: str, role: str) -> int:
        if self.mailbox is None:
            return 0
        account = await self.accounts.get_account(account_id)
        if account is None:
            self.logger.warning("Auto-delete: unknown account %s", account_id)
            return 0
        processed = set(await self.processed_messages.keys()) if role == "inbox" else set()
        return await self.mailbox.delete_artifacts(account, role, processed)

    # --------------------------------------------------------------- diagnostics
    async def queue_state(self) -> Dict[str, Any]:
        return {
            "requests": await self.pending_requests.size(),
            "responses": await self.pending_responses.size(),
            "processed": await self.processed_messages.size(),
            "resolved": await self.resolved_requests.size(),
            "pendingRequests": await self.pending_requests.keys(),
            "pendingResponses": await self.pending_responses.keys(),
            "autoDelete": await self.auto_delete.snapshot(),
        }

    async def log_queue_state(self, label: str) -> None:
        self.logger.info("%s %s", label, await self.queue_state())


__all__ = ["EmailController", "ReceiveOutcome", "ReceiveResult", "TickReport"]
