# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""One logical call carried by an email round trip.

An ``EmailRequest`` is registered in the controller's pending-requests map,
dispatched as an email and then settled exactly once:

- resolved, when the controller matches a reply to its correlation id;
- rejected, when its timer fires, when the dispatch fails, or when it is
  resolved with an empty/undecodable reply.

Settling always removes the request from every controller map. The timer is
the only cancellation mechanism: a dispatch already underway is not
interrupted when the request times out.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING, Any, Dict, Optional

from .codec import body_request_id, encode_body
from .errors import (
    AlreadyResolvedError,
    DuplicateRequestError,
    InvalidResponseError,
    RequestTimeoutError,
    TransportError,
)

if TYPE_CHECKING:
    from .accounts import Account
    from .controller import EmailController

REQUEST_TIMEOUT_SECONDS = 30.0
NO_TIMEOUT = 0


def generate_request_id() -> str:
    return str(uuid.uuid4())


class EmailRequest:
    """A pending request waiting for its email reply.

    Attributes:
        id: Correlation id, embedded in the outbound header.
        command: Command line sent as the subject.
        body: Serialized payload sent as the plain-text body.
        response: The matched reply, set once on resolution.
    """

    def __init__(
        self,
        controller: "EmailController",
        request_id: str | None = None,
        *,
        auto_delete: bool = False,
        minimize_compose: bool = False,
        background_send: bool = True,
    ):
        self.controller = controller
        self.id = request_id or generate_request_id()
        self.auto_delete = auto_delete
        self.minimize_compose = minimize_compose
        self.background_send = background_send
        self.account: Optional["Account"] = None
        self.command: str | None = None
        self.body: str = "{}"
        self.response: Optional[Dict[str, Any]] = None
        self.timeout: float = NO_TIMEOUT
        self.timer: Optional[asyncio.TimerHandle] = None
        self._future: Optional[asyncio.Future] = None
        self._settled = False
        self.logger = controller.logger

    def __repr__(self) -> str:
        state = "settled" if self._settled else "pending"
        return f"EmailRequest(id='{self.id}', command='{self.command}', {state})"

    @property
    def settled(self) -> bool:
        """True once resolve or reject has started."""
        return self._settled

    async def send(
        self,
        account: "Account",
        command: str,
        body: Any = None,
        timeout: float | None = REQUEST_TIMEOUT_SECONDS,
    ) -> Dict[str, Any]:
        """Register, dispatch and wait for the reply.

        Returns:
            The decoded reply payload.

        Raises:
            RequestTimeoutError: No reply matched within ``timeout`` seconds.
            TransportError: The request email could not be sent.
            InvalidResponseError: The matched reply was empty or undecodable.
            DuplicateRequestError: The correlation id is already pending.
        """
        loop = asyncio.get_running_loop()
        self._future = loop.create_future()
        self.account = account
        self.command = command
        self.body = encode_body(body)
        self.timeout = REQUEST_TIMEOUT_SECONDS if timeout is None else float(timeout)

        if not await self.controller.pending_requests.add(self.id, self):
            raise DuplicateRequestError(f"request {self.id} is already pending", request_id=self.id)

        if self.timeout != NO_TIMEOUT:
            self.timer = loop.call_later(self.timeout, self._on_timeout)

        self.controller.spawn(self._dispatch(), name=f"sendmail-{self.id}")
        try:
            return await self._future
        except asyncio.CancelledError:
            if not self._settled:
                self._settled = True
                await self.remove()
            raise

    async def _dispatch(self) -> None:
        try:
            sent = await self.controller.sendmail(self)
            self.logger.debug("Request %s dispatched: %s", self.id, sent)
        except Exception as exc:
            self.logger.error("Dispatch of request %s failed: %s", self.id, exc)
            await self.reject(TransportError(str(exc), request_id=self.id))

    def _on_timeout(self) -> None:
        self.timer = None
        if self._settled:
            return
        self.controller.spawn(
            self.reject(RequestTimeoutError(f"request timeout after {self.timeout}s: {self.command}", request_id=self.id)),
            name=f"timeout-{self.id}",
        )

    async def remove(self) -> None:
        """Disarm the timer and drop this id from the pending maps."""
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        request = await self.controller.pending_requests.pop(self.id)
        if request is not None and request is not self:
            self.logger.error("remove: pending request %s is a different object", self.id)
        response = await self.controller.pending_responses.pop(self.id)
        if response is not None and body_request_id(response) != self.id:
            self.logger.error("remove: stashed response for %s echoes %r", self.id, body_request_id(response))

    async def reject(self, error: BaseException) -> None:
        if self._settled:
            self.logger.debug("reject: request %s already settled, ignoring %s", self.id, error)
            return
        self._settled = True
        self.logger.warning("Request %s rejected: %s", self.id, error)
        await self.remove()
        self.controller.metrics.inc_rejected(getattr(error, "code", type(error).__name__))
        if self._future is not None and not self._future.done():
            self._future.set_exception(error)

    async def resolve(self, response: Optional[Dict[str, Any]]) -> None:
        """Settle with a matched reply.

        Raises:
            AlreadyResolvedError: The request already settled; a correlation id
                must never complete twice.
        """
        if self._settled:
            raise AlreadyResolvedError(f"request {self.id} already settled", request_id=self.id)
        if not response:
            await self.reject(InvalidResponseError(f"request {self.id} resolved with empty response", request_id=self.id))
            return
        self._settled = True
        self.response = response
        await self.controller.resolved_requests.set(self.id, True)
        await self.remove()
        self.controller.metrics.inc_resolved(self.account.id if self.account else "")
        self.logger.debug("Request %s resolved", self.id)
        if self._future is not None and not self._future.done():
            self._future.set_result(response)


__all__ = ["EmailRequest", "NO_TIMEOUT", "REQUEST_TIMEOUT_SECONDS", "generate_request_id"]
