# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Process-level wiring of the email RPC layer.

``MailRpcService`` builds every collaborator from ``Settings`` (config store,
account directory, SMTP transport, IMAP mailbox and poller, side-channel HTTP
client, metrics) and owns the lifetime of the controller, the idle SMTP connection sweep and the
Prometheus /metrics endpoint.

Example:
    Running a request from a script::

        settings = load_settings()
        configure_logging(settings.log_level)
        async with await MailRpcService.from_settings(settings) as service:
            result = await service.controller.send_request("work", "usage")
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from prometheus_client import start_http_server

from .accounts import AccountDirectory
from .config import Config, Settings
from .controller import EmailController
from .http_client import RequestsClient
from .imap import IMAPMailbox, InboxPoller
from .logger import get_logger
from .metrics import RpcMetrics
from .smtp_pool import SMTPPool
from .transport import SMTPTransport


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger once for the whole process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


class MailRpcService:
    """Owns the controller and its background tasks."""

    def __init__(
        self,
        controller: EmailController,
        *,
        poller: Optional[InboxPoller] = None,
        transport: Optional[SMTPTransport] = None,
        cleanup_interval: float = 150.0,
        metrics_port: Optional[int] = None,
        metrics_host: str = "0.0.0.0",
    ):
        self.controller = controller
        self.poller = poller
        self.transport = transport
        self.cleanup_interval = cleanup_interval
        self.metrics_port = metrics_port
        self.metrics_host = metrics_host
        self.metrics_server = None
        self.logger = get_logger("MailRpcService")
        self._running = False
        self._cleanup_task: Optional[asyncio.Task] = None

    @classmethod
    async def from_settings(cls, settings: Settings, *, poll: bool = True) -> "MailRpcService":
        """Build the service; ``poll`` False skips the inbox poller."""
        config = await Config.open(settings.db_path)
        accounts = AccountDirectory.from_config(settings.config_path) if settings.config_path else AccountDirectory()
        transport = SMTPTransport(SMTPPool(ttl=settings.smtp_pool_ttl), send_timeout=settings.request_timeout)
        http = RequestsClient(accounts, config, settings)
        controller = EmailController(
            accounts,
            transport=transport,
            config=config,
            settings=settings,
            mailbox=IMAPMailbox(),
            http=http,
            metrics=RpcMetrics(),
        )
        http.bind(controller.send_request)
        poller = InboxPoller(controller, accounts, settings.imap_poll_interval) if poll else None
        return cls(
            controller,
            poller=poller,
            transport=transport,
            cleanup_interval=settings.smtp_cleanup_interval,
            metrics_port=settings.metrics_port,
            metrics_host=settings.metrics_host,
        )

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        await self.controller.config.session.set("initialized", True)
        await self.controller.start()
        if self.poller is not None:
            await self.poller.start()
        if self.transport is not None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name="smtp-pool-cleanup")
        if self.metrics_port is not None:
            self.metrics_server, _thread = start_http_server(
                self.metrics_port, addr=self.metrics_host, registry=self.controller.metrics.registry
            )
            self.logger.info("Prometheus metrics served on %s:%d", self.metrics_host, self.metrics_server.server_port)
        self.logger.info("MailRpcService started with %d accounts", len(self.controller.accounts))

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self.metrics_server is not None:
            await asyncio.to_thread(self.metrics_server.shutdown)
            self.metrics_server.server_close()
            self.metrics_server = None
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            await asyncio.gather(self._cleanup_task, return_exceptions=True)
            self._cleanup_task = None
        if self.poller is not None:
            await self.poller.stop()
        await self.controller.stop()
        if self.transport is not None:
            await self.transport.close()
        await self.controller.config.session.remove("initialized")
        self.logger.info("MailRpcService stopped")

    async def _cleanup_loop(self) -> None:
        """Periodically close pooled SMTP connections left idle past their TTL."""
        while self._running:
            await asyncio.sleep(self.cleanup_interval)
            try:
                await self.transport.cleanup()
            except Exception as exc:
                self.logger.exception("SMTP pool cleanup failed: %s", exc)

    async def __aenter__(self) -> "MailRpcService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()


__all__ = ["MailRpcService", "configure_logging"]
