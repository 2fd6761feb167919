# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Per-account aiosmtplib connection pool for the background send strategy.

Filter-control requests are small and bursty (a command, then usually a few
follow-ups from the same account), so one SMTP connection per account is
kept open and reused while it is fresh and answers NOOP.

TLS behavior follows the port:

- Port 465 with TLS: implicit TLS
- Other ports with TLS: STARTTLS
- ``use_tls`` False: plain SMTP

Example:
    Sending through the pool::

        pool = SMTPPool(ttl=300)
        smtp = await pool.get_connection(account.id, account.smtp)
        await smtp.send_message(message)
        await pool.close_all()
"""

import asyncio
import time
from typing import Dict, Tuple

import aiosmtplib

from .accounts import SMTPSettings
from .logger import get_logger

ConnectionParams = Tuple[str, int, str | None, str | None, bool]


def resolve_use_tls(settings: SMTPSettings) -> bool:
    if settings.use_tls is None:
        return int(settings.port) in (465, 587)
    return bool(settings.use_tls)


class SMTPPool:
    """Keeps one live SMTP connection per account.

    Attributes:
        ttl: Seconds a pooled connection may stay idle before it is replaced.
        lock: Lock guarding the pool dictionary.
    """

    def __init__(self, ttl: int = 300):
        self.ttl = ttl
        self.pool: Dict[str, Tuple[aiosmtplib.SMTP, float, ConnectionParams]] = {}
        self.lock = asyncio.Lock()
        self.logger = get_logger("SMTPPool")

    async def _connect(self, params: ConnectionParams) -> aiosmtplib.SMTP:
        host, port, user, password, use_tls = params
        if use_tls and port == 465:
            smtp = aiosmtplib.SMTP(hostname=host, port=port, start_tls=False, use_tls=True, timeout=10.0)
        elif use_tls:
            smtp = aiosmtplib.SMTP(hostname=host, port=port, start_tls=True, use_tls=False, timeout=10.0)
        else:
            smtp = aiosmtplib.SMTP(hostname=host, port=port, start_tls=False, use_tls=False, timeout=10.0)

        async def _do_connect():
            await smtp.connect()
            if user and password:
                await smtp.login(user, password)

        await asyncio.wait_for(_do_connect(), timeout=15.0)
        self.logger.debug("SMTP connected to %s:%d", host, port)
        return smtp

    async def _is_alive(self, smtp: aiosmtplib.SMTP) -> bool:
        try:
            code, _ = await asyncio.wait_for(smtp.noop(), timeout=5.0)
            return code == 250
        except Exception:
            return False

    async def _quit(self, smtp: aiosmtplib.SMTP) -> None:
        try:
            await smtp.quit()
        except Exception as exc:
            self.logger.debug("SMTP quit failed: %s", exc)

    async def get_connection(self, account_id: str, settings: SMTPSettings) -> aiosmtplib.SMTP:
        """Return a live connection for ``account_id``, reconnecting when needed.

        Raises:
            asyncio.TimeoutError: If connection establishment times out.
            aiosmtplib.SMTPException: If connection or authentication fails.
        """
        params: ConnectionParams = (
            settings.host,
            int(settings.port),
            settings.user,
            settings.password,
            resolve_use_tls(settings),
        )
        async with self.lock:
            entry = self.pool.pop(account_id, None)

        if entry:
            smtp, last_used, old_params = entry
            if old_params == params and (time.time() - last_used) < self.ttl and await self._is_alive(smtp):
                async with self.lock:
                    self.pool[account_id] = (smtp, time.time(), params)
                return smtp
            await self._quit(smtp)

        smtp = await self._connect(params)
        async with self.lock:
            self.pool[account_id] = (smtp, time.time(), params)
        return smtp

    async def discard(self, account_id: str) -> None:
        """Drop the connection of an account, e.g. after a send error."""
        async with self.lock:
            entry = self.pool.pop(account_id, None)
        if entry:
            await self._quit(entry[0])

    async def cleanup(self) -> None:
        """Close connections idle for longer than the TTL."""
        now = time.time()
        async with self.lock:
            expired = [key for key, (_smtp, last_used, _p) in self.pool.items() if (now - last_used) > self.ttl]
            entries = [self.pool.pop(key) for key in expired]
        for smtp, _last_used, _params in entries:
            await self._quit(smtp)

    async def close_all(self) -> None:
        async with self.lock:
            entries = list(self.pool.values())
            self.pool.clear()
        for smtp, _last_used, _params in entries:
            await self._quit(smtp)
