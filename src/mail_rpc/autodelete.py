# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Auto-delete housekeeping for request and reply artifacts.

Every sent request leaves a copy in the account's sent folder and every reply
lands in the inbox. When auto-delete is enabled, the folder is marked
``dirty`` and the reconciliation tick sweeps it:

    dirty --(tick takes it)--> pending --(sweep succeeded)--> clean --> dropped

A folder marked dirty again while its sweep is running is not marked clean
by that sweep, so the newer artifacts get their own sweep on a later tick.
Entries stuck in ``pending`` (failed sweeps) are dropped after a deadline.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Tuple

from .async_map import AsyncMap
from .logger import get_logger

AUTODELETE_EXPIRE_SECONDS = 300.0

Sweep = Callable[[str, str], Awaitable[int]]


class AutoDeleteState(str, Enum):
    DIRTY = "dirty"
    PENDING = "pending"
    CLEAN = "clean"


@dataclass(eq=False)
class AutoDeleteEntry:
    account_id: str
    role: str
    state: AutoDeleteState = AutoDeleteState.DIRTY


@dataclass
class AutoDeleteReport:
    dropped: int = 0
    swept: int = 0
    deleted: int = 0
    failed: int = 0
    expired: int = 0


class AutoDeleteLedger:
    """Per (account, folder role) auto-delete state machine."""

    def __init__(self, expire_seconds: float = AUTODELETE_EXPIRE_SECONDS, clock=None, logger=None):
        self.expire_seconds = expire_seconds
        self.entries = AsyncMap("autoDelete", clock=clock)
        self.logger = logger or get_logger("AutoDelete")

    @staticmethod
    def key(account_id: str, role: str) -> Tuple[str, str]:
        return (account_id, role)

    async def mark_dirty(self, account_id: str, role: str) -> None:
        await self.entries.set(self.key(account_id, role), AutoDeleteEntry(account_id, role))

    async def state(self, account_id: str, role: str) -> AutoDeleteState | None:
        entry = await self.entries.get(self.key(account_id, role))
        return entry.state if entry else None

    async def size(self) -> int:
        return await self.entries.size()

    async def snapshot(self) -> Dict[str, str]:
        return {f"{account}:{role}": entry.state.value for (account, role), entry in await self.entries.items()}

    async def run(self, sweep: Sweep) -> AutoDeleteReport:
        """Advance every tracked folder by one step."""
        report = AutoDeleteReport()
        dropped = await self.entries.scan(lambda _key, entry: entry.state is AutoDeleteState.CLEAN)
        report.dropped = len(dropped)

        dirty = await self.entries.scan(lambda _key, entry: entry.state is AutoDeleteState.DIRTY)
        for key, entry in dirty.items():
            pending = AutoDeleteEntry(entry.account_id, entry.role, AutoDeleteState.PENDING)
            if not await self.entries.add(key, pending):
                # marked dirty again since the scan; the next tick takes it
                continue
            report.swept += 1
            try:
                report.deleted += await sweep(entry.account_id, entry.role)
            except Exception as exc:
                report.failed += 1
                self.logger.error("Auto-delete sweep of %s/%s failed: %s", entry.account_id, entry.role, exc)
                continue

            def finish(_key, current, pending=pending):
                if current is pending:
                    current.state = AutoDeleteState.CLEAN
                return False

            await self.entries.scan(finish)

        expired = await self.entries.expire(self.expire_seconds)
        for (account_id, role), entry in expired.items():
            self.logger.warning("Auto-delete entry %s/%s expired in state %s", account_id, role, entry.state.value)
        report.expired = len(expired)
        return report


__all__ = ["AUTODELETE_EXPIRE_SECONDS", "AutoDeleteEntry", "AutoDeleteLedger", "AutoDeleteReport", "AutoDeleteState"]
