# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SQLite-backed key/value store for configuration that survives restarts.

Only the ``local`` configuration namespace is persisted (user preferences,
cached API keys). Request/response ledgers are deliberately in memory: after a
restart every outstanding request has lost its caller anyway.

The layer uses aiosqlite and opens one connection per operation, so a file
path is required; use a temporary file in tests.

Example:
    Basic usage::

        persistence = Persistence("/data/mail_rpc.db")
        await persistence.init_db()
        await persistence.set_values("local", {"autoDelete": False})
        values = await persistence.get_values("local", ["autoDelete"])
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, Optional, Sequence

import aiosqlite


class Persistence:
    """Async SQLite persistence for namespaced JSON values.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str = "/data/mail_rpc.db"):
        self.db_path = db_path

    async def init_db(self) -> None:
        """Create the schema. Idempotent."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS config_values (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (namespace, key)
                )
                """
            )
            await db.commit()

    async def get_values(self, namespace: str, keys: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        """Return the stored values of ``namespace``, optionally limited to ``keys``."""
        query = "SELECT key, value FROM config_values WHERE namespace = ?"
        params: list[Any] = [namespace]
        if keys is not None:
            if not keys:
                return {}
            placeholders = ",".join("?" for _ in keys)
            query += f" AND key IN ({placeholders})"
            params.extend(keys)
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(query, params) as cur:
                rows = await cur.fetchall()
        return {key: json.loads(value) for key, value in rows}

    async def set_values(self, namespace: str, values: Dict[str, Any]) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany(
                """
                INSERT INTO config_values (namespace, key, value, updated_at)
                VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(namespace, key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP
                """,
                [(namespace, key, json.dumps(value)) for key, value in values.items()],
            )
            await db.commit()

    async def remove_keys(self, namespace: str, keys: Iterable[str]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        placeholders = ",".join("?" for _ in keys)
        async with aiosqlite.connect(self.db_path) as db:
            cur = await db.execute(
                f"DELETE FROM config_values WHERE namespace = ? AND key IN ({placeholders})",
                [namespace, *keys],
            )
            await db.commit()
            return cur.rowcount or 0

    async def clear(self, namespace: str) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cur = await db.execute("DELETE FROM config_values WHERE namespace = ?", (namespace,))
            await db.commit()
            return cur.rowcount or 0
