# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Runtime configuration for the email RPC layer.

Two kinds of configuration live here:

- ``Settings``: the process-level tunables (intervals, timeouts, endpoints),
  loaded once at startup from an INI file with ``MRPC_*`` environment
  variables as fallbacks.
- ``Config``: the key/value configuration store read by the controller at
  request time. It has two namespaces, ``local`` (persisted through
  ``Persistence``, survives restarts, falls back to ``DEFAULTS``) and
  ``session`` (in memory, cleared on restart). Each namespace accepts only its
  registered keys and serializes access through its own lock.

Example:
    Reading preferences::

        config = await Config.open("/data/mail_rpc.db")
        if await config.local.get_bool("autoDelete"):
            ...
"""

from __future__ import annotations

import asyncio
import configparser
import copy
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Protocol, Sequence, Tuple

from .errors import ConfigKeyError, ConfigReadbackError
from .logger import get_logger
from .persistence import Persistence

READBACK_TRIES = 5

DEFAULTS: Dict[str, Any] = {
    "optInApproved": False,
    "domain": {},
    "autoDelete": True,
    "filterctlCacheEnabled": True,
    "minimizeCompose": True,
    "backgroundSend": True,
}

LOCAL_KEYS: Tuple[str, ...] = (
    # user configurable options
    "optInApproved",
    "domain",
    "autoDelete",
    "minimizeCompose",
    "backgroundSend",
    "filterctlCacheEnabled",
    # response data caches
    "usageResponse",
    "filterctlState",
    "apiKeys",
    # internal state
    "selectedAccount",
    # internal config
    "emailResponseTimeout",
)

SESSION_KEYS: Tuple[str, ...] = (
    "initialized",
    "activeRescans",
)


class Storage(Protocol):
    """Backend of a config namespace."""

    async def get(self, keys: Optional[Sequence[str]] = None) -> Dict[str, Any]: ...

    async def set(self, values: Dict[str, Any]) -> None: ...

    async def remove(self, keys: Sequence[str]) -> None: ...

    async def clear(self) -> None: ...


class MemoryStorage:
    """Process-lifetime storage."""

    def __init__(self) -> None:
        self._values: Dict[str, Any] = {}

    async def get(self, keys: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        if keys is None:
            return copy.deepcopy(self._values)
        return {key: copy.deepcopy(self._values[key]) for key in keys if key in self._values}

    async def set(self, values: Dict[str, Any]) -> None:
        self._values.update(copy.deepcopy(values))

    async def remove(self, keys: Sequence[str]) -> None:
        for key in keys:
            self._values.pop(key, None)

    async def clear(self) -> None:
        self._values.clear()


class SQLiteStorage:
    """Storage persisted in one namespace of a ``Persistence`` database."""

    def __init__(self, persistence: Persistence, namespace: str):
        self.persistence = persistence
        self.namespace = namespace

    async def get(self, keys: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        return await self.persistence.get_values(self.namespace, keys)

    async def set(self, values: Dict[str, Any]) -> None:
        await self.persistence.set_values(self.namespace, values)

    async def remove(self, keys: Sequence[str]) -> None:
        await self.persistence.remove_keys(self.namespace, keys)

    async def clear(self) -> None:
        await self.persistence.clear(self.namespace)


class ConfigNamespace:
    """A validated, lock-serialized view over one storage backend."""

    def __init__(
        self,
        storage: Storage,
        name: str,
        keys: Iterable[str],
        defaults: Optional[Dict[str, Any]] = None,
        readback: bool = True,
    ):
        self.storage = storage
        self.name = name
        self.keys = frozenset(keys)
        self.defaults = dict(defaults or {})
        self.readback = readback
        self.lock = asyncio.Lock()
        self.logger = get_logger("MailRpcConfig")

    def validate_key(self, key: str) -> None:
        if key not in self.keys:
            raise ConfigKeyError(f"{self.name} config key '{key}' not one of [{', '.join(sorted(self.keys))}]")

    async def get(self, key: str, use_defaults: bool = True) -> Any:
        self.validate_key(key)
        async with self.lock:
            values = await self.storage.get([key])
        value = values.get(key)
        if value is None and use_defaults:
            value = copy.deepcopy(self.defaults.get(key))
        return value

    async def get_bool(self, key: str, use_defaults: bool = True) -> bool:
        return bool(await self.get(key, use_defaults))

    async def get_all(self, use_defaults: bool = True) -> Dict[str, Any]:
        async with self.lock:
            values = await self.storage.get()
        if use_defaults:
            for key, default in self.defaults.items():
                if values.get(key) is None:
                    values[key] = copy.deepcopy(default)
        return values

    async def set(self, key: str, value: Any) -> None:
        self.validate_key(key)
        async with self.lock:
            self.logger.debug("set: %s %s=%r", self.name, key, value)
            await self.storage.set({key: value})
            await self._check_readback("set", key, value)

    async def set_bool(self, key: str, value: Any) -> None:
        await self.set(key, bool(value))

    async def remove(self, key: str) -> None:
        self.validate_key(key)
        async with self.lock:
            self.logger.debug("remove: %s %s", self.name, key)
            await self.storage.remove([key])
            await self._check_readback("remove", key, None)

    async def reset(self) -> None:
        """Remove every stored value of this namespace."""
        async with self.lock:
            await self.storage.clear()
            await self._check_readback("reset", None, None)

    async def _check_readback(self, action: str, key: str | None, expected: Any) -> None:
        """Verify the storage reflects a write; must be called with the lock held."""
        if not self.readback:
            return
        for attempt in range(1, READBACK_TRIES + 1):
            if key is None:
                if not await self.storage.get():
                    return
            else:
                current = (await self.storage.get([key])).get(key)
                if _normalise(current) == _normalise(expected):
                    return
                self.logger.debug(
                    "readback mismatch: try=%d action=%s key=%s expected=%r readback=%r",
                    attempt, action, key, expected, current,
                )
            self.logger.warning("%s config readback mismatch: try %d", self.name, attempt)
            await asyncio.sleep(0)
        raise ConfigReadbackError(f"{self.name} config readback failed: {action} {key}")


def _normalise(value: Any) -> Any:
    """JSON round-trip so tuples and lists compare equal after storage."""
    return json.loads(json.dumps(value, default=str))


class Config:
    """The ``local`` and ``session`` configuration namespaces."""

    def __init__(self, local: ConfigNamespace, session: ConfigNamespace):
        self.local = local
        self.session = session

    @classmethod
    def in_memory(cls) -> "Config":
        return cls(
            ConfigNamespace(MemoryStorage(), "local", LOCAL_KEYS, DEFAULTS),
            ConfigNamespace(MemoryStorage(), "session", SESSION_KEYS),
        )

    @classmethod
    async def open(cls, db_path: str | None) -> "Config":
        """Build the store, persisting ``local`` in ``db_path`` when given."""
        if not db_path:
            return cls.in_memory()
        persistence = Persistence(db_path)
        await persistence.init_db()
        return cls(
            ConfigNamespace(SQLiteStorage(persistence, "local"), "local", LOCAL_KEYS, DEFAULTS),
            ConfigNamespace(MemoryStorage(), "session", SESSION_KEYS),
        )


# --------------------------------------------------------------------- settings
@dataclass
class Settings:
    """Process-level tunables.

    Attributes:
        config_path: INI file the settings (and accounts) were read from.
        db_path: SQLite file for the ``local`` config namespace. None keeps
            everything in memory.
        log_level: Root logging level name.
        tick_interval: Seconds between reconciliation ticks.
        request_timeout: Default seconds before an unanswered request is
            rejected; 0 disables the timer.
        response_expire_seconds: Grace window for replies with no request.
        ledger_retention_seconds: Age after which processed-message and
            resolved-request entries are forgotten.
        autodelete_expire_seconds: Age after which a stuck auto-delete entry
            is dropped.
        control_local_part: Local part of the filter-control mailbox.
        http_confirm_verbs: Command verbs also issued on the HTTP side channel.
        http_host_prefix: Host label prepended to the account domain.
        http_port: Port of the side-channel endpoint.
        http_path: Path prefix of the side-channel endpoint.
        http_timeout: Total seconds allowed for one side-channel request.
        imap_poll_interval: Seconds between inbox polls.
        smtp_pool_ttl: Seconds an idle SMTP connection is kept.
        smtp_cleanup_interval: Seconds between sweeps of idle pooled
            SMTP connections.
        metrics_port: Port of the Prometheus /metrics endpoint; None keeps
            the endpoint off, 0 picks a free port.
        metrics_host: Address the metrics endpoint binds to.
    """

    config_path: str | None = None
    db_path: str | None = None
    log_level: str = "INFO"
    tick_interval: float = 1.024
    request_timeout: float = 30.0
    response_expire_seconds: float = 10.0
    ledger_retention_seconds: float = 24 * 3600.0
    autodelete_expire_seconds: float = 300.0
    control_local_part: str = "filterctl"
    http_confirm_verbs: Tuple[str, ...] = ("dump", "mkbook")
    http_host_prefix: str = "webmail"
    http_port: int = 4443
    http_path: str = "/mailfilter"
    http_timeout: float = 30.0
    imap_poll_interval: float = 5.0
    smtp_pool_ttl: int = 300
    smtp_cleanup_interval: float = 150.0
    metrics_port: int | None = None
    metrics_host: str = "0.0.0.0"


def _split_list(value: str) -> Tuple[str, ...]:
    return tuple(item.strip().lower() for item in value.replace(",", " ").split() if item.strip())


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from an INI file with environment variables as fallbacks.

    Environment variables (all prefixed with MRPC_):
      MRPC_CONFIG - Path to the INI file (default: config.ini)
      MRPC_LOG_LEVEL - Logging level (default: INFO)
      MRPC_DB_PATH - SQLite path for persisted preferences
      MRPC_TICK_INTERVAL - Reconciliation tick interval in seconds
      MRPC_REQUEST_TIMEOUT - Default request timeout in seconds
      MRPC_RESPONSE_EXPIRE_SECONDS - Grace window for unmatched replies
      MRPC_LEDGER_RETENTION_SECONDS - Retention of de-duplication ledgers
      MRPC_AUTODELETE_EXPIRE_SECONDS - Deadline of stuck auto-delete entries
      MRPC_CONTROL_LOCAL_PART - Filter-control mailbox local part
      MRPC_HTTP_CONFIRM_VERBS - Comma separated verbs confirmed over HTTP
      MRPC_HTTP_PORT - Side-channel HTTPS port
      MRPC_IMAP_POLL_INTERVAL - Inbox poll interval in seconds
      MRPC_SMTP_CLEANUP_INTERVAL - Idle SMTP connection sweep interval
      MRPC_METRICS_PORT - Port of the Prometheus endpoint (unset: disabled)
      MRPC_METRICS_HOST - Bind address of the Prometheus endpoint

    Config file sections/keys:
      [storage] db_path
      [logging] level
      [controller] tick_interval, request_timeout, response_expire_seconds,
                   ledger_retention_seconds, autodelete_expire_seconds,
                   control_local_part
      [http] confirm_verbs, host_prefix, port, path, timeout
      [imap] poll_interval
      [smtp] pool_ttl, cleanup_interval
      [metrics] port, host
    """
    config_path = Path(path or os.getenv("MRPC_CONFIG", "config.ini"))
    parser = configparser.ConfigParser()
    parser.read(config_path)

    def get(section: str, option: str, env: str | None = None) -> str | None:
        if parser.has_option(section, option):
            return parser.get(section, option)
        if env:
            return os.getenv(env)
        return None

    def get_float(section: str, option: str, env: str, default: float) -> float:
        value = get(section, option, env)
        return default if value in (None, "") else float(value)

    def get_int(section: str, option: str, env: str, default: int | None) -> int | None:
        value = get(section, option, env)
        return default if value in (None, "") else int(value)

    defaults = Settings()
    verbs = get("http", "confirm_verbs", "MRPC_HTTP_CONFIRM_VERBS")

    return Settings(
        config_path=str(config_path) if config_path.exists() else None,
        db_path=get("storage", "db_path", "MRPC_DB_PATH") or None,
        log_level=(get("logging", "level", "MRPC_LOG_LEVEL") or defaults.log_level).upper(),
        tick_interval=get_float("controller", "tick_interval", "MRPC_TICK_INTERVAL", defaults.tick_interval),
        request_timeout=get_float("controller", "request_timeout", "MRPC_REQUEST_TIMEOUT", defaults.request_timeout),
        response_expire_seconds=get_float(
            "controller", "response_expire_seconds", "MRPC_RESPONSE_EXPIRE_SECONDS", defaults.response_expire_seconds
        ),
        ledger_retention_seconds=get_float(
            "controller", "ledger_retention_seconds", "MRPC_LEDGER_RETENTION_SECONDS", defaults.ledger_retention_seconds
        ),
        autodelete_expire_seconds=get_float(
            "controller", "autodelete_expire_seconds", "MRPC_AUTODELETE_EXPIRE_SECONDS",
            defaults.autodelete_expire_seconds,
        ),
        control_local_part=get("controller", "control_local_part", "MRPC_CONTROL_LOCAL_PART")
        or defaults.control_local_part,
        http_confirm_verbs=_split_list(verbs) if verbs is not None else defaults.http_confirm_verbs,
        http_host_prefix=get("http", "host_prefix") or defaults.http_host_prefix,
        http_port=get_int("http", "port", "MRPC_HTTP_PORT", defaults.http_port),
        http_path=get("http", "path") or defaults.http_path,
        http_timeout=get_float("http", "timeout", "MRPC_HTTP_TIMEOUT", defaults.http_timeout),
        imap_poll_interval=get_float("imap", "poll_interval", "MRPC_IMAP_POLL_INTERVAL", defaults.imap_poll_interval),
        smtp_pool_ttl=get_int("smtp", "pool_ttl", "MRPC_SMTP_POOL_TTL", defaults.smtp_pool_ttl),
        smtp_cleanup_interval=get_float(
            "smtp", "cleanup_interval", "MRPC_SMTP_CLEANUP_INTERVAL", defaults.smtp_cleanup_interval
        ),
        metrics_port=get_int("metrics", "port", "MRPC_METRICS_PORT", defaults.metrics_port),
        metrics_host=get("metrics", "host", "MRPC_METRICS_HOST") or defaults.metrics_host,
    )


__all__ = [
    "Config",
    "ConfigNamespace",
    "DEFAULTS",
    "LOCAL_KEYS",
    "MemoryStorage",
    "SESSION_KEYS",
    "SQLiteStorage",
    "Settings",
    "load_settings",
]
