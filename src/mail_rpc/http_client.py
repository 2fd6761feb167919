# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Side-channel HTTPS client of the filter-control service.

Some commands are also served over HTTPS at
``https://webmail.<domain>:4443/mailfilter<path>``. Every call carries:

- ``X-Api-Key``: base64 of ``<account email>:<api key>``
- ``X-Request-Id``: the correlation id, shared with the email request when
  the call confirms one

The API key of an account is obtained once through an ``apikey`` email
request and cached in the ``apiKeys`` value of the local config namespace.

Example:
    Calling the side channel::

        client = RequestsClient(accounts, config, settings)
        client.bind(controller.send_request)
        books = await client.get("work", "/dump/")
"""

from __future__ import annotations

import asyncio
import base64
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from .accounts import Account, AccountDirectory
from .config import Config, Settings
from .errors import AccountNotFoundError, HTTPRequestError
from .logger import get_logger
from .request import generate_request_id

SendRequest = Callable[..., Awaitable[Dict[str, Any]]]

API_KEY_COMMAND = "apikey"


class RequestsClient:
    """aiohttp client for the HTTPS side channel.

    Attributes:
        accounts: Directory used to resolve account ids.
        config: Config store holding the cached API keys.
    """

    def __init__(
        self,
        accounts: AccountDirectory,
        config: Config,
        settings: Optional[Settings] = None,
        send_request: Optional[SendRequest] = None,
        session_factory: Optional[Callable[..., aiohttp.ClientSession]] = None,
        logger=None,
    ):
        self.accounts = accounts
        self.config = config
        self.settings = settings or Settings()
        self._send_request = send_request
        self._session_factory = session_factory or aiohttp.ClientSession
        self._key_lock = asyncio.Lock()
        self.logger = logger or get_logger("RequestsClient")

    def bind(self, send_request: SendRequest) -> None:
        """Set the email request function used to fetch API keys."""
        self._send_request = send_request

    def url(self, account: Account, path: str) -> str:
        settings = self.settings
        return f"https://{settings.http_host_prefix}.{account.domain}:{settings.http_port}{settings.http_path}{path}"

    # ------------------------------------------------------------------ api keys
    async def get_key(self, account: Account) -> str:
        """Return the API key of ``account``, fetching it by email when unknown."""
        async with self._key_lock:
            keys = await self.config.local.get("apiKeys") or {}
            key = keys.get(account.email)
            if key:
                return key
            if self._send_request is None:
                raise HTTPRequestError(f"no API key for {account.email}")
            response = await self._send_request(account.id, API_KEY_COMMAND)
            key = (response or {}).get("APIKey") or (response or {}).get("apiKey")
            if not key:
                raise HTTPRequestError(f"apikey request for {account.email} returned no key")
            keys[account.email] = key
            await self.config.local.set("apiKeys", keys)
            self.logger.debug("Cached API key of %s", account.email)
            return key

    async def clear_keys(self) -> None:
        await self.config.local.remove("apiKeys")

    # ------------------------------------------------------------------ requests
    async def request(
        self,
        account_id: str,
        method: str,
        path: str,
        body: Any = None,
        request_id: str | None = None,
    ) -> Any:
        """Perform one side-channel call and return the decoded JSON result.

        Raises:
            AccountNotFoundError: ``account_id`` is unknown.
            HTTPRequestError: The endpoint answered with an error status.
            aiohttp.ClientError: The connection failed.
        """
        account = await self.accounts.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"unknown account: {account_id}")
        request_id = request_id or generate_request_id()
        key = await self.get_key(account)
        credentials = base64.b64encode(f"{account.email}:{key}".encode()).decode()
        headers = {"X-Api-Key": credentials, "X-Request-Id": request_id}
        url = self.url(account, path)
        self.logger.debug("<-- %s %s id=%s", method, url, request_id)

        timeout = aiohttp.ClientTimeout(total=self.settings.http_timeout)
        async with self._session_factory(timeout=timeout) as session:
            async with session.request(method, url, json=body, headers=headers) as response:
                try:
                    result = await response.json(content_type=None)
                except ValueError:
                    result = None
                if response.status >= 400:
                    self.logger.error("request failed: %s %s %s %r", method, url, response.status, result)
                    raise HTTPRequestError(
                        f"request failed: {method} {url} {response.status}",
                        status=response.status,
                        request_id=request_id,
                    )
        self.logger.debug("--> %s %s %r", method, url, result)
        return result

    async def get(self, account_id: str, path: str, request_id: str | None = None) -> Any:
        return await self.request(account_id, "GET", path, request_id=request_id)

    async def put(self, account_id: str, path: str, request_id: str | None = None) -> Any:
        return await self.request(account_id, "PUT", path, request_id=request_id)

    async def delete(self, account_id: str, path: str, request_id: str | None = None) -> Any:
        return await self.request(account_id, "DELETE", path, request_id=request_id)

    async def post(self, account_id: str, path: str, body: Any = None, request_id: str | None = None) -> Any:
        if body is None:
            body = {}
        if not isinstance(body, (dict, list)):
            raise TypeError(f"unexpected body type: {type(body).__name__}")
        return await self.request(account_id, "POST", path, body=body, request_id=request_id)


def reset_body(args: List[str]) -> Dict[str, Any]:
    """Build the ``reset`` payload from ``name=score`` arguments."""
    levels = []
    for arg in args:
        name, _sep, score = arg.partition("=")
        levels.append({"Name": name, "Score": float(score)})
    return {"Classes": levels}


__all__ = ["API_KEY_COMMAND", "RequestsClient", "reset_body"]
