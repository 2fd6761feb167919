"""Tests for the HTTPS side-channel client."""

import base64
from typing import Any, List

import pytest

from mail_rpc.accounts import Account, AccountDirectory, Identity
from mail_rpc.config import Config, Settings
from mail_rpc.errors import AccountNotFoundError, HTTPRequestError
from mail_rpc.http_client import RequestsClient, reset_body


class FakeResponse:
    def __init__(self, status: int, payload: Any):
        self.status = status
        self.payload = payload

    async def json(self, content_type=None):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, owner: "FakeSessionFactory"):
        self.owner = owner

    def request(self, method, url, json=None, headers=None):
        self.owner.calls.append({"method": method, "url": url, "json": json, "headers": headers})
        return FakeResponse(self.owner.status, self.owner.payload)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSessionFactory:
    def __init__(self, status: int = 200, payload: Any = None):
        self.status = status
        self.payload = payload if payload is not None else {"ok": True}
        self.calls: List[dict] = []
        self.timeouts: List[Any] = []

    def __call__(self, timeout=None):
        self.timeouts.append(timeout)
        return FakeSession(self)


ACCOUNT = Account(id="acct", identities=[Identity(id="i1", email="alice@example.com")])


def make_client(factory: FakeSessionFactory, send_request=None, config: Config | None = None) -> RequestsClient:
    return RequestsClient(
        AccountDirectory([ACCOUNT]),
        config or Config.in_memory(),
        Settings(),
        send_request=send_request,
        session_factory=factory,
    )


class KeyFetcher:
    def __init__(self, response):
        self.response = response
        self.calls: List[tuple] = []

    async def __call__(self, account_id, command):
        self.calls.append((account_id, command))
        return self.response


class TestRequests:
    """URL, headers and error handling."""

    @pytest.mark.asyncio
    async def test_get_builds_url_and_headers(self):
        factory = FakeSessionFactory(payload={"books": []})
        config = Config.in_memory()
        await config.local.set("apiKeys", {"alice@example.com": "secret"})
        client = make_client(factory, config=config)

        result = await client.get("acct", "/dump/", request_id="r-1")

        assert result == {"books": []}
        call = factory.calls[0]
        assert call["method"] == "GET"
        assert call["url"] == "https://webmail.example.com:4443/mailfilter/dump/"
        assert call["headers"]["X-Request-Id"] == "r-1"
        assert base64.b64decode(call["headers"]["X-Api-Key"]).decode() == "alice@example.com:secret"
        assert factory.timeouts[0].total == 30.0

    @pytest.mark.asyncio
    async def test_post_sends_json_body(self):
        factory = FakeSessionFactory()
        client = make_client(factory, send_request=KeyFetcher({"APIKey": "k"}))

        await client.post("acct", "/mkbook/", {"Args": ["friends"]})
        await client.post("acct", "/rescan/")

        assert factory.calls[0]["json"] == {"Args": ["friends"]}
        assert factory.calls[1]["json"] == {}
        assert len(factory.calls[0]["headers"]["X-Request-Id"]) == 36

    @pytest.mark.asyncio
    async def test_post_rejects_scalar_body(self):
        client = make_client(FakeSessionFactory(), send_request=KeyFetcher({"APIKey": "k"}))

        with pytest.raises(TypeError):
            await client.post("acct", "/mkbook/", "friends")

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        factory = FakeSessionFactory(status=403, payload={"error": "forbidden"})
        client = make_client(factory, send_request=KeyFetcher({"APIKey": "k"}))

        with pytest.raises(HTTPRequestError) as excinfo:
            await client.delete("acct", "/book/x/", request_id="r-2")

        assert excinfo.value.status == 403
        assert excinfo.value.request_id == "r-2"

    @pytest.mark.asyncio
    async def test_undecodable_body_is_none(self):
        factory = FakeSessionFactory(payload=ValueError("not json"))
        client = make_client(factory, send_request=KeyFetcher({"APIKey": "k"}))

        assert await client.put("acct", "/x/") is None

    @pytest.mark.asyncio
    async def test_unknown_account(self):
        client = make_client(FakeSessionFactory())

        with pytest.raises(AccountNotFoundError):
            await client.get("nobody", "/dump/")


class TestApiKeys:
    """API keys are fetched by email once and cached."""

    @pytest.mark.asyncio
    async def test_key_is_fetched_once_and_cached(self):
        config = Config.in_memory()
        fetcher = KeyFetcher({"apiKey": "fetched"})
        client = make_client(FakeSessionFactory(), send_request=fetcher, config=config)

        assert await client.get_key(ACCOUNT) == "fetched"
        assert await client.get_key(ACCOUNT) == "fetched"

        assert fetcher.calls == [("acct", "apikey")]
        assert await config.local.get("apiKeys") == {"alice@example.com": "fetched"}

    @pytest.mark.asyncio
    async def test_missing_key_in_reply(self):
        client = make_client(FakeSessionFactory(), send_request=KeyFetcher({"status": "denied"}))

        with pytest.raises(HTTPRequestError):
            await client.get_key(ACCOUNT)

    @pytest.mark.asyncio
    async def test_unbound_client_has_no_key(self):
        client = make_client(FakeSessionFactory())

        with pytest.raises(HTTPRequestError):
            await client.get_key(ACCOUNT)

    @pytest.mark.asyncio
    async def test_clear_keys(self):
        config = Config.in_memory()
        await config.local.set("apiKeys", {"alice@example.com": "k"})
        client = make_client(FakeSessionFactory(), config=config)

        await client.clear_keys()

        assert await config.local.get("apiKeys") is None

    @pytest.mark.asyncio
    async def test_bind(self):
        fetcher = KeyFetcher({"APIKey": "bound"})
        client = make_client(FakeSessionFactory())
        client.bind(fetcher)

        assert await client.get_key(ACCOUNT) == "bound"


def test_reset_body():
    assert reset_body(["spam=5", "ham=-1.5"]) == {
        "Classes": [{"Name": "spam", "Score": 5.0}, {"Name": "ham", "Score": -1.5}]
    }
