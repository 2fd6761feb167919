import asyncio
import json
import logging
from typing import Any, Dict, List

import pytest

from mail_rpc.accounts import Account, AccountDirectory, Identity
from mail_rpc.codec import RESPONSE_SUBJECT, Folder, IncomingMessage, MessageList
from mail_rpc.config import Config, Settings
from mail_rpc.controller import EmailController, ReceiveOutcome
from mail_rpc.errors import (
    AccountNotFoundError,
    ControllerStoppedError,
    DuplicateRequestError,
    InvalidResponseError,
    RequestTimeoutError,
    TransportError,
)
from mail_rpc.metrics import RpcMetrics
from mail_rpc.request import EmailRequest
from mail_rpc.transport import SentDescriptor


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class DummyTransport:
    def __init__(self, mode: str = "background"):
        self.mode = mode
        self.drafts: List[Any] = []
        self.options: List[Dict[str, bool]] = []
        self.error: Exception | None = None

    async def send(self, account, draft, *, minimize=False, auto_delete=False):
        if self.error:
            raise self.error
        self.drafts.append(draft)
        self.options.append({"minimize": minimize, "auto_delete": auto_delete})
        return SentDescriptor(self.mode, [len(self.drafts)], f"sent-{draft.request_id}@example.com")


class DummyMailbox:
    def __init__(self):
        self.calls: List[tuple] = []

    async def delete_artifacts(self, account, role, processed_ids):
        self.calls.append((account.id, role, set(processed_ids)))
        return len(processed_ids)


class DummyHttp:
    def __init__(self, result: Any = None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: List[tuple] = []

    async def get(self, account_id, path, request_id=None):
        self.calls.append(("GET", account_id, path, None, request_id))
        if self.error:
            raise self.error
        return self.result

    async def post(self, account_id, path, body=None, request_id=None):
        self.calls.append(("POST", account_id, path, body, request_id))
        if self.error:
            raise self.error
        return self.result


def make_account(account_id: str = "acct", email: str = "alice@example.com") -> Account:
    return Account(id=account_id, identities=[Identity(id=f"{account_id}-id1", email=email, name="Alice")])


def make_controller(**kwargs) -> EmailController:
    kwargs.setdefault("transport", DummyTransport())
    kwargs.setdefault("clock", FakeClock())
    kwargs.setdefault("settings", Settings(tick_interval=0.01))
    kwargs.setdefault("metrics", RpcMetrics())
    return EmailController(AccountDirectory([make_account()]), **kwargs)


def make_reply(request_id: str | None, body: Any = None, message_id: str | None = None,
               subject: str = RESPONSE_SUBJECT, read: bool = False) -> IncomingMessage:
    if body is None:
        body = {"request": request_id, "status": "ok"}
    headers = {}
    if request_id is not None:
        headers["x-filterctl-request-id"] = [f"<{request_id}>"]
    return IncomingMessage(
        id=message_id,
        header_message_id=message_id or f"reply-{request_id}@example.com",
        subject=subject,
        author="filterctl@example.com",
        headers=headers,
        body=body if isinstance(body, str) else json.dumps(body),
        read=read,
    )


INBOX = Folder("acct")


async def receive(controller: EmailController, *messages: IncomingMessage):
    return await controller.receive(INBOX, MessageList(list(messages)))


async def wait_until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


def sample(controller: EmailController, name: str, labels: Dict[str, str] | None = None) -> float:
    return controller.metrics.registry.get_sample_value(name, labels or {}) or 0.0


class TestSendAndReceive:
    """Round trips through send_request and receive."""

    @pytest.mark.asyncio
    async def test_reply_after_send_resolves_request(self):
        controller = make_controller()
        transport = controller.transports["background"]

        task = asyncio.create_task(controller.send_request("acct", "usage", timeout=1))
        await wait_until(lambda: transport.drafts)
        draft = transport.drafts[0]

        results = await receive(controller, make_reply(draft.request_id, {"request": draft.request_id, "used": 3}))

        assert await task == {"request": draft.request_id, "used": 3}
        assert results[0].outcome is ReceiveOutcome.RESOLVED
        assert results[0].mismatch is False
        assert await controller.pending_requests.size() == 0
        assert await controller.resolved_requests.get(draft.request_id) is True
        assert sample(controller, "mrpc_resolved_total", {"account_id": "acct"}) == 1

    @pytest.mark.asyncio
    async def test_outbound_draft_fields(self):
        controller = make_controller()
        transport = controller.transports["background"]

        task = asyncio.create_task(controller.send_request("acct", "mkbook friends", request_id="r-1", timeout=1))
        await wait_until(lambda: transport.drafts)
        draft = transport.drafts[0]

        assert draft.to == "filterctl@example.com"
        assert draft.subject == "mkbook friends"
        assert draft.body == "{}"
        assert draft.from_email == "alice@example.com"
        assert draft.headers == {"X-Filterctl-Request-Id": "<r-1>"}
        assert transport.options[0] == {"minimize": True, "auto_delete": True}

        await receive(controller, make_reply("r-1"))
        await task

    @pytest.mark.asyncio
    async def test_reply_before_request_is_stashed_then_matched(self):
        controller = make_controller()

        results = await receive(controller, make_reply("early", {"request": "early", "value": 1}))
        assert results[0].outcome is ReceiveOutcome.STASHED
        assert await controller.pending_responses.has("early")

        result = await controller.send_request("acct", "usage", request_id="early", timeout=1)

        assert result == {"request": "early", "value": 1}
        assert await controller.pending_responses.size() == 0
        assert await controller.pending_requests.size() == 0

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_discarded(self):
        controller = make_controller()
        reply = make_reply("dup", message_id="same@example.com")

        first = await receive(controller, reply)
        second = await receive(controller, reply)

        assert first[0].outcome is ReceiveOutcome.STASHED
        assert second[0].outcome is ReceiveOutcome.DUPLICATE
        assert second[0].request_id == "dup"
        assert sample(controller, "mrpc_duplicates_total", {"kind": "message"}) == 1

    @pytest.mark.asyncio
    async def test_late_duplicate_for_resolved_request_is_discarded(self):
        controller = make_controller()
        transport = controller.transports["background"]

        task = asyncio.create_task(controller.send_request("acct", "usage", request_id="late", timeout=1))
        await wait_until(lambda: transport.drafts)
        await receive(controller, make_reply("late", message_id="first@example.com"))
        await task

        results = await receive(controller, make_reply("late", message_id="second@example.com"))

        assert results[0].outcome is ReceiveOutcome.ALREADY_RESOLVED
        assert await controller.pending_responses.size() == 0
        assert sample(controller, "mrpc_duplicates_total", {"kind": "resolved"}) == 1

    @pytest.mark.asyncio
    async def test_concurrent_replies_resolve_exactly_once(self):
        controller = make_controller()
        transport = controller.transports["background"]

        task = asyncio.create_task(controller.send_request("acct", "usage", request_id="race", timeout=1))
        await wait_until(lambda: transport.drafts)

        batches = await asyncio.gather(
            receive(controller, make_reply("race", message_id="a@example.com")),
            receive(controller, make_reply("race", message_id="b@example.com")),
        )
        outcomes = [batch[0].outcome for batch in batches]
        await controller.check_pending()

        assert outcomes.count(ReceiveOutcome.RESOLVED) == 1
        assert await task == {"request": "race", "status": "ok"}
        assert await controller.pending_responses.size() == 0
        assert sample(controller, "mrpc_resolved_total", {"account_id": "acct"}) == 1

    @pytest.mark.asyncio
    async def test_paginated_message_list(self):
        controller = make_controller()
        pages = {"p2": MessageList([make_reply("two")])}

        async def continue_list(page_id):
            return pages[page_id]

        results = await controller.receive(INBOX, MessageList([make_reply("one")], id="p2"), continue_list)

        assert [r.request_id for r in results] == ["one", "two"]
        assert sorted(await controller.pending_responses.keys()) == ["one", "two"]

    @pytest.mark.asyncio
    async def test_non_reply_messages_are_ignored(self):
        controller = make_controller()

        results = await receive(controller, make_reply("x", subject="Hello"))

        assert results == []
        assert await controller.processed_messages.size() == 0


class TestReceiveEdgeCases:
    """Protocol errors reported as typed results."""

    @pytest.mark.asyncio
    async def test_missing_request_id_changes_nothing(self, caplog):
        caplog.set_level(logging.ERROR, logger="EmailController")
        controller = make_controller()

        results = await receive(controller, make_reply(None, {"status": "ok"}, message_id="noid@example.com"))

        assert results[0].outcome is ReceiveOutcome.NO_REQUEST_ID
        assert await controller.pending_responses.size() == 0
        assert await controller.processed_messages.size() == 0
        assert "no request id" in caplog.text

    @pytest.mark.asyncio
    async def test_header_body_mismatch_still_matches_on_header(self, caplog):
        caplog.set_level(logging.ERROR, logger="EmailController")
        controller = make_controller()
        transport = controller.transports["background"]

        task = asyncio.create_task(controller.send_request("acct", "usage", request_id="hdr", timeout=1))
        await wait_until(lambda: transport.drafts)
        results = await receive(controller, make_reply("hdr", {"request": "other", "ok": True}))

        assert results[0].outcome is ReceiveOutcome.RESOLVED
        assert results[0].mismatch is True
        assert await task == {"request": "other", "ok": True}
        assert "mismatches body request field" in caplog.text

    @pytest.mark.asyncio
    async def test_malformed_reply_rejects_pending_request(self):
        controller = make_controller()
        transport = controller.transports["background"]

        task = asyncio.create_task(controller.send_request("acct", "usage", request_id="bad", timeout=1))
        await wait_until(lambda: transport.drafts)
        results = await receive(controller, make_reply("bad", "not json"))

        assert results[0].outcome is ReceiveOutcome.MALFORMED
        with pytest.raises(InvalidResponseError):
            await task
        assert await controller.pending_requests.size() == 0

    @pytest.mark.asyncio
    async def test_malformed_reply_without_request_is_not_stashed(self):
        controller = make_controller()

        results = await receive(controller, make_reply("bad", "[1, 2"))

        assert results[0].outcome is ReceiveOutcome.MALFORMED
        assert await controller.pending_responses.size() == 0

    @pytest.mark.asyncio
    async def test_read_reply_is_warned_about(self, caplog):
        caplog.set_level(logging.WARNING, logger="EmailController")
        controller = make_controller()

        await receive(controller, make_reply("seen", read=True))

        assert "already been read" in caplog.text

    @pytest.mark.asyncio
    async def test_error_on_one_message_does_not_abort_batch(self, monkeypatch):
        controller = make_controller()
        original = controller._receive_message

        async def flaky(message):
            if message.header_message_id == "boom@example.com":
                raise RuntimeError("boom")
            return await original(message)

        monkeypatch.setattr(controller, "_receive_message", flaky)

        results = await receive(controller, make_reply("a", message_id="boom@example.com"), make_reply("b"))

        assert [r.request_id for r in results] == ["b"]


class TestFailures:
    """Requests rejected by timers, transports and guards."""

    @pytest.mark.asyncio
    async def test_timeout_rejects_and_cleans_up(self):
        controller = make_controller()

        with pytest.raises(RequestTimeoutError):
            await controller.send_request("acct", "usage", request_id="slow", timeout=0.05)

        assert await controller.pending_requests.size() == 0
        assert await controller.resolved_requests.has("slow") is False
        assert sample(controller, "mrpc_rejected_total", {"reason": "request_timeout"}) == 1

    @pytest.mark.asyncio
    async def test_reply_after_timeout_is_stashed_then_expired(self, caplog):
        caplog.set_level(logging.ERROR, logger="EmailController")
        clock = FakeClock()
        controller = make_controller(clock=clock)

        with pytest.raises(RequestTimeoutError):
            await controller.send_request("acct", "usage", request_id="gone", timeout=0.05)

        results = await receive(controller, make_reply("gone"))
        assert results[0].outcome is ReceiveOutcome.STASHED

        clock.advance(11)
        report = await controller.check_pending()

        assert report.expired == 1
        assert await controller.pending_responses.size() == 0
        assert sample(controller, "mrpc_expired_responses_total") == 1
        assert "response expired" in caplog.text

    @pytest.mark.asyncio
    async def test_transport_failure_rejects_request(self):
        controller = make_controller()
        controller.transports["background"].error = ConnectionError("smtp down")

        with pytest.raises(TransportError):
            await controller.send_request("acct", "usage", timeout=1)

        assert await controller.pending_requests.size() == 0

    @pytest.mark.asyncio
    async def test_unknown_account(self):
        controller = make_controller()

        with pytest.raises(AccountNotFoundError):
            await controller.send_request("nobody", "usage")

    @pytest.mark.asyncio
    async def test_resolved_id_cannot_be_reused(self):
        controller = make_controller()
        await controller.resolved_requests.set("used", True)

        with pytest.raises(DuplicateRequestError):
            await controller.send_request("acct", "usage", request_id="used")

    @pytest.mark.asyncio
    async def test_stop_rejects_pending_requests(self):
        controller = make_controller()
        transport = controller.transports["background"]
        await controller.start()

        task = asyncio.create_task(controller.send_request("acct", "usage", timeout=0))
        await wait_until(lambda: transport.drafts)
        await controller.stop()

        with pytest.raises(ControllerStoppedError):
            await task
        assert await controller.pending_requests.size() == 0

    @pytest.mark.asyncio
    async def test_cancelled_caller_removes_request(self):
        controller = make_controller()
        transport = controller.transports["background"]

        task = asyncio.create_task(controller.send_request("acct", "usage", request_id="c", timeout=0))
        await wait_until(lambda: transport.drafts)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert await controller.pending_requests.has("c") is False


class TestReconciliationTick:
    """Behavior of check_pending and the periodic loop."""

    @pytest.mark.asyncio
    async def test_idle_tick(self):
        controller = make_controller()

        report = await controller.check_pending()

        assert report.idle is True

    @pytest.mark.asyncio
    async def test_tick_is_idempotent_without_new_arrivals(self):
        controller = make_controller()
        await receive(controller, make_reply("wait"))

        first = await controller.check_pending()
        second = await controller.check_pending()

        assert (first.resolved, first.purged, first.expired) == (0, 0, 0)
        assert (second.resolved, second.purged, second.expired) == (0, 0, 0)
        assert await controller.pending_responses.keys() == ["wait"]

    @pytest.mark.asyncio
    async def test_tick_never_rejects_pending_requests(self):
        controller = make_controller()
        transport = controller.transports["background"]

        task = asyncio.create_task(controller.send_request("acct", "usage", request_id="long", timeout=0))
        await wait_until(lambda: transport.drafts)
        for _ in range(3):
            await controller.check_pending()

        assert await controller.pending_requests.has("long")
        assert not task.done()

        await receive(controller, make_reply("long"))
        assert await task == {"request": "long", "status": "ok"}

    @pytest.mark.asyncio
    async def test_tick_purges_responses_of_resolved_requests(self):
        controller = make_controller()
        await controller.resolved_requests.set("done", True)
        await controller.pending_responses.set("done", {"request": "done"})

        report = await controller.check_pending()

        assert report.purged == 1
        assert await controller.pending_responses.size() == 0

    @pytest.mark.asyncio
    async def test_failed_sweep_keeps_claimed_requests_for_next_tick(self, monkeypatch):
        controller = make_controller()
        requests = {}
        for request_id in ("a", "b"):
            requests[request_id] = EmailRequest(controller, request_id)
            await controller.pending_requests.add(request_id, requests[request_id])
            await controller.pending_responses.set(request_id, {"request": request_id})

        original_pop = controller.pending_responses.pop
        failures = []

        async def flaky_pop(key, default=None):
            if key == "b" and not failures:
                failures.append(key)
                raise RuntimeError("storage hiccup")
            return await original_pop(key, default)

        monkeypatch.setattr(controller.pending_responses, "pop", flaky_pop)

        with pytest.raises(RuntimeError):
            await controller.check_pending()
        assert await controller.pending_requests.keys() == ["a", "b"]
        assert await controller.pending_responses.keys() == ["b"]

        report = await controller.check_pending()

        assert report.resolved == 2
        assert await controller.pending_requests.size() == 0
        assert requests["a"].response == {"request": "a"}
        assert await controller.resolved_requests.get("a") is True
        assert await controller.resolved_requests.get("b") is True

    @pytest.mark.asyncio
    async def test_tick_forgets_old_ledger_entries(self):
        clock = FakeClock()
        controller = make_controller(clock=clock, settings=Settings(ledger_retention_seconds=60))
        await controller.resolved_requests.set("old", True)
        await controller.processed_messages.set("old@example.com", "old")

        clock.advance(61)
        report = await controller.check_pending()

        assert report.forgotten == 2
        assert await controller.resolved_requests.size() == 0

    @pytest.mark.asyncio
    async def test_tick_loop_survives_errors(self, monkeypatch):
        controller = make_controller()
        calls = []

        async def failing_check():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("tick failure")

        monkeypatch.setattr(controller, "check_pending", failing_check)

        await controller.start()
        await wait_until(lambda: len(calls) >= 3)
        await controller.stop()

        assert len(calls) >= 3

    @pytest.mark.asyncio
    async def test_keepalive_is_held_while_work_is_pending(self):
        entered = []

        class KeepAlive:
            async def __aenter__(self):
                entered.append(True)

            async def __aexit__(self, *exc):
                return False

        controller = make_controller(keepalive=KeepAlive)
        await controller.check_pending()
        assert entered == []

        await receive(controller, make_reply("k"))
        assert entered

    @pytest.mark.asyncio
    async def test_queue_state(self):
        controller = make_controller()
        await receive(controller, make_reply("q"))

        state = await controller.queue_state()

        assert state["responses"] == 1
        assert state["pendingResponses"] == ["q"]
        assert state["processed"] == 1

    @pytest.mark.asyncio
    async def test_log_queue_state(self, caplog):
        controller = make_controller()
        await receive(controller, make_reply("q"))

        with caplog.at_level(logging.INFO, logger="EmailController"):
            await controller.log_queue_state("after receive")

        assert "after receive" in caplog.text
        assert "'pendingResponses': ['q']" in caplog.text

    @pytest.mark.asyncio
    async def test_start_twice_keeps_single_tick_task(self):
        controller = make_controller()

        await controller.start()
        first = controller._task_tick
        await controller.start()

        assert controller._task_tick is first
        tick_tasks = [task for task in asyncio.all_tasks() if task.get_name() == "reconciliation-tick"]
        assert tick_tasks == [first]

        await controller.stop()
        assert first.done()

    @pytest.mark.asyncio
    async def test_wake_runs_next_tick_immediately(self, monkeypatch):
        controller = make_controller(settings=Settings(tick_interval=60.0))
        calls = []

        async def counting_check():
            calls.append(1)

        monkeypatch.setattr(controller, "check_pending", counting_check)

        await controller.start()
        await wait_until(lambda: len(calls) == 1)
        controller.wake()
        await wait_until(lambda: len(calls) == 2)
        await controller.stop()


class TestAutoDelete:
    """Sent copies and processed replies are swept when enabled."""

    @pytest.mark.asyncio
    async def test_sent_and_inbox_are_swept(self):
        mailbox = DummyMailbox()
        controller = make_controller(mailbox=mailbox)
        transport = controller.transports["background"]

        task = asyncio.create_task(controller.send_request("acct", "usage", request_id="ad", timeout=1))
        await wait_until(lambda: transport.drafts)
        await receive(controller, make_reply("ad", message_id="ad-reply@example.com"))
        await task

        assert ("acct", "sent", set()) in mailbox.calls
        assert ("acct", "inbox", {"ad-reply@example.com"}) in mailbox.calls

    @pytest.mark.asyncio
    async def test_disabled_auto_delete_leaves_folders_alone(self):
        mailbox = DummyMailbox()
        config = Config.in_memory()
        await config.local.set("autoDelete", False)
        controller = make_controller(mailbox=mailbox, config=config)
        transport = controller.transports["background"]

        task = asyncio.create_task(controller.send_request("acct", "usage", request_id="keep", timeout=1))
        await wait_until(lambda: transport.drafts)
        await receive(controller, make_reply("keep"))
        await task

        assert mailbox.calls == []
        assert transport.options[0]["auto_delete"] is False
        assert await controller.auto_delete.size() == 0


class TestTransportSelection:
    """backgroundSend picks the send strategy."""

    @pytest.mark.asyncio
    async def test_compose_transport_when_background_send_disabled(self):
        config = Config.in_memory()
        await config.local.set("backgroundSend", False)
        compose = DummyTransport("compose")
        controller = make_controller(config=config, compose_transport=compose)

        task = asyncio.create_task(controller.send_request("acct", "usage", request_id="cmp", timeout=1))
        await wait_until(lambda: compose.drafts)
        await receive(controller, make_reply("cmp"))
        await task

        assert controller.transports["background"].drafts == []

    @pytest.mark.asyncio
    async def test_falls_back_to_available_transport(self):
        config = Config.in_memory()
        await config.local.set("backgroundSend", False)
        controller = make_controller(config=config)
        transport = controller.transports["background"]

        task = asyncio.create_task(controller.send_request("acct", "usage", request_id="fb", timeout=1))
        await wait_until(lambda: transport.drafts)
        await receive(controller, make_reply("fb"))

        assert await task == {"request": "fb", "status": "ok"}


class TestHttpConfirmation:
    """dump and mkbook are confirmed over the HTTP side channel."""

    @pytest.mark.asyncio
    async def test_dump_is_confirmed_with_same_request_id(self, caplog):
        caplog.set_level(logging.DEBUG, logger="EmailController")
        http = DummyHttp({"request": "d-1", "books": ["friends"]})
        controller = make_controller(http=http)
        transport = controller.transports["background"]

        task = asyncio.create_task(controller.send_request("acct", "dump", request_id="d-1", timeout=1))
        await wait_until(lambda: transport.drafts)
        await receive(controller, make_reply("d-1", {"Request": "d-1", "books": ["friends"]}))

        assert await task == {"Request": "d-1", "books": ["friends"]}
        assert http.calls == [("GET", "acct", "/dump/", None, "d-1")]
        assert "results agree" in caplog.text

    @pytest.mark.asyncio
    async def test_mkbook_posts_arguments_and_logs_differences(self, caplog):
        caplog.set_level(logging.WARNING, logger="EmailController")
        http = DummyHttp({"request": "m-1", "success": False})
        controller = make_controller(http=http)
        transport = controller.transports["background"]

        task = asyncio.create_task(controller.send_request("acct", "mkbook friends", request_id="m-1", timeout=1))
        await wait_until(lambda: transport.drafts)
        await receive(controller, make_reply("m-1", {"request": "m-1", "success": True}))

        assert await task == {"request": "m-1", "success": True}
        assert http.calls == [("POST", "acct", "/mkbook/", {"Args": ["friends"]}, "m-1")]
        assert "differ on ['success']" in caplog.text

    @pytest.mark.asyncio
    async def test_http_failure_does_not_affect_result(self):
        http = DummyHttp(error=ConnectionError("refused"))
        controller = make_controller(http=http)
        transport = controller.transports["background"]

        task = asyncio.create_task(controller.send_request("acct", "dump", request_id="d-2", timeout=1))
        await wait_until(lambda: transport.drafts)
        await receive(controller, make_reply("d-2"))

        assert await task == {"request": "d-2", "status": "ok"}

    @pytest.mark.asyncio
    async def test_other_verbs_skip_http(self):
        http = DummyHttp({})
        controller = make_controller(http=http)
        transport = controller.transports["background"]

        task = asyncio.create_task(controller.send_request("acct", "usage", request_id="u", timeout=1))
        await wait_until(lambda: transport.drafts)
        await receive(controller, make_reply("u"))
        await task

        assert http.calls == []

    @pytest.mark.asyncio
    async def test_reset_posts_class_scores(self):
        http = DummyHttp({"request": "rs", "status": "ok"})
        controller = make_controller(http=http, settings=Settings(http_confirm_verbs=("reset",)))
        transport = controller.transports["background"]

        task = asyncio.create_task(controller.send_request("acct", "reset spam=5", request_id="rs", timeout=1))
        await wait_until(lambda: transport.drafts)
        await receive(controller, make_reply("rs"))
        await task

        assert http.calls == [("POST", "acct", "/reset/", {"Classes": [{"Name": "spam", "Score": 5.0}]}, "rs")]
