"""Tests for the webhook trigger.

Most tests drive the FastAPI app in-process through httpx.ASGITransport with
an inline listener; one test serves it for real with uvicorn.
"""

import asyncio
import base64
import socket
import time

import httpx
import pytest

from flowline.triggers.base import TriggerState
from flowline.triggers.webhook import WebhookListener, WebhookTrigger
from flowline.utils.errors import TriggerLifecycleError


class InlineListener:
    """Listener that records start/stop calls without binding a socket."""

    bound_port = None

    def __init__(self):
        self.starts = []
        self.stops = 0

    async def start(self, app, host, port):
        self.starts.append((host, port))

    async def stop(self):
        self.stops += 1


def client_for(trigger: WebhookTrigger) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=trigger.app), base_url="http://test")


async def started_trigger(parameters, received):
    trigger = WebhookTrigger("hook", parameters, listener=InlineListener())
    await trigger.start(received.append)
    return trigger


class TestValidation:
    def test_path_must_start_with_slash(self):
        with pytest.raises(ValueError, match="must start with /"):
            WebhookTrigger("hook", {"path": "orders"})

    def test_invalid_method(self):
        with pytest.raises(ValueError, match="Invalid HTTP method"):
            WebhookTrigger("hook", {"method": "OPTIONS"})

    def test_auth_data_required(self):
        with pytest.raises(ValueError, match="username"):
            WebhookTrigger("hook", {"authentication": "basic", "authentication_data": {"password": "x"}})
        with pytest.raises(ValueError, match="header_name"):
            WebhookTrigger("hook", {"authentication": "header"})

    def test_port_from_environment(self, monkeypatch):
        monkeypatch.setenv("WEBHOOK_PORT", "4100")

        assert WebhookTrigger("hook").port == 4100
        assert WebhookTrigger("hook", {"port": 5000}).port == 5000

    def test_default_port(self, monkeypatch):
        monkeypatch.delenv("WEBHOOK_PORT", raising=False)
        monkeypatch.delenv("WEBHOOK_HOST", raising=False)

        trigger = WebhookTrigger("hook", {"path": "/in"})

        assert trigger.port == 3000
        assert trigger.webhook_url == "http://localhost:3000/in"


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_header_auth_rejects_without_dispatch(self):
        """Test that a wrong header yields 401 and nothing is fired."""
        received = []
        trigger = await started_trigger(
            {
                "path": "/orders",
                "authentication": "header",
                "authentication_data": {"header_name": "X-Token", "header_value": "s3cret"},
            },
            received,
        )

        async with client_for(trigger) as client:
            missing = await client.post("/orders", json={"a": 1})
            wrong = await client.post("/orders", json={"a": 1}, headers={"X-Token": "nope"})

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert wrong.json() == {"error": "Authentication failed"}
        assert received == []
        assert trigger.trigger_count == 0

    @pytest.mark.asyncio
    async def test_header_auth_accepts_and_dispatches_once(self):
        """Test that a correct header yields the configured status and one dispatch."""
        received = []
        trigger = await started_trigger(
            {
                "path": "/orders",
                "authentication": "header",
                "authentication_data": {"header_name": "X-Token", "header_value": "s3cret"},
            },
            received,
        )

        async with client_for(trigger) as client:
            response = await client.post(
                "/orders?source=test", json={"order": 42}, headers={"X-Token": "s3cret"}
            )

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert len(received) == 1
        request = received[0]["request"]
        assert request["method"] == "POST"
        assert request["path"] == "/orders"
        assert request["query"] == {"source": "test"}
        assert request["body"] == {"order": 42}
        assert request["headers"]["x-token"] == "s3cret"
        assert request["id"].startswith("req_")
        assert received[0]["trigger_type"] == "webhook"

    @pytest.mark.asyncio
    async def test_basic_auth(self):
        received = []
        trigger = await started_trigger(
            {
                "path": "/in",
                "authentication": "basic",
                "authentication_data": {"username": "ada", "password": "pw"},
            },
            received,
        )
        good = base64.b64encode(b"ada:pw").decode()
        bad = base64.b64encode(b"ada:wrong").decode()

        async with client_for(trigger) as client:
            accepted = await client.post("/in", headers={"Authorization": f"Basic {good}"})
            rejected = await client.post("/in", headers={"Authorization": f"Basic {bad}"})
            malformed = await client.post("/in", headers={"Authorization": "Basic !!!"})

        assert accepted.status_code == 200
        assert rejected.status_code == 401
        assert malformed.status_code == 401
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_query_auth_with_camel_case_parameters(self):
        received = []
        trigger = await started_trigger(
            {
                "path": "/q",
                "method": "GET",
                "authentication": "query",
                "authenticationData": {"queryParameter": "key", "queryValue": "k1"},
            },
            received,
        )

        async with client_for(trigger) as client:
            accepted = await client.get("/q", params={"key": "k1"})
            rejected = await client.get("/q", params={"key": "k2"})

        assert accepted.status_code == 200
        assert rejected.status_code == 401
        assert received[0]["request"]["body"] is None


class TestResponses:
    @pytest.mark.asyncio
    async def test_after_dispatch_with_text_response(self):
        """Test afterDispatch mode and a non-JSON response body."""
        order = []

        async def subscriber(payload):
            order.append("dispatched")

        trigger = WebhookTrigger(
            "hook",
            {
                "path": "/done",
                "response_mode": "afterDispatch",
                "response_data": "accepted",
                "response_status_code": 202,
                "response_headers": {"X-Flow": "1"},
            },
            listener=InlineListener(),
        )
        await trigger.start(subscriber)

        async with client_for(trigger) as client:
            response = await client.post("/done", content=b"name=ada", headers={"Content-Type": "application/x-www-form-urlencoded"})

        assert order == ["dispatched"]
        assert response.status_code == 202
        assert response.text == "accepted"
        assert response.headers["x-flow"] == "1"

    @pytest.mark.asyncio
    async def test_form_body_is_parsed(self):
        received = []
        trigger = await started_trigger({"path": "/form"}, received)

        async with client_for(trigger) as client:
            await client.post("/form", data={"name": "ada", "age": "36"})

        assert received[0]["request"]["body"] == {"name": "ada", "age": "36"}

    @pytest.mark.asyncio
    async def test_processing_error_returns_500(self):
        trigger = WebhookTrigger("hook", {"response_mode": "afterDispatch"}, listener=InlineListener())
        await trigger.start()

        async def explode(payload):
            raise RuntimeError("dispatch crashed")

        trigger.fire_trigger = explode

        async with client_for(trigger) as client:
            response = await client.post("/webhook", json={})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}

    @pytest.mark.asyncio
    async def test_requests_before_start_are_not_dispatched(self):
        received = []
        trigger = WebhookTrigger("hook", listener=InlineListener())
        trigger.subscribe(received.append)

        async with client_for(trigger) as client:
            response = await client.post("/webhook", json={})

        assert response.status_code == 200
        assert received == []

    @pytest.mark.asyncio
    async def test_health_route(self):
        trigger = WebhookTrigger("hook", {"path": "/orders", "method": "PUT"}, listener=InlineListener())

        async with client_for(trigger) as client:
            response = await client.get("/health")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert body["webhook"] == {"path": "/orders", "method": "PUT", "authentication": "none"}
        assert "timestamp" in body

    @pytest.mark.asyncio
    async def test_cors_preflight(self):
        trigger = WebhookTrigger("hook", listener=InlineListener())

        async with client_for(trigger) as client:
            response = await client.options(
                "/webhook",
                headers={"Origin": "https://app.test", "Access-Control-Request-Method": "POST"},
            )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"


class TestListenerLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop_use_listener(self, monkeypatch):
        monkeypatch.delenv("WEBHOOK_HOST", raising=False)
        listener = InlineListener()
        trigger = WebhookTrigger("hook", {"port": 4321}, listener=listener)

        await trigger.start()
        await trigger.stop()

        assert listener.starts == [("0.0.0.0", 4321)]
        assert listener.stops == 1

    @pytest.mark.asyncio
    async def test_update_config_rebinds_when_running(self):
        received = []
        listener = InlineListener()
        trigger = WebhookTrigger("hook", {"path": "/old"}, listener=listener)
        await trigger.start(received.append)

        with pytest.raises(ValueError):
            await trigger.update_webhook_config(path="no-slash")
        assert trigger.path == "/old"

        await trigger.update_webhook_config(path="/new", port=4400)

        assert len(listener.starts) == 2
        assert listener.starts[-1][1] == 4400
        async with client_for(trigger) as client:
            assert (await client.post("/new", json={})).status_code == 200
            assert (await client.post("/old", json={})).status_code == 404
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_failed_rebind_sets_error_state(self):
        """Test that a listener that cannot rebind parks the trigger in error."""

        class RebindFailsListener(InlineListener):
            async def start(self, app, host, port):
                await super().start(app, host, port)
                if len(self.starts) > 1:
                    raise OSError("address in use")

        listener = RebindFailsListener()
        trigger = WebhookTrigger("hook", {"path": "/old"}, listener=listener)
        await trigger.start()

        with pytest.raises(TriggerLifecycleError) as exc_info:
            await trigger.update_webhook_config(port=4500)

        assert isinstance(exc_info.value.__cause__, OSError)
        assert trigger.state == TriggerState.ERROR
        assert not trigger.is_running
        assert trigger.error_count == 1
        assert trigger.last_error == "address in use"

    @pytest.mark.asyncio
    async def test_on_received_responds_before_dispatch_finishes(self):
        """Test that the default mode answers while subscribers are still running."""
        finished = asyncio.Event()

        async def slow(payload):
            await asyncio.sleep(2)
            finished.set()

        trigger = WebhookTrigger("hook", {"path": "/early", "host": "127.0.0.1", "port": 0})
        await trigger.start(slow)
        try:
            port = trigger.listener.bound_port
            started = time.monotonic()
            async with httpx.AsyncClient() as client:
                response = await client.post(f"http://127.0.0.1:{port}/early", json={"n": 1})
            elapsed = time.monotonic() - started
            answered_early = not finished.is_set()

            await asyncio.wait_for(finished.wait(), timeout=5)
        finally:
            await trigger.stop()

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert elapsed < 1.5
        assert answered_early
        assert trigger.trigger_count == 1

    @pytest.mark.asyncio
    async def test_served_with_uvicorn(self):
        """Test a real listener on an ephemeral port, including the test hook."""
        received = []
        trigger = WebhookTrigger(
            "hook",
            {"path": "/live", "host": "127.0.0.1", "port": 0, "response_mode": "afterDispatch"},
        )
        await trigger.start(received.append)
        try:
            port = trigger.listener.bound_port
            assert port
            async with httpx.AsyncClient() as client:
                response = await client.post(f"http://127.0.0.1:{port}/live", json={"live": True})
            report = await trigger.test()
        finally:
            await trigger.stop()

        assert response.status_code == 200
        assert received[0]["request"]["body"] == {"live": True}
        assert report["data"]["is_reachable"] is True
        assert report["data"]["status_code"] == 200

    @pytest.mark.asyncio
    async def test_bind_failure_sets_error_state(self):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        port = blocker.getsockname()[1]
        try:
            trigger = WebhookTrigger("hook", {"host": "127.0.0.1", "port": port}, listener=WebhookListener())
            with pytest.raises(TriggerLifecycleError):
                await trigger.start()
        finally:
            blocker.close()

        assert trigger.state == TriggerState.ERROR
        assert trigger.error_count == 1

    @pytest.mark.asyncio
    async def test_test_hook_reports_unreachable(self):
        trigger = WebhookTrigger("hook", {"host": "127.0.0.1", "port": 1})

        result = await trigger.test()

        assert result["success"]
        assert result["data"]["is_reachable"] is False
        assert result["data"]["webhook_url"] == "http://127.0.0.1:1/webhook"
