"""HTTP webhook trigger.

Serves a FastAPI app with one configurable route plus ``/health``. Every
authenticated request is snapshotted and fanned out to the trigger's
subscribers, either after the response is sent (``onReceived``) or before it
(``afterDispatch``).
"""

from typing import Any, Dict, Optional
from urllib.parse import parse_qsl
import asyncio
import base64
import binascii
import json
import logging
import secrets
import socket
import uuid

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.background import BackgroundTask

from flowline.core.events import utc_now
from flowline.triggers.base import BaseTrigger
from flowline.utils.config import get_config, get_int
from flowline.utils.errors import AuthenticationError, TriggerLifecycleError

logger = logging.getLogger(__name__)

WEBHOOK_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")
AUTH_MODES = ("none", "basic", "header", "query")
RESPONSE_MODES = ("onReceived", "afterDispatch")
DEFAULT_RESPONSE_DATA = '{"success": true}'
DEFAULT_PORT = 3000
DEFAULT_HOST = "0.0.0.0"

# required authentication_data keys per mode
AUTH_FIELDS = {
    "basic": ("username", "password"),
    "header": ("header_name", "header_value"),
    "query": ("query_parameter", "query_value"),
}

# n8n-style parameter names accepted alongside snake_case
CAMEL_CASE = {
    "authentication_data": "authenticationData",
    "response_mode": "responseMode",
    "response_data": "responseData",
    "response_status_code": "responseStatusCode",
    "response_headers": "responseHeaders",
    "header_name": "headerName",
    "header_value": "headerValue",
    "query_parameter": "queryParameter",
    "query_value": "queryValue",
}


class WebhookListener:
    """Runs an ASGI app under uvicorn on a socket it binds itself.

    Binding up front turns an unavailable address into an ``OSError`` raised
    from ``start()``.
    """

    def __init__(self, log_level: str = "warning"):
        self.log_level = log_level
        self._server: Optional[uvicorn.Server] = None
        self._task: Optional[asyncio.Task] = None
        self._sock: Optional[socket.socket] = None

    @property
    def bound_port(self) -> Optional[int]:
        if self._sock is None:
            return None
        return self._sock.getsockname()[1]

    async def start(self, app: Any, host: str, port: int) -> None:
        """Bind ``host:port`` and serve ``app`` until ``stop()``.

        Raises:
            OSError: If the address cannot be bound
            RuntimeError: If the server exits during startup
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
            sock.listen(128)
        except OSError:
            sock.close()
            raise
        self._sock = sock

        config = uvicorn.Config(app, log_level=self.log_level, lifespan="off")
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._task.done():
                error = self._task.exception()
                await self._close()
                raise RuntimeError(f"Webhook server failed to start: {error}")
            await asyncio.sleep(0.01)
        logger.info("Webhook listener serving on %s:%s", host, self.bound_port)

    async def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._task is not None:
            await self._task
        await self._close()

    async def _close(self) -> None:
        if self._sock is not None:
            self._sock.close()
        self._sock = None
        self._server = None
        self._task = None


class WebhookTrigger(BaseTrigger):
    """Fire on incoming HTTP requests.

    Parameters:
        path: Route path, must start with "/" (default "/webhook")
        method: GET, POST, PUT, DELETE or PATCH (default POST)
        authentication: none, basic, header or query
        authentication_data: username/password, header_name/header_value or
            query_parameter/query_value depending on the mode
        response_mode: onReceived (respond, then dispatch) or afterDispatch
        response_data: Response body; JSON when it parses, text otherwise
        response_status_code: Status of successful responses (default 200)
        response_headers: Extra response headers
        host, port: Listen address (defaults WEBHOOK_HOST / WEBHOOK_PORT, 3000)

    Example:
        >>> trigger = WebhookTrigger("orders", {
        ...     "path": "/orders",
        ...     "authentication": "header",
        ...     "authentication_data": {"header_name": "X-Token", "header_value": "s3cret"},
        ... })
        >>> await trigger.start(runner.subscriber_for(graph))
    """

    type = "webhook"

    def __init__(self, *args, listener: Optional[WebhookListener] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.listener = listener or WebhookListener()
        self.app = self._build_app()

    def _param(self, key: str, default: Any = None, source: Optional[Dict[str, Any]] = None) -> Any:
        source = self.parameters if source is None else source
        value = source.get(key)
        if value is None and key in CAMEL_CASE:
            value = source.get(CAMEL_CASE[key])
        return default if value is None else value

    # Configuration

    @property
    def path(self) -> str:
        return self._param("path", "/webhook")

    @property
    def method(self) -> str:
        return str(self._param("method", "POST")).upper()

    @property
    def authentication(self) -> str:
        return self._param("authentication", "none")

    @property
    def auth_data(self) -> Dict[str, Any]:
        return self._param("authentication_data", {})

    @property
    def response_mode(self) -> str:
        mode = self._param("response_mode", "onReceived")
        return "afterDispatch" if mode == "lastNode" else mode

    @property
    def response_data(self) -> str:
        data = self._param("response_data", DEFAULT_RESPONSE_DATA)
        return data if isinstance(data, str) else json.dumps(data)

    @property
    def response_status_code(self) -> int:
        return int(self._param("response_status_code", 200))

    @property
    def response_headers(self) -> Dict[str, str]:
        return dict(self._param("response_headers", {}))

    @property
    def host(self) -> str:
        return self._param("host") or get_config("WEBHOOK_HOST", DEFAULT_HOST)

    @property
    def port(self) -> int:
        port = self._param("port")
        return int(port) if port is not None else get_int("WEBHOOK_PORT", DEFAULT_PORT)

    @property
    def webhook_url(self) -> str:
        host = "localhost" if self.host in ("0.0.0.0", "::", "") else self.host
        port = self.listener.bound_port or self.port
        return f"http://{host}:{port}{self.path}"

    def validate_parameters(self) -> None:
        path = self.path
        if not isinstance(path, str) or not path.startswith("/"):
            raise ValueError("Webhook path must start with /")
        if self.method not in WEBHOOK_METHODS:
            raise ValueError(f"Invalid HTTP method: {self.method}")

        mode = self.authentication
        if mode not in AUTH_MODES:
            raise ValueError(f"Invalid authentication mode: {mode}")
        for key in AUTH_FIELDS.get(mode, ()):
            if not self._param(key, source=self.auth_data):
                raise ValueError(f"{mode} authentication requires '{key}'")

        if self.response_mode not in RESPONSE_MODES:
            raise ValueError(f"Invalid response mode: {self.response_mode}")

    async def update_webhook_config(self, **changes: Any) -> None:
        """Merge parameter changes; rebinds the listener when running.

        Raises:
            ValueError: If the merged parameters are invalid (nothing changes)
            TriggerLifecycleError: If the listener cannot be rebound; the
                trigger is left in the error state
        """
        previous = self.parameters
        self.parameters = {**previous, **changes}
        try:
            self.validate_parameters()
        except ValueError:
            self.parameters = previous
            raise

        self.app = self._build_app()
        logger.info("Trigger %s webhook configuration updated", self.id)

        if self.is_running:
            try:
                await self.listener.stop()
                await self.listener.start(self.app, self.host, self.port)
            except Exception as e:
                self._record_lifecycle_failure("start", e)
                raise TriggerLifecycleError(self.id, "start", str(e)) from e

    # App

    def _build_app(self) -> FastAPI:
        app = FastAPI(title=f"Flowline webhook {self.id}", docs_url=None, redoc_url=None)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=list(WEBHOOK_METHODS) + ["OPTIONS"],
            allow_headers=["*"],
        )
        app.add_api_route(self.path, self._handle_request, methods=[self.method])
        app.add_api_route("/health", self._health, methods=["GET"])
        return app

    async def _health(self) -> Dict[str, Any]:
        return {
            "status": "healthy",
            "webhook": {
                "path": self.path,
                "method": self.method,
                "authentication": self.authentication,
            },
            "timestamp": utc_now(),
        }

    async def _handle_request(self, request: Request) -> Response:
        request_id = f"req_{uuid.uuid4().hex[:12]}"
        logger.info("Webhook request received: %s %s (ID: %s)", request.method, request.url.path, request_id)

        try:
            self._authenticate(request)
        except AuthenticationError as e:
            logger.warning("Authentication failed for request %s: %s", request_id, e)
            return JSONResponse({"error": "Authentication failed"}, status_code=401)

        try:
            snapshot = await self._snapshot(request, request_id)
            payload = self.trigger_output(request=snapshot, webhook_url=self.webhook_url)

            if self.response_mode == "onReceived":
                return self._build_response(BackgroundTask(self.fire_trigger, payload))

            await self.fire_trigger(payload)
            return self._build_response()
        except Exception:
            logger.exception("Webhook request %s handling failed", request_id)
            return JSONResponse({"error": "Internal server error"}, status_code=500)

    def _authenticate(self, request: Request) -> None:
        mode = self.authentication
        data = self.auth_data
        if mode == "none":
            return

        if mode == "basic":
            header = request.headers.get("authorization", "")
            if not header.startswith("Basic "):
                raise AuthenticationError("Missing basic credentials")
            try:
                decoded = base64.b64decode(header[6:], validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError):
                raise AuthenticationError("Malformed basic credentials")
            username, _, password = decoded.partition(":")
            if not (
                secrets.compare_digest(username, str(self._param("username", source=data)))
                and secrets.compare_digest(password, str(self._param("password", source=data)))
            ):
                raise AuthenticationError("Invalid username or password")
            return

        if mode == "header":
            provided = request.headers.get(self._param("header_name", source=data))
            expected = self._param("header_value", source=data)
        else:
            provided = request.query_params.get(self._param("query_parameter", source=data))
            expected = self._param("query_value", source=data)

        if provided is None or provided != expected:
            raise AuthenticationError(f"Invalid {mode} credentials")

    async def _snapshot(self, request: Request, request_id: str) -> Dict[str, Any]:
        return {
            "id": request_id,
            "method": request.method,
            "path": request.url.path,
            "headers": dict(request.headers),
            "query": dict(request.query_params),
            "body": await self._read_body(request),
            "timestamp": utc_now(),
            "remote_address": request.client.host if request.client else None,
            "user_agent": request.headers.get("user-agent"),
        }

    @staticmethod
    async def _read_body(request: Request) -> Any:
        raw = await request.body()
        if not raw:
            return None

        content_type = request.headers.get("content-type", "")
        if "application/x-www-form-urlencoded" in content_type:
            return dict(parse_qsl(raw.decode("utf-8"), keep_blank_values=True))

        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            return {"type": "binary", "data": base64.b64encode(raw).decode("ascii")}

        if "json" in content_type:
            try:
                return json.loads(text)
            except ValueError:
                return text
        return text

    def _build_response(self, background: Optional[BackgroundTask] = None) -> Response:
        data = self.response_data
        status_code = self.response_status_code
        headers = self.response_headers
        if not data:
            return JSONResponse(
                {"success": True, "timestamp": utc_now()},
                status_code=status_code,
                headers=headers,
                background=background,
            )
        try:
            content = json.loads(data)
        except ValueError:
            return PlainTextResponse(data, status_code=status_code, headers=headers, background=background)
        return JSONResponse(content, status_code=status_code, headers=headers, background=background)

    # Hooks

    async def _start_trigger(self) -> None:
        await self.listener.start(self.app, self.host, self.port)
        logger.info("Webhook endpoint: %s %s", self.method, self.webhook_url)

    async def _stop_trigger(self) -> None:
        await self.listener.stop()

    def _test_request_options(self) -> Dict[str, Any]:
        data = self.auth_data
        options: Dict[str, Any] = {}
        if self.authentication == "basic":
            options["auth"] = (self._param("username", source=data), self._param("password", source=data))
        elif self.authentication == "header":
            options["headers"] = {self._param("header_name", source=data): self._param("header_value", source=data)}
        elif self.authentication == "query":
            options["params"] = {self._param("query_parameter", source=data): self._param("query_value", source=data)}
        if self.method != "GET":
            options["json"] = {"test": True, "timestamp": utc_now()}
        return options

    async def _test_trigger(self) -> Dict[str, Any]:
        url = self.webhook_url
        report: Dict[str, Any] = {
            "webhook_url": url,
            "method": self.method,
            "authentication": self.authentication,
        }
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.request(self.method, url, **self._test_request_options())
        except httpx.HTTPError as e:
            report.update(error=str(e) or e.__class__.__name__, is_reachable=False)
            return report

        report.update(status_code=response.status_code, is_reachable=True)
        return report
