"""HTTP Request node for calling external APIs.

Makes one request per input item. The url, headers and body may contain
{{ }} expressions resolved against that item's data.
"""

import base64
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from flowline.core.state import ExecutionContext
from flowline.nodes.base import BaseNode, NodeInputItem, map_items
from flowline.utils.errors import ParameterValidationError
from flowline.utils.expressions import ExpressionResolver

logger = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")
BODY_TYPES = ("json", "form", "raw")
USER_AGENT = "flowline/0.1.0"


class HttpRequestNode(BaseNode):
    """Make HTTP requests with httpx.

    Output per item:
        {
            "status_code": 200,
            "headers": {...},
            "body": <parsed JSON, text, or base64 binary wrapper>,
            "url": "https://api.example.com/users/1",
        }

    Example:
        >>> node = HttpRequestNode("http_1", {
        ...     "url": "https://api.example.com/users/{{ $json.user_id }}",
        ...     "method": "GET",
        ... })
    """

    type = "httpRequest"
    required_parameters = ("url",)

    def __init__(
        self,
        id: str,
        parameters: Dict[str, Any] = None,
        name: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize HttpRequestNode.

        Args:
            id: Node identifier
            parameters: url, method, headers, body, body_type, timeout_ms,
                follow_redirects
            name: Display name
            transport: Optional httpx transport (used to stub the network)
        """
        self.transport = transport
        super().__init__(id, parameters, name)

    def validate_parameters(self) -> None:
        super().validate_parameters()
        url = self.parameters["url"]
        if not isinstance(url, str):
            raise ParameterValidationError(self.id, "'url' must be a string", parameter="url")
        if not url.startswith("{{") and not url.lower().startswith(("http://", "https://")):
            raise ParameterValidationError(self.id, "Invalid URL format", parameter="url")

        method = self.method
        if method not in HTTP_METHODS:
            raise ParameterValidationError(
                self.id, f"Invalid HTTP method: {method}", parameter="method"
            )
        body_type = self.get_parameter("body_type", "json")
        if body_type not in BODY_TYPES:
            raise ParameterValidationError(
                self.id, f"Invalid body type: {body_type}", parameter="body_type"
            )

    @property
    def method(self) -> str:
        return str(self.get_parameter("method", "GET")).upper()

    async def execute(
        self,
        items: Sequence[NodeInputItem],
        context: ExecutionContext,
    ) -> List[Any]:
        timeout = self.get_parameter("timeout_ms", context.node_settings().get("timeout_ms", 30_000)) / 1000
        async with httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=bool(self.get_parameter("follow_redirects", True)),
            transport=self.transport,
        ) as client:
            return await map_items(items, context, lambda data: self._request(client, data, context.warn))

    async def _request(
        self,
        client: httpx.AsyncClient,
        data: Any,
        on_warning: Optional[Callable[[str], None]] = None,
    ) -> Dict[str, Any]:
        resolver = ExpressionResolver(data=data, parameters=self.parameters, on_warning=on_warning)
        url = str(resolver.resolve(self.parameters["url"]))
        headers = {"User-Agent": USER_AGENT}
        for key, value in self.get_parameter("headers", {}).items():
            headers[key] = str(resolver.resolve(value))

        request_kwargs = {} if self.method in ("GET", "HEAD") else self._build_body(resolver)
        headers.update(request_kwargs.pop("headers", {}))

        logger.info("Node %s making %s request to %s", self.id, self.method, url)
        response = await client.request(self.method, url, headers=headers, **request_kwargs)
        logger.info("Node %s request completed with status %s", self.id, response.status_code)

        return {
            "status_code": response.status_code,
            "status_message": response.reason_phrase,
            "headers": dict(response.headers),
            "body": self._parse_body(response),
            "url": str(response.url),
        }

    def _build_body(self, resolver: ExpressionResolver) -> Dict[str, Any]:
        body = self.get_parameter("body")
        if body is None or body == "":
            return {}

        body_type = self.get_parameter("body_type", "json")
        body = resolver.resolve_value(body)

        if body_type == "json":
            if isinstance(body, str):
                try:
                    body = json.loads(body)
                except ValueError as e:
                    raise ValueError(f"Invalid JSON body: {e}") from e
            return {"json": body}

        if body_type == "form":
            if isinstance(body, str):
                try:
                    body = json.loads(body)
                except ValueError:
                    # already url-encoded
                    return {
                        "content": body,
                        "headers": {"Content-Type": "application/x-www-form-urlencoded"},
                    }
            return {"data": body}

        return {"content": body if isinstance(body, (str, bytes)) else json.dumps(body)}

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                return response.json()
            except ValueError:
                return response.text
        if content_type.startswith("text/") or not response.content:
            return response.text
        return {
            "type": "binary",
            "data": base64.b64encode(response.content).decode("ascii"),
            "mime_type": content_type,
        }
