"""
Filecoin full-node JSON-RPC client.

Thin adapter over requests.Session that speaks JSON-RPC 2.0 to a
lotus/venus style endpoint. Also provides the Target wrapper the
Dispatcher invokes methods through.
"""

from __future__ import annotations

import base64
import itertools
import json
import threading
from dataclasses import is_dataclass
from typing import Any, List, Optional, Sequence

import requests

from apicompare.dispatch.request import CallContext
from apicompare.exceptions import UnknownMethodError
from apicompare.utils.logger import get_logger, mask_token

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
RPC_NAMESPACE = "Filecoin"
RPC_PATH = "/rpc/v1"

# JSON-RPC 2.0 "method not found"
METHOD_NOT_FOUND = -32601


class RpcError(RuntimeError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, method: str, code: Optional[int], message: str) -> None:
        super().__init__(f"{method}: {message} (code {code})")
        self.method = method
        self.code = code
        self.rpc_message = message


class RpcTransportError(RuntimeError):
    """The HTTP exchange itself failed (connection, timeout, status, body)."""

    def __init__(self, method: str, reason: str, status_code: Optional[int] = None) -> None:
        status_fragment = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"{method}: {reason}{status_fragment}")
        self.method = method
        self.reason = reason
        self.status_code = status_code


def endpoint_to_url(endpoint: str) -> str:
    """
    Translate a multiaddr (`/ip4/127.0.0.1/tcp/1234`) or a ws/http URL into the
    HTTP JSON-RPC URL of the v1 API.

    Raises:
        ValueError: If the endpoint cannot be parsed
    """
    if not endpoint:
        raise ValueError("Empty RPC endpoint")

    if "://" in endpoint:
        scheme, rest = endpoint.split("://", 1)
        scheme = {"ws": "http", "wss": "https"}.get(scheme.lower(), scheme.lower())
        if scheme not in ("http", "https"):
            raise ValueError(f"Unsupported RPC scheme: {endpoint}")
        host_part, _, path = rest.partition("/")
        return f"{scheme}://{host_part}/{path}" if path else f"{scheme}://{host_part}{RPC_PATH}"

    parts = [p for p in endpoint.split("/") if p]
    if len(parts) < 4 or parts[2] != "tcp":
        raise ValueError(f"Unsupported multiaddr: {endpoint}")

    proto, host, _, port = parts[:4]
    if proto not in ("ip4", "ip6", "dns", "dns4", "dns6"):
        raise ValueError(f"Unsupported multiaddr protocol {proto}: {endpoint}")
    if proto == "ip6":
        host = f"[{host}]"

    scheme = "https" if len(parts) > 4 and parts[4] in ("https", "wss", "tls") else "http"
    return f"{scheme}://{host}:{port}{RPC_PATH}"


def encode_param(value: Any) -> Any:
    """
    Encode one positional argument into its JSON wire form.

    Domain values use their to_json(); raw bytes go out as base64 like the
    node's own JSON codec.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    to_json = getattr(value, "to_json", None)
    if callable(to_json):
        return to_json()
    if isinstance(value, dict):
        return {str(k): encode_param(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_param(v) for v in value]
    if is_dataclass(value):
        raise TypeError(f"Dataclass {type(value).__name__} has no wire form")
    raise TypeError(f"Cannot encode parameter of type {type(value).__name__}")


class RpcClient:
    """
    JSON-RPC 2.0 client for one node.

    Thread-safe: request ids come from a locked counter and requests.Session
    is shared read-only once configured.
    """

    def __init__(
        self,
        endpoint: str,
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        namespace: str = RPC_NAMESPACE,
    ):
        """
        Args:
            endpoint: Multiaddr or URL of the node API
            token: Bearer token (optional for read-only APIs)
            timeout: HTTP timeout per call, in seconds
            session: Optional requests-like session (useful for testing)
            namespace: JSON-RPC method namespace
        """
        self.url = endpoint_to_url(endpoint)
        self.timeout = timeout
        self.namespace = namespace
        self.session = session or requests.Session()
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()

        self.headers = {"Content-Type": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

        logger.debug(
            "RPC client configured",
            operation="rpc_client_init",
            context={"url": self.url, "token": mask_token(token)},
        )

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    def call(self, method: str, *params: Any) -> Any:
        """
        Call `Filecoin.<method>` with positional params.

        Returns:
            The decoded `result` member

        Raises:
            RpcError: If the node returned an error object
            RpcTransportError: If the HTTP exchange failed
        """
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": f"{self.namespace}.{method}",
            "params": [encode_param(p) for p in params],
        }

        try:
            response = self.session.post(
                self.url,
                headers=self.headers,
                data=json.dumps(payload),
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise RpcTransportError(method, f"timeout after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise RpcTransportError(method, str(e)) from e

        if response.status_code == 401:
            raise RpcTransportError(method, "unauthorized", response.status_code)
        if response.status_code >= 400:
            raise RpcTransportError(method, "unexpected status", response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise RpcTransportError(method, "invalid JSON response", response.status_code) from e

        if not isinstance(body, dict):
            raise RpcTransportError(method, "malformed JSON-RPC response")

        error = body.get("error")
        if error:
            if isinstance(error, dict):
                raise RpcError(method, error.get("code"), str(error.get("message", "")))
            raise RpcError(method, None, str(error))

        return body.get("result")


class Target:
    """
    One side of the comparison.

    Adapts an RpcClient to the Dispatcher's invoke(method, args) contract:
    the leading CallContext is consumed here and never sent.
    """

    def __init__(self, name: str, client: RpcClient):
        self.name = name
        self.client = client

    def invoke(self, method: str, args: Sequence[Any]) -> Any:
        params: List[Any] = list(args)
        if params and isinstance(params[0], CallContext):
            ctx = params.pop(0)
            if ctx.done():
                raise RpcTransportError(method, "context cancelled")
        try:
            return self.client.call(method, *params)
        except RpcError as e:
            if e.code == METHOD_NOT_FOUND:
                raise UnknownMethodError(f"{self.name} does not expose {method}") from e
            raise

    def __repr__(self) -> str:
        return f"Target({self.name}, {self.client.url})"

