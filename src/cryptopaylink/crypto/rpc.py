"""JSON-RPC 2.0 transport shared by the chain adapters."""

from itertools import count
from typing import Any

import httpx
import structlog

from cryptopaylink.exceptions import ChainQueryError

logger = structlog.get_logger(__name__)


class JsonRpcClient:
    """
    Thin JSON-RPC client over a shared httpx.AsyncClient.

    The HTTP client is injected so that connections can be pooled across
    adapters and replaced by a mock transport in tests. Every request carries
    an explicit timeout: a hung node must not stall verification.
    """

    def __init__(self, http_client: httpx.AsyncClient, url: str, timeout: float = 15.0):
        self.http_client = http_client
        self.url = url
        self.timeout = timeout
        self._ids = count(1)

    async def call(self, method: str, params: list[Any] | None = None) -> Any:
        payload = self._payload(method, params)
        data = await self._post(method, payload)
        if not isinstance(data, dict):
            raise ChainQueryError(method, "malformed JSON-RPC response")
        return self._unwrap(method, data)

    async def batch(self, calls: list[tuple[str, list[Any]]]) -> list[Any]:
        """Send several calls in one request; results keep the input order."""
        if not calls:
            return []
        payloads = [self._payload(method, params) for method, params in calls]
        label = f"batch[{calls[0][0]} x{len(calls)}]"
        data = await self._post(label, payloads)
        if not isinstance(data, list):
            # Some nodes answer a failed batch with a single error object
            if isinstance(data, dict) and "error" in data:
                self._unwrap(label, data)
            raise ChainQueryError(label, "malformed JSON-RPC batch response")

        by_id = {item.get("id"): item for item in data if isinstance(item, dict)}
        results = []
        for (method, _), payload in zip(calls, payloads, strict=True):
            item = by_id.get(payload["id"])
            if item is None:
                raise ChainQueryError(method, "missing response in batch")
            results.append(self._unwrap(method, item))
        return results

    def _payload(self, method: str, params: list[Any] | None) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

    async def _post(self, method: str, payload: Any) -> Any:
        try:
            response = await self.http_client.post(
                self.url, json=payload, timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise ChainQueryError(
                method, f"HTTP {e.response.status_code} from RPC node"
            ) from e
        except httpx.RequestError as e:
            raise ChainQueryError(method, f"transport error: {e!r}") from e
        except ValueError as e:
            raise ChainQueryError(method, "response body is not JSON") from e

    @staticmethod
    def _unwrap(method: str, data: dict[str, Any]) -> Any:
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.warning("rpc_error", method=method, error=error)
            raise ChainQueryError(method, message or "unknown RPC error")
        return data.get("result")
