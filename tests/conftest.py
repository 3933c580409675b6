"""Pytest configuration and shared fixtures."""

import asyncio
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest
import pytest_asyncio

from cryptopaylink.crypto.interfaces import (
    Unverified,
    VerificationQuery,
    VerificationResult,
)
from cryptopaylink.db import Product, create_engine, create_session_factory, init_db


class FakeRpcNode:
    """
    In-process JSON-RPC node for httpx.MockTransport.

    Handlers are keyed by method name and receive the call's params.
    Every call is recorded so tests can assert on the filters that were sent.
    """

    def __init__(self, handlers: dict[str, Callable[[list[Any]], Any]]):
        self.handlers = handlers
        self.calls: list[tuple[str, list[Any]]] = []
        self.status_code = 200

    def _answer(self, payload: dict[str, Any]) -> dict[str, Any]:
        method, params = payload["method"], payload.get("params", [])
        self.calls.append((method, params))
        handler = self.handlers.get(method)
        if handler is None:
            return {
                "jsonrpc": "2.0",
                "id": payload["id"],
                "error": {"code": -32601, "message": f"Method not found: {method}"},
            }
        return {"jsonrpc": "2.0", "id": payload["id"], "result": handler(params)}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "unavailable"})
        body = json.loads(request.content)
        if isinstance(body, list):
            return httpx.Response(200, json=[self._answer(item) for item in body])
        return httpx.Response(200, json=self._answer(body))

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]


class FakeAdapter:
    """Chain adapter returning a fixed result, counting calls."""

    def __init__(self, result: VerificationResult | None = None, delay: float = 0.0):
        self.result = result or Unverified({"reason": "no_match"})
        self.delay = delay
        self.queries: list[VerificationQuery] = []

    async def verify_payment(self, query: VerificationQuery) -> VerificationResult:
        self.queries.append(query)
        await asyncio.sleep(self.delay)
        return self.result


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.notified: list[str] = []

    async def notify(self, payment_intent_id: str) -> None:
        self.notified.append(payment_intent_id)
        if self.fail:
            raise httpx.ConnectError("confirmation endpoint unreachable")


@pytest.fixture
def rpc_client_factory():
    """Build an httpx.AsyncClient backed by a FakeRpcNode."""
    def factory(node: FakeRpcNode) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(node))

    return factory


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}")
    await init_db(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def sol_product(session_factory):
    product = Product(
        id="prod-sol",
        name="Design Template Pack",
        price_usd=100.0,
        chain="solana",
        currency="SOL",
        recipient_wallet="seller-wallet",
        is_active=True,
    )
    async with session_factory() as session:
        session.add(product)
        await session.commit()
    return product
