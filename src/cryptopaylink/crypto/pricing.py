"""
Price quotes and fiat to crypto conversion.
Converts USD product prices to the quantity a buyer must send.
"""

import math
from decimal import Decimal
from typing import Protocol

import httpx
import structlog

from cryptopaylink.exceptions import (
    PriceUnavailable,
    UnsupportedAssetError,
    UpstreamError,
)

logger = structlog.get_logger(__name__)

# Canonical quote-source ids per payment currency
COIN_IDS = {
    "SOL": "solana",
    "ETH": "ethereum",
    "USDT": "tether",
    "USDC": "usd-coin",
}


def coin_id_for(currency: str) -> str:
    try:
        return COIN_IDS[currency.upper()]
    except KeyError:
        raise UnsupportedAssetError(chain="*", currency=currency) from None


def to_crypto_quantity(fiat_amount: float, price: float) -> float:
    """
    Convert a USD amount to a crypto quantity at the given USD price.

    Example:
        >>> to_crypto_quantity(100.0, 20.0)
        5.0

    Raises:
        ValueError: price is zero, negative or not finite. A bad quote must
            never turn into an infinite or zero expected quantity.
    """
    if not math.isfinite(price) or price <= 0:
        raise ValueError(f"Invalid crypto price: {price!r}")
    return float(Decimal(str(fiat_amount)) / Decimal(str(price)))


class PriceSource(Protocol):
    async def get_price(self, symbol: str) -> float: ...

    async def get_price_for_currency(self, currency: str) -> float: ...


def _validated_price(symbol: str, raw: object) -> float:
    if isinstance(raw, bool) or not isinstance(raw, int | float):
        raise PriceUnavailable(symbol, f"non-numeric price {raw!r}")
    price = float(raw)
    if not math.isfinite(price) or price <= 0:
        raise PriceUnavailable(symbol, f"invalid price {raw!r}")
    return price


class PriceOracle:
    """
    USD quotes from a CoinGecko-compatible `simple/price` endpoint.

    Response shape: {"<symbol>": {"usd": <number>}}. A missing key is an
    error, never a zero price.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = "https://api.coingecko.com/api/v3",
        timeout: float = 10.0,
    ):
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def get_price(self, symbol: str) -> float:
        try:
            response = await self.http_client.get(
                f"{self.base_url}/simple/price",
                params={"ids": symbol, "vs_currencies": "usd"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "price_upstream_status",
                symbol=symbol,
                status_code=e.response.status_code,
            )
            raise UpstreamError(
                f"Price source returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            logger.error("price_upstream_unreachable", symbol=symbol, error=str(e))
            raise UpstreamError(f"Price source unreachable: {e!r}") from e
        except ValueError as e:
            raise UpstreamError("Price source returned a non-JSON body") from e

        quote = data.get(symbol) if isinstance(data, dict) else None
        if not isinstance(quote, dict) or "usd" not in quote:
            logger.warning("price_missing", symbol=symbol)
            raise PriceUnavailable(symbol)

        price = _validated_price(symbol, quote["usd"])
        logger.info("price_fetched", symbol=symbol, price_usd=price)
        return price

    async def get_price_for_currency(self, currency: str) -> float:
        return await self.get_price(coin_id_for(currency))


class FixedRatePriceOracle:
    """
    Deterministic quotes from configuration.

    For local development and tests only; real payments need live quotes.
    """

    def __init__(self, rates: dict[str, float]):
        self.rates = dict(rates)

    async def get_price(self, symbol: str) -> float:
        if symbol not in self.rates:
            raise PriceUnavailable(symbol, "no fixed rate configured")
        return _validated_price(symbol, self.rates[symbol])

    async def get_price_for_currency(self, currency: str) -> float:
        return await self.get_price(coin_id_for(currency))
