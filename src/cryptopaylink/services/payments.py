"""
Payment creation: quote the product's price and record a pending intent.
"""

from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cryptopaylink.crypto.pricing import PriceSource, to_crypto_quantity
from cryptopaylink.exceptions import ProductNotFoundError, UnsupportedAssetError
from cryptopaylink.repository import SqlPaymentRepository

from .orchestrator import VerificationOrchestrator

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CreatedPayment:
    intent_id: str
    crypto_amount: float
    crypto_price: float


class PaymentService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        price_source: PriceSource,
        orchestrator: VerificationOrchestrator,
    ):
        self.session_factory = session_factory
        self.price_source = price_source
        self.orchestrator = orchestrator

    async def create_payment(
        self, product_id: str, buyer_email: str, buyer_wallet: str | None
    ) -> CreatedPayment:
        """
        Create a pending intent for an active product.

        Price failures propagate and nothing is persisted: an intent with a
        bogus expected quantity could never be matched correctly.

        Raises:
            ProductNotFoundError: unknown or inactive product
            UnsupportedAssetError: product's chain/currency cannot be verified
            PriceUnavailable, UpstreamError: no usable quote
        """
        async with self.session_factory() as session:
            product = await SqlPaymentRepository(session).get_product(
                product_id, active_only=True
            )
        if product is None:
            raise ProductNotFoundError(product_id)
        if not self.orchestrator.supports(product.chain, product.currency):
            raise UnsupportedAssetError(product.chain, product.currency)

        # Quote outside any session; the HTTP call may be slow
        price = await self.price_source.get_price_for_currency(product.currency)
        amount_crypto = to_crypto_quantity(product.price_usd, price)

        async with self.session_factory() as session:
            intent = await SqlPaymentRepository(session).create_intent(
                product=product,
                buyer_email=buyer_email,
                buyer_wallet=buyer_wallet,
                amount_crypto=amount_crypto,
                crypto_price=price,
            )
            await session.commit()

        logger.info(
            "payment_created",
            payment_id=intent.id,
            product_id=product_id,
            amount_usd=product.price_usd,
            amount_crypto=amount_crypto,
            crypto_price=price,
            currency=product.currency,
            chain=product.chain,
        )
        return CreatedPayment(
            intent_id=intent.id, crypto_amount=amount_crypto, crypto_price=price
        )
