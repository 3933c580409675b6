"""SQLAlchemy persistence for products and payment intents."""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .db import PaymentIntent, PaymentStatus, Product, utcnow


class SqlPaymentRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_product(
        self, product_id: str, active_only: bool = False
    ) -> Product | None:
        stmt = select(Product).where(Product.id == product_id)
        if active_only:
            stmt = stmt.where(Product.is_active.is_(True))
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_intent(self, intent_id: str) -> PaymentIntent | None:
        stmt = select(PaymentIntent).where(PaymentIntent.id == intent_id)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def create_intent(
        self,
        *,
        product: Product,
        buyer_email: str,
        buyer_wallet: str | None,
        amount_crypto: float,
        crypto_price: float,
    ) -> PaymentIntent:
        intent = PaymentIntent(
            product_id=product.id,
            buyer_email=buyer_email,
            buyer_wallet=buyer_wallet,
            amount_usd=product.price_usd,
            amount_crypto=amount_crypto,
            crypto_price=crypto_price,
            currency=product.currency,
            chain=product.chain,
            status=PaymentStatus.PENDING,
        )
        self.session.add(intent)
        await self.session.flush()
        return intent

    async def find_claim(self, transaction_hash: str, exclude_id: str) -> str | None:
        """Return the id of another intent already holding this hash."""
        stmt = select(PaymentIntent.id).where(
            PaymentIntent.transaction_hash == transaction_hash,
            PaymentIntent.id != exclude_id,
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def confirm_if_pending(
        self, intent_id: str, transaction_hash: str, confirmed_at: datetime
    ) -> bool:
        """Atomically move PENDING -> CONFIRMED. False when another writer won."""
        stmt = (
            update(PaymentIntent)
            .where(
                PaymentIntent.id == intent_id,
                PaymentIntent.status == PaymentStatus.PENDING,
            )
            .values(
                status=PaymentStatus.CONFIRMED,
                transaction_hash=transaction_hash,
                confirmed_at=confirmed_at,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def fail_if_pending(self, intent_id: str) -> bool:
        """Atomically move PENDING -> FAILED. False when already terminal."""
        stmt = (
            update(PaymentIntent)
            .where(
                PaymentIntent.id == intent_id,
                PaymentIntent.status == PaymentStatus.PENDING,
            )
            .values(status=PaymentStatus.FAILED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1
