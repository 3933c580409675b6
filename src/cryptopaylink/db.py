import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    String,
)
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to timestamps read back from drivers that drop tzinfo."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Base(DeclarativeBase):
    pass


class PaymentStatus(enum.Enum):
    """Lifecycle of a payment intent. CONFIRMED and FAILED are terminal."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class Product(Base):
    """
    Seller's product, owned by the product collaborator.
    The verification core only reads it.
    """

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    price_usd: Mapped[float] = mapped_column(Float, nullable=False)
    chain: Mapped[str] = mapped_column(String, nullable=False)  # "solana", "ethereum"
    currency: Mapped[str] = mapped_column(String, nullable=False)  # "SOL", "ETH", ...
    recipient_wallet: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class PaymentIntent(Base):
    """
    A buyer's declared payment for a product.
    Mutated once, by reconciliation, from PENDING to CONFIRMED or FAILED.
    """

    __tablename__ = "payment_intents"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid.uuid4())
    )
    product_id: Mapped[str] = mapped_column(
        String, ForeignKey("products.id"), nullable=False, index=True
    )
    buyer_email: Mapped[str] = mapped_column(String, nullable=False)
    buyer_wallet: Mapped[str | None] = mapped_column(String, nullable=True)
    amount_usd: Mapped[float] = mapped_column(Float, nullable=False)
    amount_crypto: Mapped[float] = mapped_column(Float, nullable=False)
    crypto_price: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String, nullable=False)
    chain: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )
    # Unique across all intents: one on-chain transfer pays for one intent
    transaction_hash: Mapped[str | None] = mapped_column(
        String, nullable=True, unique=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    product: Mapped[Product] = relationship(lazy="joined")


def create_engine(url: str, echo: bool = False) -> AsyncEngine:
    return create_async_engine(url, echo=echo)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create tables in development mode (migrations preferred)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
