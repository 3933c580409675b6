"""Create products and payment_intents tables

Revision ID: 001_create_payment_tables
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_create_payment_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

payment_status_enum = sa.Enum("pending", "confirmed", "failed", name="paymentstatus")


def upgrade() -> None:
    """Create product and payment intent tables with indexes."""
    op.create_table(
        "products",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("price_usd", sa.Float(), nullable=False),
        sa.Column("chain", sa.String(), nullable=False),
        sa.Column("currency", sa.String(), nullable=False),
        sa.Column("recipient_wallet", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "payment_intents",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "product_id", sa.String(), sa.ForeignKey("products.id"), nullable=False
        ),
        sa.Column("buyer_email", sa.String(), nullable=False),
        sa.Column("buyer_wallet", sa.String(), nullable=True),
        sa.Column("amount_usd", sa.Float(), nullable=False),
        sa.Column("amount_crypto", sa.Float(), nullable=False),
        sa.Column("crypto_price", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(), nullable=False),
        sa.Column("chain", sa.String(), nullable=False),
        sa.Column("status", payment_status_enum, nullable=False),
        sa.Column("transaction_hash", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    # One on-chain transaction can pay for at most one intent
    op.create_index(
        "ix_payment_intents_transaction_hash",
        "payment_intents",
        ["transaction_hash"],
        unique=True,
    )
    op.create_index("ix_payment_intents_status", "payment_intents", ["status"])
    op.create_index("ix_payment_intents_product_id", "payment_intents", ["product_id"])


def downgrade() -> None:
    """Drop payment tables and enum type."""
    op.drop_index("ix_payment_intents_product_id", table_name="payment_intents")
    op.drop_index("ix_payment_intents_status", table_name="payment_intents")
    op.drop_index("ix_payment_intents_transaction_hash", table_name="payment_intents")
    op.drop_table("payment_intents")
    op.drop_table("products")
    payment_status_enum.drop(op.get_bind(), checkfirst=True)
