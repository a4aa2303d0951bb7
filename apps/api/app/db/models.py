from __future__ import annotations

from decimal import Decimal
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# Precision contract:
# - users.wallet_balance / wallet_transactions.amount: Numeric(18,4), currency units
# - generated_images.credits_used: Numeric(10,2), credits (quoted in 0.5 steps)

TRANSACTION_KINDS = ("topup", "deduct", "bonus", "refund")
IMAGE_STATUSES = ("pending", "completed", "failed")


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"
    __table_args__ = (CheckConstraint("wallet_balance >= 0", name="ck_users_wallet_balance_non_negative"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    picture: Mapped[str | None] = mapped_column(Text(), nullable=True)
    wallet_balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 4), nullable=False, default=Decimal("0"), server_default=text("0")
    )
    auto_recharge_enabled: Mapped[bool] = mapped_column(
        Boolean(), nullable=False, default=False, server_default=text("false")
    )
    auto_recharge_threshold: Mapped[Decimal] = mapped_column(
        Numeric(18, 4), nullable=False, default=Decimal("100"), server_default=text("100")
    )
    auto_recharge_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 4), nullable=False, default=Decimal("500"), server_default=text("500")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    transactions: Mapped[list["WalletTransaction"]] = relationship(back_populates="user")
    images: Mapped[list["GeneratedImage"]] = relationship(back_populates="user")


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        CheckConstraint(
            "type IN ('topup', 'deduct', 'bonus', 'refund')", name="ck_wallet_transactions_type"
        ),
        UniqueConstraint("user_id", "type", "reference_id", name="uq_wallet_transactions_reference"),
    )

    id: Mapped[int] = mapped_column(Integer(), primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    credits_added: Mapped[Decimal] = mapped_column(
        Numeric(18, 4), nullable=False, default=Decimal("0"), server_default=text("0")
    )
    balance_after: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    user: Mapped["User"] = relationship(back_populates="transactions")


class GeneratedImage(Base):
    __tablename__ = "generated_images"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')", name="ck_generated_images_status"
        ),
        UniqueConstraint("user_id", "idempotency_key", name="uq_generated_images_idempotency_key"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    original_prompt: Mapped[str] = mapped_column(Text(), nullable=False)
    enhanced_prompt: Mapped[str | None] = mapped_column(Text(), nullable=True)
    image_url: Mapped[str] = mapped_column(Text(), nullable=False)
    resolution: Mapped[str] = mapped_column(String(16), nullable=False)
    generation_type: Mapped[str] = mapped_column(String(32), nullable=False)
    credits_used: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default=text("'pending'"))
    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    user: Mapped["User"] = relationship(back_populates="images")
