from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing import InvoiceMonth, expand_installments
from database import Base


class SubscriptionStatus(str, Enum):
    active = "active"
    cancelled = "cancelled"


MONEY = Numeric(12, 2, asdecimal=True)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Card(Base, TimestampMixin):
    __tablename__ = "cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    bank_name: Mapped[str] = mapped_column(String(100), nullable=False)
    logo_url: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    closing_day: Mapped[int] = mapped_column(Integer, nullable=False)
    due_day: Mapped[int] = mapped_column(Integer, nullable=False)

    purchases: Mapped[list["Purchase"]] = relationship(
        "Purchase", back_populates="card", cascade="all, delete-orphan"
    )
    subscriptions: Mapped[list["Subscription"]] = relationship(
        "Subscription", back_populates="card", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "closing_day BETWEEN 1 AND 31", name="ck_card_closing_day_range"
        ),
        CheckConstraint("due_day BETWEEN 1 AND 31", name="ck_card_due_day_range"),
    )


class Subscription(Base, TimestampMixin):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    card_id: Mapped[int] = mapped_column(ForeignKey("cards.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[SubscriptionStatus] = mapped_column(
        SAEnum(SubscriptionStatus),
        default=SubscriptionStatus.active,
        nullable=False,
    )
    cancelled_at: Mapped[Optional[str]] = mapped_column(String(7))

    card: Mapped["Card"] = relationship("Card", back_populates="subscriptions")
    purchases: Mapped[list["Purchase"]] = relationship(
        "Purchase", back_populates="subscription"
    )

    __table_args__ = (
        CheckConstraint("value > 0", name="ck_subscription_value_positive"),
        Index("ix_subscriptions_user_status", "user_id", "status"),
    )


class Purchase(Base, TimestampMixin):
    __tablename__ = "purchases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    card_id: Mapped[int] = mapped_column(ForeignKey("cards.id"), nullable=False)
    purchase_date: Mapped[date] = mapped_column(Date, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(60), nullable=False)
    total_value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total_installments: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1
    )
    invoice_month: Mapped[str] = mapped_column(String(7), nullable=False)
    subscription_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("subscriptions.id")
    )

    card: Mapped["Card"] = relationship("Card", back_populates="purchases")
    subscription: Mapped[Optional["Subscription"]] = relationship(
        "Subscription", back_populates="purchases"
    )

    __table_args__ = (
        UniqueConstraint(
            "subscription_id",
            "purchase_date",
            name="uq_purchase_subscription_date",
        ),
        Index("ix_purchases_user_invoice_month", "user_id", "invoice_month"),
        Index("ix_purchases_card", "card_id"),
        CheckConstraint("total_value > 0", name="ck_purchase_value_positive"),
        CheckConstraint(
            "total_installments BETWEEN 1 AND 99",
            name="ck_purchase_installments_range",
        ),
    )

    @property
    def installment_value(self) -> Decimal:
        return Decimal(self.total_value) / self.total_installments

    @property
    def invoice_months(self) -> list[InvoiceMonth]:
        return expand_installments(self.invoice_month, self.total_installments)


class UserSetting(Base, TimestampMixin):
    __tablename__ = "user_settings"
    __table_args__ = (
        UniqueConstraint("user_id", "key", name="uq_user_setting_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    key: Mapped[str] = mapped_column(String(100), nullable=False)
    value_json: Mapped[str] = mapped_column(Text, nullable=False, default="null")
