from __future__ import annotations

import json
import logging
import re
import unicodedata
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from billing import (
    InvoiceMonth,
    MonthLike,
    as_invoice_month,
    installment_schedule,
    installment_value,
)
from invoices import (
    CardInvoice,
    MonthSummary,
    aggregate_month,
    available_years,
    project_history,
)
from models import Card, Purchase, Subscription, SubscriptionStatus, UserSetting
from schemas import CardIn, PreviewIn, PurchaseIn, SubscriptionIn, SubscriptionUpdate
from subscriptions import (
    SUBSCRIPTION_CATEGORY,
    MaterializationError,
    SubscriptionEngine,
    local_today,
)


logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: list[tuple[str, str]] = [
    ("alimentacao", "Alimentação"),
    ("transporte", "Transporte"),
    ("saude", "Saúde"),
    ("lazer", "Lazer"),
    ("educacao", "Educação"),
    ("casa", "Casa"),
    ("vestuario", "Vestuário"),
    ("tecnologia", "Tecnologia"),
    ("outros", "Outros"),
    (SUBSCRIPTION_CATEGORY, "Assinatura"),
]

CATEGORIES_KEY = "categories"


def get_current_user_id() -> int:
    return 1


def category_slug(label: str) -> str:
    normalized = unicodedata.normalize("NFKD", label.strip().lower())
    ascii_only = normalized.encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "_", ascii_only).strip("_")
    if not slug:
        raise ValueError("Category name cannot be empty")
    return slug


class SettingsService:
    """Per-user key/value configuration backed by ``user_settings``."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _row(self, key: str) -> Optional[UserSetting]:
        return self.session.scalar(
            select(UserSetting).where(
                UserSetting.user_id == self.user_id, UserSetting.key == key
            )
        )

    def get(self, key: str, default: Any = None) -> Any:
        row = self._row(key)
        if row is None:
            return default
        return json.loads(row.value_json)

    def set(self, key: str, value: Any) -> None:
        row = self._row(key)
        if row is None:
            row = UserSetting(user_id=self.user_id, key=key)
            self.session.add(row)
        row.value_json = json.dumps(value)
        self.session.commit()


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.settings = SettingsService(session, user_id)

    def _custom(self) -> list[dict[str, str]]:
        return list(self.settings.get(CATEGORIES_KEY, []))

    def list_all(self) -> list[dict[str, Any]]:
        categories = [
            {"value": value, "label": label, "is_default": True}
            for value, label in DEFAULT_CATEGORIES
        ]
        seen = {value for value, _label in DEFAULT_CATEGORIES}
        for item in self._custom():
            if item["value"] in seen:
                continue
            seen.add(item["value"])
            categories.append(
                {"value": item["value"], "label": item["label"], "is_default": False}
            )
        return categories

    def create(self, label: str) -> dict[str, Any]:
        value = category_slug(label)
        if any(item["value"] == value for item in self.list_all()):
            raise ValueError("Category already exists")
        custom = self._custom()
        custom.append({"value": value, "label": label.strip()})
        self.settings.set(CATEGORIES_KEY, custom)
        return {"value": value, "label": label.strip(), "is_default": False}

    def delete(self, value: str) -> None:
        if any(value == default for default, _label in DEFAULT_CATEGORIES):
            raise ValueError("Default categories cannot be removed")
        custom = self._custom()
        remaining = [item for item in custom if item["value"] != value]
        if len(remaining) == len(custom):
            raise ValueError("Category not found")
        self.settings.set(CATEGORIES_KEY, remaining)


class CardService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Card]:
        stmt = (
            select(Card)
            .where(Card.user_id == self.user_id)
            .order_by(Card.bank_name, Card.id)
        )
        return self.session.scalars(stmt).all()

    def catalog(self) -> dict[int, Card]:
        return {card.id: card for card in self.list_all()}

    def get(self, card_id: int) -> Card:
        card = self.session.get(Card, card_id)
        if not card or card.user_id != self.user_id:
            raise ValueError("Card not found")
        return card

    def create(self, data: CardIn) -> Card:
        card = Card(
            user_id=self.user_id,
            bank_name=data.bank_name.strip(),
            logo_url=data.logo_url,
            closing_day=data.closing_day,
            due_day=data.due_day,
        )
        self.session.add(card)
        self.session.commit()
        self.session.refresh(card)
        return card

    def update(self, card_id: int, data: CardIn) -> Card:
        # Stored invoice months are not recomputed when the closing day changes.
        card = self.get(card_id)
        for field, value in data.model_dump().items():
            setattr(card, field, value)
        self.session.commit()
        self.session.refresh(card)
        return card

    def delete(self, card_id: int) -> None:
        card = self.get(card_id)
        self.session.delete(card)
        self.session.commit()
        logger.info(f"card_deleted: card_id={card_id}")


class PurchaseService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def preview(self, data: PreviewIn) -> tuple[list[InvoiceMonth], Decimal]:
        card = CardService(self.session, self.user_id).get(data.card_id)
        months = installment_schedule(
            data.purchase_date,
            card.closing_day,
            data.total_installments,
            data.manual_invoice_month,
        )
        return months, installment_value(data.total_value, data.total_installments)

    def create(self, data: PurchaseIn) -> Purchase:
        card = CardService(self.session, self.user_id).get(data.card_id)
        months = installment_schedule(
            data.purchase_date,
            card.closing_day,
            data.total_installments,
            data.manual_invoice_month,
        )
        purchase = Purchase(
            user_id=self.user_id,
            card_id=card.id,
            purchase_date=data.purchase_date,
            name=data.name.strip(),
            category=data.category,
            total_value=data.total_value,
            total_installments=data.total_installments,
            invoice_month=str(months[0]),
        )
        self.session.add(purchase)
        self.session.commit()
        self.session.refresh(purchase)
        return purchase

    def get(self, purchase_id: int) -> Purchase:
        purchase = self.session.get(Purchase, purchase_id)
        if not purchase or purchase.user_id != self.user_id:
            raise ValueError("Purchase not found")
        return purchase

    def delete(self, purchase_id: int) -> None:
        purchase = self.get(purchase_id)
        self.session.delete(purchase)
        self.session.commit()

    def list(
        self,
        *,
        card_id: Optional[int] = None,
        category: Optional[str] = None,
        month: Optional[MonthLike] = None,
    ) -> list[Purchase]:
        stmt = (
            select(Purchase)
            .options(joinedload(Purchase.card))
            .where(Purchase.user_id == self.user_id)
            .order_by(Purchase.purchase_date.desc(), Purchase.id.desc())
        )
        if card_id is not None:
            stmt = stmt.where(Purchase.card_id == card_id)
        if category:
            stmt = stmt.where(Purchase.category == category)
        purchases = self.session.scalars(stmt).all()
        if month is not None:
            target = as_invoice_month(month)
            purchases = [p for p in purchases if target in p.invoice_months]
        return purchases

    def list_for_subscription(self, subscription_id: int) -> list[Purchase]:
        stmt = (
            select(Purchase)
            .where(
                Purchase.user_id == self.user_id,
                Purchase.subscription_id == subscription_id,
            )
            .order_by(Purchase.purchase_date)
        )
        return self.session.scalars(stmt).all()


class SubscriptionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list(self) -> list[Subscription]:
        stmt = (
            select(Subscription)
            .options(joinedload(Subscription.card))
            .where(Subscription.user_id == self.user_id)
            .order_by(Subscription.status, Subscription.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, subscription_id: int) -> Subscription:
        subscription = self.session.get(Subscription, subscription_id)
        if not subscription or subscription.user_id != self.user_id:
            raise ValueError("Subscription not found")
        return subscription

    def monthly_total(self) -> Decimal:
        return sum(
            (
                s.value
                for s in self.list()
                if s.status == SubscriptionStatus.active
            ),
            Decimal("0"),
        )

    def create(self, data: SubscriptionIn) -> Subscription:
        card = CardService(self.session, self.user_id).get(data.card_id)
        subscription = Subscription(
            user_id=self.user_id,
            card_id=card.id,
            name=data.name.strip(),
            description=data.description,
            value=data.value,
            start_date=data.start_date,
            status=SubscriptionStatus.active,
        )
        self.session.add(subscription)
        try:
            self.session.flush()
        except Exception:
            self.session.rollback()
            raise
        try:
            SubscriptionEngine(self.session).materialize(subscription, card)
        except MaterializationError:
            # Drops the subscription row along with the failed batch.
            self.session.rollback()
            raise
        self.session.commit()
        self.session.refresh(subscription)
        return subscription

    def update(self, subscription_id: int, data: SubscriptionUpdate) -> Subscription:
        subscription = self.get(subscription_id)
        subscription.name = data.name.strip()
        subscription.description = data.description
        self.session.commit()
        self.session.refresh(subscription)
        return subscription

    def cancel(self, subscription_id: int, today: Optional[date] = None) -> int:
        subscription = self.get(subscription_id)
        removed = SubscriptionEngine(self.session).cancel(subscription, today)
        self.session.commit()
        return removed

    def extend_horizon(self, year: int) -> int:
        count = SubscriptionEngine(self.session).extend_horizon(year, self.user_id)
        self.session.commit()
        return count


class InvoiceService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _purchases(self) -> list[Purchase]:
        stmt = select(Purchase).where(Purchase.user_id == self.user_id)
        return self.session.scalars(stmt).all()

    def _cards(self) -> dict[int, Card]:
        return CardService(self.session, self.user_id).catalog()

    def for_month(self, month: MonthLike) -> list[CardInvoice]:
        return aggregate_month(self._purchases(), month, self._cards())

    def current(self, today: Optional[date] = None) -> list[CardInvoice]:
        return self.for_month(InvoiceMonth.of(today or local_today()))

    def history(self, year: int) -> list[MonthSummary]:
        return project_history(self._purchases(), year, self._cards())

    def years(self, today: Optional[date] = None) -> list[int]:
        return available_years(self._purchases(), today or local_today())
