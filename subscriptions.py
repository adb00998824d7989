import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing import (
    InvoiceMonth,
    MonthLike,
    as_invoice_month,
    clamp_day,
    resolve_invoice_month,
    validate_day,
)
from config import get_settings
from models import Card, Purchase, Subscription, SubscriptionStatus


logger = logging.getLogger(__name__)

SUBSCRIPTION_CATEGORY = "subscription"


class MaterializationError(RuntimeError):
    pass


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


@dataclass(frozen=True)
class PlannedPurchase:
    card_id: Any
    subscription_id: Any
    purchase_date: date
    invoice_month: InvoiceMonth
    name: str
    category: str
    total_value: Decimal
    total_installments: int = 1

    @property
    def installment_value(self) -> Decimal:
        return self.total_value


def plan_subscription_purchases(
    subscription: Any,
    closing_day: int,
    *,
    since: Optional[MonthLike] = None,
    through: Optional[MonthLike] = None,
) -> list[PlannedPurchase]:
    """One single-installment purchase per month of the horizon.

    The horizon runs from the start month (or ``since``, whichever is later)
    through December of the start year unless ``through`` is given.
    """
    validate_day(closing_day)
    value = Decimal(str(subscription.value))
    if value <= 0:
        raise ValueError("Subscription value must be positive")

    start = subscription.start_date
    first = InvoiceMonth.of(start)
    if since is not None:
        first = max(first, as_invoice_month(since))
    last = as_invoice_month(through) if through else InvoiceMonth(start.year, 12)

    plan: list[PlannedPurchase] = []
    month = first
    while month <= last:
        purchase_date = clamp_day(month.year, month.month, start.day)
        plan.append(
            PlannedPurchase(
                card_id=subscription.card_id,
                subscription_id=subscription.id,
                purchase_date=purchase_date,
                invoice_month=resolve_invoice_month(purchase_date, closing_day),
                name=f"{subscription.name} (Subscription)",
                category=SUBSCRIPTION_CATEGORY,
                total_value=value,
            )
        )
        month = month.add_months(1)
    return plan


def purchases_to_retract(
    purchases: Iterable[Any], cancelled_month: MonthLike
) -> list[Any]:
    month = as_invoice_month(cancelled_month)
    return [p for p in purchases if as_invoice_month(p.invoice_month) >= month]


class SubscriptionEngine:
    def __init__(self, session: Session) -> None:
        self.session = session

    def materialize(
        self,
        subscription: Subscription,
        card: Optional[Card] = None,
        *,
        since: Optional[MonthLike] = None,
        through: Optional[MonthLike] = None,
    ) -> int:
        """Write the planned purchases of ``subscription`` as one batch.

        Months that already have a purchase are skipped. The batch runs in a
        savepoint: on any failure every sibling of the batch is discarded,
        the enclosing transaction is left intact and a single
        ``MaterializationError`` is raised.
        """
        subscription_id = subscription.id
        card = card or subscription.card
        if card is None:
            raise ValueError("Card not found")
        plan = plan_subscription_purchases(
            subscription, card.closing_day, since=since, through=through
        )
        existing = set(
            self.session.scalars(
                select(Purchase.purchase_date).where(
                    Purchase.subscription_id == subscription.id
                )
            ).all()
        )
        created = 0
        try:
            with self.session.begin_nested():
                for planned in plan:
                    if planned.purchase_date in existing:
                        continue
                    self.session.add(self._build_purchase(subscription, planned))
                    created += 1
        except Exception as exc:
            logger.exception(
                f"subscription_materialize_failed: subscription_id={subscription_id}"
            )
            raise MaterializationError(
                f"Could not materialize subscription {subscription_id}"
            ) from exc
        logger.info(
            f"subscription_materialized: subscription_id={subscription_id} created={created}"
        )
        return created

    def cancel(self, subscription: Subscription, today: Optional[date] = None) -> int:
        if subscription.status == SubscriptionStatus.cancelled:
            raise ValueError("Subscription already cancelled")
        month = InvoiceMonth.of(today or local_today())
        subscription.status = SubscriptionStatus.cancelled
        subscription.cancelled_at = str(month)

        purchases = self.session.scalars(
            select(Purchase).where(Purchase.subscription_id == subscription.id)
        ).all()
        retracted = purchases_to_retract(purchases, month)
        for purchase in retracted:
            self.session.delete(purchase)
        self.session.flush()
        logger.info(
            f"subscription_cancelled: subscription_id={subscription.id} "
            f"month={month} removed={len(retracted)}"
        )
        return len(retracted)

    def extend_horizon(self, year: int, user_id: Optional[int] = None) -> int:
        """Materialize ``year`` for every active subscription.

        Each subscription is its own batch; a failing one is logged and
        skipped so the others still get their purchases. The scheduler
        retries the skipped ones on its next run.
        """
        stmt = (
            select(Subscription)
            .where(
                Subscription.status == SubscriptionStatus.active,
                Subscription.start_date <= date(year, 12, 31),
            )
            .order_by(Subscription.id)
        )
        if user_id is not None:
            stmt = stmt.where(Subscription.user_id == user_id)
        count = 0
        failed: list[int] = []
        for subscription in self.session.scalars(stmt).all():
            try:
                count += self.materialize(
                    subscription,
                    since=InvoiceMonth(year, 1),
                    through=InvoiceMonth(year, 12),
                )
            except MaterializationError:
                failed.append(subscription.id)
        if failed:
            logger.warning(
                f"subscription_horizon_partial: year={year} failed_subscription_ids={failed}"
            )
        return count

    def _build_purchase(
        self, subscription: Subscription, planned: PlannedPurchase
    ) -> Purchase:
        return Purchase(
            user_id=subscription.user_id,
            card_id=planned.card_id,
            purchase_date=planned.purchase_date,
            name=planned.name,
            category=planned.category,
            total_value=planned.total_value,
            total_installments=planned.total_installments,
            invoice_month=str(planned.invoice_month),
            subscription_id=planned.subscription_id,
        )
