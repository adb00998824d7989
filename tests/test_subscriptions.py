from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from database import Base, build_engine
from models import Purchase, Subscription, SubscriptionStatus
from schemas import CardIn, SubscriptionIn, SubscriptionUpdate
from services import CardService, InvoiceService, SubscriptionService
from subscriptions import (
    MaterializationError,
    SubscriptionEngine,
    plan_subscription_purchases,
    purchases_to_retract,
)


@dataclass
class Draft:
    id: int
    card_id: int
    name: str
    value: Decimal
    start_date: date


def _session() -> Session:
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    return Session(engine)


def _streaming(session: Session, closing_day: int = 5):
    card = CardService(session).create(
        CardIn(bank_name="Nubank", closing_day=closing_day, due_day=12)
    )
    subscription = SubscriptionService(session).create(
        SubscriptionIn(
            card_id=card.id,
            name="Streaming",
            value=Decimal("39.90"),
            start_date=date(2025, 3, 10),
        )
    )
    return card, subscription


def _buckets(session: Session, subscription_id: int) -> list[str]:
    return list(
        session.scalars(
            select(Purchase.invoice_month)
            .where(Purchase.subscription_id == subscription_id)
            .order_by(Purchase.purchase_date)
        ).all()
    )


def test_plan_covers_start_month_through_december():
    draft = Draft(1, 1, "Streaming", Decimal("39.90"), date(2025, 3, 10))
    plan = plan_subscription_purchases(draft, closing_day=5)

    assert [p.purchase_date for p in plan] == [date(2025, m, 10) for m in range(3, 13)]
    may = plan[2]
    assert may.purchase_date == date(2025, 5, 10)
    assert str(may.invoice_month) == "2025-06"
    assert str(plan[-1].invoice_month) == "2026-01"
    assert all(p.total_installments == 1 for p in plan)
    assert all(p.total_value == p.installment_value == Decimal("39.90") for p in plan)
    assert plan[0].name == "Streaming (Subscription)"
    assert plan[0].category == "subscription"


def test_plan_clamps_day_to_short_months():
    draft = Draft(1, 1, "Gym", Decimal("99.00"), date(2024, 1, 31))
    plan = plan_subscription_purchases(draft, closing_day=28)

    dates = [p.purchase_date for p in plan]
    assert dates[1] == date(2024, 2, 29)
    assert dates[3] == date(2024, 4, 30)
    assert str(plan[1].invoice_month) == "2024-03"


def test_plan_honours_explicit_horizon():
    draft = Draft(1, 1, "Cloud", Decimal("5.00"), date(2024, 6, 2))
    plan = plan_subscription_purchases(
        draft, closing_day=10, since="2025-01", through="2025-12"
    )
    assert [p.purchase_date.month for p in plan] == list(range(1, 13))
    assert all(p.purchase_date.year == 2025 for p in plan)


def test_retract_keeps_buckets_before_cancellation():
    draft = Draft(1, 1, "Streaming", Decimal("39.90"), date(2025, 3, 10))
    plan = plan_subscription_purchases(draft, closing_day=5)
    retracted = purchases_to_retract(plan, "2025-07")
    kept = [p for p in plan if p not in retracted]

    assert [str(p.invoice_month) for p in kept] == ["2025-04", "2025-05", "2025-06"]
    assert all(str(p.invoice_month) >= "2025-07" for p in retracted)


def test_create_materializes_one_purchase_per_month():
    with _session() as session:
        card, subscription = _streaming(session)

        assert subscription.status == SubscriptionStatus.active
        buckets = _buckets(session, subscription.id)
        assert len(buckets) == 10
        assert buckets[0] == "2025-04"
        assert buckets[2] == "2025-06"

        june = InvoiceService(session).for_month("2025-06")
        assert len(june) == 1
        assert june[0].card.id == card.id
        assert june[0].total_value == Decimal("39.90")


def test_materialize_is_idempotent():
    with _session() as session:
        _card, subscription = _streaming(session)
        created = SubscriptionEngine(session).materialize(subscription)
        session.commit()

        assert created == 0
        assert len(_buckets(session, subscription.id)) == 10


def test_cancel_removes_only_future_buckets():
    with _session() as session:
        _card, subscription = _streaming(session)

        removed = SubscriptionService(session).cancel(
            subscription.id, today=date(2025, 7, 15)
        )

        assert removed == 7
        assert _buckets(session, subscription.id) == ["2025-04", "2025-05", "2025-06"]
        refreshed = SubscriptionService(session).get(subscription.id)
        assert refreshed.status == SubscriptionStatus.cancelled
        assert refreshed.cancelled_at == "2025-07"

        history = InvoiceService(session).history(2025)
        assert [s.total_value for s in history[3:6]] == [Decimal("39.90")] * 3
        assert history[6].total_value == Decimal("0")


def test_cancel_is_terminal():
    with _session() as session:
        _card, subscription = _streaming(session)
        SubscriptionService(session).cancel(subscription.id, today=date(2025, 7, 1))

        with pytest.raises(ValueError, match="already cancelled"):
            SubscriptionService(session).cancel(subscription.id, today=date(2025, 8, 1))


def test_failed_materialization_leaves_nothing_behind(monkeypatch):
    calls = {"count": 0}
    original = SubscriptionEngine._build_purchase

    def flaky(self, subscription, planned):
        calls["count"] += 1
        if calls["count"] == 4:
            raise RuntimeError("storage unavailable")
        return original(self, subscription, planned)

    monkeypatch.setattr(SubscriptionEngine, "_build_purchase", flaky)

    with _session() as session:
        card = CardService(session).create(
            CardIn(bank_name="Nubank", closing_day=5, due_day=12)
        )
        with pytest.raises(MaterializationError):
            SubscriptionService(session).create(
                SubscriptionIn(
                    card_id=card.id,
                    name="Streaming",
                    value=Decimal("39.90"),
                    start_date=date(2025, 3, 10),
                )
            )

        assert session.scalars(select(Subscription)).all() == []
        assert session.scalars(select(Purchase)).all() == []
        assert CardService(session).get(card.id).bank_name == "Nubank"


def test_create_requires_existing_card():
    with _session() as session:
        with pytest.raises(ValueError, match="Card not found"):
            SubscriptionService(session).create(
                SubscriptionIn(
                    card_id=42,
                    name="Streaming",
                    value=Decimal("39.90"),
                    start_date=date(2025, 3, 10),
                )
            )


def test_extend_horizon_adds_next_year_for_active_only():
    with _session() as session:
        card, subscription = _streaming(session)
        other = SubscriptionService(session).create(
            SubscriptionIn(
                card_id=card.id,
                name="Music",
                value=Decimal("21.90"),
                start_date=date(2025, 5, 1),
            )
        )
        SubscriptionService(session).cancel(other.id, today=date(2025, 9, 1))

        created = SubscriptionService(session).extend_horizon(2026)
        again = SubscriptionService(session).extend_horizon(2026)

        assert created == 12
        assert again == 0
        buckets = _buckets(session, subscription.id)
        assert len(buckets) == 22
        assert buckets[-1] == "2027-01"
        assert all(
            p.purchase_date.year == 2025
            for p in session.scalars(
                select(Purchase).where(Purchase.subscription_id == other.id)
            )
        )


def test_extend_horizon_keeps_other_subscriptions_when_one_fails(monkeypatch):
    original = SubscriptionEngine._build_purchase

    def failing_for_bad(self, subscription, planned):
        if subscription.name == "Bad":
            raise RuntimeError("storage unavailable")
        return original(self, subscription, planned)

    with _session() as session:
        card, good = _streaming(session)
        bad = SubscriptionService(session).create(
            SubscriptionIn(
                card_id=card.id,
                name="Bad",
                value=Decimal("10.00"),
                start_date=date(2025, 6, 20),
            )
        )

        monkeypatch.setattr(SubscriptionEngine, "_build_purchase", failing_for_bad)
        created = SubscriptionService(session).extend_horizon(2026)

        assert created == 12
        assert len(_buckets(session, good.id)) == 22
        assert len(_buckets(session, bad.id)) == 7
        assert SubscriptionService(session).get(bad.id).status == SubscriptionStatus.active

        monkeypatch.setattr(SubscriptionEngine, "_build_purchase", original)
        assert SubscriptionService(session).extend_horizon(2026) == 12
        assert len(_buckets(session, bad.id)) == 19

def test_update_changes_name_without_touching_purchases():
    with _session() as session:
        _card, subscription = _streaming(session)
        updated = SubscriptionService(session).update(
            subscription.id, SubscriptionUpdate(name="Video", description="family plan")
        )
        assert updated.name == "Video"
        assert updated.description == "family plan"
        assert len(_buckets(session, subscription.id)) == 10


def test_monthly_total_counts_active_subscriptions():
    with _session() as session:
        card, subscription = _streaming(session)
        SubscriptionService(session).create(
            SubscriptionIn(
                card_id=card.id,
                name="Music",
                value=Decimal("21.90"),
                start_date=date(2025, 5, 1),
            )
        )
        assert SubscriptionService(session).monthly_total() == Decimal("61.80")
        SubscriptionService(session).cancel(subscription.id, today=date(2025, 6, 1))
        assert SubscriptionService(session).monthly_total() == Decimal("21.90")
