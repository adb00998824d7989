from contextlib import contextmanager
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

import scheduler
from database import Base, build_engine
from models import Purchase
from schemas import CardIn, SubscriptionIn
from scheduler import SchedulerManager, horizon_years
from services import CardService, SubscriptionService


def test_horizon_includes_next_year_from_horizon_month() -> None:
    assert horizon_years(date(2025, 11, 30), 12) == [2025]
    assert horizon_years(date(2025, 12, 1), 12) == [2025, 2026]
    assert horizon_years(date(2025, 10, 1), 10) == [2025, 2026]


def test_run_job_extends_into_next_year(monkeypatch) -> None:
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    with TestingSession() as session:
        card = CardService(session).create(
            CardIn(bank_name="Inter", closing_day=5, due_day=12)
        )
        SubscriptionService(session).create(
            SubscriptionIn(
                card_id=card.id,
                name="Music",
                value=Decimal("21.90"),
                start_date=date(2025, 3, 10),
            )
        )

    @contextmanager
    def testing_scope():
        session = TestingSession()
        try:
            yield session
            session.commit()
        finally:
            session.close()

    monkeypatch.setattr(scheduler, "session_scope", testing_scope)
    manager = SchedulerManager()
    manager.horizon_month = 12

    assert manager._run_job("test", today=date(2025, 11, 1)) == 0
    assert manager._run_job("test", today=date(2025, 12, 1)) == 12
    assert manager._run_job("test", today=date(2025, 12, 2)) == 0

    with Session(engine) as session:
        total = session.scalar(select(func.count(Purchase.id)))
    assert total == 22
