from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy.orm import Session

from billing import InvoiceMonth
from database import get_db
from invoices import CardInvoice, MonthSummary, month_total
from scheduler import SchedulerManager
from schemas import (
    CardIn,
    CardInvoiceOut,
    CardOut,
    CategoryIn,
    CategoryOut,
    MonthSummaryOut,
    PreviewIn,
    PreviewOut,
    PurchaseIn,
    PurchaseOut,
    SubscriptionIn,
    SubscriptionOut,
    SubscriptionUpdate,
)
from services import (
    CardService,
    CategoryService,
    InvoiceService,
    PurchaseService,
    SubscriptionService,
)
from subscriptions import MaterializationError

app = FastAPI(title="Faturas")

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def http_error(exc: ValueError) -> HTTPException:
    message = str(exc)
    status = 404 if message.endswith("not found") else 400
    return HTTPException(status_code=status, detail=message)


def parse_month(value: str) -> InvoiceMonth:
    try:
        return InvoiceMonth.parse(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def invoice_out(invoice: CardInvoice) -> CardInvoiceOut:
    return CardInvoiceOut(
        card=CardOut.model_validate(invoice.card),
        month=str(invoice.month),
        total_value=invoice.total_value,
        purchases=[PurchaseOut.model_validate(p) for p in invoice.purchases],
    )


def summary_out(summary: MonthSummary) -> MonthSummaryOut:
    return MonthSummaryOut(
        month=str(summary.month),
        label=summary.month.label,
        total_value=summary.total_value,
        invoices=[invoice_out(invoice) for invoice in summary.invoices],
    )


@app.get("/api/cards", response_model=list[CardOut])
def list_cards(db: Session = Depends(get_db)):
    return CardService(db).list_all()


@app.post("/api/cards", response_model=CardOut, status_code=201)
def create_card(payload: CardIn, db: Session = Depends(get_db)):
    return CardService(db).create(payload)


@app.put("/api/cards/{card_id}", response_model=CardOut)
def update_card(card_id: int, payload: CardIn, db: Session = Depends(get_db)):
    try:
        return CardService(db).update(card_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/cards/{card_id}", status_code=204)
def delete_card(card_id: int, db: Session = Depends(get_db)):
    try:
        CardService(db).delete(card_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/purchases", response_model=list[PurchaseOut])
def list_purchases(
    card_id: Optional[int] = None,
    category: Optional[str] = None,
    month: Optional[str] = None,
    db: Session = Depends(get_db),
):
    target = parse_month(month) if month else None
    return PurchaseService(db).list(card_id=card_id, category=category, month=target)


@app.post("/api/purchases/preview", response_model=PreviewOut)
def preview_purchase(payload: PreviewIn, db: Session = Depends(get_db)):
    try:
        months, value = PurchaseService(db).preview(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return PreviewOut(
        invoice_months=[str(m) for m in months],
        labels=[m.label for m in months],
        installment_value=value,
    )


@app.post("/api/purchases", response_model=PurchaseOut, status_code=201)
def create_purchase(payload: PurchaseIn, db: Session = Depends(get_db)):
    try:
        return PurchaseService(db).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/purchases/{purchase_id}", status_code=204)
def delete_purchase(purchase_id: int, db: Session = Depends(get_db)):
    try:
        PurchaseService(db).delete(purchase_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/subscriptions", response_model=list[SubscriptionOut])
def list_subscriptions(db: Session = Depends(get_db)):
    return SubscriptionService(db).list()


@app.post("/api/subscriptions", response_model=SubscriptionOut, status_code=201)
def create_subscription(payload: SubscriptionIn, db: Session = Depends(get_db)):
    try:
        return SubscriptionService(db).create(payload)
    except MaterializationError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/subscriptions/{subscription_id}", response_model=SubscriptionOut)
def update_subscription(
    subscription_id: int, payload: SubscriptionUpdate, db: Session = Depends(get_db)
):
    try:
        return SubscriptionService(db).update(subscription_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/api/subscriptions/{subscription_id}/cancel")
def cancel_subscription(subscription_id: int, db: Session = Depends(get_db)):
    service = SubscriptionService(db)
    try:
        removed = service.cancel(subscription_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    subscription = SubscriptionOut.model_validate(service.get(subscription_id))
    return {"subscription": subscription, "removed_purchases": removed}


@app.get("/api/invoices/current")
def current_invoices(db: Session = Depends(get_db)):
    invoices = InvoiceService(db).current()
    return {
        "invoices": [invoice_out(invoice) for invoice in invoices],
        "total_value": month_total(invoices),
    }


@app.get("/api/invoices/{month}")
def month_invoices(month: str, db: Session = Depends(get_db)):
    invoices = InvoiceService(db).for_month(parse_month(month))
    return {
        "invoices": [invoice_out(invoice) for invoice in invoices],
        "total_value": month_total(invoices),
    }


@app.get("/api/history/years", response_model=list[int])
def history_years(db: Session = Depends(get_db)):
    return InvoiceService(db).years()


@app.get("/api/history/{year}", response_model=list[MonthSummaryOut])
def history(year: int, db: Session = Depends(get_db)):
    if not 1 <= year <= 9999:
        raise HTTPException(status_code=400, detail="Invalid year")
    return [summary_out(summary) for summary in InvoiceService(db).history(year)]


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return CategoryService(db).list_all()


@app.post("/api/categories", response_model=CategoryOut, status_code=201)
def create_category(payload: CategoryIn, db: Session = Depends(get_db)):
    try:
        return CategoryService(db).create(payload.label)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/categories/{value}", status_code=204)
def delete_category(value: str, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(value)
    except ValueError as exc:
        raise http_error(exc) from exc
