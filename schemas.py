from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from billing import MAX_INSTALLMENTS, InvoiceMonth, validate_purchase_date
from models import SubscriptionStatus


def _check_month(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    month = InvoiceMonth.parse(value)
    validate_purchase_date(month.first_day, "manual_invoice_month")
    return str(month)


class CardIn(BaseModel):
    bank_name: str = Field(..., min_length=1, max_length=100)
    logo_url: str = Field(default="", max_length=500)
    closing_day: int = Field(..., ge=1, le=31)
    due_day: int = Field(..., ge=1, le=31)


class CardOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    bank_name: str
    logo_url: str
    closing_day: int
    due_day: int


class PurchaseIn(BaseModel):
    card_id: int
    purchase_date: date
    name: str = Field(..., min_length=1, max_length=200)
    category: str = Field(..., min_length=1, max_length=60)
    total_value: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    total_installments: int = Field(default=1, ge=1, le=MAX_INSTALLMENTS)
    manual_invoice_month: Optional[str] = None

    @field_validator("manual_invoice_month")
    @classmethod
    def _valid_month(cls, value: Optional[str]) -> Optional[str]:
        return _check_month(value)

    @field_validator("purchase_date")
    @classmethod
    def _valid_date(cls, value: date) -> date:
        return validate_purchase_date(value)


class PurchaseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    card_id: int
    purchase_date: date
    name: str
    category: str
    total_value: Decimal
    total_installments: int
    installment_value: Decimal
    invoice_month: str
    subscription_id: Optional[int] = None


class PreviewIn(BaseModel):
    card_id: int
    purchase_date: date
    total_value: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    total_installments: int = Field(default=1, ge=1, le=MAX_INSTALLMENTS)
    manual_invoice_month: Optional[str] = None

    @field_validator("manual_invoice_month")
    @classmethod
    def _valid_month(cls, value: Optional[str]) -> Optional[str]:
        return _check_month(value)

    @field_validator("purchase_date")
    @classmethod
    def _valid_date(cls, value: date) -> date:
        return validate_purchase_date(value)


class PreviewOut(BaseModel):
    invoice_months: list[str]
    labels: list[str]
    installment_value: Decimal


class SubscriptionIn(BaseModel):
    card_id: int
    name: str = Field(..., min_length=1, max_length=120)
    value: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    start_date: date
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("start_date")
    @classmethod
    def _valid_start(cls, value: date) -> date:
        return validate_purchase_date(value, "start_date")


class SubscriptionUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)


class SubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    card_id: int
    name: str
    description: Optional[str] = None
    value: Decimal
    start_date: date
    status: SubscriptionStatus
    cancelled_at: Optional[str] = None
    created_at: datetime


class CategoryIn(BaseModel):
    label: str = Field(..., min_length=1, max_length=60)


class CategoryOut(BaseModel):
    value: str
    label: str
    is_default: bool


class CardInvoiceOut(BaseModel):
    card: CardOut
    month: str
    total_value: Decimal
    purchases: list[PurchaseOut]


class MonthSummaryOut(BaseModel):
    month: str
    label: str
    total_value: Decimal
    invoices: list[CardInvoiceOut]
