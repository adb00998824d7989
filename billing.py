from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, Union

MIN_DAY = 1
MAX_DAY = 31
MIN_INSTALLMENTS = 1
MAX_INSTALLMENTS = 99
# Keeps 99 installments of any accepted purchase inside year 9999.
MAX_PURCHASE_YEAR = 9990

MONTH_NAMES = (
    "Janeiro",
    "Fevereiro",
    "Março",
    "Abril",
    "Maio",
    "Junho",
    "Julho",
    "Agosto",
    "Setembro",
    "Outubro",
    "Novembro",
    "Dezembro",
)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def clamp_day(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, days_in_month(year, month)))


@dataclass(frozen=True, order=True)
class InvoiceMonth:
    """A monthly statement bucket, rendered as ``YYYY-MM``."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Invalid month: {self.month}")
        if not 1 <= self.year <= 9999:
            raise ValueError(f"Invalid year: {self.year}")

    @classmethod
    def parse(cls, value: str) -> "InvoiceMonth":
        parts = value.strip().split("-") if value else []
        if len(parts) != 2 or len(parts[0]) != 4 or len(parts[1]) != 2:
            raise ValueError(f"Invalid invoice month: {value!r}")
        try:
            return cls(int(parts[0]), int(parts[1]))
        except ValueError as exc:
            raise ValueError(f"Invalid invoice month: {value!r}") from exc

    @classmethod
    def of(cls, day: date) -> "InvoiceMonth":
        return cls(day.year, day.month)

    def add_months(self, months: int) -> "InvoiceMonth":
        total_months = self.month - 1 + months
        return InvoiceMonth(self.year + total_months // 12, total_months % 12 + 1)

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, days_in_month(self.year, self.month))

    @property
    def label(self) -> str:
        return f"{MONTH_NAMES[self.month - 1]} de {self.year}"

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


MonthLike = Union[InvoiceMonth, str]


def as_invoice_month(value: MonthLike) -> InvoiceMonth:
    if isinstance(value, InvoiceMonth):
        return value
    return InvoiceMonth.parse(value)


def validate_day(day: int, field: str = "closing_day") -> int:
    if isinstance(day, bool) or not isinstance(day, int):
        raise ValueError(f"{field} must be an integer")
    if not MIN_DAY <= day <= MAX_DAY:
        raise ValueError(f"{field} must be between {MIN_DAY} and {MAX_DAY}")
    return day


def validate_purchase_date(value: date, field: str = "purchase_date") -> date:
    if value.year > MAX_PURCHASE_YEAR:
        raise ValueError(f"{field} must be on or before {MAX_PURCHASE_YEAR}-12-31")
    return value


def validate_installments(installment_count: int) -> int:
    if isinstance(installment_count, bool) or not isinstance(installment_count, int):
        raise ValueError("Installment count must be an integer")
    if not MIN_INSTALLMENTS <= installment_count <= MAX_INSTALLMENTS:
        raise ValueError(
            f"Installment count must be between {MIN_INSTALLMENTS} and {MAX_INSTALLMENTS}"
        )
    return installment_count


def resolve_invoice_month(purchase_date: date, closing_day: int) -> InvoiceMonth:
    """Return the statement a purchase lands on.

    The closing day is clamped to the last day of the purchase month, and a
    purchase made on the closing day itself belongs to the next statement.
    Purchase dates after ``MAX_PURCHASE_YEAR`` raise ``ValueError``.
    """
    validate_day(closing_day)
    validate_purchase_date(purchase_date)
    effective_closing_day = min(
        closing_day, days_in_month(purchase_date.year, purchase_date.month)
    )
    bucket = InvoiceMonth.of(purchase_date)
    if purchase_date.day >= effective_closing_day:
        return bucket.add_months(1)
    return bucket


def expand_installments(
    first_bucket: MonthLike, installment_count: int
) -> list[InvoiceMonth]:
    validate_installments(installment_count)
    first = as_invoice_month(first_bucket)
    return [first.add_months(i) for i in range(installment_count)]


def installment_schedule(
    purchase_date: date,
    closing_day: int,
    installment_count: int,
    manual_invoice_month: Optional[MonthLike] = None,
) -> list[InvoiceMonth]:
    # Shared by the preview endpoint and PurchaseService.create.
    validate_day(closing_day)
    validate_purchase_date(purchase_date)
    validate_installments(installment_count)
    if manual_invoice_month:
        first = as_invoice_month(manual_invoice_month)
        validate_purchase_date(first.first_day, "manual_invoice_month")
    else:
        first = resolve_invoice_month(purchase_date, closing_day)
    return expand_installments(first, installment_count)


def installment_value(
    total_value: Union[Decimal, int, str], installment_count: int
) -> Decimal:
    validate_installments(installment_count)
    total = Decimal(str(total_value))
    if total <= 0:
        raise ValueError("Total value must be positive")
    return total / installment_count


def installment_number(
    first_bucket: MonthLike, installment_count: int, month: MonthLike
) -> Optional[int]:
    target = as_invoice_month(month)
    buckets = expand_installments(first_bucket, installment_count)
    for index, bucket in enumerate(buckets):
        if bucket == target:
            return index + 1
    return None
