from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence, Union

from billing import InvoiceMonth, MonthLike, as_invoice_month, expand_installments


class PurchaseLike(Protocol):
    card_id: Any
    invoice_month: str
    total_installments: int

    @property
    def installment_value(self) -> Decimal: ...


@dataclass(frozen=True)
class PlaceholderCard:
    """Stand-in for a card that is no longer in the catalog."""

    id: Any
    bank_name: str
    logo_url: str = ""
    closing_day: int = 15
    due_day: int = 20

    @classmethod
    def for_id(cls, card_id: Any) -> "PlaceholderCard":
        return cls(id=card_id, bank_name=f"Card {card_id}")


@dataclass
class CardInvoice:
    card: Any
    month: InvoiceMonth
    total_value: Decimal = Decimal("0")
    purchases: list[Any] = field(default_factory=list)

    @property
    def card_id(self) -> Any:
        return self.card.id


@dataclass
class MonthEntry:
    purchase: Any
    installment_number: int


@dataclass
class MonthSummary:
    month: InvoiceMonth
    total_value: Decimal
    entries: list[MonthEntry]
    invoices: list[CardInvoice]

    @property
    def purchases(self) -> list[Any]:
        return [entry.purchase for entry in self.entries]


CardCatalog = Union[Mapping[Any, Any], Iterable[Any], None]


def _card_index(cards: CardCatalog) -> dict[str, Any]:
    if cards is None:
        return {}
    items = cards.values() if isinstance(cards, Mapping) else cards
    # Keys are stringified so "7" and 7 refer to the same card.
    return {str(card.id): card for card in items}


def _as_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _bucket_index(purchase: PurchaseLike, target: InvoiceMonth) -> Optional[int]:
    buckets = expand_installments(purchase.invoice_month, purchase.total_installments)
    if target < buckets[0] or target > buckets[-1]:
        return None
    return buckets.index(target)


def aggregate_month(
    purchases: Iterable[PurchaseLike],
    target_month: MonthLike,
    cards: CardCatalog = None,
) -> list[CardInvoice]:
    """Group the installments that fall in ``target_month`` by card.

    Cards missing from ``cards`` get a placeholder identity so the month stays
    viewable after a card was deleted. Cards without contributions are omitted.
    """
    target = as_invoice_month(target_month)
    index = _card_index(cards)
    invoices: dict[str, CardInvoice] = {}
    for purchase in purchases:
        if _bucket_index(purchase, target) is None:
            continue
        key = str(purchase.card_id)
        invoice = invoices.get(key)
        if invoice is None:
            card = index.get(key) or PlaceholderCard.for_id(purchase.card_id)
            invoice = CardInvoice(card=card, month=target)
            invoices[key] = invoice
        invoice.total_value += _as_decimal(purchase.installment_value)
        invoice.purchases.append(purchase)
    return list(invoices.values())


def month_total(invoices: Iterable[CardInvoice]) -> Decimal:
    return sum((invoice.total_value for invoice in invoices), Decimal("0"))


def project_history(
    purchases: Sequence[PurchaseLike],
    year: int,
    cards: CardCatalog = None,
) -> list[MonthSummary]:
    summaries: list[MonthSummary] = []
    for month in range(1, 13):
        bucket = InvoiceMonth(year, month)
        invoices = aggregate_month(purchases, bucket, cards)
        entries = [
            MonthEntry(
                purchase=purchase,
                installment_number=_bucket_index(purchase, bucket) + 1,
            )
            for invoice in invoices
            for purchase in invoice.purchases
        ]
        summaries.append(
            MonthSummary(
                month=bucket,
                total_value=month_total(invoices),
                entries=entries,
                invoices=invoices,
            )
        )
    return summaries


def available_years(purchases: Iterable[PurchaseLike], today: date) -> list[int]:
    years = {today.year}
    for purchase in purchases:
        for bucket in expand_installments(
            purchase.invoice_month, purchase.total_installments
        ):
            years.add(bucket.year)
    return sorted(years, reverse=True)
