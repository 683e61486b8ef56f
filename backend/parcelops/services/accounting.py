"""Invoice / payment derivation engine.

Invoices are projections of orders: nothing here is persisted and every value
is recomputed from the order rows, the recorded payments and the evaluation
clock `now` handed in by the caller. Amounts are integer cents.

Status derivation (re-evaluated on every read):
    cancelled order                       -> cancelled
    delivered + prepaid                   -> paid (paid on order creation)
    delivered + cod                       -> paid (paid on last order update)
    anything else                         -> sent
    recorded payments on an open invoice  -> partial | paid
    sent and now > due_date               -> overdue

partial invoices keep their status but their balance is past due once
now > due_date, so they count as overdue in the summary and are aged.
"""

from __future__ import annotations
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Sequence
import uuid

from parcelops.models.order import Order
from parcelops.models.payment import Payment
from parcelops.time_utils import days_between, shift_months

INVOICE_DRAFT = 'draft'
INVOICE_SENT = 'sent'
INVOICE_PAID = 'paid'
INVOICE_OVERDUE = 'overdue'
INVOICE_CANCELLED = 'cancelled'
INVOICE_PARTIAL = 'partial'
ALL_INVOICE_STATUSES = (INVOICE_DRAFT, INVOICE_SENT, INVOICE_PAID, INVOICE_OVERDUE, INVOICE_CANCELLED, INVOICE_PARTIAL)
OPEN_STATUSES = (INVOICE_SENT, INVOICE_OVERDUE, INVOICE_PARTIAL)

NET_DAYS = 30
PAYMENT_TERMS = 'Net 30'
TAX_RATE = Decimal('0.08')
REVENUE_TREND_MONTHS = 6
TOP_CUSTOMER_LIMIT = 10


class PaymentError(Exception):
    """Raised when a payment cannot be recorded against an invoice."""
    pass


@dataclass
class InvoiceItem:
    id: str
    name: str
    quantity: int
    unit_price_cents: int
    total_price_cents: int
    description: Optional[str] = None


@dataclass
class Invoice:
    id: str
    invoice_number: str
    customer_id: Any
    customer_name: str
    customer_email: str
    order_id: Any
    order_number: str
    payment_method: Optional[str]
    items: List[InvoiceItem]
    subtotal_cents: int
    tax_cents: int
    discount_cents: int
    total_cents: int
    status: str
    issue_date: datetime
    due_date: datetime
    paid_cents: int
    remaining_cents: int
    payment_terms: str = PAYMENT_TERMS
    paid_date: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # True when the order itself settled the invoice (delivered prepaid / cod)
    settled_by_order: bool = field(default=False, repr=False)


@dataclass
class DerivedPayment:
    id: str
    invoice_id: str
    order_id: Any
    amount_cents: int
    method: str
    payment_date: datetime
    reference: Optional[str] = None
    notes: Optional[str] = None
    recorded: bool = False


def invoice_id_for(order_id: Any) -> str:
    return f"inv-{order_id}"


def order_id_from_invoice_id(invoice_id: str) -> Optional[int]:
    if not invoice_id or not invoice_id.startswith('inv-'):
        return None
    try:
        return int(invoice_id[4:])
    except ValueError:
        return None


def _percent(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return numerator / denominator * 100


def tax_on(amount_cents: int) -> int:
    """Sales tax in cents, rounded half-up."""
    return int((Decimal(amount_cents) * TAX_RATE).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def order_totals(items: Sequence[Dict[str, Any]], delivery_fee_cents: int = 0, discount_cents: int = 0) -> Dict[str, int]:
    """Price an order: tax on the item value, total = items + fee + tax - discount."""
    items_total = sum(int(i.get('value_cents', 0) or 0) * int(i.get('quantity', 0) or 0) for i in items)
    tax = tax_on(items_total)
    return {
        'items_total_cents': items_total,
        'tax_cents': tax,
        'total_cents': items_total + delivery_fee_cents + tax - discount_cents,
    }


def _invoice_items(order) -> List[InvoiceItem]:
    out = []
    for idx, item in enumerate(order.items or []):
        qty = int(item.get('quantity', 0) or 0)
        unit = int(item.get('value_cents', 0) or 0)
        out.append(InvoiceItem(
            id=f"item-{order.id}-{idx}",
            name=item.get('name', ''),
            description=item.get('description'),
            quantity=qty,
            unit_price_cents=unit,
            total_price_cents=unit * qty,
        ))
    return out


def _order_settlement(order):
    """Return (status, paid_cents, paid_date) from the order alone."""
    total = order.total_cents or 0
    if order.status == Order.STATUS_CANCELLED:
        return INVOICE_CANCELLED, 0, None
    if order.status == Order.STATUS_DELIVERED:
        if order.payment_method == Order.PAYMENT_PREPAID:
            return INVOICE_PAID, total, order.created_at
        if order.payment_method == Order.PAYMENT_COD:
            return INVOICE_PAID, total, order.updated_at
    return INVOICE_SENT, 0, None


def derive_invoice(order, now: datetime, recorded: Sequence = ()) -> Invoice:
    """Project one order (plus payments recorded against it) into an invoice at `now`."""
    total = order.total_cents or 0
    fee = order.delivery_fee_cents or 0
    tax = order.tax_cents or 0
    discount = order.discount_cents or 0
    issue_date = order.created_at
    due_date = issue_date + timedelta(days=NET_DAYS)

    status, paid, paid_date = _order_settlement(order)
    settled_by_order = status == INVOICE_PAID
    if status == INVOICE_SENT and recorded:
        paid = sum(p.amount_cents for p in recorded)
        if total - paid <= 0:
            status = INVOICE_PAID
            paid_date = max(p.payment_date for p in recorded)
        else:
            status = INVOICE_PARTIAL
    if status == INVOICE_SENT and now > due_date:
        status = INVOICE_OVERDUE

    customer = order.customer
    return Invoice(
        id=invoice_id_for(order.id),
        invoice_number=f"INV-{issue_date.year}-{order.id:04d}" if order.id is not None else f"INV-{issue_date.year}",
        customer_id=order.customer_id if order.customer_id is not None else getattr(customer, 'id', None),
        customer_name=getattr(customer, 'name', '') or '',
        customer_email=getattr(customer, 'email', '') or '',
        order_id=order.id,
        order_number=order.order_number or '',
        payment_method=order.payment_method,
        items=_invoice_items(order),
        subtotal_cents=total - fee - tax + discount,
        tax_cents=tax,
        discount_cents=discount,
        total_cents=total,
        status=status,
        issue_date=issue_date,
        due_date=due_date,
        paid_date=paid_date,
        paid_cents=paid,
        remaining_cents=total - paid,
        notes=order.notes,
        created_at=order.created_at,
        updated_at=order.updated_at,
        settled_by_order=settled_by_order,
    )


def _group_recorded(recorded: Iterable) -> Dict[Any, List]:
    grouped: Dict[Any, List] = {}
    for p in recorded:
        grouped.setdefault(p.order_id, []).append(p)
    return grouped


def derive_invoices(orders: Iterable, now: datetime, recorded: Iterable = ()) -> List[Invoice]:
    by_order = _group_recorded(recorded)
    return [derive_invoice(o, now, by_order.get(o.id, ())) for o in orders]


def derive_payments(invoices: Iterable[Invoice], recorded: Iterable = (), invoice_id: Optional[str] = None) -> List[DerivedPayment]:
    """Synthetic payments for order-settled invoices plus every recorded payment, newest first."""
    payments: List[DerivedPayment] = []
    known = {}
    for inv in invoices:
        known[inv.order_id] = inv
        if invoice_id and inv.id != invoice_id:
            continue
        if inv.status == INVOICE_PAID and inv.settled_by_order:
            payments.append(DerivedPayment(
                id=f"pay-{inv.id}",
                invoice_id=inv.id,
                order_id=inv.order_id,
                amount_cents=inv.total_cents,
                method=Payment.METHOD_CASH if inv.payment_method == Order.PAYMENT_COD else Payment.METHOD_CARD,
                payment_date=inv.paid_date or inv.due_date,
                reference=f"REF-{inv.invoice_number}",
            ))
    for p in recorded:
        inv = known.get(p.order_id)
        if inv is None or inv.status == INVOICE_CANCELLED:
            continue
        if invoice_id and inv.id != invoice_id:
            continue
        payments.append(DerivedPayment(
            id=f"pay-{p.id}",
            invoice_id=inv.id,
            order_id=p.order_id,
            amount_cents=p.amount_cents,
            method=p.method,
            payment_date=p.payment_date,
            reference=p.reference,
            notes=p.notes,
            recorded=True,
        ))
    payments.sort(key=lambda p: p.payment_date, reverse=True)
    return payments


def check_payment(invoice: Optional[Invoice], amount_cents: int, payment_date: Optional[datetime] = None,
                  now: Optional[datetime] = None) -> None:
    """Validate a payment about to be recorded; raises PaymentError.

    A payment_date must fall between the invoice issue date and `now`.
    """
    if invoice is None:
        raise PaymentError('Invoice not found')
    if amount_cents <= 0:
        raise PaymentError('amount_cents must be positive')
    if invoice.status == INVOICE_CANCELLED:
        raise PaymentError('Invoice is cancelled')
    if invoice.status == INVOICE_PAID or invoice.remaining_cents <= 0:
        raise PaymentError('Invoice already paid')
    if amount_cents > invoice.remaining_cents:
        raise PaymentError(f'amount_cents exceeds remaining balance {invoice.remaining_cents}')
    if payment_date is not None:
        if payment_date < invoice.issue_date:
            raise PaymentError('payment_date is before the invoice issue date')
        if now is not None and payment_date > now:
            raise PaymentError('payment_date is in the future')


def is_past_due(invoice: Invoice, now: datetime) -> bool:
    return invoice.status == INVOICE_OVERDUE or (invoice.status == INVOICE_PARTIAL and now > invoice.due_date)


def _revenue_between(payments: Sequence[DerivedPayment], start: datetime, end: datetime) -> int:
    return sum(p.amount_cents for p in payments if start <= p.payment_date < end)


def monthly_revenue(payments: Sequence[DerivedPayment], now: datetime, months: int = REVENUE_TREND_MONTHS) -> List[Dict[str, Any]]:
    rows = []
    for offset in range(-(months - 1), 1):
        start = shift_months(now, offset)
        end = shift_months(now, offset + 1)
        prev_start = shift_months(now, offset - 1)
        revenue = _revenue_between(payments, start, end)
        prev = _revenue_between(payments, prev_start, start)
        rows.append({
            'month': start.strftime('%b %Y'),
            'revenue_cents': revenue,
            'growth': _percent(revenue - prev, prev),
        })
    return rows


def financial_summary(invoices: Sequence[Invoice], payments: Sequence[DerivedPayment], now: datetime) -> Dict[str, Any]:
    total_invoiced = sum(i.total_cents for i in invoices)
    total_paid = sum(p.amount_cents for p in payments)
    total_outstanding = sum(i.remaining_cents for i in invoices if i.status in OPEN_STATUSES and not is_past_due(i, now))
    total_overdue = sum(i.remaining_cents for i in invoices if i.status in OPEN_STATUSES and is_past_due(i, now))

    paid_invoices = [i for i in invoices if i.paid_date is not None]
    if paid_invoices:
        average_days = sum(abs(days_between(i.paid_date, i.issue_date)) for i in paid_invoices) / len(paid_invoices)
    else:
        average_days = 0.0

    by_method: 'OrderedDict[str, int]' = OrderedDict()
    for p in payments:
        by_method[p.method] = by_method.get(p.method, 0) + p.amount_cents
    breakdown = [
        {'method': method.replace('_', ' ', 1), 'amount_cents': amount, 'percentage': _percent(amount, total_paid)}
        for method, amount in by_method.items()
    ]

    spending: 'OrderedDict[Any, Dict[str, Any]]' = OrderedDict()
    for inv in invoices:
        row = spending.setdefault(inv.customer_id, {
            'customer_id': inv.customer_id,
            'customer_name': inv.customer_name,
            'total_spent_cents': 0,
            'order_count': 0,
        })
        row['total_spent_cents'] += inv.paid_cents
        row['order_count'] += 1
    top_customers = sorted(spending.values(), key=lambda r: r['total_spent_cents'], reverse=True)[:TOP_CUSTOMER_LIMIT]

    return {
        'total_revenue_cents': total_paid,
        'total_invoiced_cents': total_invoiced,
        'total_paid_cents': total_paid,
        'total_outstanding_cents': total_outstanding,
        'total_overdue_cents': total_overdue,
        'average_payment_days': average_days,
        'collection_rate': _percent(total_paid, total_invoiced),
        'outstanding_ratio': _percent(total_outstanding, total_invoiced),
        'payment_method_breakdown': breakdown,
        'monthly_revenue': monthly_revenue(payments, now),
        'top_customers': top_customers,
    }


def accounts_receivable(invoices: Iterable[Invoice], now: datetime) -> Dict[str, int]:
    aging = {'current': 0, 'days_30': 0, 'days_60': 0, 'days_90_plus': 0}
    for inv in invoices:
        if inv.status not in OPEN_STATUSES:
            continue
        # timedelta.days floors, matching floor((now - due) / 1 day)
        days_past_due = (now - inv.due_date).days
        if days_past_due <= 0:
            aging['current'] += inv.remaining_cents
        elif days_past_due <= 30:
            aging['days_30'] += inv.remaining_cents
        elif days_past_due <= 60:
            aging['days_60'] += inv.remaining_cents
        else:
            aging['days_90_plus'] += inv.remaining_cents
    return aging


def draft_invoice(customer, items: Sequence[Dict[str, Any]], due_date: datetime, now: datetime, *,
                  order=None, payment_terms: str = PAYMENT_TERMS, notes: Optional[str] = None,
                  discount_cents: int = 0, sequence: int = 1) -> Invoice:
    """Build an unsaved draft invoice for a customer from explicit line items.

    Tax is 8% of (subtotal - discount), rounded half-up to the cent.
    """
    token = uuid.uuid4().hex[:12]
    lines = []
    for idx, item in enumerate(items):
        qty = int(item.get('quantity', 0))
        unit = int(item.get('unit_price_cents', 0))
        lines.append(InvoiceItem(
            id=f"item-{token}-{idx}",
            name=item.get('name', ''),
            description=item.get('description'),
            quantity=qty,
            unit_price_cents=unit,
            total_price_cents=qty * unit,
        ))
    subtotal = sum(line.total_price_cents for line in lines)
    tax = tax_on(subtotal - discount_cents)
    total = subtotal + tax - discount_cents
    return Invoice(
        id=f"draft-{token}",
        invoice_number=f"INV-{now.year}-{sequence:04d}",
        customer_id=customer.id,
        customer_name=customer.name,
        customer_email=customer.email,
        order_id=order.id if order is not None else None,
        order_number=(order.order_number or '') if order is not None else '',
        payment_method=order.payment_method if order is not None else None,
        items=lines,
        subtotal_cents=subtotal,
        tax_cents=tax,
        discount_cents=discount_cents,
        total_cents=total,
        status=INVOICE_DRAFT,
        issue_date=now,
        due_date=due_date,
        paid_cents=0,
        remaining_cents=total,
        payment_terms=payment_terms,
        notes=notes,
        created_at=now,
        updated_at=now,
    )


__all__ = [
    'Invoice', 'InvoiceItem', 'DerivedPayment', 'PaymentError', 'derive_invoice', 'derive_invoices',
    'derive_payments', 'check_payment', 'financial_summary', 'monthly_revenue', 'accounts_receivable',
    'draft_invoice', 'invoice_id_for', 'order_id_from_invoice_id', 'tax_on', 'order_totals', 'ALL_INVOICE_STATUSES',
]
