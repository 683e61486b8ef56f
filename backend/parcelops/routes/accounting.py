from __future__ import annotations
import csv
import io
from datetime import timedelta
from flask import Blueprint, Response, request, abort, current_app
from sqlalchemy import select, func
from sqlalchemy.orm import joinedload
from parcelops import get_db
from parcelops.decorators.auth import require_permission, current_actor
from parcelops.models.customer import Customer
from parcelops.models.order import Order
from parcelops.models.payment import Payment
from parcelops.services.accounting import (
    ALL_INVOICE_STATUSES,
    NET_DAYS,
    PAYMENT_TERMS,
    PaymentError,
    accounts_receivable,
    check_payment,
    derive_invoice,
    derive_invoices,
    derive_payments,
    draft_invoice,
    financial_summary,
    order_id_from_invoice_id,
)
from parcelops.services.audit import add_audit
from parcelops.utils.filters import filter_records
from parcelops.utils.listing import cached_list, make_cached_item_response, paginate_records
from parcelops.utils.sorting import sort_records
from parcelops.utils.validation import coerce_datetime, coerce_int, evaluation_clock, require_fields, validate_choice
from parcelops.time_utils import to_utc_z

acc_bp = Blueprint('accounting', __name__)

INVOICE_FILTERS = {
    'status': {'match': lambda r, v: r['status'] == v, 'validate': lambda v: v in ALL_INVOICE_STATUSES},
    'customer_id': {'coerce': int, 'match': lambda r, v: r['customer_id'] == v},
    'q': {'match': lambda r, v: v.lower() in r['invoice_number'].lower() or v.lower() in r['customer_name'].lower()},
}
INVOICE_SORTS = {'issue_date', 'due_date', 'total_cents', 'remaining_cents', 'status', 'customer_name', 'invoice_number'}
PAYMENT_FILTERS = {
    'invoice_id': {'match': lambda r, v: r['invoice_id'] == v},
    'method': {'match': lambda r, v: r['method'] == v, 'validate': lambda v: v in Payment.ALL_METHODS},
}
EXPORT_COLUMNS = (
    'invoice_number', 'customer_name', 'customer_email', 'order_number', 'issue_date', 'due_date',
    'status', 'subtotal_cents', 'tax_cents', 'discount_cents', 'total_cents', 'paid_cents', 'remaining_cents',
)


def _invoice_json(inv):
    return {
        'id': inv.id,
        'invoice_number': inv.invoice_number,
        'customer_id': inv.customer_id,
        'customer_name': inv.customer_name,
        'customer_email': inv.customer_email,
        'order_id': inv.order_id,
        'order_number': inv.order_number,
        'payment_method': inv.payment_method,
        'items': [
            {
                'id': i.id,
                'name': i.name,
                'description': i.description,
                'quantity': i.quantity,
                'unit_price_cents': i.unit_price_cents,
                'total_price_cents': i.total_price_cents,
            }
            for i in inv.items
        ],
        'subtotal_cents': inv.subtotal_cents,
        'tax_cents': inv.tax_cents,
        'discount_cents': inv.discount_cents,
        'total_cents': inv.total_cents,
        'paid_cents': inv.paid_cents,
        'remaining_cents': inv.remaining_cents,
        'status': inv.status,
        'payment_terms': inv.payment_terms,
        'issue_date': to_utc_z(inv.issue_date),
        'due_date': to_utc_z(inv.due_date),
        'paid_date': to_utc_z(inv.paid_date),
        'notes': inv.notes,
    }


def _payment_json(p):
    return {
        'id': p.id,
        'invoice_id': p.invoice_id,
        'order_id': p.order_id,
        'amount_cents': p.amount_cents,
        'method': p.method,
        'payment_date': to_utc_z(p.payment_date),
        'reference': p.reference,
        'notes': p.notes,
        'recorded': p.recorded,
    }


def _load_sources():
    """All orders (with customers) and recorded payments, plus the newest change among them."""
    session = get_db()
    orders = session.execute(
        select(Order).options(joinedload(Order.customer)).order_by(Order.created_at.desc(), Order.id.desc())
    ).scalars().all()
    payments = session.execute(select(Payment).order_by(Payment.id.asc())).scalars().all()
    stamps = [o.updated_at for o in orders if o.updated_at] + [p.created_at for p in payments if p.created_at]
    return orders, payments, max(stamps, default=None)


def _load_invoice(invoice_id: str, now):
    order_id = order_id_from_invoice_id(invoice_id)
    if order_id is None:
        abort(404)
    session = get_db()
    order = session.execute(
        select(Order).options(joinedload(Order.customer)).where(Order.id == order_id)
    ).scalar_one_or_none()
    if not order:
        abort(404)
    recorded = session.execute(select(Payment).where(Payment.order_id == order_id)).scalars().all()
    return order, recorded, derive_invoice(order, now, recorded)


def _derivation_tag(rows) -> str:
    return ','.join(f"{r['id']}:{r.get('status', '')}:{r.get('remaining_cents', r.get('amount_cents', ''))}" for r in rows)


@acc_bp.route('/invoices', methods=['GET', 'HEAD'])
@require_permission('invoices', 'read')
def list_invoices():
    now = evaluation_clock(request.args.get('as_of'))
    orders, payments, latest_ts = _load_sources()
    rows = [_invoice_json(i) for i in derive_invoices(orders, now, payments)]
    rows = filter_records(rows, INVOICE_FILTERS, request.args)
    rows = sort_records(rows, request.args.get('sort'), INVOICE_SORTS, '-issue_date')
    page, total, limit, offset = paginate_records(rows)
    return cached_list(page, total, limit, offset, latest_ts, extra=_derivation_tag(page))


@acc_bp.route('/invoices/<invoice_id>', methods=['GET', 'HEAD'])
@require_permission('invoices', 'read')
def get_invoice(invoice_id: str):
    now = evaluation_clock(request.args.get('as_of'))
    order, recorded, inv = _load_invoice(invoice_id, now)
    stamps = [order.updated_at] + [p.created_at for p in recorded]
    body = _invoice_json(inv)
    body['payments'] = [_payment_json(p) for p in derive_payments([inv], recorded)]
    return make_cached_item_response(body, max(s for s in stamps if s), extra=_derivation_tag([body]))


@acc_bp.post('/invoices/draft')
@require_permission('invoices', 'create')
def create_draft_invoice():
    """Build an unsaved invoice from explicit line items; nothing is persisted."""
    data = request.json or {}
    now = evaluation_clock(request.args.get('as_of'))
    if data.get('customer_id') is None:
        abort(400, description='customer_id required')
    session = get_db()
    customer = session.execute(select(Customer).where(Customer.id == coerce_int(data['customer_id'], 'customer_id'))).scalar_one_or_none()
    if not customer:
        abort(404, description='customer not found')
    order = None
    if data.get('order_id') is not None:
        order = session.execute(select(Order).where(Order.id == coerce_int(data['order_id'], 'order_id'))).scalar_one_or_none()
        if not order:
            abort(404, description='order not found')
    raw_items = data.get('items')
    if not isinstance(raw_items, list) or not raw_items:
        abort(400, description='items must be a non-empty list')
    items = []
    for i, item in enumerate(raw_items):
        if not isinstance(item, dict) or not item.get('name'):
            abort(400, description=f'items[{i}].name required')
        items.append({
            'name': item['name'],
            'description': item.get('description'),
            'quantity': coerce_int(item.get('quantity', 1), f'items[{i}].quantity', minimum=1),
            'unit_price_cents': coerce_int(item.get('unit_price_cents', 0), f'items[{i}].unit_price_cents', minimum=0),
        })
    due_date = coerce_datetime(data.get('due_date'), 'due_date') or now + timedelta(days=NET_DAYS)
    sequence = session.execute(select(func.count(Order.id))).scalar_one() + 1
    inv = draft_invoice(
        customer,
        items,
        due_date,
        now,
        order=order,
        payment_terms=data.get('payment_terms') or PAYMENT_TERMS,
        notes=data.get('notes'),
        discount_cents=coerce_int(data.get('discount_cents', 0), 'discount_cents', minimum=0),
        sequence=sequence,
    )
    return _invoice_json(inv)


@acc_bp.get('/invoices/export')
@require_permission('reports', 'export')
def export_invoices():
    now = evaluation_clock(request.args.get('as_of'))
    orders, payments, _ = _load_sources()
    rows = [_invoice_json(i) for i in derive_invoices(orders, now, payments)]
    rows = filter_records(rows, INVOICE_FILTERS, request.args)
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=EXPORT_COLUMNS, extrasaction='ignore')
    writer.writeheader()
    writer.writerows(rows)
    resp = Response(buf.getvalue(), mimetype='text/csv')
    resp.headers['Content-Disposition'] = f"attachment; filename=invoices-{now.strftime('%Y-%m-%d')}.csv"
    return resp


@acc_bp.route('/payments', methods=['GET', 'HEAD'])
@require_permission('invoices', 'read')
def list_payments():
    now = evaluation_clock(request.args.get('as_of'))
    orders, recorded, latest_ts = _load_sources()
    invoices = derive_invoices(orders, now, recorded)
    rows = [_payment_json(p) for p in derive_payments(invoices, recorded)]
    rows = filter_records(rows, PAYMENT_FILTERS, request.args)
    page, total, limit, offset = paginate_records(rows)
    return cached_list(page, total, limit, offset, latest_ts, extra=_derivation_tag(page))


@acc_bp.post('/payments')
@require_permission('invoices', 'update')
def record_payment():
    data = request.json or {}
    require_fields(data, 'invoice_id', 'amount_cents')
    now = evaluation_clock(request.args.get('as_of'))
    amount = coerce_int(data['amount_cents'], 'amount_cents')
    method = validate_choice(data.get('method', Payment.METHOD_CARD), Payment.ALL_METHODS, 'method')
    payment_date = coerce_datetime(data.get('payment_date'), 'payment_date') or now
    order, recorded, inv = _load_invoice(str(data['invoice_id']), now)
    try:
        check_payment(inv, amount, payment_date, now)
    except PaymentError as e:
        current_app.logger.warning('payment rejected for %s: %s', inv.id, e)
        abort(400, description=str(e))
    session = get_db()
    actor = current_actor()
    p = Payment(
        order_id=order.id,
        amount_cents=amount,
        method=method,
        payment_date=payment_date,
        reference=data.get('reference'),
        notes=data.get('notes'),
        created_by=int(actor.id),
    )
    session.add(p)
    session.flush()
    add_audit('PAYMENT.RECORD', 'Payment', p.id, {'invoice_id': inv.id, 'amount_cents': amount, 'method': method})
    session.commit()
    updated = derive_invoice(order, now, list(recorded) + [p])
    current_app.logger.info('payment %s of %s cents recorded on %s (%s)', p.id, amount, inv.id, updated.status)
    payment = [x for x in derive_payments([updated], [p]) if x.recorded][0]
    return {'payment': _payment_json(payment), 'invoice': _invoice_json(updated)}, 201


@acc_bp.get('/summary')
@require_permission('invoices', 'read')
def get_summary():
    now = evaluation_clock(request.args.get('as_of'))
    orders, recorded, _ = _load_sources()
    invoices = derive_invoices(orders, now, recorded)
    summary = financial_summary(invoices, derive_payments(invoices, recorded), now)
    summary['as_of'] = to_utc_z(now)
    return summary


@acc_bp.get('/receivables')
@require_permission('invoices', 'read')
def get_receivables():
    now = evaluation_clock(request.args.get('as_of'))
    orders, recorded, _ = _load_sources()
    aging = accounts_receivable(derive_invoices(orders, now, recorded), now)
    return {'as_of': to_utc_z(now), 'aging': aging, 'total_cents': sum(aging.values())}
