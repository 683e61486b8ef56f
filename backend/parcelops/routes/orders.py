from __future__ import annotations
from flask import Blueprint, request, abort
from sqlalchemy import select, func
from parcelops import get_db
from parcelops.models.order import Order
from parcelops.models.customer import Customer
from parcelops.models.payment import Payment
from parcelops.decorators.auth import require_permission, current_actor
from parcelops.decorators.audit import audit_log
from parcelops.services.accounting import order_totals
from parcelops.utils.listing import apply_pagination, cached_list, make_cached_item_response
from parcelops.utils.filters import apply_filters
from parcelops.utils.fsm import TransitionValidator
from parcelops.utils.validation import coerce_datetime, coerce_int, validate_choice
from parcelops.utils.sorting import apply_multi_sort
from parcelops.time_utils import to_utc_z, utcnow

orders_bp = Blueprint('orders', __name__)

# Order lifecycle graph:
# pending -> processing -> shipped -> delivered -> returned
# pending / processing / shipped -> cancelled
ORDER_FSM = TransitionValidator({
    Order.STATUS_PENDING: {Order.STATUS_PROCESSING, Order.STATUS_CANCELLED},
    Order.STATUS_PROCESSING: {Order.STATUS_SHIPPED, Order.STATUS_CANCELLED},
    Order.STATUS_SHIPPED: {Order.STATUS_DELIVERED, Order.STATUS_CANCELLED},
    Order.STATUS_DELIVERED: {Order.STATUS_RETURNED},
    Order.STATUS_CANCELLED: set(),
    Order.STATUS_RETURNED: set(),
})

ORDER_FILTERS = {
    'status': {'op': lambda q, v: q.filter(Order.status == v), 'validate': lambda v: v in Order.ALL_STATUSES},
    'priority': {'op': lambda q, v: q.filter(Order.priority == v), 'validate': lambda v: v in Order.ALL_PRIORITIES},
    'payment_method': {'op': lambda q, v: q.filter(Order.payment_method == v), 'validate': lambda v: v in Order.ALL_PAYMENT_METHODS},
    'customer_id': {'coerce': int, 'op': lambda q, v: q.filter(Order.customer_id == v)},
    'tracking_number': {'op': lambda q, v: q.filter(Order.tracking_number == v)},
    'created_from': {'coerce': lambda v: coerce_datetime(v, 'created_from'), 'op': lambda q, v: q.filter(Order.created_at >= v)},
    'created_to': {'coerce': lambda v: coerce_datetime(v, 'created_to'), 'op': lambda q, v: q.filter(Order.created_at <= v)},
}
ORDER_SORTS = {
    'order_number': Order.order_number,
    'status': Order.status,
    'priority': Order.priority,
    'total_cents': Order.total_cents,
    'created_at': Order.created_at,
    'updated_at': Order.updated_at,
    'id': Order.id,
}


def _clean_items(raw) -> list:
    if not isinstance(raw, list) or not raw:
        abort(400, description='items must be a non-empty list')
    items = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict) or not item.get('name'):
            abort(400, description=f'items[{i}].name required')
        items.append({
            'name': item['name'],
            'description': item.get('description'),
            'quantity': coerce_int(item.get('quantity', 1), f'items[{i}].quantity', minimum=1),
            'weight': item.get('weight'),
            'value_cents': coerce_int(item.get('value_cents', 0), f'items[{i}].value_cents', minimum=0),
            'category': item.get('category'),
        })
    return items


# edits that change what the invoice bills
BILLING_FIELDS = {'items', 'delivery_fee_cents', 'discount_cents', 'payment_method'}
SETTLED_STATUSES = (Order.STATUS_DELIVERED, Order.STATUS_CANCELLED, Order.STATUS_RETURNED)


def _assert_billing_editable(o: Order) -> None:
    if o.status in SETTLED_STATUSES:
        abort(400, description=f'Cannot change billing of a {o.status} order')
    paid = get_db().execute(select(func.count(Payment.id)).where(Payment.order_id == o.id)).scalar_one()
    if paid:
        abort(400, description='Cannot change billing of an order with recorded payments')


def _reprice(o: Order) -> None:
    totals = order_totals(o.items or [], o.delivery_fee_cents or 0, o.discount_cents or 0)
    o.tax_cents = totals['tax_cents']
    o.total_cents = totals['total_cents']


def _get_order_or_404(order_id: int) -> Order:
    o = get_db().execute(select(Order).where(Order.id == order_id)).scalar_one_or_none()
    if not o:
        abort(404)
    return o


def _require_customer(customer_id) -> Customer:
    cid = coerce_int(customer_id, 'customer_id')
    c = get_db().execute(select(Customer).where(Customer.id == cid)).scalar_one_or_none()
    if not c:
        abort(400, description='customer_id unknown')
    return c


@orders_bp.route('', methods=['GET', 'HEAD'])
@require_permission('orders', 'read')
def list_orders():
    q = apply_filters(get_db().query(Order), ORDER_FILTERS, request.args)
    q = apply_multi_sort(q, request.args.get('sort'), ORDER_SORTS, Order.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    latest_ts = max((o.updated_at for o in rows if o.updated_at), default=None)
    return cached_list([_order_json(o) for o in rows], total, limit, offset, latest_ts)


@orders_bp.post('')
@require_permission('orders', 'create')
@audit_log('ORDER.CREATE', entity='Order', entity_id_key='id', meta_keys=['order_number', 'total_cents'])
def create_order():
    session = get_db()
    data = request.json or {}
    if data.get('customer_id') is None:
        abort(400, description='customer_id required')
    customer = _require_customer(data['customer_id'])
    o = Order(
        customer_id=customer.id,
        items=_clean_items(data.get('items')),
        priority=validate_choice(data.get('priority', 'medium'), Order.ALL_PRIORITIES, 'priority'),
        payment_method=validate_choice(data.get('payment_method', Order.PAYMENT_PREPAID), Order.ALL_PAYMENT_METHODS, 'payment_method'),
        delivery_fee_cents=coerce_int(data.get('delivery_fee_cents', 0), 'delivery_fee_cents', minimum=0),
        discount_cents=coerce_int(data.get('discount_cents', 0), 'discount_cents', minimum=0),
        notes=data.get('notes'),
        status=Order.STATUS_PENDING,
        created_by=int(current_actor().id),
    )
    _reprice(o)
    session.add(o)
    session.flush()  # id feeds the order / tracking numbers
    year = (o.created_at or utcnow()).year
    o.order_number = f'ORD-{year}-{o.id:03d}'
    o.tracking_number = f'TR-{o.id:03d}-{year}'
    session.commit()
    return _order_json(o), 201


@orders_bp.route('/<int:order_id>', methods=['GET', 'HEAD'])
@require_permission('orders', 'read')
def get_order(order_id: int):
    o = _get_order_or_404(order_id)
    return make_cached_item_response(_order_json(o), o.updated_at)


@orders_bp.put('/<int:order_id>')
@require_permission('orders', 'update')
@audit_log(
    'ORDER.UPDATE',
    entity='Order',
    entity_id_key='id',
    diff_keys=['priority', 'payment_method', 'total_cents', 'customer_id'],
    pre_fetch=lambda a, kw: _prefetch_order(kw.get('order_id')),
    meta_keys=['total_cents'],
)
def update_order(order_id: int):
    session = get_db()
    o = _get_order_or_404(order_id)
    data = request.json or {}
    if BILLING_FIELDS & set(data):
        _assert_billing_editable(o)
    if 'customer_id' in data:
        o.customer_id = _require_customer(data['customer_id']).id
    if 'items' in data:
        o.items = _clean_items(data['items'])
    if 'priority' in data:
        o.priority = validate_choice(data['priority'], Order.ALL_PRIORITIES, 'priority')
    if 'payment_method' in data:
        o.payment_method = validate_choice(data['payment_method'], Order.ALL_PAYMENT_METHODS, 'payment_method')
    if 'delivery_fee_cents' in data:
        o.delivery_fee_cents = coerce_int(data['delivery_fee_cents'], 'delivery_fee_cents', minimum=0)
    if 'discount_cents' in data:
        o.discount_cents = coerce_int(data['discount_cents'], 'discount_cents', minimum=0)
    if 'notes' in data:
        o.notes = data['notes']
    if {'items', 'delivery_fee_cents', 'discount_cents'} & set(data):
        _reprice(o)
    session.commit()
    return _order_json(o)


def _transition(order_id: int, target_status: str) -> Order:
    """Move an order along ORDER_FSM and commit."""
    session = get_db()
    o = _get_order_or_404(order_id)
    ORDER_FSM.assert_can_transition(o.status, target_status)
    o.status = target_status
    session.commit()
    return o


def _transition_meta():
    return dict(
        entity='Order',
        entity_id_key='id',
        diff_keys=['status'],
        pre_fetch=lambda a, kw: _prefetch_order(kw.get('order_id')),
        meta_keys=['status'],
    )


@orders_bp.post('/<int:order_id>/process')
@require_permission('orders', 'update')
@audit_log('ORDER.PROCESS', **_transition_meta())
def process_order(order_id: int):
    return _order_json(_transition(order_id, Order.STATUS_PROCESSING))


@orders_bp.post('/<int:order_id>/ship')
@require_permission('orders', 'update')
@audit_log('ORDER.SHIP', **_transition_meta())
def ship_order(order_id: int):
    return _order_json(_transition(order_id, Order.STATUS_SHIPPED))


@orders_bp.post('/<int:order_id>/deliver')
@require_permission('orders', 'update')
@audit_log('ORDER.DELIVER', **_transition_meta())
def deliver_order(order_id: int):
    return _order_json(_transition(order_id, Order.STATUS_DELIVERED))


@orders_bp.post('/<int:order_id>/cancel')
@require_permission('orders', 'update')
@audit_log('ORDER.CANCEL', **_transition_meta())
def cancel_order(order_id: int):
    return _order_json(_transition(order_id, Order.STATUS_CANCELLED))


@orders_bp.post('/<int:order_id>/return')
@require_permission('orders', 'update')
@audit_log('ORDER.RETURN', **_transition_meta())
def return_order(order_id: int):
    return _order_json(_transition(order_id, Order.STATUS_RETURNED))


def _order_json(o: Order):
    return {
        'id': o.id,
        'order_number': o.order_number,
        'tracking_number': o.tracking_number,
        'customer_id': o.customer_id,
        'items': list(o.items or []),
        'status': o.status,
        'priority': o.priority,
        'payment_method': o.payment_method,
        'total_cents': o.total_cents,
        'delivery_fee_cents': o.delivery_fee_cents,
        'tax_cents': o.tax_cents,
        'discount_cents': o.discount_cents,
        'notes': o.notes,
        'created_by': o.created_by,
        'created_at': to_utc_z(o.created_at),
        'updated_at': to_utc_z(o.updated_at),
        'allowed_transitions': sorted(ORDER_FSM.allowed_targets(o.status)),
    }


def _prefetch_order(order_id: int):
    o = get_db().execute(select(Order).where(Order.id == order_id)).scalar_one_or_none()
    if not o:
        return {}
    return {
        'status': o.status,
        'priority': o.priority,
        'payment_method': o.payment_method,
        'total_cents': o.total_cents,
        'customer_id': o.customer_id,
    }
