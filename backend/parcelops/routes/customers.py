from flask import Blueprint, request, abort
from sqlalchemy import select
from parcelops import get_db
from parcelops.models.customer import Customer
from parcelops.decorators.auth import require_permission
from parcelops.decorators.audit import audit_log
from parcelops.utils.filters import apply_filters
from parcelops.utils.listing import apply_pagination, cached_list, make_cached_item_response
from parcelops.utils.sorting import apply_multi_sort
from parcelops.utils.validation import require_fields, validate_choice
from parcelops.time_utils import to_utc_z

customers_bp = Blueprint('customers', __name__)

CUSTOMER_FILTERS = {
    'tier': {'op': lambda q, v: q.filter(Customer.tier == v), 'validate': lambda v: v in Customer.ALL_TIERS},
    'q': {'op': lambda q, v: q.filter(Customer.name.ilike(f'%{v}%') | Customer.email.ilike(f'%{v}%') | Customer.company.ilike(f'%{v}%'))},
}
CUSTOMER_SORTS = {
    'name': Customer.name,
    'tier': Customer.tier,
    'created_at': Customer.created_at,
    'id': Customer.id,
}


def _customer_json(c: Customer):
    return {
        'id': c.id,
        'name': c.name,
        'email': c.email,
        'phone': c.phone,
        'company': c.company,
        'tier': c.tier,
        'created_at': to_utc_z(c.created_at),
        'updated_at': to_utc_z(c.updated_at),
    }


@customers_bp.route('', methods=['GET', 'HEAD'])
@require_permission('customers', 'read')
def list_customers():
    q = apply_filters(get_db().query(Customer), CUSTOMER_FILTERS, request.args)
    q = apply_multi_sort(q, request.args.get('sort'), CUSTOMER_SORTS, Customer.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    latest_ts = max((c.updated_at for c in rows if c.updated_at), default=None)
    return cached_list([_customer_json(c) for c in rows], total, limit, offset, latest_ts)


@customers_bp.post('')
@require_permission('customers', 'create')
@audit_log('CUSTOMER.CREATE', entity='Customer', entity_id_key='id', meta_keys=['name', 'tier'])
def create_customer():
    data = request.json or {}
    require_fields(data, 'name', 'email')
    tier = validate_choice(data.get('tier', Customer.TIER_BRONZE), Customer.ALL_TIERS, 'tier')
    session = get_db()
    c = Customer(name=data['name'], email=data['email'], phone=data.get('phone'),
                 company=data.get('company'), tier=tier)
    session.add(c)
    session.commit()
    return _customer_json(c), 201


@customers_bp.route('/<int:customer_id>', methods=['GET', 'HEAD'])
@require_permission('customers', 'read')
def get_customer(customer_id: int):
    c = get_db().execute(select(Customer).where(Customer.id == customer_id)).scalar_one_or_none()
    if not c:
        abort(404)
    return make_cached_item_response(_customer_json(c), c.updated_at)
