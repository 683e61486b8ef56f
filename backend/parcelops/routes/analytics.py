from __future__ import annotations
from flask import Blueprint, request, abort
from sqlalchemy import select
from parcelops import get_db
from parcelops.decorators.auth import require_permission
from parcelops.models.customer import Customer
from parcelops.models.order import Order
from parcelops.services import analytics
from parcelops.utils.validation import evaluation_clock
from parcelops.time_utils import to_utc_z

analytics_bp = Blueprint('analytics', __name__)


def _serialize(value):
    """Render datetimes nested in aggregate payloads as ISO-8601 Z strings."""
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    if hasattr(value, 'isoformat'):
        return to_utc_z(value)
    return value


@analytics_bp.get('/overview')
@require_permission('analytics', 'read')
def get_overview():
    date_range = request.args.get('range', analytics.DEFAULT_RANGE)
    if date_range not in analytics.DATE_RANGES:
        abort(400, description=f'range must be one of {sorted(analytics.DATE_RANGES)}')
    now = evaluation_clock(request.args.get('as_of'))
    session = get_db()
    orders = session.execute(select(Order).order_by(Order.created_at.asc(), Order.id.asc())).scalars().all()
    customers = session.execute(select(Customer).order_by(Customer.id.asc())).scalars().all()
    payload = analytics.dashboard(orders, customers, now, date_range)
    payload['as_of'] = now
    return _serialize(payload)
