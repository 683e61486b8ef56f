"""Dashboard aggregates over orders, customers and users.

All functions are pure: callers load the rows and pass the evaluation clock.
Orders created after `now` are ignored, so a past clock reproduces past figures.
Amounts are integer cents; every percentage with a zero denominator is 0.
"""

from __future__ import annotations
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Sequence

from parcelops.models.order import Order
from parcelops.time_utils import shift_months, start_of_day

DATE_RANGES = {'7d': 7, '30d': 30, '90d': 90, '1y': 365}
DEFAULT_RANGE = '30d'
TOP_CUSTOMER_LIMIT = 10
FINANCIAL_TREND_MONTHS = 7


def _percent(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return numerator / denominator * 100


def _growth(current: float, previous: float) -> float:
    return _percent(current - previous, previous)


def range_days(date_range: str) -> int:
    if date_range not in DATE_RANGES:
        raise ValueError(f'date_range must be one of {sorted(DATE_RANGES)}')
    return DATE_RANGES[date_range]


def _in_period(orders: Sequence, start: datetime, end: datetime = None) -> List:
    return [o for o in orders if o.created_at >= start and (end is None or o.created_at < end)]


def _until(orders: Sequence, now: datetime) -> List:
    return [o for o in orders if o.created_at <= now]


def overview(orders: Sequence, now: datetime, date_range: str = DEFAULT_RANGE) -> Dict[str, Any]:
    orders = _until(orders, now)
    days = range_days(date_range)
    period_start = now - timedelta(days=days)
    prev_start = period_start - timedelta(days=days)
    current = _in_period(orders, period_start)
    previous = _in_period(orders, prev_start, period_start)

    total_orders = len(current)
    revenue = sum(o.total_cents for o in current)
    prev_revenue = sum(o.total_cents for o in previous)
    customers = len({o.customer_id for o in current})
    prev_customers = len({o.customer_id for o in previous})
    delivered = sum(1 for o in current if o.status == Order.STATUS_DELIVERED)
    return {
        'total_orders': total_orders,
        'total_revenue_cents': revenue,
        'total_customers': customers,
        'average_order_value_cents': revenue / total_orders if total_orders else 0,
        'order_growth': _growth(total_orders, len(previous)),
        'revenue_growth': _growth(revenue, prev_revenue),
        'customer_growth': _growth(customers, prev_customers),
        'conversion_rate': _percent(delivered, total_orders),
    }


def _distribution(values: Sequence[str], key: str) -> List[Dict[str, Any]]:
    counts: 'OrderedDict[str, int]' = OrderedDict()
    for v in values:
        counts[v] = counts.get(v, 0) + 1
    total = len(values)
    return [{key: k, 'count': c, 'percentage': _percent(c, total)} for k, c in counts.items()]


def order_analytics(orders: Sequence, now: datetime, date_range: str = DEFAULT_RANGE) -> Dict[str, Any]:
    orders = _until(orders, now)
    days = range_days(date_range)
    period_start = now - timedelta(days=days)
    period = _in_period(orders, period_start)

    daily = []
    day = start_of_day(period_start)
    while day <= now:
        next_day = day + timedelta(days=1)
        day_orders = _in_period(period, day, next_day)
        daily.append({
            'date': day.strftime('%b %d'),
            'orders': len(day_orders),
            'revenue_cents': sum(o.total_cents for o in day_orders),
        })
        day = next_day

    hourly = [
        {'hour': f'{hour:02d}:00', 'orders': sum(1 for o in period if o.created_at.hour == hour)}
        for hour in range(24)
    ]

    categories: 'OrderedDict[str, Dict[str, Any]]' = OrderedDict()
    for o in period:
        for item in o.items or []:
            row = categories.setdefault(item.get('category') or 'uncategorized', {'orders': 0, 'revenue_cents': 0})
            row['orders'] += 1
            row['revenue_cents'] += int(item.get('value_cents', 0) or 0) * int(item.get('quantity', 0) or 0)

    return {
        'daily_orders': daily,
        'status_distribution': _distribution([o.status for o in period], 'status'),
        'priority_distribution': _distribution([o.priority for o in period], 'priority'),
        'hourly_distribution': hourly,
        'category_breakdown': [{'category': k, **v} for k, v in categories.items()],
    }


def customer_analytics(orders: Sequence, customers: Sequence, now: datetime) -> Dict[str, Any]:
    orders = _until(orders, now)
    by_customer: Dict[Any, List] = {}
    for o in orders:
        by_customer.setdefault(o.customer_id, []).append(o)

    tiers: 'OrderedDict[str, Dict[str, int]]' = OrderedDict()
    spending = []
    for c in customers:
        own = by_customer.get(c.id, [])
        spent = sum(o.total_cents for o in own)
        tier = tiers.setdefault(c.tier, {'count': 0, 'revenue_cents': 0, 'orders': 0})
        tier['count'] += 1
        tier['revenue_cents'] += spent
        tier['orders'] += len(own)
        spending.append({
            'customer_id': c.id,
            'customer_name': c.name,
            'order_count': len(own),
            'total_spent_cents': spent,
            'last_order_date': max(o.created_at for o in own) if own else None,
        })
    segmentation = [
        {
            'tier': name,
            'count': t['count'],
            'revenue_cents': t['revenue_cents'],
            'avg_order_value_cents': t['revenue_cents'] / t['orders'] if t['orders'] else 0,
        }
        for name, t in tiers.items()
    ]
    top = sorted(spending, key=lambda r: r['total_spent_cents'], reverse=True)[:TOP_CUSTOMER_LIMIT]

    cutoff = now - timedelta(days=30)
    new_customers = sum(
        1 for c in customers
        if by_customer.get(c.id) and min(o.created_at for o in by_customer[c.id]) >= cutoff
    )
    returning = sum(1 for c in customers if len(by_customer.get(c.id, [])) > 1)

    values = sorted((r['total_spent_cents'] for r in spending), reverse=True)
    if values:
        top_n = -(-len(values) // 10)  # ceil(10%)
        lifetime = {
            'average_cents': sum(values) / len(values),
            'median_cents': values[len(values) // 2],
            'top_10_percent_cents': sum(values[:top_n]) / top_n,
        }
    else:
        lifetime = {'average_cents': 0, 'median_cents': 0, 'top_10_percent_cents': 0}

    return {
        'segmentation': segmentation,
        'top_customers': top,
        'retention': {
            'new_customers': new_customers,
            'returning_customers': returning,
            'retention_rate': _percent(returning, len(customers)),
        },
        'lifetime_value': lifetime,
    }


def financial_analytics(orders: Sequence, now: datetime) -> Dict[str, Any]:
    orders = _until(orders, now)

    def revenue_between(start, end):
        rows = _in_period(orders, start, end)
        return sum(o.total_cents for o in rows), len(rows)

    monthly = []
    for offset in range(-(FINANCIAL_TREND_MONTHS - 1), 1):
        start = shift_months(now, offset)
        end = shift_months(now, offset + 1)
        revenue, count = revenue_between(start, end)
        prev, _ = revenue_between(shift_months(now, offset - 1), start)
        monthly.append({
            'month': start.strftime('%b %Y'),
            'revenue_cents': revenue,
            'orders': count,
            'growth': _growth(revenue, prev),
        })

    methods: 'OrderedDict[str, Dict[str, int]]' = OrderedDict()
    for o in orders:
        row = methods.setdefault(o.payment_method, {'count': 0, 'amount_cents': 0})
        row['count'] += 1
        row['amount_cents'] += o.total_cents
    total = sum(m['amount_cents'] for m in methods.values())
    return {
        'monthly_revenue': monthly,
        'payment_methods': [
            {'method': k, 'count': v['count'], 'amount_cents': v['amount_cents'],
             'percentage': _percent(v['amount_cents'], total)}
            for k, v in methods.items()
        ],
    }


def user_stats(users: Sequence, now: datetime) -> Dict[str, Any]:
    by_role: Dict[str, int] = {}
    for u in users:
        by_role[u.role] = by_role.get(u.role, 0) + 1
    day_ago = now - timedelta(days=1)
    month_ago = now - timedelta(days=30)
    return {
        'total': len(users),
        'active': sum(1 for u in users if u.is_active),
        'inactive': sum(1 for u in users if not u.is_active),
        'by_role': by_role,
        'recent_logins': sum(1 for u in users if u.last_login and day_ago <= u.last_login <= now),
        'new_this_month': sum(1 for u in users if u.created_at and month_ago <= u.created_at <= now),
    }


def dashboard(orders: Sequence, customers: Sequence, now: datetime, date_range: str = DEFAULT_RANGE) -> Dict[str, Any]:
    return {
        'date_range': date_range,
        'overview': overview(orders, now, date_range),
        'orders': order_analytics(orders, now, date_range),
        'customers': customer_analytics(orders, customers, now),
        'financial': financial_analytics(orders, now),
    }


__all__ = [
    'DATE_RANGES', 'range_days', 'overview', 'order_analytics', 'customer_analytics',
    'financial_analytics', 'user_stats', 'dashboard',
]
