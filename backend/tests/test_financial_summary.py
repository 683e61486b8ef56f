from datetime import datetime
import math
import pytest
from parcelops.models.customer import Customer
from parcelops.models.order import Order
from parcelops.models.payment import Payment
from parcelops.services.accounting import derive_invoices, derive_payments, financial_summary, monthly_revenue

NOW = datetime(2024, 1, 20)
ALICE = Customer(id=1, name='Alice', email='alice@example.com', tier='silver')
BOB = Customer(id=2, name='Bob', email='bob@example.com', tier='bronze')


def _order(order_id, customer, status, payment_method, created_at, updated_at=None, total=30000):
    return Order(
        id=order_id, customer_id=customer.id, customer=customer, status=status, payment_method=payment_method,
        total_cents=total, delivery_fee_cents=0, tax_cents=0, discount_cents=0, items=[],
        created_at=created_at, updated_at=updated_at or created_at,
    )


def _ledger(recorded=()):
    orders = [
        _order(1, ALICE, 'delivered', 'cod', datetime(2024, 1, 1), datetime(2024, 1, 3)),
        _order(2, ALICE, 'delivered', 'credit', datetime(2024, 1, 10)),
        _order(3, BOB, 'shipped', 'prepaid', datetime(2023, 11, 1)),
        _order(4, BOB, 'cancelled', 'prepaid', datetime(2024, 1, 5)),
        _order(5, BOB, 'delivered', 'prepaid', datetime(2023, 12, 1), total=10000),
    ]
    invoices = derive_invoices(orders, NOW, recorded)
    return invoices, derive_payments(invoices, recorded)


def test_totals_and_ratios():
    invoices, payments = _ledger()
    summary = financial_summary(invoices, payments, NOW)
    assert summary['total_invoiced_cents'] == 130000
    assert summary['total_paid_cents'] == 40000
    assert summary['total_revenue_cents'] == 40000
    assert summary['total_outstanding_cents'] == 30000  # order 2, still within terms
    assert summary['total_overdue_cents'] == 30000  # order 3
    assert summary['collection_rate'] == pytest.approx(40000 / 130000 * 100)
    assert summary['outstanding_ratio'] == pytest.approx(30000 / 130000 * 100)
    assert summary['average_payment_days'] == pytest.approx(1.0)


def test_payment_method_breakdown():
    invoices, payments = _ledger()
    breakdown = financial_summary(invoices, payments, NOW)['payment_method_breakdown']
    assert breakdown == [
        {'method': 'cash', 'amount_cents': 30000, 'percentage': 75.0},
        {'method': 'card', 'amount_cents': 10000, 'percentage': 25.0},
    ]


def test_breakdown_labels_replace_underscore():
    recorded = [Payment(id=9, order_id=2, amount_cents=5000, method='bank_transfer', payment_date=datetime(2024, 1, 15))]
    invoices, payments = _ledger(recorded)
    methods = [row['method'] for row in financial_summary(invoices, payments, NOW)['payment_method_breakdown']]
    assert 'bank transfer' in methods


def test_monthly_revenue_trailing_window():
    invoices, payments = _ledger()
    rows = financial_summary(invoices, payments, NOW)['monthly_revenue']
    assert [r['month'] for r in rows] == ['Aug 2023', 'Sep 2023', 'Oct 2023', 'Nov 2023', 'Dec 2023', 'Jan 2024']
    assert rows[-2]['revenue_cents'] == 10000
    assert rows[-2]['growth'] == 0  # November had no revenue
    assert rows[-1]['revenue_cents'] == 30000
    assert rows[-1]['growth'] == pytest.approx(200.0)


def test_top_customers_by_paid_amount():
    invoices, payments = _ledger()
    top = financial_summary(invoices, payments, NOW)['top_customers']
    assert top[0] == {'customer_id': 1, 'customer_name': 'Alice', 'total_spent_cents': 30000, 'order_count': 2}
    assert top[1]['customer_id'] == 2
    assert top[1]['total_spent_cents'] == 10000
    assert top[1]['order_count'] == 3


def test_top_customers_truncated_to_ten():
    customers = [Customer(id=i, name=f'C{i}', email=f'c{i}@example.com', tier='bronze') for i in range(1, 13)]
    orders = [_order(i, c, 'delivered', 'prepaid', datetime(2024, 1, 1), total=i * 100) for i, c in enumerate(customers, start=1)]
    invoices = derive_invoices(orders, NOW)
    top = financial_summary(invoices, derive_payments(invoices), NOW)['top_customers']
    assert len(top) == 10
    assert top[0]['customer_id'] == 12


def test_empty_ledger_reports_zero_not_nan():
    summary = financial_summary([], [], NOW)
    for key in ('collection_rate', 'outstanding_ratio', 'average_payment_days'):
        assert summary[key] == 0
        assert not math.isnan(summary[key])
    assert summary['payment_method_breakdown'] == []
    assert summary['top_customers'] == []
    assert all(r['growth'] == 0 for r in summary['monthly_revenue'])


def test_growth_zero_when_previous_month_empty():
    invoices, payments = _ledger()
    rows = monthly_revenue(payments, datetime(2023, 12, 15), months=2)
    assert rows == [
        {'month': 'Nov 2023', 'revenue_cents': 0, 'growth': 0.0},
        {'month': 'Dec 2023', 'revenue_cents': 10000, 'growth': 0.0},
    ]


def test_partial_balances_stay_outstanding_or_overdue():
    recorded = [
        Payment(id=11, order_id=2, amount_cents=5000, method='card', payment_date=datetime(2024, 1, 12)),
        Payment(id=12, order_id=3, amount_cents=1, method='card', payment_date=datetime(2024, 1, 15)),
    ]
    invoices, payments = _ledger(recorded)
    assert [i.status for i in invoices if i.order_id in (2, 3)] == ['partial', 'partial']
    summary = financial_summary(invoices, payments, NOW)
    assert summary['total_outstanding_cents'] == 25000
    assert summary['total_overdue_cents'] == 29999
