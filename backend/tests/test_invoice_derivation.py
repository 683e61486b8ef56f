from datetime import datetime, timedelta
import pytest
from parcelops.models.customer import Customer
from parcelops.models.order import Order
from parcelops.models.payment import Payment
from parcelops.services.accounting import (
    PaymentError,
    check_payment,
    derive_invoice,
    derive_invoices,
    derive_payments,
    draft_invoice,
    invoice_id_for,
    order_id_from_invoice_id,
    order_totals,
    tax_on,
)

ACME = Customer(id=7, name='Acme Ltd', email='billing@acme.test', tier='gold')


def _order(status='delivered', payment_method='prepaid', order_id=1, created_at=datetime(2024, 1, 1),
           updated_at=None, total=30000, fee=2000, tax=2400, discount=0):
    return Order(
        id=order_id,
        order_number=f'ORD-2024-{order_id:03d}',
        customer_id=ACME.id,
        customer=ACME,
        items=[{'name': 'Box', 'quantity': 2, 'value_cents': 12800}],
        status=status,
        payment_method=payment_method,
        total_cents=total,
        delivery_fee_cents=fee,
        tax_cents=tax,
        discount_cents=discount,
        created_at=created_at,
        updated_at=updated_at or created_at,
    )


def _payment(order_id, amount, when, payment_id=1, method='bank_transfer'):
    return Payment(id=payment_id, order_id=order_id, amount_cents=amount, payment_date=when, method=method)


def test_delivered_prepaid_order_is_paid_on_creation():
    inv = derive_invoice(_order(), now=datetime(2024, 3, 1))
    assert inv.status == 'paid'
    assert inv.subtotal_cents == 25600
    assert inv.paid_cents == 30000
    assert inv.remaining_cents == 0
    assert inv.due_date == datetime(2024, 1, 31)
    assert inv.paid_date == datetime(2024, 1, 1)
    assert inv.invoice_number == 'INV-2024-0001'
    assert inv.id == 'inv-1'
    assert inv.customer_name == 'Acme Ltd'
    assert inv.payment_terms == 'Net 30'


def test_delivered_credit_order_past_due_is_overdue():
    inv = derive_invoice(_order(payment_method='credit'), now=datetime(2024, 2, 15))
    assert inv.status == 'overdue'
    assert inv.remaining_cents == 30000
    assert inv.paid_cents == 0
    assert inv.paid_date is None


def test_delivered_cod_is_paid_on_last_update():
    inv = derive_invoice(_order(payment_method='cod', updated_at=datetime(2024, 1, 4, 15)), now=datetime(2024, 1, 5))
    assert inv.status == 'paid'
    assert inv.paid_date == datetime(2024, 1, 4, 15)


@pytest.mark.parametrize('now', [datetime(2023, 12, 1), datetime(2024, 1, 15), datetime(2030, 1, 1)])
def test_cancelled_order_is_cancelled_at_any_time(now):
    inv = derive_invoice(_order(status='cancelled', payment_method='credit'), now=now)
    assert inv.status == 'cancelled'
    assert inv.paid_cents == 0


@pytest.mark.parametrize('status', ['pending', 'processing', 'shipped', 'returned'])
def test_undelivered_orders_are_sent_until_due(status):
    inv = derive_invoice(_order(status=status), now=datetime(2024, 1, 20))
    assert inv.status == 'sent'


def test_same_order_different_clock_changes_status():
    order = _order(status='shipped')
    assert derive_invoice(order, now=datetime(2024, 2, 1)).status == 'overdue'
    assert derive_invoice(order, now=datetime(2024, 1, 30)).status == 'sent'
    # due date itself is not yet overdue
    assert derive_invoice(order, now=datetime(2024, 1, 31)).status == 'sent'


def test_subtotal_adds_back_discount():
    inv = derive_invoice(_order(status='pending', total=29000, discount=1000), now=datetime(2024, 1, 2))
    assert inv.subtotal_cents == 25600
    assert inv.discount_cents == 1000


def test_items_project_to_invoice_lines():
    inv = derive_invoice(_order(), now=datetime(2024, 1, 2))
    assert len(inv.items) == 1
    line = inv.items[0]
    assert (line.quantity, line.unit_price_cents, line.total_price_cents) == (2, 12800, 25600)
    assert line.id == 'item-1-0'


def test_recorded_payment_below_total_is_partial():
    order = _order(status='shipped')
    inv = derive_invoice(order, datetime(2024, 1, 10), [_payment(1, 10000, datetime(2024, 1, 5))])
    assert inv.status == 'partial'
    assert inv.paid_cents == 10000
    assert inv.remaining_cents == 20000
    # partial invoices are not escalated
    assert derive_invoice(order, datetime(2024, 6, 1), [_payment(1, 10000, datetime(2024, 1, 5))]).status == 'partial'


def test_recorded_payments_covering_total_mark_paid():
    recorded = [_payment(1, 10000, datetime(2024, 1, 5), 1), _payment(1, 20000, datetime(2024, 1, 9), 2)]
    inv = derive_invoice(_order(status='shipped'), datetime(2024, 3, 1), recorded)
    assert inv.status == 'paid'
    assert inv.paid_date == datetime(2024, 1, 9)
    assert inv.remaining_cents == 0
    assert not inv.settled_by_order


def test_recorded_payments_ignored_on_cancelled_orders():
    inv = derive_invoice(_order(status='cancelled'), datetime(2024, 1, 10), [_payment(1, 10000, datetime(2024, 1, 5))])
    assert inv.status == 'cancelled'
    assert inv.paid_cents == 0


def test_derive_invoices_groups_recorded_payments_by_order():
    orders = [_order(order_id=1, status='shipped'), _order(order_id=2, status='shipped')]
    invoices = derive_invoices(orders, datetime(2024, 1, 10), [_payment(2, 500, datetime(2024, 1, 3))])
    assert [i.status for i in invoices] == ['sent', 'partial']


def test_synthetic_payment_for_order_settled_invoice():
    invoices = derive_invoices([_order(payment_method='cod', updated_at=datetime(2024, 1, 3))], datetime(2024, 2, 1))
    [payment] = derive_payments(invoices)
    assert payment.id == 'pay-inv-1'
    assert payment.amount_cents == 30000
    assert payment.method == 'cash'
    assert payment.reference == 'REF-INV-2024-0001'
    assert payment.payment_date == datetime(2024, 1, 3)
    assert not payment.recorded


def test_derived_payments_newest_first_and_filterable():
    orders = [_order(order_id=1), _order(order_id=2, status='shipped', created_at=datetime(2024, 1, 2)),
              _order(order_id=3, status='cancelled')]
    recorded = [_payment(2, 5000, datetime(2024, 1, 6), 11), _payment(3, 100, datetime(2024, 1, 7), 12)]
    invoices = derive_invoices(orders, datetime(2024, 1, 10), recorded)
    payments = derive_payments(invoices, recorded)
    # cancelled order's recorded payment is dropped
    assert [p.id for p in payments] == ['pay-11', 'pay-inv-1']
    assert payments[0].method == 'bank_transfer' and payments[0].recorded
    assert payments[1].method == 'card'
    only = derive_payments(invoices, recorded, invoice_id='inv-2')
    assert [p.id for p in only] == ['pay-11']


def test_check_payment_rules():
    open_inv = derive_invoice(_order(status='shipped'), datetime(2024, 1, 5))
    check_payment(open_inv, 30000)
    with pytest.raises(PaymentError):
        check_payment(None, 100)
    with pytest.raises(PaymentError):
        check_payment(open_inv, 0)
    with pytest.raises(PaymentError):
        check_payment(open_inv, 30001)
    with pytest.raises(PaymentError):
        check_payment(derive_invoice(_order(), datetime(2024, 1, 5)), 100)
    with pytest.raises(PaymentError):
        check_payment(derive_invoice(_order(status='cancelled'), datetime(2024, 1, 5)), 100)


@pytest.mark.parametrize('paid_on,ok', [
    (datetime(2024, 1, 1), True),
    (datetime(2024, 1, 5), True),
    (datetime(2023, 12, 31, 23), False),
    (datetime(2024, 1, 5, 0, 0, 1), False),
])
def test_check_payment_date_window(paid_on, ok):
    now = datetime(2024, 1, 5)
    open_inv = derive_invoice(_order(status='shipped'), now)
    if ok:
        check_payment(open_inv, 100, paid_on, now)
    else:
        with pytest.raises(PaymentError):
            check_payment(open_inv, 100, paid_on, now)


def test_invoice_id_parsing():
    assert invoice_id_for(12) == 'inv-12'
    assert order_id_from_invoice_id('inv-12') == 12
    assert order_id_from_invoice_id('inv-x') is None
    assert order_id_from_invoice_id('draft-abc') is None
    assert order_id_from_invoice_id('') is None


def test_tax_rounds_half_up():
    assert tax_on(25600) == 2048
    assert tax_on(1) == 0
    assert tax_on(7) == 1  # 0.56
    assert tax_on(1875) == 150  # exactly 150.0
    assert tax_on(1881) == 150  # 150.48
    assert tax_on(1869) == 150  # 149.52


def test_order_totals():
    totals = order_totals([{'value_cents': 12800, 'quantity': 2}], delivery_fee_cents=2000, discount_cents=500)
    assert totals == {'items_total_cents': 25600, 'tax_cents': 2048, 'total_cents': 25600 + 2000 + 2048 - 500}


def test_draft_invoice_from_line_items():
    now = datetime(2024, 5, 10)
    inv = draft_invoice(
        ACME,
        [{'name': 'Freight', 'quantity': 3, 'unit_price_cents': 1000}, {'name': 'Handling', 'quantity': 1, 'unit_price_cents': 500}],
        now + timedelta(days=30),
        now,
        discount_cents=500,
        sequence=42,
    )
    assert inv.status == 'draft'
    assert inv.invoice_number == 'INV-2024-0042'
    assert inv.id.startswith('draft-')
    assert inv.subtotal_cents == 3500
    assert inv.tax_cents == 240
    assert inv.total_cents == 3500 + 240 - 500
    assert inv.remaining_cents == inv.total_cents
    assert inv.order_id is None
    assert inv.customer_email == 'billing@acme.test'
