from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

import pytest

import orders
from models import db, ItemCategory, MenuItem


def _dine_in(table=3):
    return orders.create_order({"order_type": "dine_in", "table_number": table})


def _statuses(order_id):
    return [it.status for it in orders.get_order_items(order_id)]


def _assert_totals_consistent(order):
    assert order.tax == (order.subtotal * Decimal("0.05")).quantize(Decimal("0.01"), ROUND_HALF_UP)
    assert order.total_amount == order.subtotal + order.tax + order.packaging_fee


def test_dine_in_scenario_end_to_end(app_ctx):
    order = _dine_in(table=3)
    assert order.order_number == "1001"
    assert order.subtotal == 0 and order.total_amount == 0

    first = orders.add_item(order.id, menu_item_id=1, quantity=2, price="150.00")
    order = orders.get_order(order.id)
    assert (order.subtotal, order.tax, order.total_amount) == (
        Decimal("300.00"), Decimal("15.00"), Decimal("315.00"))

    second = orders.add_item(order.id, menu_item_id=2, quantity=1, price=50)
    order = orders.get_order(order.id)
    assert (order.subtotal, order.tax, order.total_amount) == (
        Decimal("350.00"), Decimal("17.50"), Decimal("367.50"))

    ticket = orders.print_kot(order.id)
    assert [it["id"] for it in ticket.kot_items] == [first.id, second.id]
    assert _statuses(order.id) == ["kot_printed", "kot_printed"]

    bill = orders.print_bill(order.id)
    assert [it["status"] for it in bill.items] == ["completed", "completed"]

    paid = orders.settle_payment(order.id, "cash")
    assert paid.payment_status == "paid"
    assert paid.payment_method == "cash"
    assert paid.cash_amount is None and paid.bank_amount is None


def test_totals_hold_after_every_mutation(app_ctx):
    order = orders.create_order({"order_type": "parcel", "customer_name": "Asha"})
    a = orders.add_item(order.id, 1, 3, "19.99")
    _assert_totals_consistent(orders.get_order(order.id))
    b = orders.add_item(order.id, 2, 1, "0.30")
    _assert_totals_consistent(orders.get_order(order.id))
    orders.update_item_quantity(a.id, 5)
    _assert_totals_consistent(orders.get_order(order.id))
    orders.remove_item(b.id)
    order = orders.get_order(order.id)
    _assert_totals_consistent(order)
    assert order.subtotal == Decimal("99.95")
    assert order.packaging_fee == Decimal("20.00")


def test_parcel_order_gets_default_packaging_fee(app_ctx):
    order = orders.create_order({"order_type": "parcel", "customer_name": "Ravi",
                                 "customer_phone": "98450 00000"})

    assert order.packaging_fee == Decimal("20.00")
    assert order.total_amount == Decimal("20.00")
    assert order.payment_status == "unpaid"


def test_order_numbers_are_unique_and_monotonic(app_ctx):
    numbers = [_dine_in(table=t).order_number for t in (1, 2, 3)]

    assert numbers == ["1001", "1002", "1003"]
    assert orders.get_order_by_number("1002").table_number == 2
    assert orders.get_order_by_number("9999") is None


def test_add_item_snapshots_menu_price(app_ctx):
    cat = ItemCategory.query.first()
    mi = MenuItem(name="Dal Makhani", price=Decimal("200.00"), category_id=cat.id)
    db.session.add(mi)
    db.session.commit()
    order = _dine_in()

    item = orders.add_item(order.id, mi.id, 2)
    mi.price = Decimal("250.00")
    db.session.commit()

    assert orders.get_order_items(order.id)[0].price == Decimal("200.00")
    assert item.status == "pending"
    assert orders.get_order(order.id).subtotal == Decimal("400.00")


def test_add_item_to_unknown_order_or_menu_item(app_ctx):
    with pytest.raises(orders.NotFound):
        orders.add_item(42, 1, 1, "10")

    order = _dine_in()
    with pytest.raises(orders.NotFound):
        orders.add_item(order.id, 999, 1)


def test_kot_only_moves_pending_items(app_ctx):
    order = _dine_in()
    first = orders.add_item(order.id, 1, 1, "100")
    orders.print_kot(order.id)
    orders.print_bill(order.id)
    second = orders.add_item(order.id, 2, 1, "40")

    ticket = orders.print_kot(order.id)

    assert [it["id"] for it in ticket.kot_items] == [second.id]
    assert ticket.kot_items[0]["status"] == "pending"
    by_id = {it["id"]: it["status"] for it in ticket.all_items}
    assert by_id == {first.id: "completed", second.id: "kot_printed"}


def test_second_kot_without_new_items_is_a_noop(app_ctx):
    order = _dine_in()
    orders.add_item(order.id, 1, 2, "75")
    orders.print_kot(order.id)

    again = orders.print_kot(order.id)

    assert again.kot_items == []
    assert _statuses(order.id) == ["kot_printed"]


def test_kot_for_unknown_order(app_ctx):
    with pytest.raises(orders.NotFound):
        orders.print_kot(12345)


def test_bill_refused_while_items_pending(app_ctx):
    order = _dine_in()
    orders.add_item(order.id, 1, 1, "100")
    orders.print_kot(order.id)
    orders.add_item(order.id, 2, 1, "60")

    with pytest.raises(orders.Conflict):
        orders.print_bill(order.id)
    assert _statuses(order.id) == ["kot_printed", "pending"]

    orders.print_kot(order.id)
    bill = orders.print_bill(order.id)
    assert _statuses(order.id) == ["completed", "completed"]
    assert bill.order.total_amount == Decimal("168.00")


def test_item_status_cannot_move_backwards(app_ctx):
    order = _dine_in()
    item = orders.add_item(order.id, 1, 1, "10")
    orders.update_item_status(item.id, "kot_printed")

    with pytest.raises(orders.Conflict):
        orders.update_item_status(item.id, "pending")
    assert orders.update_item_status(item.id, "completed").status == "completed"
    assert orders.update_item_status(999, "completed") is None


def test_split_settlement_records_amounts(app_ctx):
    order = orders.create_order({"order_type": "parcel", "packaging_fee": "16.00"})
    orders.add_item(order.id, 1, 1, "80.00")
    assert orders.get_order(order.id).total_amount == Decimal("100.00")

    paid = orders.settle_payment(order.id, "split", "UTR123", 60, 40)

    assert paid.payment_status == "paid"
    assert paid.payment_method == "split"
    assert paid.bank_reference == "UTR123"
    assert paid.cash_amount == Decimal("60") and paid.bank_amount == Decimal("40")


def test_settlement_overwrites_and_does_not_check_split_sum(app_ctx):
    order = _dine_in()
    orders.add_item(order.id, 1, 1, "100")
    orders.settle_payment(order.id, "cash")

    again = orders.settle_payment(order.id, "split", "REF", 10, 10)

    assert again.payment_method == "split"
    assert again.cash_amount + again.bank_amount != again.total_amount
    assert orders.settle_payment(777, "cash") is None


def test_removing_unknown_item_changes_nothing(app_ctx):
    order = _dine_in()
    orders.add_item(order.id, 1, 2, "150")
    before = orders.get_order(order.id).total_amount

    assert orders.remove_item(9999) is False
    assert orders.update_item_quantity(9999, 3) is None
    assert orders.get_order(order.id).total_amount == before


def test_free_order_drops_items_and_refunds(app_ctx):
    order = _dine_in(table=7)
    orders.add_item(order.id, 1, 2, "150")
    orders.add_item(order.id, 2, 1, "50")

    freed = orders.free_order(order.id)

    assert freed.payment_status == "refunded"
    assert orders.get_order_items(order.id) == []
    assert freed.subtotal == 0 and freed.total_amount == 0
    assert orders.free_order(4040) is None


def test_update_order_recalculates_on_packaging_fee(app_ctx):
    order = _dine_in()
    orders.add_item(order.id, 1, 1, "100")

    updated = orders.update_order(order.id, {"packaging_fee": "10", "notes": "window seat"})

    assert updated.notes == "window seat"
    assert updated.total_amount == Decimal("115.00")
    assert orders.update_order(555, {"notes": "x"}) is None


def test_list_orders_in_range_is_inclusive_and_newest_first(app_ctx):
    base = datetime(2026, 3, 10, 12, 0, 0)
    created = []
    for days in (0, 1, 2, 5):
        o = _dine_in(table=days + 1)
        o.created_at = base + timedelta(days=days)
        created.append(o)
    db.session.commit()
    orders.settle_payment(created[1].id, "bank", "B-1")
    orders.settle_payment(created[2].id, "cash")

    found = orders.list_orders_in_range(base, base + timedelta(days=2))
    assert [o.id for o in found] == [created[2].id, created[1].id, created[0].id]

    banked = orders.list_orders_in_range(base, base + timedelta(days=5), "bank")
    assert [o.id for o in banked] == [created[1].id]

    everything = orders.list_orders_in_range(base, base + timedelta(days=5), "all")
    assert len(everything) == 4
    assert [o.id for o in orders.list_orders()][0] == created[3].id


def test_sales_stats_counts_today_only(app_ctx):
    today = _dine_in()
    orders.add_item(today.id, 1, 1, "100")
    old = orders.create_order({"order_type": "parcel"})
    old.created_at = datetime.utcnow() - timedelta(days=3)
    db.session.commit()

    stats = orders.sales_stats()

    assert stats == {"today_sales": "105.00", "total_orders": 2,
                     "table_orders": 1, "parcel_orders": 1}


def test_sales_stats_day_starts_at_utc_midnight(app_ctx):
    late = _dine_in()
    orders.add_item(late.id, 1, 1, "100")
    late.created_at = datetime(2026, 3, 9, 23, 30)
    early = orders.create_order({"order_type": "parcel"})
    early.created_at = datetime(2026, 3, 10, 0, 15)
    db.session.commit()

    stats = orders.sales_stats(now=datetime(2026, 3, 10, 9, 0))

    assert stats["today_sales"] == "20.00"
