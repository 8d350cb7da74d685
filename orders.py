"""Order core: order store, item lifecycle, settlement and sales reporting.

Every mutating function runs in a single transaction: the order row is read
FOR UPDATE, the change is applied, totals are re-derived from the full item
set and the session is committed. Lookups return None (or False) for unknown
ids; workflow steps raise NotFound / Conflict.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime

from models import db, MenuItem, Order, OrderItem, ITEM_STATUSES
from bill_utils import calculate_totals, to_money

log = logging.getLogger(__name__)

PARCEL_PACKAGING_FEE = os.getenv('PARCEL_PACKAGING_FEE', '20.00')
ORDER_NUMBER_BASE = 1000
UPDATABLE_FIELDS = ('notes', 'table_number', 'customer_name', 'customer_phone',
                    'payment_status')


class PosError(Exception):
    pass


class NotFound(PosError):
    pass


class Conflict(PosError):
    pass


@dataclass
class KotTicket:
    order: Order
    kot_items: list   # items as they were when sent to the kitchen
    all_items: list

    def to_dict(self):
        return {"order": self.order.to_dict(), "kot_items": self.kot_items,
                "all_items": self.all_items}


@dataclass
class Bill:
    order: Order
    items: list

    def to_dict(self):
        return {"order": self.order.to_dict(), "items": self.items}


def _lock_order(order_id):
    # FOR UPDATE is dropped by SQLite, which serialises writers anyway
    return db.session.get(Order, order_id, with_for_update=True)


def _items_of(order_id):
    return OrderItem.query.filter_by(order_id=order_id).order_by(OrderItem.id).all()


def _recalculate(order):
    totals = calculate_totals(_items_of(order.id), order.packaging_fee)
    order.subtotal = totals.subtotal
    order.tax = totals.tax
    order.total_amount = totals.total
    order.updated_at = datetime.utcnow()


# ---- order store ----

def create_order(fields):
    order_type = fields.get('order_type')
    fee = fields.get('packaging_fee')
    if fee is None:
        fee = PARCEL_PACKAGING_FEE if order_type == 'parcel' else 0
    now = datetime.utcnow()
    order = Order(
        order_type=order_type,
        table_number=fields.get('table_number'),
        customer_name=fields.get('customer_name'),
        customer_phone=fields.get('customer_phone'),
        notes=fields.get('notes'),
        packaging_fee=to_money(fee),
        payment_status='unpaid',
        created_at=now,
        updated_at=now,
    )
    totals = calculate_totals([], order.packaging_fee)
    order.subtotal, order.tax, order.total_amount = totals
    db.session.add(order)
    db.session.flush()
    order.order_number = str(ORDER_NUMBER_BASE + order.id)
    db.session.commit()
    log.info("order %s created (%s)", order.order_number, order.order_type)
    return order


def get_order(order_id):
    return db.session.get(Order, order_id)


def get_order_by_number(order_number):
    return Order.query.filter_by(order_number=str(order_number)).first()


def list_orders():
    return Order.query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def list_orders_in_range(start, end, payment_method=None):
    """Orders created within [start, end], newest first.

    A payment_method of None, '' or 'all' disables the method filter.
    """
    q = Order.query.filter(Order.created_at >= start, Order.created_at <= end)
    if payment_method and payment_method != 'all':
        q = q.filter(Order.payment_method == payment_method)
    return q.order_by(Order.created_at.desc(), Order.id.desc()).all()


def update_order(order_id, fields):
    order = _lock_order(order_id)
    if order is None:
        return None
    for key in UPDATABLE_FIELDS:
        if key in fields:
            setattr(order, key, fields[key])
    if fields.get('packaging_fee') is not None:
        order.packaging_fee = to_money(fields['packaging_fee'])
        _recalculate(order)
    order.updated_at = datetime.utcnow()
    db.session.commit()
    return order


def get_order_items(order_id):
    return _items_of(order_id)


# ---- item lifecycle ----

def add_item(order_id, menu_item_id, quantity=1, price=None, special_instructions=None):
    """Append a pending item to an order and recalculate its totals.

    When no price is given the menu item's current price is snapshotted.
    """
    order = _lock_order(order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found")
    if price is None:
        menu_item = db.session.get(MenuItem, menu_item_id)
        if menu_item is None:
            raise NotFound(f"Menu item {menu_item_id} not found")
        price = menu_item.price
    item = OrderItem(order_id=order.id, menu_item_id=menu_item_id, quantity=int(quantity),
                     price=to_money(price), status='pending',
                     special_instructions=special_instructions,
                     created_at=datetime.utcnow())
    db.session.add(item)
    _recalculate(order)
    db.session.commit()
    log.debug("item %s added to order %s, total now %s", item.id, order.order_number, order.total_amount)
    return item


def update_item_quantity(item_id, quantity):
    item = db.session.get(OrderItem, item_id)
    if item is None:
        return None
    order = _lock_order(item.order_id)
    item.quantity = int(quantity)
    _recalculate(order)
    db.session.commit()
    return item


def remove_item(item_id):
    item = db.session.get(OrderItem, item_id)
    if item is None:
        return False
    order = _lock_order(item.order_id)
    db.session.delete(item)
    _recalculate(order)
    db.session.commit()
    return True


def update_item_status(item_id, status):
    item = db.session.get(OrderItem, item_id)
    if item is None:
        return None
    if ITEM_STATUSES.index(status) < ITEM_STATUSES.index(item.status):
        raise Conflict(f"Cannot move item {item_id} from {item.status} back to {status}")
    item.status = status
    db.session.commit()
    return item


def print_kot(order_id):
    """Send every pending item to the kitchen.

    Only items pending at call time move to kot_printed, so calling this
    twice without new items yields an empty ticket the second time.
    """
    order = _lock_order(order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found")
    pending = [it for it in _items_of(order.id) if it.status == 'pending']
    kot_items = [it.to_dict() for it in pending]
    for it in pending:
        it.status = 'kot_printed'
    db.session.commit()
    log.info("KOT for order %s: %d item(s)", order.order_number, len(kot_items))
    return KotTicket(order, kot_items, [it.to_dict() for it in _items_of(order.id)])


def print_bill(order_id):
    order = _lock_order(order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found")
    items = _items_of(order.id)
    if any(it.status == 'pending' for it in items):
        db.session.rollback()
        raise Conflict("Cannot print bill with pending items. Please print KOT first.")
    for it in items:
        it.status = 'completed'
    db.session.commit()
    log.info("bill for order %s: total %s", order.order_number, order.total_amount)
    return Bill(order, [it.to_dict() for it in _items_of(order.id)])


def free_order(order_id):
    """Free a table: drop every item of the order and mark it refunded."""
    order = _lock_order(order_id)
    if order is None:
        return None
    for it in _items_of(order.id):
        db.session.delete(it)
    _recalculate(order)
    order.payment_status = 'refunded'
    db.session.commit()
    log.warning("order %s freed and marked refunded", order.order_number)
    return order


# ---- settlement ----

def settle_payment(order_id, method, bank_reference=None, cash_amount=None, bank_amount=None):
    """Mark an order paid. Re-settling a paid order simply overwrites it.

    Split amounts are not checked against the total; a mismatch is only logged.
    """
    order = _lock_order(order_id)
    if order is None:
        return None
    order.payment_status = 'paid'
    order.payment_method = method
    order.bank_reference = bank_reference or None
    order.cash_amount = None if cash_amount is None else to_money(cash_amount)
    order.bank_amount = None if bank_amount is None else to_money(bank_amount)
    order.updated_at = datetime.utcnow()
    if method == 'split' and order.cash_amount is not None and order.bank_amount is not None:
        if order.cash_amount + order.bank_amount != order.total_amount:
            log.warning("split settlement for order %s: %s + %s != %s", order.order_number,
                        order.cash_amount, order.bank_amount, order.total_amount)
    db.session.commit()
    log.info("order %s settled by %s", order.order_number, method)
    return order


# ---- reporting ----

def sales_stats(now=None):
    now = now or datetime.utcnow()
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    today = Order.query.filter(Order.created_at >= start_of_day).all()
    today_sales = sum((to_money(o.total_amount) for o in today), to_money(0))
    return {
        "today_sales": f"{today_sales:.2f}",
        "total_orders": Order.query.count(),
        "table_orders": Order.query.filter_by(order_type='dine_in').count(),
        "parcel_orders": Order.query.filter_by(order_type='parcel').count(),
    }
