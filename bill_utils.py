# bill_utils.py
from collections import namedtuple
from decimal import Decimal, ROUND_HALF_UP

TAX_PERCENT = Decimal('5')
CENT = Decimal('0.01')

Totals = namedtuple('Totals', 'subtotal tax total')


def to_decimal(value):
    """Convert a price/amount from the request or the DB to Decimal.

    Floats go through str() so 150.1 stays 150.1 instead of its binary expansion.
    """
    if value is None:
        return Decimal('0')
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_money(value):
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(price, quantity):
    return to_money(to_decimal(price) * int(quantity))


def calculate_totals(items, packaging_fee=0):
    """Derive subtotal, tax and total from an order's items.

    `items` is any iterable of objects with `price` and `quantity`
    (OrderItem rows in practice). Tax is a flat 5% of the subtotal,
    rounded half-up to the cent, so total == subtotal + tax + fee exactly.
    """
    subtotal = sum((line_total(it.price, it.quantity) for it in items), Decimal('0'))
    subtotal = to_money(subtotal)
    tax = to_money(subtotal * TAX_PERCENT / 100)
    total = subtotal + tax + to_money(packaging_fee)
    return Totals(subtotal, tax, total)
