from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()

ORDER_TYPES = ('dine_in', 'parcel')
PAYMENT_STATUSES = ('unpaid', 'paid', 'refunded')
PAYMENT_METHODS = ('cash', 'bank', 'split')
# forward-only item lifecycle, in order
ITEM_STATUSES = ('pending', 'kot_printed', 'completed')


def _money(value):
    return None if value is None else f"{value:.2f}"


def _ts(value):
    return value.isoformat() if value else None


class ItemCategory(db.Model):
    __tablename__ = 'item_categories'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    display_order = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "display_order": self.display_order}


class ItemAttribute(db.Model):
    """Special-instruction presets offered when adding an item (e.g. "No Onion")."""
    __tablename__ = 'item_attributes'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    display_order = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "display_order": self.display_order}


class MenuItem(db.Model):
    __tablename__ = 'menu_items'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey('item_categories.id'), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "price": _money(self.price),
                "category_id": self.category_id, "is_active": bool(self.is_active)}


class Order(db.Model):
    __tablename__ = 'orders'
    # AUTOINCREMENT keeps ids (and so order numbers) from being reused on SQLite
    __table_args__ = {'sqlite_autoincrement': True}
    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(20), unique=True)
    order_type = db.Column(db.String(20), nullable=False)
    table_number = db.Column(db.Integer, nullable=True)
    customer_name = db.Column(db.String(200), nullable=True)
    customer_phone = db.Column(db.String(50), nullable=True)
    subtotal = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    packaging_fee = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    payment_status = db.Column(db.String(20), nullable=False, default='unpaid')
    payment_method = db.Column(db.String(20), nullable=True)
    bank_reference = db.Column(db.String(200), nullable=True)
    cash_amount = db.Column(db.Numeric(10, 2), nullable=True)
    bank_amount = db.Column(db.Numeric(10, 2), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    items = db.relationship('OrderItem', backref='order', lazy=True,
                            order_by='OrderItem.id', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            "id": self.id,
            "order_number": self.order_number,
            "order_type": self.order_type,
            "table_number": self.table_number,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "subtotal": _money(self.subtotal),
            "tax": _money(self.tax),
            "packaging_fee": _money(self.packaging_fee),
            "total_amount": _money(self.total_amount),
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "bank_reference": self.bank_reference,
            "cash_amount": _money(self.cash_amount),
            "bank_amount": _money(self.bank_amount),
            "notes": self.notes,
            "created_at": _ts(self.created_at),
            "updated_at": _ts(self.updated_at),
        }


class OrderItem(db.Model):
    __tablename__ = 'order_items'
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False, index=True)
    menu_item_id = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    price = db.Column(db.Numeric(10, 2), nullable=False)  # unit price at time of order
    status = db.Column(db.String(20), nullable=False, default='pending')
    special_instructions = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "menu_item_id": self.menu_item_id,
            "quantity": self.quantity,
            "price": _money(self.price),
            "status": self.status,
            "special_instructions": self.special_instructions,
            "created_at": _ts(self.created_at),
        }
