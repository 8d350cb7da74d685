# app.py
import os, hmac, logging
from datetime import datetime
from decimal import InvalidOperation
from functools import wraps
from flask import Flask, request, jsonify, session, abort
from flask_cors import CORS
from dotenv import load_dotenv
from werkzeug.exceptions import HTTPException

from models import (db, ItemCategory, ItemAttribute, MenuItem,
                    ORDER_TYPES, PAYMENT_STATUSES, PAYMENT_METHODS, ITEM_STATUSES)
from bill_utils import to_money
import orders

load_dotenv()

logging.basicConfig(level=getattr(logging, os.getenv('LOG_LEVEL', 'INFO').upper(), logging.INFO),
                    format='%(asctime)s - %(levelname)s - %(name)s - %(message)s')

app = Flask(__name__)
CORS(app, resources={r"/api/*": {"origins": "*"}})
app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DATABASE_URL', 'sqlite:///database.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.secret_key = os.getenv('SECRET_KEY', 'replace_secret')

db.init_app(app)

ADMIN_USER = os.getenv('ADMIN_USERNAME', 'admin')
ADMIN_PASS = os.getenv('ADMIN_PASSWORD', 'admin')

DEFAULT_CATEGORIES = ["Veg Starters", "Non Veg Starters", "Veg Main Course",
                      "Non Veg Main Course", "Rice & Breads", "Desserts", "Beverages"]
DEFAULT_ATTRIBUTES = ["Extra Spicy", "Medium Spicy", "Less Spicy", "No Spice",
                      "No Onion", "No Garlic", "Extra Cheese", "Well Done"]


def seed_defaults():
    """Create the default categories and attributes on an empty database."""
    if not ItemCategory.query.first():
        for i, name in enumerate(DEFAULT_CATEGORIES):
            db.session.add(ItemCategory(name=name, display_order=i))
    if not ItemAttribute.query.first():
        for i, name in enumerate(DEFAULT_ATTRIBUTES):
            db.session.add(ItemAttribute(name=name, display_order=i))
    db.session.commit()


with app.app_context():
    db.create_all()
    seed_defaults()


# ---- request helpers ----

def _body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, "JSON object body required")
    return data


def _int_field(data, key, required=True, default=None):
    value = data.get(key)
    if value is None or value == '':
        if required:
            abort(400, f"{key} required")
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        abort(400, f"{key} must be an integer")


def _money_field(data, key):
    value = data.get(key)
    if value is None or value == '':
        return None
    try:
        amount = to_money(value)
    except (InvalidOperation, TypeError, ValueError):
        abort(400, f"{key} must be a number")
    if not amount.is_finite():
        abort(400, f"{key} must be a number")
    return amount


def _choice_field(data, key, choices, required=True):
    value = data.get(key)
    if value is None:
        if required:
            abort(400, f"{key} required")
        return None
    if value not in choices:
        abort(400, f"{key} must be one of: {', '.join(choices)}")
    return value


def _date_field(data, key):
    value = data.get(key)
    if not value:
        abort(400, f"{key} required")
    try:
        return datetime.fromisoformat(str(value)[:10])
    except ValueError:
        abort(400, f"{key} must be a date (YYYY-MM-DD)")


# ---- errors ----

@app.errorhandler(orders.NotFound)
def handle_not_found(ex):
    return jsonify({"message": str(ex)}), 404


@app.errorhandler(orders.Conflict)
def handle_conflict(ex):
    return jsonify({"message": str(ex)}), 400


@app.errorhandler(HTTPException)
def handle_http_error(ex):
    return jsonify({"message": ex.description}), ex.code


@app.errorhandler(Exception)
def handle_unexpected(ex):
    db.session.rollback()
    app.logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({"message": "Server error"}), 500


# ---- auth ----

def admin_required(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        if 'admin' not in session:
            return jsonify({"message": "Unauthorized"}), 401
        return f(*args, **kwargs)
    return wrapper


@app.route('/api/login', methods=['POST'])
def api_login():
    data = request.get_json(silent=True)
    if data is None:
        data = request.form
    elif not isinstance(data, dict):
        abort(400, "JSON object body required")
    u = str(data.get('username') or ''); p = str(data.get('password') or '')
    if hmac.compare_digest(u.encode(), ADMIN_USER.encode()) and hmac.compare_digest(p.encode(), ADMIN_PASS.encode()):
        session['admin'] = u
        app.logger.info("login: %s", u)
        return jsonify({"username": u}), 200
    app.logger.warning("failed login for %r", u)
    return jsonify({"message": "Invalid credentials"}), 401


@app.route('/api/logout', methods=['POST'])
def api_logout():
    session.pop('admin', None)
    return jsonify({"message": "Logged out"}), 200


@app.route('/api/user', methods=['GET'])
@admin_required
def api_user():
    return jsonify({"username": session['admin']}), 200


# ---- categories ----

@app.route('/api/categories', methods=['GET'])
@admin_required
def api_categories():
    cats = ItemCategory.query.order_by(ItemCategory.display_order, ItemCategory.id).all()
    return jsonify([c.to_dict() for c in cats]), 200


@app.route('/api/categories', methods=['POST'])
@admin_required
def api_create_category():
    data = _body()
    if not data.get('name'):
        abort(400, "name required")
    cat = ItemCategory(name=data['name'], display_order=_int_field(data, 'display_order', False, 0))
    db.session.add(cat); db.session.commit()
    return jsonify(cat.to_dict()), 201


@app.route('/api/categories/<int:category_id>', methods=['PUT'])
@admin_required
def api_update_category(category_id):
    cat = db.get_or_404(ItemCategory, category_id, description="Category not found")
    data = _body()
    if data.get('name'):
        cat.name = data['name']
    if 'display_order' in data:
        cat.display_order = _int_field(data, 'display_order')
    db.session.commit()
    return jsonify(cat.to_dict()), 200


@app.route('/api/categories/<int:category_id>', methods=['DELETE'])
@admin_required
def api_delete_category(category_id):
    cat = db.get_or_404(ItemCategory, category_id, description="Category not found")
    db.session.delete(cat); db.session.commit()
    return '', 204


# ---- attributes ----

@app.route('/api/attributes', methods=['GET'])
@admin_required
def api_attributes():
    attrs = ItemAttribute.query.order_by(ItemAttribute.display_order, ItemAttribute.id).all()
    return jsonify([a.to_dict() for a in attrs]), 200


@app.route('/api/attributes', methods=['POST'])
@admin_required
def api_create_attribute():
    data = _body()
    if not data.get('name'):
        abort(400, "name required")
    attr = ItemAttribute(name=data['name'], display_order=_int_field(data, 'display_order', False, 0))
    db.session.add(attr); db.session.commit()
    return jsonify(attr.to_dict()), 201


@app.route('/api/attributes/<int:attribute_id>', methods=['PUT'])
@admin_required
def api_update_attribute(attribute_id):
    attr = db.get_or_404(ItemAttribute, attribute_id, description="Attribute not found")
    data = _body()
    if data.get('name'):
        attr.name = data['name']
    if 'display_order' in data:
        attr.display_order = _int_field(data, 'display_order')
    db.session.commit()
    return jsonify(attr.to_dict()), 200


@app.route('/api/attributes/<int:attribute_id>', methods=['DELETE'])
@admin_required
def api_delete_attribute(attribute_id):
    attr = db.get_or_404(ItemAttribute, attribute_id, description="Attribute not found")
    db.session.delete(attr); db.session.commit()
    return '', 204


# ---- menu items ----

@app.route('/api/menu-items', methods=['GET'])
@admin_required
def api_menu_items():
    items = MenuItem.query.order_by(MenuItem.category_id, MenuItem.id).all()
    return jsonify([it.to_dict() for it in items]), 200


@app.route('/api/menu-items/category/<int:category_id>', methods=['GET'])
@admin_required
def api_menu_items_by_category(category_id):
    items = MenuItem.query.filter_by(category_id=category_id, is_active=True).all()
    return jsonify([it.to_dict() for it in items]), 200


@app.route('/api/menu-items', methods=['POST'])
@admin_required
def api_create_menu_item():
    data = _body()
    if not data.get('name'):
        abort(400, "name required")
    price = _money_field(data, 'price')
    if price is None:
        abort(400, "price required")
    category_id = _int_field(data, 'category_id')
    if db.session.get(ItemCategory, category_id) is None:
        abort(400, f"Unknown category {category_id}")
    mi = MenuItem(name=data['name'], price=price, category_id=category_id,
                  is_active=bool(data.get('is_active', True)))
    db.session.add(mi); db.session.commit()
    return jsonify(mi.to_dict()), 201


@app.route('/api/menu-items/<int:item_id>', methods=['PUT'])
@admin_required
def api_update_menu_item(item_id):
    mi = db.get_or_404(MenuItem, item_id, description="Menu item not found")
    data = _body()
    if data.get('name'):
        mi.name = data['name']
    price = _money_field(data, 'price')
    if price is not None:
        mi.price = price
    if 'category_id' in data:
        category_id = _int_field(data, 'category_id')
        if db.session.get(ItemCategory, category_id) is None:
            abort(400, f"Unknown category {category_id}")
        mi.category_id = category_id
    if 'is_active' in data:
        mi.is_active = bool(data['is_active'])
    db.session.commit()
    return jsonify(mi.to_dict()), 200


@app.route('/api/menu-items/<int:item_id>/toggle', methods=['POST'])
@admin_required
def api_toggle_menu_item(item_id):
    mi = db.get_or_404(MenuItem, item_id, description="Menu item not found")
    mi.is_active = not mi.is_active; db.session.commit()
    return jsonify(mi.to_dict()), 200


# ---- orders ----

@app.route('/api/orders', methods=['GET'])
@admin_required
def api_orders():
    return jsonify([o.to_dict() for o in orders.list_orders()]), 200


@app.route('/api/orders', methods=['POST'])
@admin_required
def api_create_order():
    data = _body()
    order_type = _choice_field(data, 'order_type', ORDER_TYPES)
    fields = {
        "order_type": order_type,
        "table_number": _int_field(data, 'table_number', required=(order_type == 'dine_in')),
        "customer_name": data.get('customer_name'),
        "customer_phone": data.get('customer_phone'),
        "packaging_fee": _money_field(data, 'packaging_fee'),
        "notes": data.get('notes'),
    }
    order = orders.create_order(fields)
    return jsonify(order.to_dict()), 201


@app.route('/api/orders/report', methods=['POST'])
@admin_required
def api_orders_report():
    data = _body()
    start = _date_field(data, 'start_date')
    end = _date_field(data, 'end_date').replace(hour=23, minute=59, second=59, microsecond=999999)
    found = orders.list_orders_in_range(start, end, data.get('payment_method'))
    return jsonify([o.to_dict() for o in found]), 200


@app.route('/api/orders/number/<order_number>', methods=['GET'])
@admin_required
def api_order_by_number(order_number):
    order = orders.get_order_by_number(order_number)
    if order is None:
        return jsonify({"message": "Order not found"}), 404
    return jsonify(order.to_dict()), 200


@app.route('/api/orders/<int:order_id>', methods=['GET'])
@admin_required
def api_order(order_id):
    order = orders.get_order(order_id)
    if order is None:
        return jsonify({"message": "Order not found"}), 404
    return jsonify(order.to_dict()), 200


@app.route('/api/orders/<int:order_id>', methods=['PUT'])
@admin_required
def api_update_order(order_id):
    data = _body()
    fields = {k: data[k] for k in ('notes', 'customer_name', 'customer_phone') if k in data}
    if 'table_number' in data:
        fields['table_number'] = _int_field(data, 'table_number', required=False)
    if 'payment_status' in data:
        fields['payment_status'] = _choice_field(data, 'payment_status', PAYMENT_STATUSES)
    if 'packaging_fee' in data:
        fields['packaging_fee'] = _money_field(data, 'packaging_fee')
    order = orders.update_order(order_id, fields)
    if order is None:
        return jsonify({"message": "Order not found"}), 404
    return jsonify(order.to_dict()), 200


@app.route('/api/orders/<int:order_id>/payment', methods=['POST'])
@admin_required
def api_settle_order(order_id):
    data = _body()
    method = _choice_field(data, 'payment_method', PAYMENT_METHODS)
    order = orders.settle_payment(order_id, method,
                                  bank_reference=data.get('bank_reference'),
                                  cash_amount=_money_field(data, 'cash_amount'),
                                  bank_amount=_money_field(data, 'bank_amount'))
    if order is None:
        return jsonify({"message": "Order not found"}), 404
    return jsonify(order.to_dict()), 200


@app.route('/api/orders/<int:order_id>/free', methods=['POST'])
@admin_required
def api_free_order(order_id):
    order = orders.free_order(order_id)
    if order is None:
        return jsonify({"message": "Order not found"}), 404
    return jsonify(order.to_dict()), 200


# ---- order items ----

@app.route('/api/orders/<int:order_id>/items', methods=['GET'])
@admin_required
def api_order_items(order_id):
    if orders.get_order(order_id) is None:
        return jsonify({"message": "Order not found"}), 404
    return jsonify([it.to_dict() for it in orders.get_order_items(order_id)]), 200


@app.route('/api/orders/<int:order_id>/items', methods=['POST'])
@admin_required
def api_add_order_item(order_id):
    data = _body()
    item = orders.add_item(order_id,
                           menu_item_id=_int_field(data, 'menu_item_id'),
                           quantity=_int_field(data, 'quantity', required=False, default=1),
                           price=_money_field(data, 'price'),
                           special_instructions=data.get('special_instructions'))
    return jsonify(item.to_dict()), 201


@app.route('/api/order-items/<int:item_id>/status', methods=['PUT'])
@admin_required
def api_order_item_status(item_id):
    status = _choice_field(_body(), 'status', ITEM_STATUSES)
    item = orders.update_item_status(item_id, status)
    if item is None:
        return jsonify({"message": "Order item not found"}), 404
    return jsonify(item.to_dict()), 200


@app.route('/api/order-items/<int:item_id>/quantity', methods=['PUT'])
@admin_required
def api_order_item_quantity(item_id):
    quantity = _int_field(_body(), 'quantity')
    item = orders.update_item_quantity(item_id, quantity)
    if item is None:
        return jsonify({"message": "Order item not found"}), 404
    return jsonify(item.to_dict()), 200


@app.route('/api/order-items/<int:item_id>', methods=['DELETE'])
@admin_required
def api_remove_order_item(item_id):
    if not orders.remove_item(item_id):
        return jsonify({"message": "Order item not found"}), 404
    return '', 204


# ---- KOT / bill ----

@app.route('/api/kot/<int:order_id>', methods=['GET'])
@admin_required
def api_print_kot(order_id):
    return jsonify(orders.print_kot(order_id).to_dict()), 200


@app.route('/api/bill/<int:order_id>', methods=['GET'])
@admin_required
def api_print_bill(order_id):
    return jsonify(orders.print_bill(order_id).to_dict()), 200


@app.route('/api/stats', methods=['GET'])
@admin_required
def api_stats():
    return jsonify(orders.sales_stats()), 200


# seed route for demo menu items (idempotent)
@app.route('/admin/seed')
@admin_required
def seed():
    if MenuItem.query.first():
        return jsonify({"message": "Already seeded"}), 200
    seed_defaults()
    cats = {c.name: c.id for c in ItemCategory.query.all()}
    items = [
      ('Paneer Tikka', 'Veg Starters', '220.00'), ('Veg Manchurian', 'Veg Starters', '180.00'),
      ('Chicken 65', 'Non Veg Starters', '260.00'), ('Fish Fry', 'Non Veg Starters', '320.00'),
      ('Paneer Butter Masala', 'Veg Main Course', '240.00'), ('Dal Makhani', 'Veg Main Course', '200.00'),
      ('Butter Chicken', 'Non Veg Main Course', '300.00'), ('Mutton Rogan Josh', 'Non Veg Main Course', '380.00'),
      ('Jeera Rice', 'Rice & Breads', '150.00'), ('Butter Naan', 'Rice & Breads', '50.00'),
      ('Gulab Jamun', 'Desserts', '90.00'), ('Lassi', 'Beverages', '70.00'),
    ]
    for n, c, p in items:
        if c in cats:
            db.session.add(MenuItem(name=n, category_id=cats[c], price=to_money(p), is_active=True))
    db.session.commit()
    return jsonify({"message": "Seeded"}), 201


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=int(os.getenv('PORT', 5000)), debug=os.getenv('FLASK_DEBUG') == '1')
