"""Buyer-facing marketplace routes: browse pooled produce and place orders."""
from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from agrimarket.auth import role_required
from agrimarket.services import inventory, orders
from agrimarket.services.validators import require_object

marketplace_bp = Blueprint('marketplace', __name__)


def _payload():
    return require_object(request.get_json(silent=True))


@marketplace_bp.route('/products')
def products():
    """List aggregated products that still have stock."""
    category = request.args.get('category', '')
    search = request.args.get('search', '')
    rows = inventory.list_available(category=category or None, search=search or None)
    return jsonify({'products': [p.to_dict() for p in rows], 'total': len(rows)})


@marketplace_bp.route('/products/<int:product_id>')
def product_detail(product_id):
    return jsonify(inventory.get_aggregated_product(product_id).to_dict())


@marketplace_bp.route('/products/<int:product_id>/order', methods=['POST'])
@login_required
@role_required('buyer')
def order_aggregated(product_id):
    """Place an order against pooled inventory."""
    data = _payload()
    order_id = orders.place_aggregated_order(
        buyer_id=current_user.id,
        aggregated_product_id=product_id,
        quantity=data.get('quantity'),
        delivery_address=data.get('delivery_address'),
        phone=data.get('phone'),
        special_instructions=data.get('special_instructions'),
        preferred_delivery_date=data.get('preferred_delivery_date'),
    )
    return jsonify(orders.get_order(order_id).to_dict()), 201


@marketplace_bp.route('/farm-products/<int:product_id>/order', methods=['POST'])
@login_required
@role_required('buyer')
def order_direct(product_id):
    """Place an order against a single farmer's approved product."""
    data = _payload()
    order_id = orders.place_direct_order(
        buyer_id=current_user.id,
        product_id=product_id,
        quantity=data.get('quantity'),
        delivery_address=data.get('delivery_address'),
        phone=data.get('phone'),
        special_instructions=data.get('special_instructions'),
    )
    return jsonify(orders.get_order(order_id).to_dict()), 201


@marketplace_bp.route('/my-orders')
@login_required
def my_orders():
    """View the caller's orders."""
    rows = orders.list_buyer_orders(current_user.id)
    return jsonify({'orders': [o.to_dict() for o in rows]})
