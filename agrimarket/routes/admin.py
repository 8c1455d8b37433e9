"""Admin moderation routes for AgriMarket."""
from flask import Blueprint, jsonify, request
from flask_login import login_required

from agrimarket.auth import admin_required
from agrimarket.models import User
from agrimarket.services import accounts, inventory, moderation, notifications, orders, payments
from agrimarket.services.validators import parse_id, require_object

admin_bp = Blueprint('admin', __name__)


def _payload():
    return require_object(request.get_json(silent=True))


def _bulk_ids(data, key):
    return data.get(key) or data.get('ids')


@admin_bp.route('/')
@login_required
@admin_required
def dashboard():
    """Admin dashboard with system overview."""
    return jsonify({
        'users': User.query.filter(User.role != 'admin').count(),
        'products_pending_review': len(moderation.list_products('pending_review')),
        'orders_pending': len(orders.list_orders('pending')),
        'inventory': inventory.inventory_summary(),
        'payments': payments.payment_stats(),
    })


# User Management
@admin_bp.route('/users')
@login_required
@admin_required
def users():
    """List all non-admin users."""
    rows = accounts.list_users(request.args.get('role', 'all'))
    return jsonify({'users': [u.to_dict() for u in rows]})


@admin_bp.route('/users/<int:user_id>/suspend', methods=['POST'])
@login_required
@admin_required
def suspend_user(user_id):
    """Suspend a user account; a reason is required."""
    return jsonify(accounts.suspend_user(user_id, _payload().get('reason')).to_dict())


@admin_bp.route('/users/<int:user_id>/unsuspend', methods=['POST'])
@login_required
@admin_required
def unsuspend_user(user_id):
    return jsonify(accounts.reinstate_user(user_id).to_dict())


@admin_bp.route('/messages', methods=['POST'])
@login_required
@admin_required
def send_message():
    """Message one user (``user_id``) or broadcast to everyone or one ``role``."""
    data = _payload()
    if data.get('user_id') is not None:
        notification = notifications.send_admin_message(
            parse_id(data['user_id'], 'user_id'), data.get('title'), data.get('message')
        )
        return jsonify(notification.to_dict()), 201
    recipients = notifications.broadcast(data.get('title'), data.get('message'), data.get('role'))
    return jsonify({'recipients': recipients, 'sent': len(recipients)}), 201


# Product Moderation
@admin_bp.route('/products')
@login_required
@admin_required
def products():
    """List farmer products, filtered by status."""
    rows = moderation.list_products(request.args.get('status', 'all'))
    return jsonify({'products': [p.to_dict() for p in rows]})


@admin_bp.route('/products/<int:product_id>/review', methods=['POST'])
@login_required
@admin_required
def review_product(product_id):
    return jsonify(moderation.start_review(product_id).to_dict())


@admin_bp.route('/products/<int:product_id>/approve', methods=['POST'])
@login_required
@admin_required
def approve_product(product_id):
    """Approve product submission."""
    product = moderation.approve_product(product_id, _payload().get('admin_notes'))
    return jsonify(product.to_dict())


@admin_bp.route('/products/<int:product_id>/reject', methods=['POST'])
@login_required
@admin_required
def reject_product(product_id):
    """Reject product submission; feedback is required."""
    product = moderation.reject_product(product_id, _payload().get('admin_notes'))
    return jsonify(product.to_dict())


@admin_bp.route('/products/bulk-approve', methods=['POST'])
@login_required
@admin_required
def bulk_approve_products():
    data = _payload()
    return jsonify(moderation.bulk_approve_products(_bulk_ids(data, 'product_ids'), data.get('admin_notes')))


@admin_bp.route('/products/bulk-reject', methods=['POST'])
@login_required
@admin_required
def bulk_reject_products():
    data = _payload()
    return jsonify(moderation.bulk_reject_products(_bulk_ids(data, 'product_ids'), data.get('admin_notes')))


# Collections
@admin_bp.route('/products/<int:product_id>/collection/start', methods=['POST'])
@login_required
@admin_required
def start_collection(product_id):
    product = moderation.start_collection(product_id, _payload().get('collection_date'))
    return jsonify(product.to_dict())


@admin_bp.route('/products/<int:product_id>/collection/complete', methods=['POST'])
@login_required
@admin_required
def complete_collection(product_id):
    data = _payload()
    product = moderation.complete_collection(product_id, data.get('admin_notes'), data.get('quality_grade'))
    return jsonify(product.to_dict())


@admin_bp.route('/products/<int:product_id>/collection/pay', methods=['POST'])
@login_required
@admin_required
def pay_collection(product_id):
    payment = moderation.process_collection_payment(product_id)
    return jsonify(payment.to_dict()), 201


# Buyer Orders Management
@admin_bp.route('/orders')
@login_required
@admin_required
def list_orders():
    """View all orders, filtered by status."""
    rows = orders.list_orders(request.args.get('status', 'all'))
    return jsonify({'orders': [o.to_dict() for o in rows]})


@admin_bp.route('/orders/<int:order_id>/status', methods=['POST'])
@login_required
@admin_required
def update_order_status(order_id):
    """Update order status."""
    order = orders.advance_order_status(order_id, _payload().get('status'))
    return jsonify(order.to_dict())


@admin_bp.route('/orders/bulk-status', methods=['POST'])
@login_required
@admin_required
def bulk_update_order_status():
    data = _payload()
    return jsonify(orders.bulk_advance_order_status(_bulk_ids(data, 'order_ids'), data.get('status')))


@admin_bp.route('/orders/<int:order_id>/delivery-date', methods=['POST'])
@login_required
@admin_required
def set_delivery_date(order_id):
    order = orders.set_delivery_date(order_id, _payload().get('delivery_date'))
    return jsonify(order.to_dict())


@admin_bp.route('/orders/<int:order_id>/notes', methods=['POST'])
@login_required
@admin_required
def add_support_note(order_id):
    order = orders.add_support_note(order_id, _payload().get('note'))
    return jsonify(order.to_dict())


# Payments
@admin_bp.route('/payments')
@login_required
@admin_required
def list_payments():
    farmer_id = request.args.get('farmer_id')
    rows = payments.list_payments(
        request.args.get('status', 'all'),
        farmer_id=parse_id(farmer_id, 'farmer_id') if farmer_id else None,
    )
    return jsonify({'payments': [p.to_dict() for p in rows]})


@admin_bp.route('/payments/stats')
@login_required
@admin_required
def payment_stats():
    return jsonify(payments.payment_stats())


@admin_bp.route('/payments/<int:payment_id>/process', methods=['POST'])
@login_required
@admin_required
def process_payment(payment_id):
    return jsonify(payments.process_payment(payment_id).to_dict())


@admin_bp.route('/payments/bulk-process', methods=['POST'])
@login_required
@admin_required
def bulk_process_payments():
    return jsonify(payments.bulk_process_payments(_bulk_ids(_payload(), 'payment_ids')))


@admin_bp.route('/payments/<int:payment_id>/complete', methods=['POST'])
@login_required
@admin_required
def complete_payment(payment_id):
    return jsonify(payments.complete_payment(payment_id).to_dict())


# Aggregated Inventory
@admin_bp.route('/inventory', methods=['GET', 'POST'])
@login_required
@admin_required
def aggregated_inventory():
    if request.method == 'POST':
        product = inventory.create_aggregated_product(_payload())
        return jsonify(product.to_dict()), 201
    return jsonify(inventory.inventory_summary())


@admin_bp.route('/inventory/<int:product_id>', methods=['PATCH', 'DELETE'])
@login_required
@admin_required
def edit_aggregated_product(product_id):
    if request.method == 'DELETE':
        inventory.delete_aggregated_product(product_id)
        return '', 204
    return jsonify(inventory.update_aggregated_product(product_id, _payload()).to_dict())
