"""Farmer routes: submit produce for review and follow settlement."""
from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from agrimarket.auth import role_required
from agrimarket.services import moderation, payments
from agrimarket.services.validators import require_object

farmer_bp = Blueprint('farmer', __name__)


@farmer_bp.route('/products', methods=['GET', 'POST'])
@login_required
@role_required('farmer')
def products():
    """List own products, or submit a new one for admin review."""
    if request.method == 'POST':
        product = moderation.submit_product(current_user.id, require_object(request.get_json(silent=True)))
        return jsonify(product.to_dict()), 201
    rows = moderation.list_farmer_products(current_user.id)
    return jsonify({'products': [p.to_dict() for p in rows]})


@farmer_bp.route('/payments')
@login_required
@role_required('farmer')
def my_payments():
    rows = payments.list_payments(farmer_id=current_user.id)
    return jsonify({'payments': [p.to_dict() for p in rows]})
