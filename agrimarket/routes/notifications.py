"""Recipient-side notification routes."""
from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from agrimarket.services import notifications

notifications_bp = Blueprint('notifications', __name__)


@notifications_bp.route('/')
@login_required
def list_notifications():
    unread_only = request.args.get('unread', '').lower() in ('1', 'true', 'yes')
    rows = notifications.list_notifications(current_user, unread_only=unread_only)
    return jsonify({'notifications': [n.to_dict() for n in rows]})


@notifications_bp.route('/<int:notification_id>/read', methods=['POST'])
@login_required
def mark_read(notification_id):
    return jsonify(notifications.mark_read(current_user, notification_id).to_dict())


@notifications_bp.route('/read-all', methods=['POST'])
@login_required
def mark_all_read():
    return jsonify({'updated': notifications.mark_all_read(current_user)})


@notifications_bp.route('/<int:notification_id>', methods=['DELETE'])
@login_required
def delete(notification_id):
    notifications.delete_notification(current_user, notification_id)
    return '', 204
