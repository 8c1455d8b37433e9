"""Best-effort notification fan-out.

Notifications are written after the triggering transaction has committed,
in a transaction of their own. A failed write is logged and retried a
bounded number of times but never reaches the caller, so the business
operation that produced it stays successful.
"""
import logging

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from agrimarket import db
from agrimarket.errors import NotFoundError, translate_db_errors
from agrimarket.models import NOTIFICATION_TYPES, ROLES, Notification, User
from agrimarket.services.validators import require_choice, require_text

log = logging.getLogger(__name__)


def _write_notification(**fields):
    notification = Notification(**fields)
    db.session.add(notification)
    db.session.commit()
    return notification.id


def send_notification(user_id, title, message, type='general', product_id=None, order_id=None):
    """Write one notification; return its id, or ``None`` if it was dropped."""
    if type not in NOTIFICATION_TYPES:
        log.warning('notification dropped: unknown type %r for user %s', type, user_id)
        return None
    attempts = max(1, current_app.config.get('NOTIFICATION_MAX_ATTEMPTS', 1))
    for attempt in range(1, attempts + 1):
        try:
            notification_id = _write_notification(
                user_id=user_id, title=title, message=message, type=type,
                product_id=product_id, order_id=order_id,
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            log.warning('notification write failed (attempt %d/%d) user=%s title=%r: %s',
                        attempt, attempts, user_id, title, exc)
            continue
        log.debug('notification.sent id=%s user=%s type=%s', notification_id, user_id, type)
        return notification_id
    log.error('notification dropped after %d attempts: user=%s title=%r', attempts, user_id, title)
    return None


def notify_admins(title, message, type='admin_message', product_id=None, order_id=None):
    """Fan a message out to every active admin."""
    try:
        admin_ids = [row.id for row in User.query.filter_by(role='admin', is_suspended=False).all()]
    except SQLAlchemyError as exc:
        db.session.rollback()
        log.warning('admin lookup for notification failed: %s', exc)
        return []
    sent = []
    for admin_id in admin_ids:
        notification_id = send_notification(admin_id, title, message, type,
                                             product_id=product_id, order_id=order_id)
        if notification_id is not None:
            sent.append(notification_id)
    return sent


def send_admin_message(user_id, title, message):
    """Send one admin message to a user.

    This is the requested operation itself, so a failed write reaches the
    caller instead of being retried quietly.
    """
    title = require_text(title, 'title')
    message = require_text(message, 'message')
    with translate_db_errors(db.session, 'Admin message'):
        if db.session.get(User, user_id) is None:
            raise NotFoundError('User not found')
        notification = Notification(user_id=user_id, title=title, message=message, type='admin_message')
        db.session.add(notification)
        db.session.flush()
        notification_id = notification.id
        db.session.commit()
    log.info('notification.admin_message id=%s user=%s', notification_id, user_id)
    return notification


def broadcast(title, message, role=None):
    """Send an admin message to every active user, or every active user of ``role``.

    All rows are written in one transaction. Returns the recipient ids.
    """
    title = require_text(title, 'title')
    message = require_text(message, 'message')
    query = User.query.filter_by(is_suspended=False)
    if role:
        query = query.filter_by(role=require_choice(role, ROLES, 'role'))
    with translate_db_errors(db.session, 'Broadcast'):
        recipients = [user.id for user in query.order_by(User.id).all()]
        db.session.add_all([
            Notification(user_id=user_id, title=title, message=message, type='admin_message')
            for user_id in recipients
        ])
        db.session.commit()
    log.info('notification.broadcast role=%s recipients=%d', role or 'all', len(recipients))
    return recipients


def list_notifications(user, unread_only=False, limit=50):
    query = Notification.query.filter_by(user_id=user.id)
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def _own_notification(user, notification_id):
    notification = Notification.query.filter_by(id=notification_id, user_id=user.id).first()
    if notification is None:
        raise NotFoundError('Notification not found')
    return notification


def mark_read(user, notification_id):
    notification = _own_notification(user, notification_id)
    notification.read = True
    db.session.commit()
    return notification


def mark_all_read(user):
    count = Notification.query.filter_by(user_id=user.id, read=False).update(
        {'read': True}, synchronize_session=False
    )
    db.session.commit()
    return count


def delete_notification(user, notification_id):
    notification = _own_notification(user, notification_id)
    db.session.delete(notification)
    db.session.commit()
