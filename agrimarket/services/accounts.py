"""Admin account management: listing and suspension."""
import logging
from datetime import datetime

from agrimarket import db
from agrimarket.errors import BusinessRuleError, NotFoundError, translate_db_errors
from agrimarket.models import ROLES, User
from agrimarket.services.validators import require_choice, require_text

log = logging.getLogger(__name__)


def get_user(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError('User not found')
    return user


def list_users(role=None):
    """Non-admin accounts, newest first."""
    query = User.query.filter(User.role != 'admin')
    if role and role != 'all':
        query = query.filter_by(role=require_choice(role, ROLES, 'role'))
    return query.order_by(User.created_at.desc(), User.id.desc()).all()


def suspend_user(user_id, reason):
    """Suspend an account. A reason is required and admins cannot be suspended."""
    reason = require_text(reason, 'reason')
    with translate_db_errors(db.session, 'Account suspension'):
        user = get_user(user_id)
        if user.is_admin:
            raise BusinessRuleError('Cannot suspend admin users.')
        if user.is_suspended:
            raise BusinessRuleError(f'User {user.name} is already suspended.')
        user.is_suspended = True
        user.suspension_reason = reason
        user.suspended_at = datetime.utcnow()
        db.session.commit()
    log.info('account.suspended id=%s', user_id)
    return user


def reinstate_user(user_id):
    with translate_db_errors(db.session, 'Account reinstatement'):
        user = get_user(user_id)
        if not user.is_suspended:
            raise BusinessRuleError(f'User {user.name} is not suspended.')
        user.is_suspended = False
        user.suspension_reason = None
        user.suspended_at = None
        db.session.commit()
    log.info('account.reinstated id=%s', user_id)
    return user
