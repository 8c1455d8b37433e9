"""Request identity and role guards.

Sign-in happens at the upstream identity provider; every request reaching
this service carries the authenticated user id in ``AUTH_USER_HEADER``.
"""
from functools import wraps

from flask import current_app, jsonify
from flask_login import current_user

from agrimarket import db, login_manager
from agrimarket.errors import PermissionDeniedError
from agrimarket.models import User


@login_manager.request_loader
def load_user_from_request(req):
    """Load the asserted user, refusing unknown or suspended accounts."""
    raw_id = req.headers.get(current_app.config['AUTH_USER_HEADER'])
    if not raw_id:
        return None
    try:
        user_id = int(raw_id)
    except ValueError:
        return None
    user = db.session.get(User, user_id)
    if user is None or user.is_suspended:
        return None
    return user


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'error': {'code': 'unauthenticated', 'message': 'Please sign in to continue.',
                              'retryable': False}}), 401


def role_required(*roles):
    """Decorator to require one of ``roles``; use after ``login_required``."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if current_user.role not in roles:
                raise PermissionDeniedError(f'This action requires the {" or ".join(roles)} role.')
            return f(*args, **kwargs)
        return decorated_function
    return decorator


admin_required = role_required('admin')
