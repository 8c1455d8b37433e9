"""Service-level routes for AgriMarket."""
from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from agrimarket import db

main_bp = Blueprint('main', __name__)


@main_bp.route('/')
def index():
    """Service banner."""
    return jsonify({'service': 'agrimarket', 'status': 'ok'})


@main_bp.route('/health')
def health():
    """Liveness plus a round trip to the data store."""
    try:
        db.session.execute(text('SELECT 1'))
    except SQLAlchemyError:
        db.session.rollback()
        return jsonify({'status': 'degraded', 'database': 'unavailable'}), 503
    return jsonify({'status': 'ok', 'database': 'ok'})
