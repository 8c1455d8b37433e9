"""AgriMarket Flask Application Factory."""
import logging

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from config import config, engine_options

db = SQLAlchemy()
login_manager = LoginManager()

log = logging.getLogger(__name__)


def create_app(config_name='default', config_overrides=None):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config[config_name])
    if config_overrides:
        app.config.update(config_overrides)
        if 'SQLALCHEMY_DATABASE_URI' in config_overrides and 'SQLALCHEMY_ENGINE_OPTIONS' not in config_overrides:
            app.config['SQLALCHEMY_ENGINE_OPTIONS'] = engine_options(
                app.config['SQLALCHEMY_DATABASE_URI'], app.config['DB_TIMEOUT_SECONDS']
            )

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)

    from agrimarket import auth  # noqa: F401  registers the request loader

    # Register blueprints
    from agrimarket.routes.main import main_bp
    from agrimarket.routes.marketplace import marketplace_bp
    from agrimarket.routes.farmer import farmer_bp
    from agrimarket.routes.admin import admin_bp
    from agrimarket.routes.notifications import notifications_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(marketplace_bp, url_prefix='/marketplace')
    app.register_blueprint(farmer_bp, url_prefix='/farmer')
    app.register_blueprint(admin_bp, url_prefix='/admin')
    app.register_blueprint(notifications_bp, url_prefix='/notifications')

    # Register error handlers
    from agrimarket.errors import MarketplaceError

    @app.errorhandler(MarketplaceError)
    def marketplace_error(error):
        """Render workflow errors with a code the client can act on."""
        return jsonify({'error': error.to_dict()}), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'error': {'code': 'not_found', 'message': 'Resource not found', 'retryable': False}}), 404

    @app.errorhandler(405)
    def method_not_allowed_error(error):
        return jsonify({'error': {'code': 'method_not_allowed', 'message': 'Method not allowed', 'retryable': False}}), 405

    @app.errorhandler(500)
    def internal_error(error):
        """Handle 500 errors - internal server error."""
        db.session.rollback()  # Rollback any pending database transactions
        log.error('unhandled error: %s', getattr(error, 'original_exception', error))
        return jsonify({'error': {'code': 'internal_error', 'message': 'The service is temporarily unavailable', 'retryable': True}}), 500

    # Create database tables
    with app.app_context():
        db.create_all()

    return app
