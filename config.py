"""Application configuration."""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def engine_options(database_uri, timeout_seconds):
    """Bound every data-store call by ``timeout_seconds``.

    SQLite gets a busy timeout, PostgreSQL a server-side statement timeout.
    Pool checkout is bounded the same way for pooled drivers.
    """
    if database_uri.startswith('sqlite'):
        return {'connect_args': {'timeout': timeout_seconds}}
    options = {
        'pool_pre_ping': True,
        'pool_timeout': timeout_seconds,
    }
    if database_uri.startswith('postgresql'):
        options['connect_args'] = {
            'connect_timeout': int(timeout_seconds),
            'options': f'-c statement_timeout={int(timeout_seconds * 1000)}',
        }
    return options


class Config:
    """Base configuration."""
    SECRET_KEY = os.environ.get('SECRET_KEY', 'agrimarket-secret-key-change-in-production')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///agrimarket.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    DB_TIMEOUT_SECONDS = float(os.environ.get('DB_TIMEOUT_SECONDS', '10'))
    SQLALCHEMY_ENGINE_OPTIONS = engine_options(SQLALCHEMY_DATABASE_URI, DB_TIMEOUT_SECONDS)

    # Identity is asserted by the upstream auth provider
    AUTH_USER_HEADER = os.environ.get('AUTH_USER_HEADER', 'X-User-Id')

    # Settlement
    ORDER_PLATFORM_FEE_RATE = float(os.environ.get('ORDER_PLATFORM_FEE_RATE', '0.15'))
    COLLECTION_PLATFORM_FEE_RATE = float(os.environ.get('COLLECTION_PLATFORM_FEE_RATE', '0.05'))
    BULK_PAYMENT_NOTIFY = os.environ.get('BULK_PAYMENT_NOTIFY', 'none')  # none|per_payment

    # Order workflow
    ENFORCE_ORDER_TRANSITIONS = _env_bool('ENFORCE_ORDER_TRANSITIONS', True)

    # Notifications
    NOTIFICATION_MAX_ATTEMPTS = int(os.environ.get('NOTIFICATION_MAX_ATTEMPTS', '2'))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'WARNING')


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = engine_options('sqlite://', 5)
    ENFORCE_ORDER_TRANSITIONS = True
    BULK_PAYMENT_NOTIFY = 'none'
    LOG_LEVEL = 'DEBUG'


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
