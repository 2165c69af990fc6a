"""
Flask Configuration Module

Environment-based configuration for the Trade Journal Flask app.
Supports .env files for easy development and production deployment.
"""

import os
from dotenv import load_dotenv

from charge_schedule import ChargeRates

# Load environment variables from .env file
load_dotenv()


def _env_flag(name, default='False'):
    return os.environ.get(name, default).lower() == 'true'


class Config:
    """Base configuration class with common settings"""

    # Flask Core Settings
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-key-change-in-production'
    FLASK_DEBUG = _env_flag('FLASK_DEBUG')
    FLASK_PORT = int(os.environ.get('FLASK_PORT', 5000))

    # Database Configuration
    # Default to journal.db in the project root
    DATABASE_PATH = os.environ.get('DATABASE_PATH') or \
        os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'journal.db')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or f'sqlite:///{DATABASE_PATH}'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }

    # Trade Entry Settings
    # Client-supplied charges are only a preview unless explicitly trusted
    TRUST_CLIENT_CHARGES = _env_flag('TRUST_CLIENT_CHARGES')
    DUPLICATE_WINDOW_SECONDS = int(os.environ.get('DUPLICATE_WINDOW_SECONDS', 300))  # 5 minutes
    RETURN_BASIS = os.environ.get('RETURN_BASIS', 'net')  # net, gross
    CHARGE_RATES = ChargeRates()

    # Capital Ledger Settings
    LEDGER_MAX_RETRIES = int(os.environ.get('LEDGER_MAX_RETRIES', 3))

    # API Settings
    ITEMS_PER_PAGE = int(os.environ.get('ITEMS_PER_PAGE', 50))
    MAX_PAGE_SIZE = int(os.environ.get('MAX_PAGE_SIZE', 200))

    # Forms are posted as JSON; there is no browser session to protect
    WTF_CSRF_ENABLED = False

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
    LOG_FILE = os.environ.get('LOG_FILE', 'logs/trade_journal.log')

    @staticmethod
    def init_app(app):
        """Initialize app-specific configuration"""
        pass


class DevelopmentConfig(Config):
    """Development environment configuration"""
    DEBUG = True
    FLASK_DEBUG = True
    SQLALCHEMY_ECHO = _env_flag('SQLALCHEMY_ECHO')

    @classmethod
    def init_app(cls, app):
        Config.init_app(app)

        # Development-specific initialization
        import logging
        logging.basicConfig(level=logging.DEBUG)


class ProductionConfig(Config):
    """Production environment configuration"""
    DEBUG = False
    FLASK_DEBUG = False

    # Database connection pooling for production
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
        'pool_size': 10,
        'max_overflow': 20
    }

    @classmethod
    def init_app(cls, app):
        Config.init_app(app)

        # Production logging setup
        import logging
        from logging.handlers import RotatingFileHandler

        log_dir = os.path.dirname(cls.LOG_FILE)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)

        file_handler = RotatingFileHandler(
            cls.LOG_FILE,
            maxBytes=10240000,  # 10MB
            backupCount=10
        )
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)

        app.logger.setLevel(getattr(logging, cls.LOG_LEVEL, logging.INFO))
        app.logger.info('Trade Journal startup')


class TestingConfig(Config):
    """Testing environment configuration"""
    TESTING = True

    # Use in-memory database for testing
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}


# Configuration dictionary for easy access
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_config(config_name=None):
    """Resolve a configuration class, defaulting to JOURNAL_ENV"""
    config_name = config_name or os.environ.get('JOURNAL_ENV', 'default')
    return config.get(config_name, config['default'])
