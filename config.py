# UniMark Geofenced Attendance Configuration

import os
import logging
from datetime import timedelta
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).parent.absolute()


def _env_flag(name, default='False'):
    return os.environ.get(name, default).lower() in ['true', 'on', '1']


class Config:
    """Base configuration class"""

    # Storage Configuration
    DATABASE_PATH = os.environ.get('UNIMARK_DATABASE_PATH') or str(BASE_DIR / 'database' / 'unimark.db')
    STORAGE_BACKEND = os.environ.get('UNIMARK_STORAGE_BACKEND') or 'sqlite'  # 'sqlite' or 'memory'
    SEED_DEFAULT_DATA = _env_flag('UNIMARK_SEED_DEFAULT_DATA', 'True')

    # Geofence Configuration
    EARTH_RADIUS_METERS = 6371000.0
    DEFAULT_GEOFENCE_RADIUS_METERS = 500

    # Session Configuration
    DEFAULT_SESSION_DURATION_MINUTES = 120
    SESSION_CODE_LENGTH = 3
    SESSION_CODE_MIN = 100
    SESSION_CODE_MAX = 999
    SESSION_CODE_MAX_ATTEMPTS = 50

    # Check-in proof (placeholder PIN policy)
    PIN_LENGTH = 4

    # Location Configuration
    LOCATION_FIRST_FIX_TIMEOUT_SECONDS = 10
    LOCATION_MAX_AGE_SECONDS = 30

    # Security Configuration
    PASSWORD_MIN_LENGTH = 4
    MAX_LOGIN_ATTEMPTS = 5
    LOGIN_LOCKOUT_DURATION = timedelta(minutes=15)
    DEFAULT_ADMIN_PASSWORD = os.environ.get('UNIMARK_ADMIN_PASSWORD') or 'admin123'

    # Report Configuration
    REPORTS_FOLDER = BASE_DIR / 'reports'
    REPORTS_MAX_RECORDS = 10000

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FILE = BASE_DIR / 'logs' / 'unimark.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5
    LOG_FORMAT = '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
    LOG_TO_FILE = True

    DEBUG = _env_flag('DEBUG')
    TESTING = False


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    DATABASE_PATH = str(BASE_DIR / 'database' / 'unimark_dev.db')

    # More verbose logging
    LOG_LEVEL = 'DEBUG'
    LOG_TO_FILE = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True

    # In-memory storage for testing
    DATABASE_PATH = ':memory:'
    STORAGE_BACKEND = 'memory'
    SEED_DEFAULT_DATA = False

    LOGIN_LOCKOUT_DURATION = timedelta(minutes=1)
    LOCATION_FIRST_FIX_TIMEOUT_SECONDS = 1
    LOG_TO_FILE = False


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False

    DATABASE_PATH = os.environ.get('UNIMARK_DATABASE_PATH') or str(BASE_DIR / 'database' / 'unimark_prod.db')
    SEED_DEFAULT_DATA = False

    LOG_LEVEL = 'WARNING'
    MAX_LOGIN_ATTEMPTS = 3


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}

STORAGE_BACKENDS = ('sqlite', 'memory')


def get_config(config_name=None):
    """Get configuration class by name, falling back to the UNIMARK_ENV variable"""
    if config_name is None:
        config_name = os.environ.get('UNIMARK_ENV', 'default')
    return config.get(config_name, DevelopmentConfig)


def validate_config(config_class=Config):
    """Validate configuration settings"""
    errors = []

    if config_class.DEFAULT_GEOFENCE_RADIUS_METERS <= 0:
        errors.append("DEFAULT_GEOFENCE_RADIUS_METERS must be positive")

    if config_class.DEFAULT_SESSION_DURATION_MINUTES <= 0:
        errors.append("DEFAULT_SESSION_DURATION_MINUTES must be positive")

    if config_class.SESSION_CODE_MIN > config_class.SESSION_CODE_MAX:
        errors.append("SESSION_CODE_MIN must not exceed SESSION_CODE_MAX")

    if (len(str(config_class.SESSION_CODE_MIN)) != config_class.SESSION_CODE_LENGTH or
            len(str(config_class.SESSION_CODE_MAX)) != config_class.SESSION_CODE_LENGTH):
        errors.append(f"Session code range must use exactly {config_class.SESSION_CODE_LENGTH} digits")

    if config_class.SESSION_CODE_MAX_ATTEMPTS <= 0:
        errors.append("SESSION_CODE_MAX_ATTEMPTS must be positive")

    if config_class.PIN_LENGTH <= 0:
        errors.append("PIN_LENGTH must be positive")

    if config_class.STORAGE_BACKEND not in STORAGE_BACKENDS:
        errors.append(f"Unknown STORAGE_BACKEND: {config_class.STORAGE_BACKEND}")

    if config_class.LOCATION_FIRST_FIX_TIMEOUT_SECONDS <= 0 or config_class.LOCATION_MAX_AGE_SECONDS <= 0:
        errors.append("Location timeouts must be positive")

    return errors


def configure_logging(config_class=Config):
    """Install console logging and, when enabled, a rotating log file"""
    root_logger = logging.getLogger('unimark')
    root_logger.setLevel(getattr(logging, str(config_class.LOG_LEVEL).upper(), logging.INFO))

    formatter = logging.Formatter(config_class.LOG_FORMAT)

    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
               for h in root_logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if config_class.LOG_TO_FILE and not config_class.TESTING:
        if not any(isinstance(h, RotatingFileHandler) for h in root_logger.handlers):
            Path(config_class.LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                config_class.LOG_FILE,
                maxBytes=config_class.LOG_MAX_BYTES,
                backupCount=config_class.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(formatter)
            file_handler.setLevel(logging.INFO)
            root_logger.addHandler(file_handler)

    return root_logger


# Initialize configuration
def init_config(config_name=None):
    """Resolve, validate and apply a configuration"""
    config_class = get_config(config_name)

    logger = configure_logging(config_class)

    errors = validate_config(config_class)
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        raise RuntimeError("Configuration validation failed")

    return config_class
