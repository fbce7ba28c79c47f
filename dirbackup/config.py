import os


def _env_int(name, default):
    """Read an integer setting; a malformed value is kept as-is and rejected where it is used."""
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return value


def _env_float(name, default=None):
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return value


class Config:
    """Base configuration"""

    APP_NAME = os.environ.get('APP_NAME') or 'dirbackup'
    DEBUG = False

    # Backup run
    BACKUP_SOURCE_DIR = os.environ.get('BACKUP_SOURCE_DIR') or '/data/backup-source'
    BACKUP_BASE_PREFIX = os.environ.get('BACKUP_BASE_PREFIX') or 'gbackup'
    BACKUP_MAX_RETRIES = _env_int('BACKUP_MAX_RETRIES', 3)
    # Unset keeps the exponential backoff unclamped
    BACKUP_MAX_BACKOFF = _env_float('BACKUP_MAX_BACKOFF')
    BACKUP_WORKERS = _env_int('BACKUP_WORKERS', 1)

    # Storage
    STORAGE_BACKEND = os.environ.get('STORAGE_BACKEND') or 's3'
    S3_BUCKET = os.environ.get('S3_BUCKET')
    S3_REGION = os.environ.get('S3_REGION') or 'us-east-1'
    S3_ENDPOINT_URL = os.environ.get('S3_ENDPOINT_URL')
    AWS_ACCESS_KEY_ID = os.environ.get('AWS_ACCESS_KEY_ID')
    AWS_SECRET_ACCESS_KEY = os.environ.get('AWS_SECRET_ACCESS_KEY')
    LOCAL_BACKUP_DIR = os.environ.get('LOCAL_BACKUP_DIR') or '/data/local_backups'

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'

    # Notifications
    BACKUP_NOTIFICATION_EMAIL = os.environ.get('BACKUP_NOTIFICATION_EMAIL')
    MAIL_FROM = os.environ.get('MAIL_FROM') or 'dirbackup@localhost'
    MAIL_HOST = os.environ.get('MAIL_HOST') or 'localhost'
    MAIL_PORT = _env_int('MAIL_PORT', 25)
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_USE_TLS = os.environ.get('MAIL_USE_TLS', 'false').lower() == 'true'
    BACKUP_WEBHOOK_URL = os.environ.get('BACKUP_WEBHOOK_URL')
    WEBHOOK_TIMEOUT = _env_int('WEBHOOK_TIMEOUT', 30)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    BACKUP_SOURCE_DIR = os.environ.get('BACKUP_SOURCE_DIR') or os.path.join(DATA_DIR, 'backup-source')
    LOCAL_BACKUP_DIR = os.environ.get('LOCAL_BACKUP_DIR') or os.path.join(DATA_DIR, 'local_backups')
    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(DATA_DIR, 'logs')
    STORAGE_BACKEND = os.environ.get('STORAGE_BACKEND') or 'local'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    STORAGE_BACKEND = 'local'
    LOG_DIR = None
    BACKUP_NOTIFICATION_EMAIL = None
    BACKUP_WEBHOOK_URL = None


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


def get_config(config_name=None):
    """Return the config class named by config_name or DIRBACKUP_ENV."""
    if config_name is None:
        config_name = os.environ.get('DIRBACKUP_ENV', 'default')

    try:
        return config[config_name]
    except KeyError:
        raise ValueError(f"Unknown configuration: {config_name}. Valid options: {list(config.keys())}")
