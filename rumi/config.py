import os

from rumi.models import Credentials


def _env_flag(name: str, default: str = 'false') -> bool:
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes')


class Config:
    """Base configuration"""

    # Backup catalog
    BACKUP_ROOT = os.environ.get('RUMI_BACKUP_ROOT') or '/var/backups/rumi'
    BACKUP_RETENTION_DAYS = int(os.environ.get('RUMI_BACKUP_RETENTION_DAYS', '30'))
    STRICT_CATALOG = _env_flag('RUMI_STRICT_CATALOG')

    # Scheduler (daily retention sweep, UTC)
    RETENTION_HOUR = int(os.environ.get('RUMI_RETENTION_HOUR', '2'))
    SCHEDULER_TIMEZONE = 'UTC'

    # Remote host layout
    WEB_ROOT = os.environ.get('RUMI_WEB_ROOT') or '/var/www'
    WEB_USER = os.environ.get('RUMI_WEB_USER') or 'www-data'
    WEB_GROUP = os.environ.get('RUMI_WEB_GROUP') or 'www-data'
    NGINX_CONFIG_PATH = os.environ.get('RUMI_NGINX_CONFIG_PATH') or '/etc/nginx/sites-available'
    SSL_CERT_PATH = os.environ.get('RUMI_SSL_CERT_PATH') or '/etc/letsencrypt/live'
    USE_SUDO = _env_flag('RUMI_USE_SUDO', 'true')

    # SSH
    SSH_TIMEOUT = float(os.environ.get('RUMI_SSH_TIMEOUT', '30'))

    # Preview changes without executing them
    DRY_RUN = _env_flag('RUMI_DRY_RUN')

    # Logging
    DEBUG = False
    LOG_DIR = os.environ.get('RUMI_LOG_DIR') or '/var/log/rumi'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


def get_config(config_name=None):
    """
    Resolve a configuration class by name.

    Falls back to the RUMI_ENV environment variable, then to production.

    Raises:
        ValueError: If the name is unknown
    """
    if config_name is None:
        config_name = os.environ.get('RUMI_ENV', 'production')

    if config_name not in config:
        raise ValueError(f"Unknown configuration: {config_name}. Valid options: {list(config.keys())}")

    return config[config_name]


def credentials_from_env() -> Credentials:
    """
    Build SSH credentials from RUMI_SSH_* environment variables.

    Raises:
        ValueError: If the host or user is missing, or the port is not a number
    """
    host = os.environ.get('RUMI_SSH_HOST')
    username = os.environ.get('RUMI_SSH_USER')

    if not host:
        raise ValueError("RUMI_SSH_HOST is required")
    if not username:
        raise ValueError("RUMI_SSH_USER is required")

    port = os.environ.get('RUMI_SSH_PORT', '22')
    if not port.isdigit():
        raise ValueError(f"RUMI_SSH_PORT must be a number, got {port!r}")

    return Credentials(
        host=host,
        username=username,
        port=int(port),
        public_key_path=os.environ.get('RUMI_SSH_PUBLIC_KEY') or None,
        private_key_path=os.environ.get('RUMI_SSH_PRIVATE_KEY') or None,
        password=os.environ.get('RUMI_SSH_PASSWORD') or None,
    )
