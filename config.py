# config.py - environment driven settings
import os
from dotenv import load_dotenv

load_dotenv()

# Secret key for JWT
SECRET_KEY = os.environ.get('SECRET_KEY') or os.environ.get('JWT_SECRET') or 'next-subscription-dev-secret'

# Field encryption for stored credentials (32+ bytes)
ENCRYPTION_KEY = os.environ.get('ENCRYPTION_KEY', '')

# Database configuration
DB_CONFIG = {
    'host': os.environ.get('MYSQLHOST', 'localhost'),
    'user': os.environ.get('MYSQLUSER', 'root'),
    'password': os.environ.get('MYSQLPASSWORD', ''),
    'database': os.environ.get('MYSQLDATABASE', 'next_subscription'),
    'port': int(os.environ.get('MYSQLPORT', 3306)),
    'connect_timeout': int(os.environ.get('MYSQL_CONNECT_TIMEOUT', 10)),
    'autocommit': False,
    'pool_name': 'next_subscription_pool',
    'pool_size': int(os.environ.get('DB_POOL_SIZE', 5)),
    'pool_reset_session': True
}

# Admin configuration
ADMIN_USERNAME = os.environ.get('ADMIN_USERNAME', 'admin')
ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD', 'adminpass')
ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL', 'admin@nextsubscription.local').lower().strip()

ENVIRONMENT = os.environ.get('FLASK_ENV') or os.environ.get('NODE_ENV') or 'development'
CORS_ORIGIN = os.environ.get('CORS_ORIGIN', 'http://localhost:5173')
UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER', 'uploads')
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

VENDOR_TOKEN_DAYS = 7
ADMIN_TOKEN_HOURS = 8
USER_TOKEN_DAYS = 7
MAX_CONTENT_LENGTH = 16 * 1024 * 1024


def validate_config(settings=None):
    """Return a list of configuration problems; empty when the settings are usable."""
    from encryption import load_encryption_key, EncryptionError

    settings = settings or {}
    problems = []
    secret = settings.get('SECRET_KEY', SECRET_KEY)
    if not secret or secret == 'next-subscription-dev-secret':
        problems.append('SECRET_KEY is not set; using an insecure development default')

    try:
        load_encryption_key(settings.get('ENCRYPTION_KEY', ENCRYPTION_KEY))
    except EncryptionError as e:
        problems.append(str(e))

    if ADMIN_PASSWORD == 'adminpass':
        problems.append('ADMIN_PASSWORD is using the default value')
    return problems
