"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')

    # Session Configuration (Production-safe defaults)
    SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'fieldservice')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'fieldservice')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'fieldservice')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Documents (estimates / invoices)
    DEFAULT_TAX_RATE = os.getenv('DEFAULT_TAX_RATE', '13')
    INVOICE_DUE_DAYS = int(os.getenv('INVOICE_DUE_DAYS', '30'))
    ESTIMATE_VALID_DAYS = int(os.getenv('ESTIMATE_VALID_DAYS', '30'))

    # Business Information (for estimates/invoices and outbound messages)
    BUSINESS_NAME = os.getenv('BUSINESS_NAME', 'Field Service Co.')
    BUSINESS_ADDRESS = os.getenv('BUSINESS_ADDRESS', '')
    BUSINESS_PHONE = os.getenv('BUSINESS_PHONE', '')
    BUSINESS_EMAIL = os.getenv('BUSINESS_EMAIL', '')

    # Email configuration
    MAIL_SERVER = os.getenv('SMTP_HOST', 'smtp.gmail.com')
    MAIL_PORT = int(os.getenv('SMTP_PORT', 587))
    MAIL_USE_TLS = True
    MAIL_USE_SSL = False
    MAIL_USERNAME = os.getenv('SMTP_USER') or ''
    MAIL_PASSWORD = os.getenv('SMTP_PASSWORD') or ''
    MAIL_DEFAULT_SENDER = (
        os.getenv('SMTP_FROM')
        or MAIL_USERNAME
        or 'no-reply@localhost'
    )
    MAIL_SUPPRESS_SEND = os.getenv('MAIL_SUPPRESS_SEND', 'false').lower() == 'true'

    # SMS provider (Telnyx-compatible messages endpoint)
    SMS_API_URL = os.getenv('SMS_API_URL', 'https://api.telnyx.com/v2/messages')
    SMS_API_KEY = os.getenv('SMS_API_KEY')
    SMS_FROM_NUMBER = os.getenv('SMS_FROM_NUMBER')
    SMS_TIMEOUT = int(os.getenv('SMS_TIMEOUT', '10'))
    SMS_WEBHOOK_SECRET = os.getenv('SMS_WEBHOOK_SECRET')

    # Redis Cache Configuration (portal dashboard aggregation)
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_DEFAULT_TTL = int(os.getenv('CACHE_DEFAULT_TTL', '60'))  # seconds
    CACHE_PORTAL_TTL = int(os.getenv('CACHE_PORTAL_TTL', '120'))
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'fieldservice')

    # Conversations: fallback polling interval while realtime is down
    CONVERSATION_POLL_INTERVAL = int(os.getenv('CONVERSATION_POLL_INTERVAL', '10'))

    # Client portal links
    PORTAL_BASE_URL = os.getenv('PORTAL_BASE_URL', 'http://localhost:5000')
    PORTAL_TOKEN_TTL_HOURS = int(os.getenv('PORTAL_TOKEN_TTL_HOURS', '72'))


class TestConfig(Config):
    """Configuration used by the test-suite (in-memory SQLite, no external services)."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SECRET_KEY = 'test-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    WTF_CSRF_ENABLED = False
    MAIL_SUPPRESS_SEND = True
    CACHE_ENABLED = False
    SMS_API_KEY = None
