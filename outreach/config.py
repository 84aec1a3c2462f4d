# outreach/config.py
import os
from datetime import timedelta


def _env_bool(key, default=False):
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ('true', '1', 'yes', 'on')


class Config:
    """Base configuration"""

    # Basic Flask settings
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Database settings
    DATABASE_URL = os.environ.get('DATABASE_URL') or 'sqlite:///outreach.db'
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_recycle': 300,
        'pool_pre_ping': True
    }

    # JWT settings
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or SECRET_KEY
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=24)
    JWT_REFRESH_TOKEN_EXPIRES = timedelta(days=30)

    # CORS settings
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

    # Public URL used for tracking links and provider status callbacks
    PUBLIC_BASE_URL = os.environ.get('PUBLIC_BASE_URL', 'http://localhost:5000')

    # Trusted reverse proxy hops (nginx, load balancer); 0 ignores X-Forwarded-* headers
    PROXY_FIX_X_FOR = int(os.environ.get('PROXY_FIX_X_FOR', '0'))
    PROXY_FIX_X_PROTO = int(os.environ.get('PROXY_FIX_X_PROTO', '0'))
    PROXY_FIX_X_HOST = int(os.environ.get('PROXY_FIX_X_HOST', '0'))

    # Mail settings (email provider)
    MAIL_SERVER = os.environ.get('MAIL_SERVER', 'localhost')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', '587'))
    MAIL_USE_TLS = _env_bool('MAIL_USE_TLS', True)
    MAIL_USE_SSL = _env_bool('MAIL_USE_SSL', False)
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_SUPPRESS_SEND = _env_bool('MAIL_SUPPRESS_SEND', False)
    DEFAULT_FROM_EMAIL = os.environ.get('DEFAULT_FROM_EMAIL', 'noreply@example.com')
    DEFAULT_FROM_NAME = os.environ.get('DEFAULT_FROM_NAME', 'Outreach')
    MAIL_DEFAULT_SENDER = (DEFAULT_FROM_NAME, DEFAULT_FROM_EMAIL)
    # Header the relay echoes back as CustomID on event webhooks (Mailjet by default)
    EMAIL_CUSTOM_ID_HEADER = os.environ.get('EMAIL_CUSTOM_ID_HEADER', 'X-MJ-CustomID')

    # SignalWire settings (SMS provider)
    SIGNALWIRE_PROJECT_ID = os.environ.get('SIGNALWIRE_PROJECT_ID')
    SIGNALWIRE_API_TOKEN = os.environ.get('SIGNALWIRE_API_TOKEN')
    SIGNALWIRE_SPACE_URL = os.environ.get('SIGNALWIRE_SPACE_URL')
    SMS_FROM_NUMBER = os.environ.get('SMS_FROM_NUMBER')
    SMS_COST_PER_SEGMENT = float(os.environ.get('SMS_COST_PER_SEGMENT', '0.0075'))
    SMS_CURRENCY = os.environ.get('SMS_CURRENCY', 'USD')
    VERIFY_WEBHOOK_SIGNATURES = _env_bool('VERIFY_WEBHOOK_SIGNATURES', True)

    # Redis settings (API key rate limiting)
    REDIS_URL = os.environ.get('REDIS_URL')

    # Celery settings
    CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
    CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')

    # Quotas
    PLAN_LIMITS = {
        'free': {'email': 2000, 'sms': 0, 'api': 10000},
        'starter': {'email': 5000, 'sms': 1000, 'api': 50000},
        'professional': {'email': 25000, 'sms': 5000, 'api': 200000},
    }
    API_KEY_LIMITS = {'free': 2, 'starter': 5, 'professional': 10}
    QUOTA_RESET_DAYS = int(os.environ.get('QUOTA_RESET_DAYS', '30'))
    QUOTA_ALERT_THRESHOLD = int(os.environ.get('QUOTA_ALERT_THRESHOLD', '90'))
    QUOTA_REFUND_ON_PROVIDER_FAILURE = _env_bool('QUOTA_REFUND_ON_PROVIDER_FAILURE', False)

    # Sending
    SCHEDULED_BATCH_SIZE = int(os.environ.get('SCHEDULED_BATCH_SIZE', '100'))
    BULK_SEND_MAX_RECIPIENTS = int(os.environ.get('BULK_SEND_MAX_RECIPIENTS', '100'))

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///dev_outreach.db'
    VERIFY_WEBHOOK_SIGNATURES = _env_bool('VERIFY_WEBHOOK_SIGNATURES', False)


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')
    if SQLALCHEMY_DATABASE_URI and SQLALCHEMY_DATABASE_URI.startswith('postgres://'):
        SQLALCHEMY_DATABASE_URI = SQLALCHEMY_DATABASE_URI.replace('postgres://', 'postgresql://', 1)

    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '').split(',') if os.environ.get('CORS_ORIGINS') else []


class TestConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    JWT_SECRET_KEY = 'test-jwt-secret-key-with-enough-length-for-hs256'
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=5)
    MAIL_SUPPRESS_SEND = True
    REDIS_URL = None
    VERIFY_WEBHOOK_SIGNATURES = False
    SIGNALWIRE_PROJECT_ID = 'test-project'
    SIGNALWIRE_API_TOKEN = 'test-signalwire-token'
    SIGNALWIRE_SPACE_URL = 'test.signalwire.com'
    SMS_FROM_NUMBER = '+15550001111'
    PUBLIC_BASE_URL = 'http://localhost'
    LOG_FILE = None


# Configuration mapping
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestConfig,
    'default': DevelopmentConfig
}
