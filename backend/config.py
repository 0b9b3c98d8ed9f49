import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

class Config:
    """Base configuration class"""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', 'http://localhost:3000,http://localhost:5173').split(',')

    # Quote defaults
    DEFAULT_RATE_CARD = os.environ.get('DEFAULT_RATE_CARD', 'Standard')
    DEFAULT_CURRENCY = os.environ.get('DEFAULT_CURRENCY', 'CAD')

    # Autosave timers (seconds)
    AUTOSAVE_DEBOUNCE_SECONDS = float(os.environ.get('AUTOSAVE_DEBOUNCE_SECONDS', 1.5))
    AUTOSAVE_INTERVAL_SECONDS = float(os.environ.get('AUTOSAVE_INTERVAL_SECONDS', 30))

    # Owner used for the key/value store when no session is attached
    STORAGE_OWNER = os.environ.get('STORAGE_OWNER', 'default')

    SEED_SAMPLE_DATA = os.environ.get('SEED_SAMPLE_DATA', 'true').lower() == 'true'
    RATELIMIT_ENABLED = True

class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///quote_hub.db'

class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')
    SEED_SAMPLE_DATA = False

    # Security settings for production
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Rate limiting for production
    RATELIMIT_DEFAULT = "1000 per hour"
    RATELIMIT_STORAGE_URI = os.environ.get('REDIS_URL', 'memory://')

    # Logging configuration for production
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'WARNING')

    # CORS settings for production
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '').split(',') if os.environ.get('CORS_ORIGINS') else []

class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SEED_SAMPLE_DATA = False
    RATELIMIT_ENABLED = False
    AUTOSAVE_DEBOUNCE_SECONDS = 0.01
    AUTOSAVE_INTERVAL_SECONDS = 0.05

# Configuration mapping
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
