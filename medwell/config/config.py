import os
from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()


def _env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in ('true', '1', 't', 'yes')


class Config:
    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev_key_for_testing')

    # MongoDB
    MONGO_URI = os.environ.get('MONGO_URI', 'mongodb://localhost:27017/medwell')
    MONGO_TIMEOUT_MS = int(os.environ.get('MONGO_TIMEOUT_MS', 5000))

    # JWT
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET', os.environ.get('JWT_SECRET_KEY', 'jwt_dev_key'))
    JWT_EXPIRATION_DELTA = int(os.environ.get('JWT_EXPIRATION_DELTA', 3600))  # 1 hour

    # CORS
    CORS_ORIGINS = [origin.strip() for origin in
                    os.environ.get('CORS_ORIGINS', 'http://localhost:5173').split(',')]

    # Links embedded in emails point at the frontend
    FRONTEND_URL = os.environ.get('FRONTEND_URL', 'http://localhost:5173')

    # SMTP
    MAIL_SERVER = os.environ.get('SMTP_HOST', 'smtp.gmail.com')
    MAIL_PORT = int(os.environ.get('SMTP_PORT', 587))
    MAIL_USE_SSL = MAIL_PORT == 465
    MAIL_USE_TLS = not MAIL_USE_SSL
    MAIL_USERNAME = os.environ.get('SMTP_USER')
    MAIL_PASSWORD = os.environ.get('SMTP_PASS')
    MAIL_DEFAULT_SENDER = ('Nexus Medwell', os.environ.get('SMTP_USER') or 'no-reply@medwell.local')
    MAIL_SUPPRESS_SEND = False
    MAIL_BRAND = 'Nexus Medwell'

    # Account policy
    PASSWORD_MIN_LENGTH = 6
    EMAIL_VERIFICATION_TTL = 24 * 60 * 60  # 24 hours
    PASSWORD_RESET_TTL = 60 * 60           # 1 hour

    # Default admin account
    CREATE_DEFAULT_ADMIN = _env_flag('CREATE_DEFAULT_ADMIN', True)
    DEFAULT_ADMIN_USERNAME = os.environ.get('DEFAULT_ADMIN_USERNAME', 'admin')
    DEFAULT_ADMIN_PASSWORD = os.environ.get('DEFAULT_ADMIN_PASSWORD', 'admin123456')
    DEFAULT_ADMIN_EMAIL = os.environ.get('DEFAULT_ADMIN_EMAIL', 'admin@example.com')

    # Include tracebacks in 500 responses
    EXPOSE_ERROR_TRACE = True


class DevelopmentConfig(Config):
    DEBUG = True
    MONGO_URI = os.environ.get('DEV_MONGO_URI', 'mongodb://localhost:27017/medwell_dev')


class TestingConfig(Config):
    TESTING = True
    MONGO_URI = os.environ.get('TEST_MONGO_URI', 'mongodb://localhost:27017/medwell_test')
    MAIL_SUPPRESS_SEND = True
    MAIL_USERNAME = 'test@medwell.local'
    MAIL_PASSWORD = 'test'
    MAIL_DEFAULT_SENDER = ('Nexus Medwell', 'test@medwell.local')


class ProductionConfig(Config):
    EXPOSE_ERROR_TRACE = _env_flag('EXPOSE_ERROR_TRACE', False)


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}
