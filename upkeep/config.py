import os

class BaseConfig:
    SECRET_KEY = os.getenv('SECRET_KEY', 'change-me')
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///upkeep.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SESSION_COOKIE_SAMESITE = 'Lax'
    SESSION_COOKIE_SECURE = False

    # Photo storage; falls back to <instance>/uploads when unset
    UPLOAD_FOLDER = os.getenv('UPLOAD_FOLDER')
    MAX_PHOTOS = int(os.getenv('MAX_PHOTOS', '10'))
    MAX_CONTENT_LENGTH = MAX_PHOTOS * 10 * 1024 * 1024

    INVOICE_DUE_DAYS = int(os.getenv('INVOICE_DUE_DAYS', '30'))

    NOTIFY_WEBHOOK_URL = os.getenv('NOTIFY_WEBHOOK_URL')
    NOTIFY_WEBHOOK_TOKEN = os.getenv('NOTIFY_WEBHOOK_TOKEN')
    NOTIFY_TIMEOUT = int(os.getenv('NOTIFY_TIMEOUT', '10'))

class DevConfig(BaseConfig):
    DEBUG = True
    ENV = 'development'

class ProdConfig(BaseConfig):
    DEBUG = False
    ENV = 'production'
    SESSION_COOKIE_SECURE = True

class TestConfig(BaseConfig):
    TESTING = True
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    NOTIFY_WEBHOOK_URL = None
