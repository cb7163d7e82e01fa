"""
Result Portal Configuration
"""
import os


def env_flag(name: str, default: str = "0") -> bool:
    """Read a boolean feature flag from the environment"""
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Base configuration"""
    # Flask
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-in-production")

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///result_portal.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    # Fix Render's postgres:// URL
    if SQLALCHEMY_DATABASE_URI.startswith("postgres://"):
        SQLALCHEMY_DATABASE_URI = SQLALCHEMY_DATABASE_URI.replace("postgres://", "postgresql://", 1)

    # Session
    SESSION_PERMANENT = False
    PERMANENT_SESSION_LIFETIME = 86400

    # Security
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = 3600

    # File uploads
    MAX_CONTENT_LENGTH = 10 * 1024 * 1024  # 10MB
    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", "/tmp/result_portal_uploads")
    ALLOWED_EXTENSIONS = {"pdf", "csv", "xlsx"}

    # Temporary extraction sessions (seconds)
    TEMP_SESSION_TTL = int(os.environ.get("TEMP_SESSION_TTL", "1800"))
    TEMP_SESSION_SWEEP_INTERVAL = int(os.environ.get("TEMP_SESSION_SWEEP_INTERVAL", "300"))
    TEMP_SESSION_SWEEP_ENABLED = env_flag("TEMP_SESSION_SWEEP_ENABLED", "1")

    # OCR fallback
    OCR_ENABLED = env_flag("OCR_ENABLED", "1")
    OCR_MAX_PAGES = int(os.environ.get("OCR_MAX_PAGES", "12"))

    # Logging
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # App Version
    APP_VERSION = os.environ.get("APP_VERSION", "2026.10")
    BUILD_TIME = os.environ.get("BUILD_TIME", "")
    GIT_COMMIT = os.environ.get("GIT_COMMIT", "")


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG").upper()


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False


class TestingConfig(Config):
    """Testing configuration"""
    DEBUG = True
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    WTF_CSRF_ENABLED = False
    TEMP_SESSION_SWEEP_ENABLED = False
    OCR_ENABLED = False


config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}
