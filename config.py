import os
import secrets
import warnings

from dotenv import load_dotenv

basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, ".env"))


class Config:
    # Generate a secure key if not provided (with warning)
    _secret_key = os.environ.get("SECRET_KEY")

    if not _secret_key:
        _secret_key = secrets.token_urlsafe(32)
        warnings.warn(
            "SECRET_KEY not set! Using auto-generated key. "
            "Sessions will reset on app restart.",
            UserWarning,
        )

    SECRET_KEY = _secret_key

    # Database configuration - built from environment at initialization
    def __init__(self):
        """Initialize configuration with dynamic database URI"""
        self.SQLALCHEMY_DATABASE_URI = self._build_database_uri()

    def _build_database_uri(self):
        """Build database URI from environment variables"""
        database_url = os.environ.get("DATABASE_URL")

        if database_url:
            return database_url

        db_type = os.environ.get("DB_TYPE", "sqlite")

        if db_type.lower() == "postgresql":
            db_host = os.environ.get("DB_HOST") or "localhost"
            db_port = os.environ.get("DB_PORT") or "5432"
            db_name = os.environ.get("DB_NAME") or "prophecy_db"
            db_user = os.environ.get("DB_USER") or "prophecy_user"
            db_password = os.environ.get("DB_PASSWORD") or "prophecy_password"

            return f"postgresql+psycopg://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"
        else:
            # Default to SQLite for development
            return "sqlite:///" + os.path.join(basedir, "app.db")

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Result provider (API-Football v3)
    API_FOOTBALL_BASE_URL = (
        os.environ.get("API_FOOTBALL_BASE_URL") or "https://v3.football.api-sports.io"
    )
    API_FOOTBALL_KEY = (os.environ.get("API_FOOTBALL_KEY") or "").strip() or None
    API_FOOTBALL_TIMEOUT = float(os.environ.get("API_FOOTBALL_TIMEOUT") or 30)

    # Game rules
    # Comma-separated "Home Team|Away Team" pairs, order does not matter
    DERBY_PAIRS = os.environ.get(
        "DERBY_PAIRS",
        "Manchester United|Manchester City,Liverpool|Everton,"
        "Arsenal|Tottenham,Chelsea|Tottenham,Newcastle|Sunderland",
    )
    PREDICTION_DEADLINE_MINUTES = int(
        os.environ.get("PREDICTION_DEADLINE_MINUTES") or 60
    )  # before the first kickoff of a gameweek
    TIMEZONE = os.environ.get("TIMEZONE", "Europe/London")

    # Caching configuration
    CACHE_TYPE = os.environ.get("CACHE_TYPE", "SimpleCache")
    CACHE_DEFAULT_TIMEOUT = int(
        os.environ.get("CACHE_DEFAULT_TIMEOUT", 300)
    )  # 5 minutes
    CACHE_REDIS_URL = os.environ.get("CACHE_REDIS_URL")
    CACHE_KEY_PREFIX = "prophecy:"

    # Rate limiting
    RATELIMIT_STORAGE_URI = os.environ.get("RATELIMIT_STORAGE_URI", "memory://")

    # Scheduler configuration
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "True").lower() == "true"
    SETTLEMENT_HOUR = int(os.environ.get("SETTLEMENT_HOUR") or 3)  # UTC
    SETTLEMENT_MINUTE = int(os.environ.get("SETTLEMENT_MINUTE") or 0)

    # Logging configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_TO_CONSOLE = os.environ.get("LOG_TO_CONSOLE", "True").lower() == "true"
    LOG_TO_FILE = os.environ.get("LOG_TO_FILE", "True").lower() == "true"
    LOG_DIR = os.environ.get("LOG_DIR", "logs")

    # Environment detection
    FLASK_ENV = os.environ.get("FLASK_ENV", "development")
    DEBUG = FLASK_ENV == "development"
    TESTING = False


class DevelopmentConfig(Config):
    """Development configuration with helpful defaults"""

    DEBUG = True
    SQLALCHEMY_ECHO = os.environ.get("SQLALCHEMY_ECHO", "False").lower() == "true"


class ProductionConfig(Config):
    """Production configuration with security focus"""

    DEBUG = False

    # In production, require explicit environment variables
    def __init__(self):
        super().__init__()

        if not os.environ.get("SECRET_KEY"):
            warnings.warn(
                "PRODUCTION WARNING: SECRET_KEY not explicitly set! "
                "Using auto-generated key is not recommended for production.",
                UserWarning,
            )
        if not self.API_FOOTBALL_KEY:
            warnings.warn(
                "PRODUCTION WARNING: API_FOOTBALL_KEY not set! "
                "Settlement will not be able to fetch results.",
                UserWarning,
            )


class TestingConfig(Config):
    """Testing configuration"""

    TESTING = True
    DEBUG = False
    CACHE_TYPE = "SimpleCache"
    RATELIMIT_ENABLED = False
    SCHEDULER_ENABLED = False
    LOG_TO_CONSOLE = False
    LOG_TO_FILE = False

    def __init__(self):
        super().__init__()
        self.SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"


# Configuration mapping
config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}
