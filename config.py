import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite file next to the app unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "rentverse.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "rentverse_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = int(os.getenv("SESSION_LIFETIME_SECONDS", 8 * 60 * 60))

    # Idle timeout: 30 minutes
    IDLE_TIMEOUT_SECONDS = int(os.getenv("IDLE_TIMEOUT_SECONDS", 30 * 60))

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"

    # Double-submit CSRF cookie; the login flow runs before a token exists
    CSRF_COOKIE_NAME = "csrf_token"
    CSRF_EXEMPT_PATHS = ("/auth/login", "/auth/register", "/health")

    BCRYPT_ROUNDS = 12

    # "inclusive": a stay ending on day N blocks one starting on day N
    # "handover": check-out day may be the next check-in day
    BOOKING_BOUNDARY_POLICY = os.getenv("BOOKING_BOUNDARY_POLICY", "inclusive").lower()

    BOOKINGS_PAGE_SIZE = 10
    BOOKINGS_MAX_PAGE_SIZE = 100
    BOOKING_NOTES_MAX_LENGTH = 1000

    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    BCRYPT_ROUNDS = 4
    LOG_LEVEL = "WARNING"
    BOOKING_BOUNDARY_POLICY = "inclusive"
