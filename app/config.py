"""
Application configuration from environment variables.

Load with python-dotenv in main so env vars are available before imports.
Validates critical secrets at module load; missing values raise RuntimeError.
"""
import os

# --- Required (raise if missing) ---
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI")
JWT_SECRET = os.getenv("JWT_SECRET")
# Fernet keys: one for department codes, one for OAuth tokens at rest
DEPARTMENT_CODE_KEY = os.getenv("DEPARTMENT_CODE_KEY")
TOKEN_ENCRYPTION_KEY = os.getenv("TOKEN_ENCRYPTION_KEY")

for name, val in [
    ("GOOGLE_CLIENT_ID", GOOGLE_CLIENT_ID),
    ("GOOGLE_CLIENT_SECRET", GOOGLE_CLIENT_SECRET),
    ("GOOGLE_REDIRECT_URI", GOOGLE_REDIRECT_URI),
    ("JWT_SECRET", JWT_SECRET),
    ("DEPARTMENT_CODE_KEY", DEPARTMENT_CODE_KEY),
    ("TOKEN_ENCRYPTION_KEY", TOKEN_ENCRYPTION_KEY),
]:
    if not val or not str(val).strip():
        raise RuntimeError(f"Required env var {name} is missing or empty")

JWT_ALGORITHM = "HS256"

# --- Optional with defaults ---
# Bootstrap admin: the first login with this email gets role admin
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "").strip().lower()

# Frontend URL for post-login redirect; cookie is set by backend, no token in URL
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")

# Session cookie: JWT lifetime and cookie max_age should match
JWT_COOKIE_NAME = os.getenv("JWT_COOKIE_NAME", "session")
_JWT_MAX_AGE_RAW = os.getenv("JWT_COOKIE_MAX_AGE", "86400")
try:
    JWT_COOKIE_MAX_AGE = max(60, int(_JWT_MAX_AGE_RAW))
except ValueError:
    JWT_COOKIE_MAX_AGE = 86400

# OAuth CSRF: cookie name for state parameter, short-lived
OAUTH_STATE_COOKIE_NAME = os.getenv("OAUTH_STATE_COOKIE_NAME", "oauth_state")
OAUTH_STATE_MAX_AGE = 600  # 10 minutes

# Scopes requested at consent; drive.file is enough to create/share our own folders
GOOGLE_SCOPES = (
    "openid email profile "
    "https://www.googleapis.com/auth/drive.file"
)


def _int_env(key: str, default: int, minimum: int = 1) -> int:
    try:
        return max(minimum, int(os.getenv(key, str(default))))
    except ValueError:
        return default


# Access token is refreshed when it expires within this many seconds
TOKEN_REFRESH_MARGIN_SECONDS = _int_env("TOKEN_REFRESH_MARGIN_SECONDS", 60, minimum=0)

# Request timeouts (connect, read) in seconds
DRIVE_REQUEST_TIMEOUT = (5, 60)
OAUTH_REQUEST_TIMEOUT = (5, 30)

# Listing limits for admin pagination
MAX_PAGE_SIZE = _int_env("MAX_PAGE_SIZE", 100)

# Closed list of departments a folder or principal may belong to
DEPARTMENTS = tuple(
    d.strip().upper()
    for d in os.getenv("DEPARTMENTS", "CSE,ECE,MECH,CIVIL,EEE,IT,CHEM,BIOTECH").split(",")
    if d.strip()
)

# Secure cookie flag (set True in production over HTTPS)
SECURE_COOKIES = os.getenv("SECURE_COOKIES", "false").lower() in ("1", "true", "yes")

# Database URL (SQLite default; use Postgres URL in production)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./app.db")

# Skip create_all at startup (set in production when using Alembic migrations)
SKIP_DB_INIT = os.getenv("SKIP_DB_INIT", "false").lower() in ("1", "true", "yes")

# Environment: development | production (affects .env loading, error details)
ENV = os.getenv("ENV", "development").lower()
