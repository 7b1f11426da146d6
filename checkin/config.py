# checkin/config.py
import os, secrets
from datetime import timedelta
from urllib.parse import urlparse, urlsplit, urlunsplit, parse_qsl, urlencode

# ---------- helpers ----------
def _origin(url: str) -> str | None:
    try:
        p = urlparse(url or "")
        if not p.scheme or not p.hostname:
            return None
        port = f":{p.port}" if p.port else ""
        return f"{p.scheme}://{p.hostname}{port}"
    except ValueError:
        return None

def _add_query_params(url: str, extra: dict[str, str]) -> str:
    if not url:
        return url
    p = urlsplit(url)
    q = dict(parse_qsl(p.query, keep_blank_values=True))
    for k, v in extra.items():
        q.setdefault(k, v)
    return urlunsplit((p.scheme, p.netloc, p.path, urlencode(q), p.fragment))

def _canon_db_url(url: str) -> str:
    """
    Hosted Postgres hands out postgres://; SQLAlchemy wants postgresql+psycopg://
    plus SSL and keepalives. SQLite URLs pass through untouched.
    """
    if not url:
        return ""
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    if not url.startswith("postgresql"):
        return url
    return _add_query_params(
        url,
        {
            "sslmode": "require",
            "connect_timeout": os.getenv("DB_CONNECT_TIMEOUT", "10"),
            "keepalives": "1",
            "keepalives_idle": "30",
        },
    )

def _env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")

def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    try:
        return int(v) if v and v.strip() else default
    except ValueError:
        return default

# ---------- environment ----------
APP_ENV = os.getenv("APP_ENV", "development")  # development | production

FRONTEND_BASE_URL = os.getenv("FRONTEND_BASE_URL", "http://localhost:3000")
FRONTEND_ORIGIN = _origin(FRONTEND_BASE_URL) or "http://localhost:3000"

# ---------- CORS ----------
DEFAULT_CORS = [
    FRONTEND_ORIGIN,
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_ENV_CORS = [s.strip() for s in os.getenv("CORS_ORIGINS", "").split(",") if s.strip()]
CORS_ORIGINS = _ENV_CORS or DEFAULT_CORS

# ---------- lessons / recordings ----------
LESSONS_BUCKET = os.getenv("LESSONS_BUCKET", "lessons")
RECORDINGS_BUCKET = os.getenv("RECORDINGS_BUCKET", "recordings")
LIST_PREFIX = os.getenv("LIST_PREFIX", "")          # e.g. "2025-10/" for a sub-folder
LIST_LIMIT = _env_int("LIST_LIMIT", 1000)
LESSON_SOURCE = os.getenv("LESSON_SOURCE", "listing")  # listing | rows
AUTO_REFRESH_MS = _env_int("AUTO_REFRESH_MS", 60_000)
MIN_RECORDING_BYTES = _env_int("MIN_RECORDING_BYTES", 1024)
RECORDING_MAX_SECONDS = _env_int("RECORDING_MAX_SECONDS", 600)  # unstopped recordings are dropped after this

# ---------- Cloudflare R2 ----------
R2_ENDPOINT = os.getenv("R2_ENDPOINT") or os.getenv("R2_S3_ENDPOINT", "")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID") or os.getenv("R2_ACCESS_KEY", "")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY") or os.getenv("R2_SECRET_KEY", "")
R2_REGION = os.getenv("R2_REGION", "auto")  # R2 ignores region, but boto3 wants something
R2_PUBLIC_BASE = os.getenv("R2_PUBLIC_BASE") or os.getenv("R2_CDN_BASE", "")

# ---------- email ----------
EMAIL_PROVIDER = os.getenv("EMAIL_PROVIDER", "console")  # console | smtp
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = _env_int("SMTP_PORT", 587)
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")
SMTP_TIMEOUT = _env_int("SMTP_TIMEOUT", 30)
FROM_EMAIL = os.getenv("FROM_EMAIL", "no-reply@localhost")
FROM_NAME = os.getenv("FROM_NAME", "Listening Check-in")

# ---------- database ----------
DATABASE_URL = _canon_db_url(os.getenv("DATABASE_URL", ""))

# ---------- canonical Config used by Flask ----------
class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY") or ("dev-" + secrets.token_urlsafe(32))
    JWT_SECRET = os.getenv("JWT_SECRET") or SECRET_KEY
    LOGIN_LINK_MINUTES = _env_int("LOGIN_LINK_MINUTES", 30)

    # The signed session cookie is the device's storage for the anonymous id
    SESSION_COOKIE_NAME = "checkin"
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = APP_ENV == "production"
    PERMANENT_SESSION_LIFETIME = timedelta(days=3650)

    FRONTEND_BASE_URL = FRONTEND_BASE_URL

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_DATABASE_URI = DATABASE_URL or "sqlite:///checkin.db"
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 280}
    AUTO_INIT_DB = _env_bool("AUTO_INIT_DB", False)
    JSON_AS_ASCII = False

    # Lessons / recordings
    LESSONS_BUCKET = LESSONS_BUCKET
    RECORDINGS_BUCKET = RECORDINGS_BUCKET
    LIST_PREFIX = LIST_PREFIX
    LIST_LIMIT = LIST_LIMIT
    LESSON_SOURCE = LESSON_SOURCE
    AUTO_REFRESH_MS = AUTO_REFRESH_MS
    MIN_RECORDING_BYTES = MIN_RECORDING_BYTES
    RECORDING_MAX_SECONDS = RECORDING_MAX_SECONDS

    # R2
    R2_ENDPOINT = R2_ENDPOINT
    R2_ACCESS_KEY_ID = R2_ACCESS_KEY_ID
    R2_SECRET_ACCESS_KEY = R2_SECRET_ACCESS_KEY
    R2_REGION = R2_REGION
    R2_PUBLIC_BASE = R2_PUBLIC_BASE

    # Email
    EMAIL_PROVIDER = EMAIL_PROVIDER
    SMTP_HOST = SMTP_HOST
    SMTP_PORT = SMTP_PORT
    SMTP_USER = SMTP_USER
    SMTP_PASS = SMTP_PASS
    SMTP_TIMEOUT = SMTP_TIMEOUT
    FROM_EMAIL = FROM_EMAIL
    FROM_NAME = FROM_NAME

    # CORS
    CORS_ORIGINS = CORS_ORIGINS
