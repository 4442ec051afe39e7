import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


def _load_env_file(path: Path) -> None:
    """
    Minimal .env reader so local database and auth settings can live next to
    the backend without pulling in another dependency.
    """
    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if key.lower().startswith("export "):
            key = key[7:].strip()
        if not key:
            continue
        os.environ.setdefault(key, value.strip().strip('"').strip("'"))


def _get_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Invalid {name} value: {raw!r}") from exc


def _get_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Invalid {name} value: {raw!r}") from exc


def _get_csv_env(name: str, default: list[str]) -> list[str]:
    value = os.getenv(name)
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


_load_env_file(BASE_DIR / ".env")

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-only-insecure-key")
DEBUG = os.getenv("DJANGO_DEBUG", "0") == "1"
ALLOWED_HOSTS = _get_csv_env("DJANGO_ALLOWED_HOSTS", ["*"])

if not DEBUG:
    if SECRET_KEY == "dev-only-insecure-key":
        raise RuntimeError("DEBUG is False but DJANGO_SECRET_KEY is still the dev default.")
    if not ALLOWED_HOSTS or "*" in ALLOWED_HOSTS:
        raise RuntimeError("DEBUG is False but DJANGO_ALLOWED_HOSTS is empty or contains '*'.")

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "rest_framework",
    "api",
    "procurement",
]

# JSON API only: no sessions, templates or static files are served.
MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "sipb_api.urls"
WSGI_APPLICATION = "sipb_api.wsgi.application"

REST_FRAMEWORK = {
    # Views declare their authentication explicitly; /health/ stays open.
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": [],
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_PARSER_CLASSES": ["rest_framework.parsers.JSONParser"],
    "UNAUTHENTICATED_USER": None,
}

# PostgreSQL is the runtime database; stock adjustments rely on its row locks.
use_sqlite = os.getenv("DJANGO_USE_SQLITE", "0") == "1"
allow_sqlite = os.getenv("DJANGO_ALLOW_SQLITE", "0") == "1"
if use_sqlite and not allow_sqlite:
    raise RuntimeError(
        "SQLite backend is disabled by default. "
        "Set DJANGO_ALLOW_SQLITE=1 only for tests or temporary local tooling."
    )

if use_sqlite:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("DB_NAME", "sipb"),
            "USER": os.getenv("DB_USER", ""),
            "PASSWORD": os.getenv("DB_PASSWORD", ""),
            "HOST": os.getenv("DB_HOST", ""),
            "PORT": os.getenv("DB_PORT", "5432"),
            "CONN_MAX_AGE": _get_int_env("DB_CONN_MAX_AGE", 60),
        }
    }

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.getenv("DJANGO_TIME_ZONE", "Asia/Jakarta")
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# Identity provider. The token names the person; the SIPB user record holds
# the role unless AUTH_USE_DB_RBAC is switched off.
AUTH_ENABLED = _get_bool_env("AUTH_ENABLED", False)
AUTH_ISSUER = os.getenv("AUTH_ISSUER", "")
AUTH_AUDIENCE = os.getenv("AUTH_AUDIENCE", "")
AUTH_JWKS_URL = os.getenv("AUTH_JWKS_URL", "")
AUTH_ALGORITHMS = _get_csv_env("AUTH_ALGORITHMS", ["RS256"])
AUTH_LEEWAY_SECONDS = _get_int_env("AUTH_LEEWAY_SECONDS", 30)
AUTH_USER_ID_CLAIM = os.getenv("AUTH_USER_ID_CLAIM", "sub")
AUTH_USERNAME_CLAIM = os.getenv("AUTH_USERNAME_CLAIM", "email")
AUTH_ROLES_CLAIM = os.getenv("AUTH_ROLES_CLAIM", "")
AUTH_USE_DB_RBAC = _get_bool_env("AUTH_USE_DB_RBAC", True)

if AUTH_ENABLED:
    _required = {
        "AUTH_ISSUER": AUTH_ISSUER,
        "AUTH_AUDIENCE": AUTH_AUDIENCE,
        "AUTH_JWKS_URL": AUTH_JWKS_URL,
        "AUTH_USER_ID_CLAIM": AUTH_USER_ID_CLAIM,
        "AUTH_ALGORITHMS": AUTH_ALGORITHMS,
        "AUTH_ROLES_CLAIM": AUTH_ROLES_CLAIM or AUTH_USE_DB_RBAC,
    }
    missing = [name for name, value in _required.items() if not value]
    if missing:
        raise RuntimeError(
            "AUTH_ENABLED is true but required settings are missing: " + ", ".join(missing)
        )

# Local development login. DEV_AUTH_USER_ID names a SIPB username (or id);
# the X-SIPB-Dev-User header overrides it per request.
DEV_AUTH_ENABLED = _get_bool_env("DEV_AUTH_ENABLED", False)
DEV_AUTH_USER_ID = os.getenv("DEV_AUTH_USER_ID", "admin")
DEV_AUTH_ROLES = _get_csv_env("DEV_AUTH_ROLES", [])
DEV_AUTH_PERMISSIONS = _get_csv_env("DEV_AUTH_PERMISSIONS", [])

if DEV_AUTH_ENABLED and not DEBUG:
    raise RuntimeError("DEV_AUTH_ENABLED requires DJANGO_DEBUG=1.")

# Workflow settings.
SIPB_LOW_STOCK_THRESHOLD = _get_int_env("SIPB_LOW_STOCK_THRESHOLD", 5)
SIPB_ACTIVITY_LOG_LIMIT = _get_int_env("SIPB_ACTIVITY_LOG_LIMIT", 200)
SIPB_DOCUMENT_NO_RETRY_ATTEMPTS = _get_int_env("SIPB_DOCUMENT_NO_RETRY_ATTEMPTS", 3)
SIPB_DOCUMENT_NO_RETRY_BACKOFF_SECONDS = _get_float_env(
    "SIPB_DOCUMENT_NO_RETRY_BACKOFF_SECONDS", 0.02
)
SIPB_FEED_QUEUE_SIZE = _get_int_env("SIPB_FEED_QUEUE_SIZE", 1000)

SIPB_LOG_LEVEL = os.getenv("SIPB_LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "audit": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "audit",
        },
    },
    "loggers": {
        "sipb": {
            "handlers": ["console"],
            "level": SIPB_LOG_LEVEL,
            "propagate": False,
        },
        "api": {
            "handlers": ["console"],
            "level": SIPB_LOG_LEVEL,
            "propagate": False,
        },
        "procurement": {
            "handlers": ["console"],
            "level": SIPB_LOG_LEVEL,
            "propagate": False,
        },
    },
}
