"""Settings for the test suite: SQLite, debug, no external identity provider."""
import os

os.environ.setdefault("DJANGO_DEBUG", "1")
os.environ.setdefault("DJANGO_USE_SQLITE", "1")
os.environ.setdefault("DJANGO_ALLOW_SQLITE", "1")

from sipb_api.settings import *  # noqa: E402,F401,F403

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]
LOGGING["loggers"]["sipb"]["level"] = "CRITICAL"  # noqa: F405
