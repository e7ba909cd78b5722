from dotenv import load_dotenv
load_dotenv()

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent.parent

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "insecure-dev-key")
DEBUG = os.getenv("DJANGO_DEBUG", "false").lower() in ("1", "true", "yes")
ALLOWED_HOSTS = [h.strip() for h in os.getenv("DJANGO_ALLOWED_HOSTS", "localhost").split(",") if h.strip()]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "merchants",
    "payments",
    "pulltasks",
]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.getenv("SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = False
USE_TZ = True

# Gateway
GATEWAY_HTTP_TIMEOUT = float(os.getenv("GATEWAY_HTTP_TIMEOUT", "30"))
# Public base URL of this service; when set the gateway gets <base>/public/webhook as backofficeURL
PAYMENTS_WEBHOOK_BASE_URL = os.getenv("PAYMENTS_WEBHOOK_BASE_URL", "")

# Task queue
PULLTASKS = {
    "ENABLED": os.getenv("PULLTASKS_ENABLED", "false").lower() in ("1", "true", "yes"),
    "OWNER": os.getenv("PULLTASKS_OWNER", "acquiring"),
    "POOL": os.getenv("PULLTASKS_POOL", "default"),
    "AGENT_NAME": os.getenv("PULLTASKS_AGENT_NAME", "acquiring-task-agent"),
    "MAX_WORKERS": int(os.getenv("PULLTASKS_MAX_WORKERS", "10")),
    "LEASE_SECONDS": int(os.getenv("PULLTASKS_LEASE_SECONDS", "600")),
    "POLL_SECONDS": float(os.getenv("PULLTASKS_POLL_SECONDS", "60")),
}

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "default"},
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "merchants": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "payments": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "pulltasks": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}
