"""
Django settings for the site incident manager.

Every deploy-specific value is read from the environment (optionally seeded
from .env files by config.env.load_env).
"""

from __future__ import annotations

from pathlib import Path

from config.env import env_bool, env_float, env_int, env_str, load_env

BASE_DIR = Path(__file__).resolve().parent.parent

load_env(BASE_DIR)

SECRET_KEY = env_str("DJANGO_SECRET_KEY", "django-insecure-site-incident-manager-dev-key")
DEBUG = env_bool("DJANGO_DEBUG", False)
ENVIRONMENT = env_str("ENVIRONMENT", "production")
ALLOWED_HOSTS = [h for h in env_str("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "django_object_actions",
    "apps.alerts",
    "apps.orchestration",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "config.wsgi.application"

# Database
# The one-open-incident-per-site guard is a partial unique index, which both
# SQLite and PostgreSQL enforce.
if env_str("DB_ENGINE", "sqlite").lower() in {"postgres", "postgresql"}:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": env_str("DB_NAME", "site_incidents"),
            "USER": env_str("DB_USER", "postgres"),
            "PASSWORD": env_str("DB_PASSWORD", ""),
            "HOST": env_str("DB_HOST", "localhost"),
            "PORT": env_str("DB_PORT", "5432"),
            "CONN_MAX_AGE": env_int("DB_CONN_MAX_AGE", 60),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / env_str("DB_NAME", "db.sqlite3"),
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"

# Logging
LOG_LEVEL = env_str("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": LOG_LEVEL,
    },
    "loggers": {
        "django": {"handlers": ["console"], "level": "WARNING", "propagate": False},
        "apps": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}

# Site incident manager
CRON_KEY = env_str("CRON_KEY", "")
INCIDENT_RESOLUTION_HOURS = env_float("INCIDENT_RESOLUTION_HOURS", 6.0)
SITE_INCIDENT_BACKFILL_BATCH_SIZE = env_int("SITE_INCIDENT_BACKFILL_BATCH_SIZE", 50)
SITE_INCIDENT_RESOLVE_BATCH_SIZE = env_int("SITE_INCIDENT_RESOLVE_BATCH_SIZE", 100)
SITE_INCIDENT_TIME_BUDGET_SECONDS = env_float("SITE_INCIDENT_TIME_BUDGET_SECONDS", 240.0)
SITE_INCIDENT_MANAGER_INTERVAL_SECONDS = env_int("SITE_INCIDENT_MANAGER_INTERVAL_SECONDS", 300)

# Monitoring signals
ORCHESTRATION_METRICS_BACKEND = env_str("ORCHESTRATION_METRICS_BACKEND", "logging")
STATSD_HOST = env_str("STATSD_HOST", "localhost")
STATSD_PORT = env_int("STATSD_PORT", 8125)
STATSD_PREFIX = env_str("STATSD_PREFIX", "site_incidents")

# Celery
CELERY_BROKER_URL = env_str("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = env_str("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")
CELERY_TASK_ALWAYS_EAGER = env_bool("CELERY_TASK_ALWAYS_EAGER", False)
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TIMEZONE = TIME_ZONE
# Hard limit sits a little above the manager's own wall-clock budget.
CELERY_TASK_TIME_LIMIT = int(SITE_INCIDENT_TIME_BUDGET_SECONDS) + 60
CELERY_BEAT_SCHEDULE = {
    "site-incident-manager": {
        "task": "apps.orchestration.tasks.run_site_incident_manager",
        "schedule": float(SITE_INCIDENT_MANAGER_INTERVAL_SECONDS),
    },
}
