"""
Test settings.
SQLite file database so concurrency tests can open real parallel connections.
"""

from .base import *

DEBUG = False
SECRET_KEY = "test-secret-key"
ALLOWED_HOSTS = ["testserver", "localhost"]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": BASE_DIR / "test_db.sqlite3",
        "OPTIONS": {
            # BEGIN IMMEDIATE takes the write lock up front, which gives
            # select_for_update() semantics on SQLite: writers queue instead of deadlocking.
            "transaction_mode": "IMMEDIATE",
            "timeout": 20,
        },
        "TEST": {
            "NAME": BASE_DIR / "test_db.sqlite3",
        },
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "loyalty-tests",
    }
}

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

LOYALTY_CONFLICT_RETRIES = 3

LOGGING["loggers"]["loyalty"]["level"] = "WARNING"
