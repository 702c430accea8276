"""
Development settings for a single workstation.
SQLite file database, DEBUG on, ledger logging to the console.

Usage:
    python manage.py runserver --settings=rawtrack.settings.local

Environment variables:
    LEDGER_LOG_LEVEL - level for the rawmaterial loggers (default DEBUG)
    LOCAL_DB_PATH - SQLite file to use instead of ./db.sqlite3
"""

from .base import *

DEPLOYMENT_MODE = 'local'

DEBUG = True


# =============================================================================
# DATABASE - SQLite file; writers wait up to 20s on the file lock
# =============================================================================
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.getenv('LOCAL_DB_PATH', str(BASE_DIR / 'db.sqlite3')),
        'OPTIONS': {
            'timeout': 20,
        },
    }
}


SECURE_SSL_REDIRECT = False
SESSION_COOKIE_SECURE = False
CSRF_COOKIE_SECURE = False


# =============================================================================
# LOGGING - every stock movement and job transition is logged at INFO,
# balance arithmetic at DEBUG
# =============================================================================
LEDGER_LOG_LEVEL = os.getenv('LEDGER_LOG_LEVEL', 'DEBUG')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'ledger': {
            'format': '{asctime} {levelname:<7} {name} | {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'ledger',
        },
    },
    'loggers': {
        'rawmaterial': {
            'handlers': ['console'],
            'level': LEDGER_LOG_LEVEL,
            'propagate': False,
        },
        'django.db.backends': {
            'handlers': ['console'],
            'level': 'WARNING',
        },
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
        },
    },
}
