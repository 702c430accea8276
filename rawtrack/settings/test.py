"""
Test settings. In-memory SQLite, quiet logging.

Usage:
    pytest  (DJANGO_SETTINGS_MODULE is set in pyproject.toml)
"""

from .base import *

DEPLOYMENT_MODE = 'test'

DEBUG = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

PASSWORD_HASHERS = [
    'django.contrib.auth.hashers.MD5PasswordHasher',
]

ALLOW_NEGATIVE_STOCK = False
LOW_STOCK_INCLUDE_UNSTOCKED = True

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '[{asctime}] {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'rawmaterial': {
            'handlers': ['console'],
            'level': 'ERROR',
            'propagate': True,
        },
    },
}
