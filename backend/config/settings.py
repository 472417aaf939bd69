"""
Django settings for the RADIUS accounting server.

Values can be overridden with environment variables of the same name
(RADIUS_ACCT_PORT, RADIUS_LOG_LEVEL, ...).
"""

import os
from datetime import timedelta
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def env_int(name, default):
    return int(os.environ.get(name, default))


def env_bool(name, default=False):
    return os.environ.get(name, str(default)).lower() in ('1', 'true', 'yes', 'on')


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'insecure-dev-key-change-me')

DEBUG = env_bool('DJANGO_DEBUG', False)

ALLOWED_HOSTS = [h for h in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',') if h]

INSTALLED_APPS = [
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'rest_framework',
    'django_filters',
    'nas',
    'users',
    'sessions.apps.SessionsConfig',
    'radius',
    'scheduler',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
]

ROOT_URLCONF = 'config.urls'

WSGI_APPLICATION = 'config.wsgi.application'

DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.environ.get('DB_NAME', str(BASE_DIR / 'radius.sqlite3')),
        'USER': os.environ.get('DB_USER', ''),
        'PASSWORD': os.environ.get('DB_PASSWORD', ''),
        'HOST': os.environ.get('DB_HOST', ''),
        'PORT': os.environ.get('DB_PORT', ''),
        'OPTIONS': {'timeout': 20} if os.environ.get('DB_ENGINE', 'sqlite3').endswith('sqlite3') else {},
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.environ.get('TIME_ZONE', 'UTC')
USE_I18N = False
USE_TZ = True

# REST API
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': (
        'rest_framework_simplejwt.authentication.JWTAuthentication',
    ),
    'DEFAULT_PERMISSION_CLASSES': (
        'rest_framework.permissions.IsAuthenticated',
    ),
    'DEFAULT_FILTER_BACKENDS': (
        'django_filters.rest_framework.DjangoFilterBackend',
    ),
    'DEFAULT_PAGINATION_CLASS': 'rest_framework.pagination.PageNumberPagination',
    'PAGE_SIZE': 50,
}

SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(minutes=env_int('JWT_ACCESS_MINUTES', 60)),
    'REFRESH_TOKEN_LIFETIME': timedelta(days=env_int('JWT_REFRESH_DAYS', 1)),
}

# RADIUS accounting server
RADIUS_CONFIG = {
    'ACCT_PORT': env_int('RADIUS_ACCT_PORT', 1813),
    'BIND_ADDRESS': os.environ.get('RADIUS_BIND_ADDRESS', '0.0.0.0'),
    'LOG_LEVEL': os.environ.get('RADIUS_LOG_LEVEL', 'INFO'),
    # Packet worker threads
    'ACCT_WORKERS': env_int('RADIUS_ACCT_WORKERS', 8),
    # Interim interval configured on the NASes, in seconds
    'ACCT_INTERIM_INTERVAL': env_int('RADIUS_ACCT_INTERIM_INTERVAL', 600),
    # Sessions silent for this many interim intervals are reaped
    'STALE_SESSION_MULTIPLIER': env_int('RADIUS_STALE_SESSION_MULTIPLIER', 5),
    # Seconds during which a repeated Stop for a settled session is acknowledged
    'DUPLICATE_STOP_WINDOW': env_int('RADIUS_DUPLICATE_STOP_WINDOW', 300),
    # 'total' debits upstream + downstream, 'net' debits max(0, downstream - upstream)
    'QUOTA_DEBIT_POLICY': os.environ.get('RADIUS_QUOTA_DEBIT_POLICY', 'total'),
    'RECONCILE_MAX_ATTEMPTS': env_int('RADIUS_RECONCILE_MAX_ATTEMPTS', 3),
    # First pause between attempts on one session, doubled after each failure
    'RECONCILE_RETRY_DELAY': float(os.environ.get('RADIUS_RECONCILE_RETRY_DELAY', '0.5')),
    'RECONCILE_WORKERS': env_int('RADIUS_RECONCILE_WORKERS', 2),
    # Attributes searched, in order, for the subscriber MAC address
    'MAC_ADDRESS_ATTRIBUTES': ['Calling-Station-Id', 'H3C-Ip-Host-Addr'],
}

# Periodic maintenance jobs (seconds)
CLEANUP_CONFIG = {
    'LOG_INTERVAL': env_int('CLEANUP_LOG_INTERVAL', 300),
    'STALE_SESSION_INTERVAL': env_int('CLEANUP_STALE_SESSION_INTERVAL', 300),
}

# Maximum number of rows kept in the radius_logs table
RADIUS_LOG_RETENTION = env_int('RADIUS_LOG_RETENTION', 10000)

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        },
        'simple': {
            'format': '%(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
        'database': {
            'class': 'radius.logging_handler.DatabaseLogHandler',
            'formatter': 'simple',
            'level': 'INFO',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'radius': {
            'handlers': ['console', 'database'],
            'level': os.environ.get('RADIUS_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'sessions': {
            'handlers': ['console', 'database'],
            'level': os.environ.get('RADIUS_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'users': {
            'handlers': ['console', 'database'],
            'level': os.environ.get('RADIUS_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'nas': {
            'handlers': ['console', 'database'],
            'level': os.environ.get('RADIUS_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'scheduler': {
            'handlers': ['console', 'database'],
            'level': os.environ.get('RADIUS_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'apscheduler': {
            'handlers': ['console'],
            'level': 'WARNING',
            'propagate': False,
        },
    },
}
