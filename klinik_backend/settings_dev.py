"""
Development settings (SQLite, eager Celery, permissive CORS).

Usage:
    export DJANGO_SETTINGS_MODULE=klinik_backend.settings_dev
    python manage.py runserver

Also used by the test suite (see ``[tool.pytest.ini_options]``).
"""

from .settings import *  # noqa: F403

# ---------------------------------------------------------
# DEVELOPMENT SETTINGS (SQLITE)
# ---------------------------------------------------------

DEBUG = True

ALLOWED_HOSTS = ['localhost', '127.0.0.1', '[::1]', 'testserver', '*']

# ---------------------------------------------------------
# DATABASES: SQLite for local development
# ---------------------------------------------------------

# SQLite ignores SELECT ... FOR UPDATE; it serializes writers on the
# database file instead, which keeps the conflict checks correct locally.
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'dev.sqlite3',  # noqa: F405
        'OPTIONS': {
            'timeout': 20,
        },
    },
}

# ---------------------------------------------------------
# INSTALLED_APPS / MIDDLEWARE: CORS for the local frontend
# ---------------------------------------------------------

INSTALLED_APPS = [*INSTALLED_APPS, 'corsheaders']  # noqa: F405

MIDDLEWARE = [
    'corsheaders.middleware.CorsMiddleware',  # must come before CommonMiddleware
    *MIDDLEWARE,  # noqa: F405
]

CORS_ALLOW_ALL_ORIGINS = True  # DEV only!
CORS_ALLOW_CREDENTIALS = True

CSRF_TRUSTED_ORIGINS = [
    'http://localhost:3000',
    'http://127.0.0.1:3000',
    'http://localhost:8000',
    'http://127.0.0.1:8000',
]

# ---------------------------------------------------------
# REST FRAMEWORK
# ---------------------------------------------------------

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': (
        'rest_framework_simplejwt.authentication.JWTAuthentication',
        'rest_framework.authentication.SessionAuthentication',  # browsable API
    ),
    'DEFAULT_PERMISSION_CLASSES': (
        'rest_framework.permissions.IsAuthenticated',
    ),
    'DEFAULT_RENDERER_CLASSES': (
        'rest_framework.renderers.JSONRenderer',
        'rest_framework.renderers.BrowsableAPIRenderer',
    ),
}

SIMPLE_JWT = {
    **SIMPLE_JWT,  # noqa: F405
    'ACCESS_TOKEN_LIFETIME': timedelta(hours=2),  # noqa: F405
}

# ---------------------------------------------------------
# LOGGING: verbose for development
# ---------------------------------------------------------

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '{levelname} {asctime} {module}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'INFO',
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'django.db.backends': {
            'handlers': ['console'],
            'level': 'WARNING',  # DEBUG prints every SQL query
            'propagate': False,
        },
        'klinik_backend': {
            'handlers': ['console'],
            'level': 'DEBUG',
            'propagate': False,
        },
    },
}

# ---------------------------------------------------------
# CELERY: run tasks in-process
# ---------------------------------------------------------

CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = None
CELERY_BROKER_TRANSPORT_OPTIONS = {}
CELERY_TASK_ALWAYS_EAGER = True

# ---------------------------------------------------------
# SECURITY: relaxed for local development
# ---------------------------------------------------------

SECURE_SSL_REDIRECT = False
SESSION_COOKIE_SECURE = False
CSRF_COOKIE_SECURE = False
SECURE_HSTS_SECONDS = 0

PASSWORD_HASHERS = [
    'django.contrib.auth.hashers.MD5PasswordHasher',  # fast hashing for dev/tests
]
