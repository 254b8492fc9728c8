"""
Django settings for hygiene_backend project.
"""

from pathlib import Path
import os
from datetime import timedelta
from dotenv import load_dotenv

# Load .env from the project root, so it works when run from repo root or from a subdirectory
_project_root = Path(__file__).resolve().parent.parent
load_dotenv(_project_root / ".env")

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = _project_root


def _env_bool(name, default):
    return os.getenv(name, str(default)).lower() in ('true', '1', 'yes')


def _env_list(name, default=''):
    return [item.strip() for item in os.getenv(name, default).split(',') if item.strip()]


# Quick-start development settings - unsuitable for production
# See https://docs.djangoproject.com/en/5.0/howto/deployment/checklist/

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-change-this-in-production')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = _env_bool('DEBUG', True)

# Comma-separated list; APP_DOMAIN is appended when the platform provides one
_default_hosts = 'localhost,127.0.0.1,testserver'
_app_domain = os.getenv('APP_DOMAIN', '')
if _app_domain:
    _default_hosts = _default_hosts + ',' + _app_domain
ALLOWED_HOSTS = _env_list('ALLOWED_HOSTS', _default_hosts)


# Application definition

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'rest_framework_simplejwt',
    'corsheaders',
    'content',
    'citations',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'whitenoise.middleware.WhiteNoiseMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'hygiene_backend.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'hygiene_backend.wsgi.application'


# Database
# https://docs.djangoproject.com/en/5.0/ref/settings/#databases
# DATABASE_URL wins; DB_NAME selects a plain PostgreSQL block; otherwise a local SQLite file.

import dj_database_url

DATABASES = {}
if os.getenv('DATABASE_URL'):
    DATABASES['default'] = dj_database_url.config(
        conn_max_age=600,
        conn_health_checks=True,
        ssl_require=_env_bool('DB_SSL', False),
    )
elif os.getenv('DB_NAME'):
    DATABASES['default'] = {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': os.getenv('DB_NAME'),
        'USER': os.getenv('DB_USER', ''),
        'PASSWORD': os.getenv('DB_PASSWORD', ''),
        'HOST': os.getenv('DB_HOST', 'localhost'),
        'PORT': os.getenv('DB_PORT', '5432'),
        'OPTIONS': {'sslmode': 'require'} if os.getenv('DB_SSL') else {},
    }
else:
    DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',
    }

# Password validation
# https://docs.djangoproject.com/en/5.0/ref/settings/#auth-password-validators

AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]


# Internationalization
# https://docs.djangoproject.com/en/5.0/topics/i18n/

LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_TZ = True


# Static files (CSS, JavaScript, Images)
# https://docs.djangoproject.com/en/5.0/howto/static-files/
STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'
STORAGES = {
    'default': {
        'BACKEND': 'django.core.files.storage.FileSystemStorage',
    },
    'staticfiles': {
        'BACKEND': 'whitenoise.storage.CompressedManifestStaticFilesStorage',
    },
}

# Default primary key field type
# https://docs.djangoproject.com/en/5.0/ref/settings/#default-auto-field

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# REST Framework configuration
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': (
        'rest_framework_simplejwt.authentication.JWTAuthentication',
    ),
    'DEFAULT_PERMISSION_CLASSES': (
        'rest_framework.permissions.IsAuthenticated',
    ),
    'DEFAULT_PAGINATION_CLASS': 'rest_framework.pagination.PageNumberPagination',
    'PAGE_SIZE': 50,
    'DEFAULT_RENDERER_CLASSES': (
        'rest_framework.renderers.JSONRenderer',
    ),
    'DEFAULT_PARSER_CLASSES': (
        'rest_framework.parsers.JSONParser',
    ),
}

# JWT Settings
SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(days=7),
    'REFRESH_TOKEN_LIFETIME': timedelta(days=30),
    'ROTATE_REFRESH_TOKENS': True,
    'ALGORITHM': 'HS256',
    'SIGNING_KEY': SECRET_KEY,
    'AUTH_HEADER_TYPES': ('Bearer',),
    'AUTH_HEADER_NAME': 'HTTP_AUTHORIZATION',
    'USER_ID_FIELD': 'id',
    'USER_ID_CLAIM': 'user_id',
}

# CORS Settings
# Add production origins via CORS_ALLOWED_ORIGINS_EXTRA (comma-separated)
CORS_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
] + _env_list('CORS_ALLOWED_ORIGINS_EXTRA')
CORS_ALLOW_CREDENTIALS = True


# Logging
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'content': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'citations': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
    },
}


# Citation hygiene
# Every knob can be overridden with a CITATION_<NAME> environment variable.
CITATION_HYGIENE = {
    'USER_AGENT': os.getenv(
        'CITATION_USER_AGENT', 'Mozilla/5.0 (compatible; CitationHealthBot/1.0)'
    ),
    'REQUEST_TIMEOUT_SECONDS': float(os.getenv('CITATION_REQUEST_TIMEOUT_SECONDS', '10')),
    'SLOW_THRESHOLD_MS': int(os.getenv('CITATION_SLOW_THRESHOLD_MS', '5000')),
    'BATCH_SIZE': int(os.getenv('CITATION_BATCH_SIZE', '10')),
    'BATCH_DELAY_SECONDS': float(os.getenv('CITATION_BATCH_DELAY_SECONDS', '1.0')),
    'BATCH_BUDGET_SECONDS': float(os.getenv('CITATION_BATCH_BUDGET_SECONDS', '280')),
    'AUTO_APPROVE_THRESHOLD': float(os.getenv('CITATION_AUTO_APPROVE_THRESHOLD', '8.0')),
    'ROLLBACK_WINDOW_HOURS': int(os.getenv('CITATION_ROLLBACK_WINDOW_HOURS', '24')),
    'SOFT_PASS_403_ON_REPLACEMENT': _env_bool('CITATION_SOFT_PASS_403_ON_REPLACEMENT', True),
    'SOFT_PASS_403_ON_SWEEP': _env_bool('CITATION_SOFT_PASS_403_ON_SWEEP', False),
    'ENABLE_AUTO_REPLACE': _env_bool('CITATION_ENABLE_AUTO_REPLACE', False),
    'MAX_AUTO_REPLACEMENTS': int(os.getenv('CITATION_MAX_AUTO_REPLACEMENTS', '50')),
    'ALERT_THRESHOLD': int(os.getenv('CITATION_ALERT_THRESHOLD', '10')),
    'SCAN_INTERVAL_HOURS': int(os.getenv('CITATION_SCAN_INTERVAL_HOURS', '24')),
    'GOV_SOURCE_REQUIRED_STAGES': _env_list('CITATION_GOV_SOURCE_REQUIRED_STAGES', 'TOFU,MOFU,BOFU'),
    'POLICY_FILE': os.getenv('CITATION_POLICY_FILE', ''),
    'APPROVED_DOMAINS': _env_list('CITATION_APPROVED_DOMAINS'),
    'COMPETITOR_DOMAINS': _env_list('CITATION_COMPETITOR_DOMAINS'),
    'GOVERNMENT_DOMAINS': _env_list(
        'CITATION_GOVERNMENT_DOMAINS', 'gov,gob.es,gov.uk,overheid.nl,europa.eu,edu'
    ),
    'SITE_DOMAIN': os.getenv('CITATION_SITE_DOMAIN', ''),
}
