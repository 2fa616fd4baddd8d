"""
Django base settings for the Catalog Pipeline service.

This module contains settings common to all environments.
For more information on this file, see
https://docs.djangoproject.com/en/4.2/topics/settings/
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv(
    "SECRET_KEY",
    "django-insecure-catalog-dev-key-change-in-production"
)

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv("DEBUG", "True") == "True"

ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")


# Application definition

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # Third-party apps
    "rest_framework",
    "drf_spectacular",
    # Local apps
    "catalog",
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
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]


# Database
# Configured in environment-specific settings (development.py, production.py, test.py)

DATABASES = {
    # Override in environment-specific settings
}


# Internationalization

LANGUAGE_CODE = "en-us"

TIME_ZONE = "UTC"

USE_I18N = True

USE_TZ = True


# Static and media files

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# Downloaded post media (images, video) lands here via default_storage
MEDIA_URL = "media/"
MEDIA_ROOT = Path(os.getenv("MEDIA_ROOT", BASE_DIR / "media"))

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# Cache Configuration
# Configured in environment-specific settings

CACHES = {
    # Override in environment-specific settings
}


# Celery Configuration
# https://docs.celeryproject.org/en/stable/django/first-steps-with-django.html

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 30 * 60  # 30 minutes max for a full pipeline run

# Task routing - scrape and processing queues
CELERY_TASK_ROUTES = {
    "catalog.tasks.scrape_profile": {"queue": "scrape"},
    "catalog.tasks.run_full_pipeline": {"queue": "scrape"},
    "catalog.tasks.label_profile_posts": {"queue": "processing"},
    "catalog.tasks.process_post": {"queue": "processing"},
}


# Django REST Framework Configuration

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
}


# DRF Spectacular (OpenAPI/Swagger) Configuration

SPECTACULAR_SETTINGS = {
    "TITLE": "Catalog Pipeline API",
    "DESCRIPTION": "Scrapes social posts and turns them into catalog products",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
}


# Logging Configuration
# https://docs.djangoproject.com/en/4.2/topics/logging/

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": os.getenv("LOG_LEVEL", "INFO"),
        },
        "catalog": {
            "handlers": ["console"],
            "level": os.getenv("LOG_LEVEL", "INFO"),
        },
    },
}


# LLM Configuration
# Backend is chosen once per process: "openrouter" or "litellm"

LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openrouter")

OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "")
OPENROUTER_BASE_URL = os.getenv(
    "OPENROUTER_BASE_URL",
    "https://openrouter.ai/api/v1/chat/completions"
)
OPENROUTER_MODEL = os.getenv("OPENROUTER_MODEL", "google/gemini-2.5-flash-preview-09-2025")
OPENROUTER_SITE_URL = os.getenv("OPENROUTER_SITE_URL", "")
OPENROUTER_APP_NAME = os.getenv("OPENROUTER_APP_NAME", "Catalog Pipeline")

LITELLM_API_KEY = os.getenv("LITELLM_API_KEY", "")
LITELLM_BASE_URL = os.getenv("LITELLM_BASE_URL", "http://localhost:4000/v1/chat/completions")
LITELLM_MODEL = os.getenv("LITELLM_MODEL", "ollama/qwen3-vl:235b")

LLM_EXTRACTION_TIMEOUT = float(os.getenv("LLM_EXTRACTION_TIMEOUT", "120"))
LLM_CLASSIFICATION_TIMEOUT = float(os.getenv("LLM_CLASSIFICATION_TIMEOUT", "30"))

EXTRACTION_MAX_RETRIES = int(os.getenv("EXTRACTION_MAX_RETRIES", "3"))
EXTRACTION_RETRY_DELAY = float(os.getenv("EXTRACTION_RETRY_DELAY", "1.0"))


# Typesense (vector search) Configuration

TYPESENSE_HOST = os.getenv("TYPESENSE_HOST", "localhost")
TYPESENSE_PORT = int(os.getenv("TYPESENSE_PORT", "8108"))
TYPESENSE_PROTOCOL = os.getenv("TYPESENSE_PROTOCOL", "http")
TYPESENSE_API_KEY = os.getenv("TYPESENSE_API_KEY", "")
TYPESENSE_TIMEOUT = float(os.getenv("TYPESENSE_TIMEOUT", "5"))
TYPESENSE_NUM_RETRIES = int(os.getenv("TYPESENSE_NUM_RETRIES", "3"))

# Model saves push documents to the search index
SEARCH_SYNC_ENABLED = os.getenv("SEARCH_SYNC_ENABLED", "True") == "True"


# Taxonomy Configuration

TAXONOMY_PROMOTION_THRESHOLD = int(os.getenv("TAXONOMY_PROMOTION_THRESHOLD", "3"))
CATEGORY_VECTOR_DISTANCE_THRESHOLD = float(
    os.getenv("CATEGORY_VECTOR_DISTANCE_THRESHOLD", "0.30")
)

# Root category id per domain group, used by the category tree endpoint
CATEGORY_GROUP_ROOTS = {
    "tech": int(os.getenv("CATEGORY_ROOT_TECH", "1")),
    "car": int(os.getenv("CATEGORY_ROOT_CAR", "100")),
}


# Scrape source (RapidAPI Instagram scraper)

INSTAGRAM_SCRAPER_BASE_URL = os.getenv(
    "INSTAGRAM_SCRAPER_BASE_URL",
    "https://instagram-scraper-api2.p.rapidapi.com/v1"
)
INSTAGRAM_SCRAPER_HOST = os.getenv("INSTAGRAM_SCRAPER_HOST", "instagram-scraper-api2.p.rapidapi.com")
INSTAGRAM_SCRAPER_API_KEY = os.getenv("INSTAGRAM_SCRAPER_API_KEY", "")
INSTAGRAM_SCRAPER_TIMEOUT = float(os.getenv("INSTAGRAM_SCRAPER_TIMEOUT", "60"))

MEDIA_DOWNLOAD_TIMEOUT = float(os.getenv("MEDIA_DOWNLOAD_TIMEOUT", "30"))


# Run supervision

SCRAPE_RUN_TIMEOUT_MINUTES = int(os.getenv("SCRAPE_RUN_TIMEOUT_MINUTES", "30"))
PROCESSING_RUN_TIMEOUT_MINUTES = int(os.getenv("PROCESSING_RUN_TIMEOUT_MINUTES", "60"))


# Sentry Configuration
# https://docs.sentry.io/platforms/python/guides/django/

SENTRY_DSN = os.getenv("SENTRY_DSN", "")
SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.2"))

if SENTRY_DSN:
    import sentry_sdk

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
        environment=SENTRY_ENVIRONMENT,
    )
