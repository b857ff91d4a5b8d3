import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-insecure-change-me")
DEBUG = os.environ.get("DJANGO_DEBUG", "false").lower() == "true"

ALLOWED_HOSTS = [host.strip() for host in os.environ.get("DJANGO_ALLOWED_HOSTS", "*").split(",") if host.strip()]
if "*" not in ALLOWED_HOSTS and "backend" not in ALLOWED_HOSTS:
    ALLOWED_HOSTS.append("backend")

SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
USE_X_FORWARDED_HOST = True

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "toolbox_orchestrator.apps.ToolboxOrchestratorConfig",
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

ROOT_URLCONF = "toolyard.urls"

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
    }
]

WSGI_APPLICATION = "toolyard.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.environ.get("POSTGRES_DB", "toolyard"),
        "USER": os.environ.get("POSTGRES_USER", "toolyard"),
        "PASSWORD": os.environ.get("POSTGRES_PASSWORD", "toolyard"),
        "HOST": os.environ.get("POSTGRES_HOST", "db"),
        "PORT": os.environ.get("POSTGRES_PORT", "5432"),
    }
}

# Reconciliation single-flight guards rely on an atomic cache.add shared by web and worker.
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.redis.RedisCache",
        "LOCATION": os.environ.get("TOOLYARD_CACHE_REDIS_URL", "redis://redis:6379/1"),
    }
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.environ.get("DJANGO_TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LOGIN_URL = "/admin/login/"

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "plain"},
    },
    "root": {
        "handlers": ["console"],
        "level": os.environ.get("DJANGO_LOG_LEVEL", "INFO"),
    },
}


def _csv(value: str) -> list:
    return [item.strip() for item in value.split(",") if item.strip()]


def _size_classes(value: str) -> dict:
    classes = {}
    for item in _csv(value):
        name, _, instance_type = item.partition("=")
        if name.strip() and instance_type.strip():
            classes[name.strip()] = instance_type.strip()
    return classes


TOOLBOX_ALLOWED_REGIONS = _csv(os.environ.get("TOOLYARD_ALLOWED_REGIONS", "us-east-1,us-west-2"))
TOOLBOX_SIZE_CLASSES = _size_classes(
    os.environ.get("TOOLYARD_SIZE_CLASSES", "small=t3.small,medium=t3.medium,large=t3.large")
)
TOOLBOX_HOST_IMAGE = os.environ.get("TOOLYARD_HOST_AMI", "").strip()
TOOLBOX_AGENT_PORT = int(os.environ.get("TOOLYARD_AGENT_PORT", "30000"))
TOOLBOX_AGENT_IMAGE = os.environ.get("TOOLYARD_AGENT_IMAGE", "ghcr.io/toolyard/toolbox-agent:latest")
TOOLBOX_PROVISIONING_CEILING_SECONDS = int(os.environ.get("TOOLYARD_PROVISIONING_CEILING_SECONDS", "600"))
TOOLBOX_POLL_INTERVAL_SECONDS = int(os.environ.get("TOOLYARD_POLL_INTERVAL_SECONDS", "15"))
TOOLBOX_AGENT_TIMEOUT_SECONDS = min(float(os.environ.get("TOOLYARD_AGENT_TIMEOUT_SECONDS", "10")), 10.0)
TOOLBOX_SSH_TIMEOUT_SECONDS = float(os.environ.get("TOOLYARD_SSH_TIMEOUT_SECONDS", "30"))
TOOLBOX_SSH_USERNAME = os.environ.get("TOOLYARD_SSH_USERNAME", "ubuntu")
TOOLBOX_ALLOWED_CIDR = os.environ.get("TOOLYARD_ALLOWED_CIDR", "0.0.0.0/0")
TOOLBOX_SECURITY_GROUP = os.environ.get("TOOLYARD_SECURITY_GROUP", "toolyard-toolbox-sg")
TOOLBOX_SECRET_STORE = {
    "aws_region": os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION") or "",
    "name_prefix": os.environ.get("TOOLYARD_SECRET_PREFIX", "/toolyard"),
    "kms_key_id": os.environ.get("TOOLYARD_SECRET_KMS_KEY_ID", ""),
    "tags": {},
}
TOOLBOX_ASYNC_JOBS_MODE = os.environ.get("TOOLYARD_ASYNC_JOBS_MODE", "").strip().lower() or (
    "inprocess" if DEBUG else "redis"
)
TOOLBOX_JOBS_REDIS_URL = os.environ.get("TOOLYARD_JOBS_REDIS_URL", "redis://redis:6379/0")
