from .settings import *  # noqa: F401,F403

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

TOOLBOX_ALLOWED_REGIONS = ["us-east-1", "us-west-2"]
TOOLBOX_SIZE_CLASSES = {"small": "t3.small", "medium": "t3.medium"}
TOOLBOX_HOST_IMAGE = "ami-0123456789abcdef0"
TOOLBOX_SECRET_STORE = {"aws_region": "us-east-1", "name_prefix": "/toolyard", "kms_key_id": "", "tags": {}}
TOOLBOX_ASYNC_JOBS_MODE = "disabled"
