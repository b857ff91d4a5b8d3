import logging
import re
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings

from .errors import SecretStoreError


logger = logging.getLogger(__name__)

_CLIENT_CONFIG = Config(connect_timeout=5, read_timeout=15, retries={"max_attempts": 2})


def _store_config() -> Dict[str, Any]:
    return dict(getattr(settings, "TOOLBOX_SECRET_STORE", None) or {})


def _client():
    region = str(_store_config().get("aws_region") or "").strip()
    if region:
        return boto3.client("secretsmanager", region_name=region, config=_CLIENT_CONFIG)
    return boto3.client("secretsmanager", config=_CLIENT_CONFIG)


def _sanitize_path_segment(value: str) -> str:
    value = (value or "").strip().replace(" ", "-")
    value = re.sub(r"[^a-zA-Z0-9._:/=-]+", "-", value)
    return value.strip("/")


def build_secret_name(*, owner_id: str, logical_name: str) -> str:
    prefix = str(_store_config().get("name_prefix") or "/toolyard").strip().rstrip("/") or "/toolyard"
    parts = [_sanitize_path_segment(segment) for segment in str(logical_name or "").split("/")]
    safe_name = "/".join(part for part in parts if part)
    if not safe_name:
        raise SecretStoreError("secret name is required")
    if not owner_id:
        raise SecretStoreError("user scope requires an owner")
    return f"{prefix}/users/{_sanitize_path_segment(str(owner_id))}/{safe_name}"


def _build_tags(owner_id: str) -> list[Dict[str, str]]:
    raw_tags = _store_config().get("tags")
    tags: Dict[str, str] = {str(k): str(v) for k, v in (raw_tags or {}).items()} if isinstance(raw_tags, dict) else {}
    tags.update({"toolyard:managed": "true", "toolyard:owner_id": str(owner_id)})
    return [{"Key": key, "Value": value} for key, value in tags.items()]


def write_secret_value(*, owner_id: str, logical_name: str, value: str, description: str = "") -> str:
    """Store ``value`` and return an opaque reference (the secret ARN when known)."""
    if not value:
        raise SecretStoreError("secret value is required")
    name = build_secret_name(owner_id=owner_id, logical_name=logical_name)
    client = _client()
    kms_key_id = str(_store_config().get("kms_key_id") or "").strip()
    try:
        kwargs: Dict[str, Any] = {
            "Name": name,
            "SecretString": value,
            "Tags": _build_tags(owner_id),
        }
        if description:
            kwargs["Description"] = description
        if kms_key_id:
            kwargs["KmsKeyId"] = kms_key_id
        response = client.create_secret(**kwargs)
    except client.exceptions.ResourceExistsException:
        try:
            response = client.put_secret_value(SecretId=name, SecretString=value)
        except (ClientError, BotoCoreError) as exc:
            raise SecretStoreError(f"secret write failed: {exc.__class__.__name__}", detail=str(exc)) from exc
    except (ClientError, BotoCoreError) as exc:
        raise SecretStoreError(f"secret write failed: {exc.__class__.__name__}", detail=str(exc)) from exc
    return str(response.get("ARN") or name)


def read_secret_value(reference: str) -> str:
    if not reference:
        raise SecretStoreError("secret reference is required")
    try:
        response = _client().get_secret_value(SecretId=reference)
    except (ClientError, BotoCoreError) as exc:
        raise SecretStoreError(f"secret read failed: {exc.__class__.__name__}", detail=str(exc)) from exc
    value = response.get("SecretString")
    if not value:
        raise SecretStoreError("secret has no string value")
    return str(value)


def delete_secret(reference: Optional[str]) -> None:
    if not reference:
        return
    client = _client()
    try:
        client.delete_secret(SecretId=reference, ForceDeleteWithoutRecovery=True)
    except client.exceptions.ResourceNotFoundException:
        logger.info("secret already gone: %s", reference)
    except (ClientError, BotoCoreError) as exc:
        raise SecretStoreError(f"secret delete failed: {exc.__class__.__name__}", detail=str(exc)) from exc
