import base64
import hashlib
import logging
from typing import List, Optional, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction

from . import cloud
from .errors import InvalidTransition, ToolboxError
from .lifecycle import REPLACEABLE_STATES
from .models import SSHKeyPair, ToolboxRecord
from .secret_stores import delete_secret, read_secret_value, write_secret_value


logger = logging.getLogger(__name__)

KEY_BITS = 4096


def _key_name(owner) -> str:
    return f"toolyard-user-{owner.pk}"


def fingerprint(public_openssh: str) -> str:
    blob = base64.b64decode(public_openssh.split()[1])
    digest = base64.b64encode(hashlib.sha256(blob).digest()).decode("ascii").rstrip("=")
    return f"SHA256:{digest}"


def generate_key_pair() -> Tuple[str, str]:
    """Return ``(private_pem, public_openssh)`` for a fresh RSA key."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_BITS)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_openssh = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    ).decode("ascii")
    return private_pem, public_openssh


def _default_region() -> str:
    regions = list(settings.TOOLBOX_ALLOWED_REGIONS)
    if not regions:
        raise ToolboxError("no toolbox regions configured")
    return regions[0]


def ensure_keys(owner, region: Optional[str] = None) -> SSHKeyPair:
    """Return the owner's key pair, creating and registering it on first use.

    Creation is serialized per owner by locking the user row, so concurrent
    first deployments generate and register exactly one key.
    """
    region = region or _default_region()
    key = SSHKeyPair.objects.filter(owner=owner).first()
    if key is not None:
        if region not in (key.provider_regions_json or {}):
            key = _register_region(key, region)
        return key

    with transaction.atomic():
        get_user_model().objects.select_for_update().get(pk=owner.pk)
        key = SSHKeyPair.objects.filter(owner=owner).first()
        if key is not None:
            return key if region in (key.provider_regions_json or {}) else _register_region(key, region)

        key_name = _key_name(owner)
        private_pem, public_openssh = generate_key_pair()
        private_ref = write_secret_value(
            owner_id=str(owner.pk),
            logical_name=f"ssh/{key_name}/private",
            value=private_pem,
            description="Toolbox SSH private key",
        )
        public_ref = None
        try:
            public_ref = write_secret_value(
                owner_id=str(owner.pk),
                logical_name=f"ssh/{key_name}/public",
                value=public_openssh,
                description="Toolbox SSH public key",
            )
            provider_key_pair_id = cloud.register_ssh_key(region, key_name, public_openssh)
        except ToolboxError:
            logger.warning("ssh key setup failed for owner %s; removing stored key material", owner.pk)
            _discard_secrets(private_ref, public_ref)
            raise
        key = SSHKeyPair.objects.create(
            owner=owner,
            key_name=key_name,
            public_key_reference=public_ref,
            private_key_reference=private_ref,
            fingerprint=fingerprint(public_openssh),
            provider_key_id=key_name,
            provider_regions_json={region: provider_key_pair_id},
        )
    logger.info("created ssh key %s for owner %s", key.fingerprint, owner.pk)
    return key


def _discard_secrets(*references: Optional[str]) -> None:
    for reference in references:
        try:
            delete_secret(reference)
        except ToolboxError as exc:
            logger.warning("could not remove orphaned secret %s: %s", reference, exc)


def _register_region(key: SSHKeyPair, region: str) -> SSHKeyPair:
    public_openssh = read_secret_value(key.public_key_reference)
    provider_key_pair_id = cloud.register_ssh_key(region, key.key_name, public_openssh)
    with transaction.atomic():
        key = SSHKeyPair.objects.select_for_update().get(id=key.id)
        regions = dict(key.provider_regions_json or {})
        regions[region] = provider_key_pair_id
        key.provider_regions_json = regions
        key.save(update_fields=["provider_regions_json", "updated_at"])
    logger.info("registered ssh key %s in %s", key.key_name, region)
    return key


def deployment_keys(owner, region: Optional[str] = None) -> List[str]:
    """Provider key identifiers to attach to a new host in ``region``."""
    region = region or _default_region()
    key = SSHKeyPair.objects.filter(owner=owner).first()
    if key is None or region not in (key.provider_regions_json or {}):
        key = ensure_keys(owner, region)
    return [key.provider_key_id]


def load_private_key(key: SSHKeyPair) -> str:
    return read_secret_value(key.private_key_reference)


def delete_keys(owner) -> bool:
    key = SSHKeyPair.objects.filter(owner=owner).first()
    if key is None:
        return False
    in_use = ToolboxRecord.objects.filter(owner=owner).exclude(status__in=REPLACEABLE_STATES).exists()
    if in_use:
        raise InvalidTransition("SSH keys are still used by a toolbox; deprovision it first")
    for region in sorted(key.provider_regions_json or {}):
        cloud.delete_ssh_key(region, key.key_name)
    delete_secret(key.private_key_reference)
    delete_secret(key.public_key_reference)
    key.delete()
    logger.info("deleted ssh key %s for owner %s", key.key_name, owner.pk)
    return True
