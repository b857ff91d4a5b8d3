"""EC2-backed compute provider used by the provisioning orchestrator.

Every call carries an explicit botocore timeout; provider failures surface as
``ProviderError`` with a sanitized message and the raw text kept in ``detail``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings

from .errors import ProviderError


logger = logging.getLogger(__name__)

_CLIENT_CONFIG = Config(connect_timeout=5, read_timeout=20, retries={"max_attempts": 2, "mode": "standard"})

_NOT_FOUND_CODES = {"InvalidInstanceID.NotFound", "InvalidInstanceID.Malformed"}

_SANITIZED_MESSAGES = {
    "InstanceLimitExceeded": "Compute quota exceeded for this region.",
    "VcpuLimitExceeded": "Compute quota exceeded for this region.",
    "InsufficientInstanceCapacity": "The provider has no capacity for this size right now.",
    "Unsupported": "The requested size is not available in this region.",
    "InvalidAMIID.NotFound": "The host image is not available in this region.",
    "InvalidAMIID.Malformed": "The host image is not available in this region.",
    "AuthFailure": "The platform's cloud credentials were rejected.",
    "UnauthorizedOperation": "The platform's cloud credentials were rejected.",
    "InvalidKeyPair.NotFound": "The SSH key is not registered in this region.",
}


@dataclass
class HostInfo:
    host_id: str
    state: str = "pending"
    public_address: Optional[str] = None
    private_address: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


def _ec2(region: str):
    return boto3.client("ec2", region_name=region, config=_CLIENT_CONFIG)


def _error_code(exc: Exception) -> Optional[str]:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


def provider_error(exc: Exception) -> ProviderError:
    code = _error_code(exc)
    if isinstance(exc, BotoCoreError):
        message = "Could not reach the cloud provider."
    else:
        message = _SANITIZED_MESSAGES.get(code or "", "The cloud provider rejected the request.")
    return ProviderError(message, code=code, detail=str(exc))


def _host_info(info: Dict[str, Any]) -> HostInfo:
    return HostInfo(
        host_id=info.get("InstanceId", ""),
        state=info.get("State", {}).get("Name", "unknown"),
        public_address=info.get("PublicIpAddress"),
        private_address=info.get("PrivateIpAddress"),
        details={
            "instance_type": info.get("InstanceType"),
            "availability_zone": info.get("Placement", {}).get("AvailabilityZone"),
            "state_reason": info.get("StateReason", {}).get("Message"),
        },
    )


def ensure_security_group(region: str) -> str:
    group_name = settings.TOOLBOX_SECURITY_GROUP
    cidr = settings.TOOLBOX_ALLOWED_CIDR
    agent_port = int(settings.TOOLBOX_AGENT_PORT)
    client = _ec2(region)
    try:
        resp = client.describe_security_groups(Filters=[{"Name": "group-name", "Values": [group_name]}])
        groups = resp.get("SecurityGroups", [])
        if groups:
            return groups[0]["GroupId"]
        sg_id = client.create_security_group(GroupName=group_name, Description="Toolbox hosts")["GroupId"]
        ingress_rules = [
            {"IpProtocol": "tcp", "FromPort": 22, "ToPort": 22, "IpRanges": [{"CidrIp": cidr}]},
            {"IpProtocol": "tcp", "FromPort": agent_port, "ToPort": agent_port, "IpRanges": [{"CidrIp": cidr}]},
        ]
        try:
            client.authorize_security_group_ingress(GroupId=sg_id, IpPermissions=ingress_rules)
        except ClientError as exc:
            if _error_code(exc) != "InvalidPermission.Duplicate":
                raise
    except (ClientError, BotoCoreError) as exc:
        raise provider_error(exc) from exc
    return sg_id


def create_host(
    *,
    region: str,
    instance_type: str,
    image_id: str,
    key_names: List[str],
    user_data: str,
    name: str,
    tags: Optional[Dict[str, str]] = None,
) -> HostInfo:
    """Request exactly one host. Never retried here."""
    sg_id = ensure_security_group(region)
    all_tags = {"Name": name, "toolyard:managed": "true", **(tags or {})}
    params: Dict[str, Any] = {
        "ImageId": image_id,
        "InstanceType": instance_type,
        "MinCount": 1,
        "MaxCount": 1,
        "SecurityGroupIds": [sg_id],
        "UserData": user_data,
        "TagSpecifications": [
            {
                "ResourceType": "instance",
                "Tags": [{"Key": key, "Value": str(value)} for key, value in all_tags.items()],
            }
        ],
    }
    if key_names:
        # EC2 attaches a single key pair at launch.
        params["KeyName"] = key_names[0]
    try:
        resp = _ec2(region).run_instances(**params)
    except (ClientError, BotoCoreError) as exc:
        raise provider_error(exc) from exc
    instances = resp.get("Instances") or [{}]
    if not instances[0].get("InstanceId"):
        raise ProviderError("The cloud provider did not return a host id.")
    return _host_info(instances[0])


def describe_host(region: str, host_id: str) -> Optional[HostInfo]:
    """Return the host, or ``None`` when the provider no longer knows it."""
    try:
        resp = _ec2(region).describe_instances(InstanceIds=[host_id])
    except ClientError as exc:
        if _error_code(exc) in _NOT_FOUND_CODES:
            return None
        raise provider_error(exc) from exc
    except BotoCoreError as exc:
        raise provider_error(exc) from exc
    reservations = resp.get("Reservations", [])
    if not reservations or not reservations[0].get("Instances"):
        return None
    return _host_info(reservations[0]["Instances"][0])


def delete_host(region: str, host_id: str) -> None:
    try:
        _ec2(region).terminate_instances(InstanceIds=[host_id])
    except ClientError as exc:
        if _error_code(exc) in _NOT_FOUND_CODES:
            logger.info("host %s already gone in %s", host_id, region)
            return
        raise provider_error(exc) from exc
    except BotoCoreError as exc:
        raise provider_error(exc) from exc


def register_ssh_key(region: str, key_name: str, public_key: str) -> str:
    client = _ec2(region)
    try:
        resp = client.import_key_pair(
            KeyName=key_name,
            PublicKeyMaterial=public_key.encode("utf-8"),
            TagSpecifications=[
                {"ResourceType": "key-pair", "Tags": [{"Key": "toolyard:managed", "Value": "true"}]}
            ],
        )
        return str(resp.get("KeyPairId") or key_name)
    except ClientError as exc:
        if _error_code(exc) != "InvalidKeyPair.Duplicate":
            raise provider_error(exc) from exc
    except BotoCoreError as exc:
        raise provider_error(exc) from exc
    # Already registered under this name, e.g. a crash between import and save.
    try:
        pairs = client.describe_key_pairs(KeyNames=[key_name]).get("KeyPairs", [])
    except (ClientError, BotoCoreError) as exc:
        raise provider_error(exc) from exc
    return str(pairs[0].get("KeyPairId") or key_name) if pairs else key_name


def delete_ssh_key(region: str, key_name: str) -> None:
    try:
        _ec2(region).delete_key_pair(KeyName=key_name)
    except (ClientError, BotoCoreError) as exc:
        raise provider_error(exc) from exc
