import logging
import shlex
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from django.conf import settings

from . import ssh_keys
from .agent_client import AgentClient
from .errors import AgentError, InvalidTransition, RemoteCommandError, SecretStoreError, ToolboxConfigError
from .lifecycle import DELETION_STATES
from .models import ToolboxRecord
from .remote_exec import execute_sequence
from .user_data import AGENT_SERVICE


logger = logging.getLogger(__name__)

ACTIONS = ("restart", "redeploy")


@dataclass
class RemediationResult:
    success: bool
    message: str
    channel: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def fallback_commands(action: str) -> List[str]:
    commands = []
    if action == "redeploy":
        commands.append(f"sudo docker pull {shlex.quote(settings.TOOLBOX_AGENT_IMAGE)}")
    commands += [
        f"sudo systemctl restart {AGENT_SERVICE}",
        f"systemctl is-active {AGENT_SERVICE}",
    ]
    return commands


def _via_agent(record: ToolboxRecord, address: str, action: str) -> Dict[str, Any]:
    client = AgentClient.for_toolbox(record, address)
    return client.restart() if action == "restart" else client.redeploy()


def _via_ssh(record: ToolboxRecord, address: str, action: str, errors: Dict[str, str]) -> RemediationResult:
    if record.ssh_key is None:
        errors["ssh"] = "no SSH key attached to this toolbox"
        return RemediationResult(False, f"{action} failed: agent unreachable and no SSH key", None, {"errors": errors})
    commands = fallback_commands(action)
    try:
        results, failed_index = execute_sequence(
            address,
            commands,
            private_key_pem=ssh_keys.load_private_key(record.ssh_key),
        )
    except (RemoteCommandError, SecretStoreError) as exc:
        errors["ssh"] = str(exc)
        return RemediationResult(False, f"{action} failed on both channels", None, {"errors": errors})
    steps = [
        {"command": result.command, "exit_status": result.exit_status, "stderr": result.stderr[-500:]}
        for result in results
    ]
    if failed_index is not None:
        failed = commands[failed_index]
        errors["ssh"] = f"step {failed_index + 1} failed: {failed}"
        return RemediationResult(
            False,
            f"{action} failed at step {failed_index + 1} ({failed})",
            "ssh",
            {"errors": errors, "steps": steps, "failed_step": failed_index + 1},
        )
    return RemediationResult(True, f"{action} completed over SSH", "ssh", {"errors": errors, "steps": steps})


def remediate(toolbox_id, action: str) -> RemediationResult:
    """Try the Agent's own endpoint first, then the SSH command sequence once."""
    if action not in ACTIONS:
        raise ToolboxConfigError(f"action must be one of: {', '.join(ACTIONS)}")
    record = ToolboxRecord.objects.select_related("ssh_key").get(id=toolbox_id)
    if record.status in DELETION_STATES or record.status == "deprovisioned":
        raise InvalidTransition(f"cannot {action} the agent while the toolbox is {record.status}")
    address = record.reachable_address
    if not address:
        raise InvalidTransition("toolbox host has no address yet")

    errors: Dict[str, str] = {}
    try:
        response = _via_agent(record, address, action)
    except AgentError as exc:
        errors["agent"] = str(exc)
        logger.warning("toolbox %s: agent %s failed (%s); falling back to SSH", record.id, action, exc)
    else:
        logger.info("toolbox %s: agent accepted %s", record.id, action)
        return RemediationResult(True, f"agent accepted {action}", "agent", {"agent": response})

    result = _via_ssh(record, address, action, errors)
    log = logger.info if result.success else logger.warning
    log("toolbox %s: ssh %s %s: %s", record.id, action, "succeeded" if result.success else "failed", result.message)
    return result


def restart_agent(toolbox_id) -> RemediationResult:
    return remediate(toolbox_id, "restart")


def redeploy_agent(toolbox_id) -> RemediationResult:
    return remediate(toolbox_id, "redeploy")
