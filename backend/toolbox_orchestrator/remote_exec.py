import io
import logging
import socket
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import paramiko
from django.conf import settings

from .errors import RemoteCommandError


logger = logging.getLogger(__name__)

SSH_CONNECT_TIMEOUT_S = 10.0
SSH_AUTH_TIMEOUT_S = 10.0


@dataclass
class CommandResult:
    success: bool
    stdout: str
    stderr: str
    exit_status: Optional[int] = None
    command: str = ""


def _load_pkey(private_key_pem: str) -> paramiko.PKey:
    try:
        return paramiko.RSAKey.from_private_key(io.StringIO(private_key_pem))
    except paramiko.SSHException as exc:
        raise RemoteCommandError("stored SSH key could not be loaded") from exc


def _connect(host_address: str, private_key_pem: str, username: Optional[str] = None) -> paramiko.SSHClient:
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    try:
        client.connect(
            hostname=host_address,
            username=username or settings.TOOLBOX_SSH_USERNAME,
            pkey=_load_pkey(private_key_pem),
            timeout=SSH_CONNECT_TIMEOUT_S,
            banner_timeout=SSH_CONNECT_TIMEOUT_S,
            auth_timeout=SSH_AUTH_TIMEOUT_S,
            allow_agent=False,
            look_for_keys=False,
        )
    except (paramiko.SSHException, OSError) as exc:
        client.close()
        raise RemoteCommandError(f"SSH connection failed: {type(exc).__name__}", detail=str(exc)) from exc
    return client


def _run(client: paramiko.SSHClient, command: str, timeout: float) -> CommandResult:
    try:
        _stdin, stdout, stderr = client.exec_command(command, timeout=timeout)
        output = stdout.read().decode("utf-8", errors="replace")
        error_output = stderr.read().decode("utf-8", errors="replace")
        status = stdout.channel.recv_exit_status()
    except (socket.timeout, paramiko.SSHException, OSError) as exc:
        return CommandResult(
            success=False,
            stdout="",
            stderr=f"command did not complete: {type(exc).__name__}",
            command=command,
        )
    return CommandResult(success=status == 0, stdout=output, stderr=error_output, exit_status=status, command=command)


def execute(host_address: str, command: str, timeout: Optional[float] = None, *, private_key_pem: str) -> CommandResult:
    """Run one command on the host. Connection failures raise; command failures return."""
    timeout = float(timeout or settings.TOOLBOX_SSH_TIMEOUT_SECONDS)
    client = _connect(host_address, private_key_pem)
    try:
        return _run(client, command, timeout)
    finally:
        client.close()


def execute_sequence(
    host_address: str,
    commands: Sequence[str],
    timeout: Optional[float] = None,
    *,
    private_key_pem: str,
) -> Tuple[List[CommandResult], Optional[int]]:
    """Run commands in order over one connection, stopping at the first failure.

    Returns the results of the steps that ran and the index of the failing
    step, or ``None`` when every step succeeded.
    """
    timeout = float(timeout or settings.TOOLBOX_SSH_TIMEOUT_SECONDS)
    results: List[CommandResult] = []
    client = _connect(host_address, private_key_pem)
    try:
        for index, command in enumerate(commands):
            result = _run(client, command, timeout)
            results.append(result)
            if not result.success:
                logger.warning("remote step %s failed on %s: %s", index + 1, host_address, command)
                return results, index
    finally:
        client.close()
    return results, None
