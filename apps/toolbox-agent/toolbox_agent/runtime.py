"""Docker-backed tool registry.

The registry is never held in memory: every call re-derives it from the
containers carrying the ``toolbox.managed`` label, so an Agent restart keeps
track of everything it started before.
"""

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound


logger = logging.getLogger(__name__)

MANAGED_LABEL = "toolbox.managed"
INSTANCE_LABEL = "toolbox.instance"
CONTAINER_PREFIX = "toolbox-tool-"
STOP_TIMEOUT_S = 10


class RuntimeFailure(RuntimeError):
    pass


class ToolNotFound(RuntimeFailure):
    pass


@lru_cache(maxsize=1)
def get_docker() -> docker.DockerClient:
    try:
        return docker.from_env()
    except DockerException as exc:
        raise RuntimeFailure(f"Docker client error: {exc}") from exc


def _format_ports(network_settings: Dict[str, Any]) -> Dict[str, List[str]]:
    ports = network_settings.get("Ports") or {}
    formatted: Dict[str, List[str]] = {}
    for container_port, bindings in ports.items():
        formatted[container_port] = [
            f"{binding.get('HostIp', '')}:{binding.get('HostPort', '')}" for binding in (bindings or [])
        ]
    return formatted


def describe_container(container) -> Dict[str, Any]:
    attrs = container.attrs or {}
    labels = container.labels or {}
    return {
        "instance_name": labels.get(INSTANCE_LABEL) or (container.name or "").removeprefix(CONTAINER_PREFIX),
        "container_id": container.id,
        "image": (attrs.get("Config") or {}).get("Image") or "",
        "status": container.status or "unknown",
        "ports": _format_ports(attrs.get("NetworkSettings") or {}),
    }


def _managed(client) -> list:
    try:
        return client.containers.list(all=True, filters={"label": f"{MANAGED_LABEL}=true"})
    except DockerException as exc:
        raise RuntimeFailure(f"Docker client error: {exc}") from exc


def list_tools(client) -> List[Dict[str, Any]]:
    return sorted((describe_container(container) for container in _managed(client)), key=lambda item: item["instance_name"])


def find_tool(client, instance_name: str):
    for container in _managed(client):
        if (container.labels or {}).get(INSTANCE_LABEL) == instance_name:
            return container
    raise ToolNotFound(f"Tool instance not found: {instance_name}")


def deploy_tool(
    client,
    instance_name: str,
    image: str,
    env: Optional[Dict[str, str]] = None,
    port_bindings: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Create or replace the container for ``instance_name`` and start it."""
    pull_image(client, image)
    try:
        previous = find_tool(client, instance_name)
    except ToolNotFound:
        previous = None
    try:
        if previous is not None:
            logger.info("replacing tool %s (%s)", instance_name, previous.short_id)
            previous.remove(force=True)
        container = client.containers.run(
            image,
            name=f"{CONTAINER_PREFIX}{instance_name}",
            detach=True,
            environment=env or {},
            ports=port_bindings or {},
            labels={MANAGED_LABEL: "true", INSTANCE_LABEL: instance_name},
            restart_policy={"Name": "unless-stopped"},
        )
        container.reload()
    except APIError as exc:
        raise RuntimeFailure(f"Deploy failed for {instance_name}: {exc.explanation or exc}") from exc
    logger.info("deployed tool %s from %s", instance_name, image)
    return describe_container(container)


def start_tool(client, instance_name: str) -> Dict[str, Any]:
    container = find_tool(client, instance_name)
    try:
        container.start()
        container.reload()
    except NotFound as exc:
        raise ToolNotFound(f"Tool instance not found: {instance_name}") from exc
    except APIError as exc:
        raise RuntimeFailure(f"Start failed for {instance_name}: {exc.explanation or exc}") from exc
    return describe_container(container)


def stop_tool(client, instance_name: str) -> Dict[str, Any]:
    container = find_tool(client, instance_name)
    try:
        container.stop(timeout=STOP_TIMEOUT_S)
        container.reload()
    except NotFound as exc:
        raise ToolNotFound(f"Tool instance not found: {instance_name}") from exc
    except APIError as exc:
        raise RuntimeFailure(f"Stop failed for {instance_name}: {exc.explanation or exc}") from exc
    return describe_container(container)


def remove_tool(client, instance_name: str) -> Dict[str, Any]:
    container = find_tool(client, instance_name)
    payload = describe_container(container)
    try:
        container.remove(force=True, v=True)
    except NotFound as exc:
        raise ToolNotFound(f"Tool instance not found: {instance_name}") from exc
    except APIError as exc:
        raise RuntimeFailure(f"Remove failed for {instance_name}: {exc.explanation or exc}") from exc
    payload["status"] = "removed"
    logger.info("removed tool %s", instance_name)
    return payload


def pull_image(client, image: str) -> None:
    try:
        client.images.pull(image)
    except (ImageNotFound, APIError) as exc:
        raise RuntimeFailure(f"Image pull failed for {image}: {exc.explanation or exc}") from exc
