import logging
from typing import Any, Dict, Optional

import requests
from django.conf import settings

from .errors import AgentError, ToolNotFound


logger = logging.getLogger(__name__)

DEPLOY_TIMEOUT_SECONDS = 60
REDEPLOY_TIMEOUT_SECONDS = 30


class AgentClient:
    """HTTP client for the management Agent running on a toolbox host."""

    def __init__(self, address: str, token: str, *, port: Optional[int] = None, timeout: Optional[float] = None):
        if not address:
            raise AgentError("toolbox has no address yet")
        self.address = address
        self.token = token
        self.port = int(port or settings.TOOLBOX_AGENT_PORT)
        self.timeout = min(float(timeout or settings.TOOLBOX_AGENT_TIMEOUT_SECONDS), 10.0)

    @classmethod
    def for_toolbox(cls, toolbox, address: Optional[str] = None) -> "AgentClient":
        return cls(address or toolbox.reachable_address or "", toolbox.agent_auth_token)

    def _url(self, path: str) -> str:
        return f"http://{self.address}:{self.port}{path}"

    def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        try:
            response = requests.request(
                method=method,
                url=self._url(path),
                json=payload,
                headers={"Authorization": f"Bearer {self.token}"},
                timeout=timeout or self.timeout,
            )
        except requests.RequestException as exc:
            raise AgentError(f"agent unreachable: {exc.__class__.__name__}", detail=str(exc)) from exc
        if response.status_code == 404 and path.startswith("/tools/"):
            raise ToolNotFound(f"tool not found on toolbox: {path.split('/')[2]}", status_code=404)
        if response.status_code >= 400:
            raise AgentError(
                f"agent returned HTTP {response.status_code}",
                status_code=response.status_code,
                detail=response.text[:500],
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise AgentError("agent returned a non-JSON body", status_code=response.status_code) from exc

    def status(self) -> Dict[str, Any]:
        return self._request("GET", "/status")

    def deploy_tool(
        self,
        instance_name: str,
        image_reference: str,
        *,
        env: Optional[Dict[str, str]] = None,
        port_bindings: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload = {
            "instance_name": instance_name,
            "image": image_reference,
            "env": env or {},
            "port_bindings": port_bindings or {},
        }
        return self._request("POST", "/tools", payload, timeout=DEPLOY_TIMEOUT_SECONDS)

    def start_tool(self, instance_name: str) -> Dict[str, Any]:
        return self._request("POST", f"/tools/{instance_name}/start")

    def stop_tool(self, instance_name: str) -> Dict[str, Any]:
        return self._request("POST", f"/tools/{instance_name}/stop")

    def remove_tool(self, instance_name: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/tools/{instance_name}")

    def restart(self) -> Dict[str, Any]:
        return self._request("POST", "/restart")

    def redeploy(self) -> Dict[str, Any]:
        return self._request("POST", "/redeploy", timeout=REDEPLOY_TIMEOUT_SECONDS)
