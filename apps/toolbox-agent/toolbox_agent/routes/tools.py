from typing import Dict, Optional, Union

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from toolbox_agent import runtime
from toolbox_agent.auth import require_agent_token
from toolbox_agent.runtime import get_docker

router = APIRouter(prefix="/tools", tags=["tools"], dependencies=[Depends(require_agent_token)])


class ToolIn(BaseModel):
    instance_name: str = Field(pattern=r"^[a-z0-9][a-z0-9_.-]{0,62}$")
    image: str = Field(min_length=1)
    env: Dict[str, str] = Field(default_factory=dict)
    port_bindings: Dict[str, Optional[Union[int, str]]] = Field(default_factory=dict)


@router.get("")
def list_tools(client=Depends(get_docker)):
    return {"tools": runtime.list_tools(client)}


@router.post("", status_code=status.HTTP_201_CREATED)
def deploy_tool(payload: ToolIn, client=Depends(get_docker)):
    return runtime.deploy_tool(client, payload.instance_name, payload.image, payload.env, payload.port_bindings)


@router.post("/{instance_name}/start")
def start_tool(instance_name: str, client=Depends(get_docker)):
    return runtime.start_tool(client, instance_name)


@router.post("/{instance_name}/stop")
def stop_tool(instance_name: str, client=Depends(get_docker)):
    return runtime.stop_tool(client, instance_name)


@router.delete("/{instance_name}")
def remove_tool(instance_name: str, client=Depends(get_docker)):
    return runtime.remove_tool(client, instance_name)
