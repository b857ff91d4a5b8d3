from fastapi import APIRouter, Depends

from toolbox_agent import __version__
from toolbox_agent.auth import require_agent_token
from toolbox_agent.metrics import collect_metrics
from toolbox_agent.runtime import get_docker, list_tools

router = APIRouter(tags=["status"], dependencies=[Depends(require_agent_token)])


@router.get("/status")
def status(client=Depends(get_docker)):
    return {
        "status": "ok",
        "version": __version__,
        "metrics": collect_metrics(),
        "tools": list_tools(client),
    }
