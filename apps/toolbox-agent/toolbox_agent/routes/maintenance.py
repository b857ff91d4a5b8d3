import logging
import os
import signal
import time

from fastapi import APIRouter, BackgroundTasks, Depends, status

from toolbox_agent.auth import require_agent_token
from toolbox_agent.runtime import get_docker, pull_image

logger = logging.getLogger(__name__)

router = APIRouter(tags=["maintenance"], dependencies=[Depends(require_agent_token)])

EXIT_DELAY_S = 1.0


def _agent_image() -> str:
    return os.environ.get("TOOLBOX_AGENT_IMAGE", "ghcr.io/toolyard/toolbox-agent:latest").strip()


def exit_process() -> None:
    # systemd (Restart=always) recreates the Agent container once this process ends.
    time.sleep(EXIT_DELAY_S)
    logger.info("agent exiting for restart")
    os.kill(os.getpid(), signal.SIGTERM)


@router.post("/restart", status_code=status.HTTP_202_ACCEPTED)
def restart(background_tasks: BackgroundTasks):
    background_tasks.add_task(exit_process)
    return {"status": "restarting", "service": os.environ.get("TOOLBOX_AGENT_SERVICE", "toolbox-agent")}


@router.post("/redeploy", status_code=status.HTTP_202_ACCEPTED)
def redeploy(background_tasks: BackgroundTasks, client=Depends(get_docker)):
    image = _agent_image()
    pull_image(client, image)
    logger.info("pulled agent image %s; restarting", image)
    background_tasks.add_task(exit_process)
    return {"status": "redeploying", "image": image}
