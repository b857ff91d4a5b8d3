import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from toolbox_agent import __version__
from toolbox_agent.routes import health, maintenance, tools
from toolbox_agent.routes import status as status_routes
from toolbox_agent.runtime import RuntimeFailure, ToolNotFound, get_docker, list_tools

logging.basicConfig(
    level=os.environ.get("TOOLBOX_AGENT_LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        managed = list_tools(get_docker())
    except RuntimeFailure as exc:
        logger.warning("toolbox agent %s started without docker access: %s", __version__, exc)
    else:
        logger.info("toolbox agent %s started; %s managed tool(s)", __version__, len(managed))
    yield


app = FastAPI(title="Toolbox Agent", version=__version__, lifespan=lifespan)

app.include_router(health.router)
app.include_router(status_routes.router)
app.include_router(tools.router)
app.include_router(maintenance.router)


@app.exception_handler(ToolNotFound)
def tool_not_found(request: Request, exc: ToolNotFound):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc), "error": "ToolNotFound"})


@app.exception_handler(RuntimeFailure)
def runtime_failure(request: Request, exc: RuntimeFailure):
    logger.warning("container runtime failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc), "error": "RuntimeFailure"})
