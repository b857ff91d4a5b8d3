from fastapi import APIRouter

from toolbox_agent import __version__

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    return {"status": "ok", "version": __version__}
