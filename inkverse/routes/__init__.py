"""FastAPI API endpoints under /api.

Endpoint groups: health, projects (settings confirm step, chat sessions,
chapters) and chats (transcript, streaming chat). Every endpoint except
health requires a bearer token; resources owned by another user are 404.
"""

from fastapi import APIRouter

from .chats import router as chats_router
from .projects import router as projects_router

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


router.include_router(projects_router)
router.include_router(chats_router)
