"""Project, settings confirm step and chat-session endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from inkverse import storage
from inkverse.auth import User, current_user

from .models import CreateChat, CreateProject, UpdateSettings

router = APIRouter()


def owned_project(project_id: str, user: User) -> dict:
    """The project if it exists and belongs to the caller; 404 otherwise."""
    project = storage.get_project(project_id)
    if not project or project.get("owner_id") != user.id:
        raise HTTPException(404, "Project not found")
    return project


@router.post("/projects", status_code=201)
async def create_project(body: CreateProject, user: User = Depends(current_user)):
    return storage.create_project(user.id, body.title, body.description)


@router.get("/projects/{project_id}")
async def get_project(project_id: str, user: User = Depends(current_user)):
    return owned_project(project_id, user)


@router.patch("/projects/{project_id}/settings")
async def update_settings(project_id: str, body: UpdateSettings, user: User = Depends(current_user)):
    """Apply a confirmed settings diff (object fields deep-merge)."""
    owned_project(project_id, user)
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(400, "No settings to update")
    return storage.update_project_settings(project_id, changes)


@router.post("/projects/{project_id}/chats", status_code=201)
async def create_chat(project_id: str, body: CreateChat, user: User = Depends(current_user)):
    owned_project(project_id, user)
    return storage.create_chat(project_id, body.chat_type, body.title)


@router.get("/projects/{project_id}/chats")
async def list_chats(project_id: str, user: User = Depends(current_user)):
    owned_project(project_id, user)
    return storage.list_chats(project_id)


@router.get("/projects/{project_id}/chapters")
async def list_chapters(project_id: str, user: User = Depends(current_user)):
    owned_project(project_id, user)
    return storage.list_chapters(project_id)
