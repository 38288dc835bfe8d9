"""Chat transcript and the streaming chat endpoint."""

import json
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from inkverse import storage
from inkverse.auth import User, current_user
from inkverse.pipeline import ChatRequest, ChatTurn

from .models import ChatBody
from .projects import owned_project

router = APIRouter()


def owned_chat(chat_id: str, user: User) -> tuple[dict, dict]:
    chat = storage.get_chat(chat_id)
    if not chat:
        raise HTTPException(404, "Chat not found")
    try:
        project = owned_project(chat["project_id"], user)
    except HTTPException:
        raise HTTPException(404, "Chat not found") from None
    return chat, project


async def sse(events: AsyncIterator[dict]) -> AsyncIterator[str]:
    async for event in events:
        yield f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


@router.get("/chats/{chat_id}/messages")
async def get_messages(chat_id: str, user: User = Depends(current_user)):
    owned_chat(chat_id, user)
    return storage.get_turns(chat_id)


@router.post("/chats/{chat_id}")
async def chat(chat_id: str, body: ChatBody, request: Request, user: User = Depends(current_user)):
    """Handle one message; respond with a text/event-stream of typed events."""
    chat, project = owned_chat(chat_id, user)
    mentions = body.mentions
    turn = ChatTurn(
        request.app.state.services,
        ChatRequest(
            chat=chat,
            project=project,
            message=body.message,
            mode=body.mode,
            mention_number=mentions.chapter_number if mentions else None,
            mention_title=mentions.title if mentions else None,
            regenerate_panel_id=body.regenerate_panel_id,
            user_id=user.id,
        ),
    )
    return StreamingResponse(
        sse(turn.events()),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
