"""Conversations and Messages API routes.

Route handlers for conversation CRUD and message listing.
Routes are transport-only: each calls exactly one service function.

All routes require authentication.
Response envelope: {"data": ...} or {"data": [...]}
Error envelope: {"error": {"code": "...", "message": "...", "request_id": "..."}}
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Response
from sqlalchemy.orm import Session

from chatrelay.api.deps import get_db
from chatrelay.auth.middleware import Viewer, get_current_user
from chatrelay.responses import success_response
from chatrelay.schemas.conversation import CreateConversationRequest, RenameConversationRequest
from chatrelay.services import conversations as conversations_service

router = APIRouter(tags=["conversations"])


@router.get("/conversations")
def list_conversations(
    viewer: Annotated[Viewer, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """List conversations owned by the viewer, most recently updated first."""
    conversations = conversations_service.list_conversations(db=db, viewer_id=viewer.user_id)
    return success_response([c.to_json_dict() for c in conversations])


@router.post("/conversations", status_code=201)
def create_conversation(
    viewer: Annotated[Viewer, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    body: Annotated[CreateConversationRequest | None, Body()] = None,
) -> dict:
    """Create an empty conversation.

    Returns 201 Created with the conversation object.
    """
    result = conversations_service.create_conversation(
        db=db,
        viewer_id=viewer.user_id,
        title=body.title if body else None,
    )
    return success_response(result.to_json_dict())


@router.patch("/conversations/{conversation_id}")
def rename_conversation(
    conversation_id: UUID,
    body: RenameConversationRequest,
    viewer: Annotated[Viewer, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Rename a conversation.

    Errors:
        BAD_REQUEST (400): Title is empty after trimming.
        NOT_FOUND (404): Conversation doesn't exist or isn't the viewer's.
    """
    result = conversations_service.rename_conversation(
        db=db,
        viewer_id=viewer.user_id,
        conversation_id=conversation_id,
        title=body.title,
    )
    return success_response(result.to_json_dict())


@router.delete("/conversations/{conversation_id}", status_code=204)
def delete_conversation(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    """Delete a conversation together with its messages and read cursors.

    Returns 204 No Content on success.
    """
    conversations_service.delete_conversation(
        db=db, viewer_id=viewer.user_id, conversation_id=conversation_id
    )
    return Response(status_code=204)


@router.get("/conversations/{conversation_id}/messages")
def list_messages(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """List messages of a conversation in seq order."""
    messages = conversations_service.list_messages(
        db=db, viewer_id=viewer.user_id, conversation_id=conversation_id
    )
    return success_response([m.to_json_dict() for m in messages])
