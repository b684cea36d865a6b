"""
Chat API Routes
HTTP endpoints for the contact list, the active conversation and sending.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from schoolchat.auth.verify import token_dependency
from schoolchat.chat.session import ChatSession
from schoolchat.chat.timeline import DaySeparator
from schoolchat.infrastructure.observability.logging import get_logger
from schoolchat.models.api.chat_request import CreateGroupRequest, OpenChatRequest, SendMessageBody
from schoolchat.models.api.chat_response import (
    ContactResponse,
    ContactsResponse,
    DivisionParentResponse,
    DivisionParentsResponse,
    GroupChatResponse,
    MessageResponse,
    OpenChatResponse,
    SendMessageResponse,
    SessionClosedResponse,
    TimelineEntryResponse,
    TimelineResponse,
)
from schoolchat.models.domain.chat_domain import Contact, Message
from schoolchat.services.chat_service import ChatServiceError
from schoolchat.services.session_registry import chat_session_dependency, session_registry

logger = get_logger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


def _contact_response(contact: Contact) -> ContactResponse:
    return ContactResponse(**contact.to_dict())


def _message_response(message: Message) -> MessageResponse:
    return MessageResponse(**message.to_dict())


def _contacts_response(session: ChatSession, search: str = "") -> ContactsResponse:
    snapshot = session.snapshot(search)
    contacts = [ContactResponse(**c) for c in snapshot["contacts"]]
    return ContactsResponse(
        contacts=contacts,
        total_count=len(contacts),
        active_contact_id=snapshot["active_contact_id"],
        current_thread_id=snapshot["current_thread_id"],
        loading=snapshot["loading"],
        is_resolving_contact=snapshot["is_resolving_contact"],
        source_status=snapshot["source_status"],
        error=snapshot["error"],
    )


@router.get("/contacts", response_model=ContactsResponse)
async def list_contacts(
    session: ChatSession = Depends(chat_session_dependency),
    search: str = Query(default="", max_length=100, description="Filter by name or student"),
):
    """Get the merged contact list of the signed-in user."""
    return _contacts_response(session, search)


@router.post("/contacts/{contact_id}/activate", response_model=ContactsResponse)
async def activate_contact(contact_id: str, session: ChatSession = Depends(chat_session_dependency)):
    """Select a contact from the list and load its conversation."""
    contact = await session.select_contact(contact_id)
    if contact is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact not found")
    return _contacts_response(session)


@router.post("/open", response_model=OpenChatResponse)
async def open_chat(request: OpenChatRequest, session: ChatSession = Depends(chat_session_dependency)):
    """Open the chat for a contact, waiting for the contact list if it is still loading."""
    contact = await session.request_contact(request.target_id)
    return OpenChatResponse(
        selection_state=session.selection.state,
        contact=_contact_response(contact) if contact else None,
        is_resolving_contact=session.state.is_resolving_contact,
    )


@router.get("/messages", response_model=TimelineResponse)
async def get_messages(session: ChatSession = Depends(chat_session_dependency)):
    """Get the rendered timeline of the active conversation."""
    timeline = session.timeline()
    entries = []
    for entry in timeline.entries:
        if isinstance(entry, DaySeparator):
            entries.append(TimelineEntryResponse(kind="separator", label=entry.label))
        else:
            entries.append(
                TimelineEntryResponse(
                    kind="message",
                    time_label=entry.time_label,
                    message=_message_response(entry.message),
                )
            )

    return TimelineResponse(
        thread_id=session.state.current_thread_id,
        header_label=timeline.header_label,
        entries=entries,
        total_messages=len(timeline.messages),
        loading=session.state.messages_loading,
    )


@router.post("/messages", response_model=SendMessageResponse)
async def send_message(body: SendMessageBody, session: ChatSession = Depends(chat_session_dependency)):
    """Send a message to the active contact, creating the thread on first message."""
    outcome = await session.send(body.content)

    if outcome.status == "skipped":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Message not sent: {outcome.reason}",
        )
    if outcome.status == "failed":
        logger.error("Send failed", reason=outcome.reason, user_id=session.auth.user.id)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=session.state.error)

    return SendMessageResponse(
        status=outcome.status,
        thread_id=outcome.thread_id,
        message=_message_response(outcome.message) if outcome.message else None,
    )


@router.get("/divisions/{division_id}/parents", response_model=DivisionParentsResponse)
async def list_division_parents(division_id: str, session: ChatSession = Depends(chat_session_dependency)):
    """Get the parents of a class division, for building a group."""
    try:
        parents = await session.division_parents(division_id)
    except ChatServiceError as e:
        logger.error("Division parents fetch failed", division_id=division_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to load class parents"
        ) from e

    return DivisionParentsResponse(
        class_division_id=division_id,
        parents=[DivisionParentResponse(**p.model_dump()) for p in parents],
        total_count=len(parents),
    )


@router.post("/groups", response_model=GroupChatResponse)
async def create_group(request: CreateGroupRequest, session: ChatSession = Depends(chat_session_dependency)):
    """Create a group chat, or reopen the existing group with the same members."""
    outcome = await session.start_group(request.participant_ids, request.title, request.message)

    if outcome.status == "skipped":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Group not created: {outcome.reason}",
        )
    if outcome.status == "failed":
        logger.error("Group creation failed", reason=outcome.reason, user_id=session.auth.user.id)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=session.state.error)

    contact = session.resolver.contact_for_thread(outcome.thread_id)
    return GroupChatResponse(
        status=outcome.status,
        thread_id=outcome.thread_id,
        contact=_contact_response(contact) if contact else None,
    )


@router.post("/refresh", response_model=ContactsResponse)
async def refresh(session: ChatSession = Depends(chat_session_dependency)):
    """Reload threads, merging new contacts and refreshing previews."""
    await session.refresh_threads()
    if session.state.current_thread_id:
        await session.refresh_messages()
    return _contacts_response(session)


@router.delete("/session", response_model=SessionClosedResponse)
async def close_session(token: str = Depends(token_dependency)):
    """Close the chat session of this token."""
    closed = await session_registry.close(token)
    return SessionClosedResponse(closed=closed)
