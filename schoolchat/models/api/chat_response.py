# schoolchat/models/api/chat_response.py
"""
Chat API response models.
Used by routes for output formatting.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class ContactResponse(BaseModel):
    """Response model for one entry of the contact list."""

    id: str = Field(..., description="Contact ID")
    display_name: str = Field(..., description="Name shown in the list")
    kind: str = Field(..., description="parent, principal, teacher or group")
    last_message_preview: str = Field(default="", description="Last message text or placeholder")
    last_message_label: str = Field(default="", description="Relative day label of last activity")
    unread_count: int = Field(default=0, description="Unread messages in this session")
    linked_thread_id: str | None = Field(None, description="Thread backing this contact")
    counterpart_user_id: str | None = Field(None, description="User on the other side")
    linked_students: list[str] = Field(default_factory=list, description="Students of a parent")
    group_members: list[str] | None = Field(None, description="Member names of a group")


class ContactsResponse(BaseModel):
    """Response for the contact list screen."""

    contacts: list[ContactResponse] = Field(..., description="Visible contacts")
    total_count: int = Field(..., description="Number of visible contacts")
    active_contact_id: str | None = Field(None, description="Selected contact")
    current_thread_id: str | None = Field(None, description="Thread of the selected contact")
    loading: bool = Field(..., description="Whether any contact source is still loading")
    is_resolving_contact: bool = Field(..., description="Whether an open request is pending")
    source_status: dict[str, str] = Field(..., description="Per-source load status")
    error: str | None = Field(None, description="Last user-visible error")


class OpenChatResponse(BaseModel):
    """Response for an external open-chat request."""

    selection_state: str = Field(..., description="idle, awaiting_contact_list, resolved or unresolvable")
    contact: ContactResponse | None = Field(None, description="Activated contact, when resolved")
    is_resolving_contact: bool = Field(..., description="Whether the request is still pending")


class MessageResponse(BaseModel):
    """Response model for one chat message."""

    id: str = Field(..., description="Message ID")
    thread_id: str | None = Field(None, description="Thread ID")
    sender_id: str | None = Field(None, description="Sender user ID")
    sender_name: str = Field(default="", description="Sender display name")
    content: str = Field(..., description="Message text")
    created_at: datetime = Field(..., description="When the message was created")
    status: str = Field(..., description="sent, delivered or read")
    is_own: bool = Field(..., description="Whether the signed-in user sent it")


class TimelineEntryResponse(BaseModel):
    """A message row or a day separator."""

    kind: Literal["message", "separator"] = Field(..., description="Entry type")
    label: str | None = Field(None, description="Separator day label")
    time_label: str | None = Field(None, description="Message time label")
    message: MessageResponse | None = Field(None, description="Message, for message rows")


class TimelineResponse(BaseModel):
    """Response for the active conversation."""

    thread_id: str | None = Field(None, description="Current thread ID")
    header_label: str | None = Field(None, description="Day label of the first message")
    entries: list[TimelineEntryResponse] = Field(..., description="Rendered rows")
    total_messages: int = Field(..., description="Number of messages")
    loading: bool = Field(..., description="Whether history is still loading")


class SendMessageResponse(BaseModel):
    """Response after sending a message."""

    status: str = Field(..., description="sent or started")
    thread_id: str | None = Field(None, description="Thread the message went to")
    message: MessageResponse | None = Field(None, description="Message as stored by the API")


class SessionClosedResponse(BaseModel):
    """Response after closing the chat session."""

    closed: bool = Field(..., description="Whether an open session existed")


class DivisionParentResponse(BaseModel):
    """Response model for one parent of a class division."""

    id: str = Field(..., description="Parent user ID")
    name: str = Field(default="", description="Parent name")
    relationship: str | None = Field(None, description="Relationship to the student")
    is_primary_guardian: bool = Field(default=False, description="Whether this is the primary guardian")


class DivisionParentsResponse(BaseModel):
    """Response for the parents of a class division."""

    class_division_id: str = Field(..., description="Class division ID")
    parents: list[DivisionParentResponse] = Field(..., description="Unique parents of the division")
    total_count: int = Field(..., description="Number of parents")


class GroupChatResponse(BaseModel):
    """Response after creating or reopening a group chat."""

    status: str = Field(..., description="started or existing")
    thread_id: str = Field(..., description="Group thread ID")
    contact: ContactResponse | None = Field(None, description="Group contact, when listed")
