# schoolchat/models/api/chat_request.py
"""
Chat API request models.
Used by routes for input validation.
"""

from pydantic import BaseModel, Field


class OpenChatRequest(BaseModel):
    """Request to open the chat for a contact from elsewhere in the app."""

    target_id: str = Field(
        ...,
        min_length=1,
        description="Contact id, thread id, parent id or (for principals) teacher id",
    )


class SendMessageBody(BaseModel):
    """Request for sending a message to the active contact."""

    content: str = Field(..., max_length=5000, description="Message text")


class CreateGroupRequest(BaseModel):
    """Request for creating a group chat with selected parents."""

    participant_ids: list[str] = Field(..., min_length=1, description="User ids of the members")
    title: str = Field(..., min_length=1, max_length=200, description="Group name")
    message: str | None = Field(None, max_length=5000, description="First message of the group")
