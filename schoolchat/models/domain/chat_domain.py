# schoolchat/models/domain/chat_domain.py
"""
Chat Domain Models
Domain models for contacts, threads and messages used by the chat core.
Built from the API payload models; never sent back to the school API as-is.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from schoolchat.models.api.school_payloads import (
    ChatMessagePayload,
    ChatThreadPayload,
    ThreadMessageSummary,
)

ContactKind = Literal["individual-parent", "principal", "teacher", "group"]
ThreadType = Literal["direct", "group"]
MessageStatus = Literal["sent", "delivered", "read"]

PRINCIPAL_CONTACT_PREFIX = "principal-"
MESSAGE_STATUSES = ("sent", "delivered", "read")


@dataclass(frozen=True)
class Participant:
    user_id: str
    role: str | None
    name: str


@dataclass(frozen=True)
class ThreadMessage:
    """One entry of a thread's bounded recent-message suffix."""

    sender_name: str
    content: str
    created_at: datetime | None
    id: str | None = None

    @classmethod
    def from_payload(cls, payload: ThreadMessageSummary) -> "ThreadMessage":
        return cls(
            sender_name=payload.sender.full_name,
            content=payload.content,
            created_at=payload.created_at,
            id=payload.id,
        )


@dataclass
class Thread:
    """Domain model for a direct or group conversation."""

    id: str
    type: ThreadType
    title: str
    participants: list[Participant] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_messages: list[ThreadMessage] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: ChatThreadPayload) -> "Thread":
        return cls(
            id=payload.id,
            type=payload.thread_type,
            title=payload.title,
            participants=[
                Participant(
                    user_id=p.user_id,
                    role=p.effective_role,
                    name=p.user.full_name or "",
                )
                for p in payload.participants
            ],
            created_at=payload.created_at,
            updated_at=payload.updated_at,
            last_messages=[ThreadMessage.from_payload(m) for m in payload.last_message],
        )

    @property
    def is_group(self) -> bool:
        return self.type == "group"

    @property
    def last_message(self) -> ThreadMessage | None:
        return self.last_messages[-1] if self.last_messages else None

    def has_participant(self, user_id: str) -> bool:
        return any(p.user_id == user_id for p in self.participants)

    def other_participants(self, user_id: str | None) -> list[Participant]:
        return [p for p in self.participants if p.user_id != user_id]


@dataclass(frozen=True)
class ParentRef:
    parent_id: str
    full_name: str
    linked_students: tuple[str, ...] = ()


@dataclass(frozen=True)
class PrincipalRef:
    id: str
    full_name: str
    role: str = "principal"


@dataclass(frozen=True)
class TeacherRef:
    teacher_id: str
    full_name: str


_ASSOCIATION_BY_KIND = {
    "individual-parent": "associated_parent",
    "principal": "associated_principal",
    "teacher": "associated_teacher",
    "group": "group_members",
}


@dataclass
class Contact:
    """
    Unified display entity for one addressable chat target.

    Exactly one association is populated, chosen by `kind`. `linked_thread_id`
    is a weak reference resolved against the thread directory on use.
    """

    id: str
    display_name: str
    kind: ContactKind
    last_message_preview: str = ""
    last_message_label: str = ""
    unread_count: int = 0
    linked_thread_id: str | None = None
    associated_parent: ParentRef | None = None
    associated_principal: PrincipalRef | None = None
    associated_teacher: TeacherRef | None = None
    group_members: list[str] | None = None

    def __post_init__(self):
        expected = _ASSOCIATION_BY_KIND.get(self.kind)
        if expected is None:
            raise ValueError(f"Unknown contact kind: {self.kind}")
        populated = [name for name in _ASSOCIATION_BY_KIND.values() if getattr(self, name) is not None]
        if populated != [expected]:
            raise ValueError(
                f"Contact {self.id} of kind {self.kind} must populate only {expected}, got {populated}"
            )

    @property
    def is_group(self) -> bool:
        return self.kind == "group"

    @property
    def is_principal(self) -> bool:
        return self.kind == "principal"

    @property
    def is_parent(self) -> bool:
        return self.kind == "individual-parent"

    @property
    def counterpart_user_id(self) -> str | None:
        """User id of the person on the other side of a direct chat."""
        if self.associated_parent:
            return self.associated_parent.parent_id
        if self.associated_principal:
            return self.associated_principal.id
        if self.associated_teacher:
            return self.associated_teacher.teacher_id
        return None

    @property
    def counterpart_name(self) -> str:
        if self.associated_parent:
            return self.associated_parent.full_name
        if self.associated_principal:
            return self.associated_principal.full_name
        if self.associated_teacher:
            return self.associated_teacher.full_name
        return self.display_name

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "display_name": self.display_name,
            "kind": self.kind,
            "last_message_preview": self.last_message_preview,
            "last_message_label": self.last_message_label,
            "unread_count": self.unread_count,
            "linked_thread_id": self.linked_thread_id,
            "counterpart_user_id": self.counterpart_user_id,
            "linked_students": list(self.associated_parent.linked_students)
            if self.associated_parent
            else [],
            "group_members": self.group_members,
        }


@dataclass
class Message:
    """One chat message as shown in the active thread."""

    id: str
    thread_id: str | None
    sender_id: str | None
    sender_name: str
    content: str
    created_at: datetime
    status: MessageStatus = "sent"
    is_own: bool = False

    @classmethod
    def from_payload(
        cls,
        payload: ChatMessagePayload,
        current_user_id: str | None,
        thread_id: str | None = None,
        current_user_name: str | None = None,
    ) -> "Message":
        sender_id = payload.effective_sender_id
        if sender_id is not None:
            is_own = sender_id == current_user_id
        else:
            # start-conversation echoes the sender by name only
            is_own = bool(current_user_name) and payload.sender.full_name == current_user_name
        status = payload.status if payload.status in MESSAGE_STATUSES else "sent"
        return cls(
            id=payload.id,
            thread_id=payload.thread_id or thread_id,
            sender_id=sender_id,
            sender_name=payload.sender.full_name,
            content=payload.content,
            created_at=payload.created_at,
            status=status,
            is_own=is_own,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "sender_id": self.sender_id,
            "sender_name": self.sender_name,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
            "status": self.status,
            "is_own": self.is_own,
        }
