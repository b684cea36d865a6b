# schoolchat/models/api/school_payloads.py
"""
School API payload models.
Request bodies sent to, and `data` shapes returned by, the chat and user endpoints.
Field names follow the API contract exactly.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ThreadType = Literal["direct", "group"]


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


# =================================================================
# REQUEST BODIES
# =================================================================


class CheckExistingThreadRequest(_Payload):
    participants: list[str]
    thread_type: ThreadType = "direct"


class StartConversationRequest(_Payload):
    participants: list[str]
    message_content: str
    thread_type: ThreadType = "direct"
    title: str


class SendMessageRequest(_Payload):
    thread_id: str
    content: str


class PrincipalChatsParams(_Payload):
    start_date: str | None = None
    end_date: str | None = None
    chat_type: Literal["all", "direct", "group"] = "all"
    includes_me: Literal["all", "yes", "no"] = "all"
    class_division_id: str | None = None
    page: int | None = None
    limit: int | None = None

    def to_query(self) -> dict[str, str]:
        """Only send filters that narrow the result, like the web client does."""
        query: dict[str, str] = {}
        if self.start_date:
            query["start_date"] = self.start_date
        if self.end_date:
            query["end_date"] = self.end_date
        if self.chat_type != "all":
            query["chat_type"] = self.chat_type
        if self.includes_me != "all":
            query["includes_me"] = self.includes_me
        if self.class_division_id:
            query["class_division_id"] = self.class_division_id
        if self.page:
            query["page"] = str(self.page)
        if self.limit:
            query["limit"] = str(self.limit)
        return query


# =================================================================
# SHARED PIECES
# =================================================================


class ParticipantUser(_Payload):
    id: str | None = None
    role: str | None = None
    full_name: str | None = None


class ThreadParticipant(_Payload):
    user_id: str
    role: str | None = None
    user: ParticipantUser = Field(default_factory=ParticipantUser)
    last_read_at: datetime | None = None

    @property
    def effective_role(self) -> str | None:
        return self.user.role or self.role


class MessageSender(_Payload):
    id: str | None = None
    role: str | None = None
    full_name: str = ""


class ThreadMessageSummary(_Payload):
    id: str | None = None
    content: str = ""
    created_at: datetime | None = None
    sender: MessageSender = Field(default_factory=MessageSender)


class Pagination(_Payload):
    page: int = 1
    limit: int = 0
    total: int = 0
    total_pages: int = 0


# =================================================================
# CHAT THREADS / MESSAGES
# =================================================================


class ChatThreadPayload(_Payload):
    id: str
    thread_type: ThreadType = "direct"
    title: str = ""
    created_by: str | None = None
    status: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    participants: list[ThreadParticipant] = Field(default_factory=list)
    last_message: list[ThreadMessageSummary] = Field(default_factory=list)

    @field_validator("last_message", mode="before")
    @classmethod
    def _coerce_last_message(cls, value: Any) -> list:
        # The API sends a list, a single object or null depending on the endpoint
        if value is None:
            return []
        if isinstance(value, dict):
            return [value]
        return value


class ChatThreadsData(_Payload):
    threads: list[ChatThreadPayload]
    pagination: Pagination | None = None


class ChatMessagePayload(_Payload):
    id: str
    thread_id: str | None = None
    sender_id: str | None = None
    content: str = ""
    message_type: str = "text"
    status: str = "sent"
    created_at: datetime
    updated_at: datetime | None = None
    sender: MessageSender = Field(default_factory=MessageSender)

    @property
    def effective_sender_id(self) -> str | None:
        return self.sender_id or self.sender.id


class ChatMessagesData(_Payload):
    messages: list[ChatMessagePayload]
    pagination: Pagination | None = None


class ExistingThreadRef(_Payload):
    id: str
    title: str | None = None
    thread_type: ThreadType | None = None
    participants: list[ThreadParticipant] = Field(default_factory=list)
    message_count: int = 0


class CheckExistingThreadData(_Payload):
    exists: bool
    thread: ExistingThreadRef | None = None


class StartedThread(_Payload):
    id: str
    thread_type: str | None = None
    title: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None


class StartConversationData(_Payload):
    thread: StartedThread
    message: ChatMessagePayload | None = None
    participants: int | None = None


# =================================================================
# TEACHER-LINKED PARENTS
# =================================================================


class LinkedStudent(_Payload):
    student_id: str | None = None
    student_name: str = ""
    roll_number: str | None = None
    class_division_id: str | None = None


class ChatInfo(_Payload):
    has_thread: bool = False
    thread_id: str | None = None
    message_count: int = 0
    thread_title: str | None = None
    thread_type: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    participants: list[ThreadParticipant] = Field(default_factory=list)


class LinkedParent(_Payload):
    parent_id: str
    full_name: str = ""
    email: str | None = None
    phone_number: str | None = None
    linked_students: list[LinkedStudent] = Field(default_factory=list)
    chat_info: ChatInfo = Field(default_factory=ChatInfo)


class PrincipalRecord(_Payload):
    id: str
    full_name: str = ""
    role: str = "principal"
    email: str | None = None
    phone_number: str | None = None


class TeacherLinkedParentsData(_Payload):
    linked_parents: list[LinkedParent]
    principal: PrincipalRecord | None = None


# =================================================================
# CLASS DIVISION PARENTS
# =================================================================


class DivisionStudent(_Payload):
    id: str
    name: str = ""
    roll_number: str | None = None


class DivisionParent(_Payload):
    id: str
    name: str = ""
    email: str | None = None
    phone_number: str | None = None
    relationship: str | None = None
    is_primary_guardian: bool = False


class DivisionStudentParents(_Payload):
    student: DivisionStudent
    parents: list[DivisionParent] = Field(default_factory=list)


class DivisionParentsSummary(_Payload):
    students_with_parents: int = 0
    students_without_parents: int = 0


class DivisionParentsData(_Payload):
    class_division_id: str
    students: list[DivisionStudentParents] = Field(default_factory=list)
    total_students: int = 0
    total_parents: int = 0
    summary: DivisionParentsSummary | None = None

    def unique_parents(self) -> list[DivisionParent]:
        """Parents across all students, first occurrence wins."""
        seen: dict[str, DivisionParent] = {}
        for entry in self.students:
            for parent in entry.parents:
                seen.setdefault(parent.id, parent)
        return list(seen.values())


# =================================================================
# PRINCIPAL / ADMIN CHATS FEED
# =================================================================


class PrincipalChatParticipants(_Payload):
    all: list[ThreadParticipant] = Field(default_factory=list)
    count: int = 0


class PrincipalChatThread(_Payload):
    id: str | None = None
    thread_id: str | None = None
    title: str = ""
    thread_type: ThreadType = "direct"
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str | None = None
    message_count: int = 0
    is_principal_participant: bool = False
    participants: PrincipalChatParticipants = Field(default_factory=PrincipalChatParticipants)
    last_message: ThreadMessageSummary | None = None

    def to_thread_payload(self) -> ChatThreadPayload | None:
        """Normalize into the canonical thread shape used by /api/chat/threads."""
        thread_id = self.id or self.thread_id
        if not thread_id:
            return None

        last_messages = []
        if self.last_message:
            summary = self.last_message.model_copy()
            if summary.created_at is None:
                summary.created_at = self.updated_at or self.created_at
            last_messages.append(summary)

        return ChatThreadPayload(
            id=thread_id,
            thread_type=self.thread_type,
            title=self.title,
            created_by=self.created_by or "",
            status="active",
            created_at=self.created_at,
            updated_at=self.updated_at,
            participants=list(self.participants.all),
            last_message=last_messages,
        )


class PrincipalChatsData(_Payload):
    threads: list[PrincipalChatThread]
    pagination: dict[str, Any] | None = None
    summary: dict[str, Any] | None = None


# =================================================================
# PROFILE
# =================================================================


class ProfileUser(_Payload):
    id: str
    full_name: str = ""
    role: str = "teacher"
    phone_number: str | None = None
    email: str | None = None
    preferred_language: str | None = None


class ProfileData(_Payload):
    user: ProfileUser
