from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from schoolchat.auth.verify import token_dependency
from schoolchat.models.api.school_payloads import (
    ChatInfo,
    ChatMessagePayload,
    ChatMessagesData,
    ChatThreadPayload,
    ChatThreadsData,
    LinkedParent,
    LinkedStudent,
    MessageSender,
    ParticipantUser,
    PrincipalChatsData,
    PrincipalRecord,
    TeacherLinkedParentsData,
    ThreadMessageSummary,
    ThreadParticipant,
)
from schoolchat.models.domain.user_domain import AuthSession, SessionUser
from schoolchat.services.chat_service import ChatService

TEACHER_ID = "teacher-1"
PRINCIPAL_ID = "principal-user-1"
TOKEN = "token-123"


@pytest.fixture
def teacher_auth():
    return AuthSession(
        user=SessionUser(id=TEACHER_ID, full_name="Asha Rao", role="teacher"),
        token=TOKEN,
    )


@pytest.fixture
def principal_auth():
    return AuthSession(
        user=SessionUser(id=PRINCIPAL_ID, full_name="Meera Iyer", role="principal"),
        token=TOKEN,
    )


@pytest.fixture
def participant():
    def _participant(user_id: str, role: str, name: str) -> ThreadParticipant:
        return ThreadParticipant(
            user_id=user_id, role=role, user=ParticipantUser(id=user_id, role=role, full_name=name)
        )

    return _participant


@pytest.fixture
def thread_payload(participant):
    def _thread(
        thread_id: str,
        others: list[tuple[str, str, str]],
        thread_type: str = "direct",
        title: str = "",
        last_content: str | None = None,
        last_at: datetime | None = None,
    ) -> ChatThreadPayload:
        participants = [participant(TEACHER_ID, "teacher", "Asha Rao")]
        participants += [participant(*other) for other in others]
        last_message = []
        if last_content is not None:
            last_message.append(
                ThreadMessageSummary(
                    content=last_content,
                    created_at=last_at or datetime(2025, 8, 11, 10, 0, tzinfo=UTC),
                    sender=MessageSender(full_name="Someone"),
                )
            )
        return ChatThreadPayload(
            id=thread_id,
            thread_type=thread_type,
            title=title,
            created_at=datetime(2025, 8, 1, 9, 0, tzinfo=UTC),
            participants=participants,
            last_message=last_message,
        )

    return _thread


@pytest.fixture
def linked_parent():
    def _parent(
        parent_id: str,
        name: str,
        students: list[str] | None = None,
        thread_id: str | None = None,
    ) -> LinkedParent:
        return LinkedParent(
            parent_id=parent_id,
            full_name=name,
            linked_students=[LinkedStudent(student_name=s) for s in students or []],
            chat_info=ChatInfo(has_thread=thread_id is not None, thread_id=thread_id),
        )

    return _parent


@pytest.fixture
def principal_record():
    return PrincipalRecord(id="principal-9", full_name="Meera Iyer", role="principal")


@pytest.fixture
def message_payload():
    def _message(
        message_id: str,
        thread_id: str,
        content: str,
        sender_id: str = TEACHER_ID,
        sender_name: str = "Asha Rao",
        created_at: datetime | None = None,
    ) -> ChatMessagePayload:
        return ChatMessagePayload(
            id=message_id,
            thread_id=thread_id,
            sender_id=sender_id,
            content=content,
            status="sent",
            created_at=created_at or datetime(2025, 8, 11, 10, 0, tzinfo=UTC),
            sender=MessageSender(id=sender_id, full_name=sender_name),
        )

    return _message


@pytest.fixture
def fake_service():
    """ChatService double with empty successful responses for every source."""
    service = AsyncMock(spec=ChatService)
    service.get_teacher_linked_parents.return_value = TeacherLinkedParentsData(linked_parents=[])
    service.get_chat_threads.return_value = ChatThreadsData(threads=[])
    service.get_principal_chats.return_value = PrincipalChatsData(threads=[])
    service.get_chat_messages.return_value = ChatMessagesData(messages=[])
    return service


@pytest.fixture
def token_override():
    def _override():
        return TOKEN

    return _override


@pytest.fixture
def apply_token_override(token_override):
    def _apply(app):
        app.dependency_overrides[token_dependency] = token_override

    return _apply
