from unittest.mock import AsyncMock, MagicMock

import pytest

from schoolchat.chat.contacts import principal_contact_id
from schoolchat.chat.resolver import ContactThreadResolver, ThreadDirectory
from schoolchat.chat.state import ActiveSession
from schoolchat.models.api.school_payloads import (
    ChatThreadsData,
    PrincipalChatParticipants,
    PrincipalChatsData,
    PrincipalChatThread,
    TeacherLinkedParentsData,
)
from schoolchat.models.domain.chat_domain import Thread
from schoolchat.models.domain.user_domain import AuthSession
from schoolchat.services.chat_service import ChatServiceError


def _resolver(auth, service, on_update=None):
    return ContactThreadResolver(auth, ActiveSession(), service=service, on_update=on_update)


@pytest.mark.asyncio
async def test_load_merges_sources_principal_first(
    teacher_auth, fake_service, linked_parent, principal_record, thread_payload
):
    fake_service.get_teacher_linked_parents.return_value = TeacherLinkedParentsData(
        linked_parents=[linked_parent("parent-1", "Ravi", ["Anu"])],
        principal=principal_record,
    )
    fake_service.get_chat_threads.return_value = ChatThreadsData(
        threads=[
            thread_payload("thread-1", [("parent-1", "parent", "Ravi")], last_content="Hello"),
            thread_payload("group-1", [("p2", "parent", "Sara")], thread_type="group"),
        ]
    )
    on_update = AsyncMock()
    resolver = _resolver(teacher_auth, fake_service, on_update)

    await resolver.load()

    assert [c.id for c in resolver.contacts] == [
        principal_contact_id("principal-9"),
        "parent-1",
        "group-1",
    ]
    assert resolver.fully_loaded
    assert resolver.source_status == {"linked_parents": "loaded", "threads": "loaded"}
    assert len(resolver.threads) == 2
    assert on_update.await_count == 2
    fake_service.get_teacher_linked_parents.assert_awaited_once_with("token-123", "teacher-1")


@pytest.mark.asyncio
async def test_failed_source_does_not_block_others(teacher_auth, fake_service, linked_parent):
    fake_service.get_teacher_linked_parents.return_value = TeacherLinkedParentsData(
        linked_parents=[linked_parent("parent-1", "Ravi")]
    )
    fake_service.get_chat_threads.side_effect = ChatServiceError("boom", status_code=500)
    resolver = _resolver(teacher_auth, fake_service)

    await resolver.load()

    assert [c.id for c in resolver.contacts] == ["parent-1"]
    assert resolver.source_status["threads"] == "failed"
    assert not resolver.loading


@pytest.mark.asyncio
async def test_load_without_token_marks_sources_failed(fake_service, teacher_auth):
    auth = AuthSession(user=teacher_auth.user, token=None)
    resolver = _resolver(auth, fake_service)

    await resolver.load()

    assert set(resolver.source_status.values()) == {"failed"}
    assert fake_service.mock_calls == []


@pytest.mark.asyncio
async def test_principal_viewer_uses_principal_chats_feed(principal_auth, fake_service, participant):
    fake_service.get_principal_chats.return_value = PrincipalChatsData(
        threads=[
            PrincipalChatThread(
                thread_id="thread-5",
                title="Fees",
                participants=PrincipalChatParticipants(
                    all=[
                        participant("principal-user-1", "principal", "Meera Iyer"),
                        participant("teacher-2", "teacher", "Omar"),
                    ]
                ),
            )
        ]
    )
    resolver = _resolver(principal_auth, fake_service)

    await resolver.load()

    assert resolver.sources() == ["principal_chats"]
    assert [c.id for c in resolver.contacts] == ["thread-5"]
    assert resolver.find_contact("teacher-2").id == "thread-5"
    fake_service.get_teacher_linked_parents.assert_not_awaited()
    fake_service.get_chat_threads.assert_not_awaited()


def test_linked_thread_wins_without_participant_scan(teacher_auth, fake_service, linked_parent, thread_payload):
    resolver = _resolver(teacher_auth, fake_service)
    resolver.apply_linked_parents(
        TeacherLinkedParentsData(linked_parents=[linked_parent("parent-1", "Ravi", thread_id="thread-1")])
    )
    resolver.apply_threads(
        [Thread.from_payload(thread_payload("thread-1", [("parent-1", "parent", "Ravi")]))]
    )
    resolver.threads.find_by_participant = MagicMock()

    resolution = resolver.resolve_thread(resolver.get_contact("parent-1"))

    assert resolution.thread_id == "thread-1"
    assert resolution.rule == "linked"
    resolver.threads.find_by_participant.assert_not_called()


def test_parent_without_linked_thread_found_by_participant(
    teacher_auth, fake_service, linked_parent, thread_payload
):
    resolver = _resolver(teacher_auth, fake_service)
    resolver.apply_linked_parents(
        TeacherLinkedParentsData(linked_parents=[linked_parent("parent-1", "Ravi")])
    )
    resolver.apply_threads(
        [Thread.from_payload(thread_payload("thread-1", [("parent-1", "parent", "Ravi")]))]
    )

    resolution = resolver.resolve_thread(resolver.get_contact("parent-1"))

    assert resolution.thread_id == "thread-1"
    assert resolution.rule == "parent_participant"


def test_principal_found_by_participant(teacher_auth, fake_service, principal_record, thread_payload):
    resolver = _resolver(teacher_auth, fake_service)
    resolver.apply_linked_parents(
        TeacherLinkedParentsData(linked_parents=[], principal=principal_record)
    )
    resolver.threads.replace(
        [Thread.from_payload(thread_payload("thread-8", [("principal-9", "principal", "Meera")]))]
    )

    resolution = resolver.resolve_thread(resolver.get_contact(principal_contact_id("principal-9")))

    assert resolution.thread_id == "thread-8"
    assert resolution.rule == "principal_participant"


def test_unresolved_contact_has_no_thread(teacher_auth, fake_service, linked_parent):
    resolver = _resolver(teacher_auth, fake_service)
    resolver.apply_linked_parents(
        TeacherLinkedParentsData(linked_parents=[linked_parent("parent-1", "Ravi")])
    )

    resolution = resolver.resolve_thread(resolver.get_contact("parent-1"))

    assert not resolution.found


def test_duplicate_threads_first_match_wins(thread_payload):
    directory = ThreadDirectory(
        [
            Thread.from_payload(thread_payload("thread-a", [("parent-1", "parent", "Ravi")])),
            Thread.from_payload(thread_payload("thread-b", [("parent-1", "parent", "Ravi")])),
        ]
    )

    assert directory.find_by_participant("parent-1").id == "thread-a"
    assert directory.find_by_participant("nobody") is None


@pytest.mark.asyncio
async def test_results_after_unmount_are_dropped(teacher_auth, fake_service, linked_parent):
    state = ActiveSession()
    resolver = ContactThreadResolver(teacher_auth, state, service=fake_service)

    async def _unmount_then_answer(*args, **kwargs):
        state.mounted = False
        return TeacherLinkedParentsData(linked_parents=[linked_parent("parent-1", "Ravi")])

    fake_service.get_teacher_linked_parents.side_effect = _unmount_then_answer

    await resolver.load()

    assert resolver.contacts == []
    assert resolver.source_status["linked_parents"] == "pending"


def test_thread_update_refreshes_preview_of_matched_parent(
    teacher_auth, fake_service, linked_parent, thread_payload
):
    resolver = _resolver(teacher_auth, fake_service)
    resolver.apply_linked_parents(
        TeacherLinkedParentsData(linked_parents=[linked_parent("parent-1", "Ravi", ["Anu"])])
    )

    resolver.apply_threads(
        [
            Thread.from_payload(
                thread_payload("thread-1", [("parent-1", "parent", "Ravi")], last_content="Noted")
            )
        ]
    )

    contact = resolver.get_contact("parent-1")
    assert contact.last_message_preview == "Noted"
    assert contact.display_name == "Ravi (Parent of Anu)"


def test_contact_for_thread_prefers_linked_then_participant_match(
    teacher_auth, fake_service, linked_parent, thread_payload
):
    resolver = _resolver(teacher_auth, fake_service)
    resolver.apply_linked_parents(
        TeacherLinkedParentsData(
            linked_parents=[
                linked_parent("parent-1", "Ravi"),
                linked_parent("parent-2", "Sara", thread_id="thread-2"),
            ]
        )
    )
    resolver.apply_threads(
        [Thread.from_payload(thread_payload("thread-1", [("parent-1", "parent", "Ravi")]))]
    )

    assert resolver.contact_for_thread("thread-2").id == "parent-2"
    assert resolver.contact_for_thread("thread-1").id == "parent-1"
    assert resolver.contact_for_thread("thread-9") is None
