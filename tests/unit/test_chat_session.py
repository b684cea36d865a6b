import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from schoolchat.chat.realtime import RealtimeError, RealtimeFrame
from schoolchat.chat.session import ChatSession
from schoolchat.models.api.school_payloads import (
    ChatMessagesData,
    ChatThreadsData,
    CheckExistingThreadData,
    DivisionParent,
    DivisionParentsData,
    DivisionStudent,
    DivisionStudentParents,
    ExistingThreadRef,
    MessageSender,
    StartConversationData,
    StartedThread,
    TeacherLinkedParentsData,
)
from schoolchat.models.domain.chat_domain import Thread
from schoolchat.services.chat_service import ChatServiceError

NOW = datetime(2025, 8, 12, 12, 0, tzinfo=UTC)


def _session(auth, service, **kwargs):
    return ChatSession(auth, service=service, now_provider=lambda: NOW, **kwargs)


def _spy_activation(session):
    spy = AsyncMock(wraps=session.activate_contact)
    session.activate_contact = spy
    return spy


@pytest.mark.asyncio
async def test_open_auto_selects_first_direct_contact(
    teacher_auth, fake_service, linked_parent, thread_payload, message_payload
):
    fake_service.get_teacher_linked_parents.return_value = TeacherLinkedParentsData(
        linked_parents=[linked_parent("parent-1", "Ravi", thread_id="thread-1")]
    )
    fake_service.get_chat_messages.return_value = ChatMessagesData(
        messages=[message_payload("m1", "thread-1", "Hello")]
    )
    session = _session(teacher_auth, fake_service)

    await session.open()

    assert session.state.active_contact.id == "parent-1"
    assert session.state.current_thread_id == "thread-1"
    assert [m.id for m in session.timeline().messages] == ["m1"]
    fake_service.get_chat_messages.assert_awaited_once_with("thread-1", "token-123")


@pytest.mark.asyncio
async def test_open_request_waits_for_contacts_then_activates_once(
    teacher_auth, fake_service, linked_parent, thread_payload
):
    fake_service.get_teacher_linked_parents.return_value = TeacherLinkedParentsData(
        linked_parents=[linked_parent("parent-1", "Ravi")]
    )
    fake_service.get_chat_threads.return_value = ChatThreadsData(
        threads=[thread_payload("group-7", [("p2", "parent", "Sara")], thread_type="group")]
    )
    session = _session(teacher_auth, fake_service)
    activation = _spy_activation(session)

    contact = await session.request_contact("group-7")
    assert contact is None
    assert session.state.is_resolving_contact
    assert session.selection.state == "awaiting_contact_list"

    await session.open()

    assert activation.await_count == 1
    assert session.state.active_contact.id == "group-7"
    assert session.selection.state == "resolved"
    assert not session.state.is_resolving_contact
    fake_service.get_chat_messages.assert_awaited_once_with("group-7", "token-123")


@pytest.mark.asyncio
async def test_unknown_request_becomes_unresolvable_without_auto_select(
    teacher_auth, fake_service, linked_parent
):
    fake_service.get_teacher_linked_parents.return_value = TeacherLinkedParentsData(
        linked_parents=[linked_parent("parent-1", "Ravi")]
    )
    session = _session(teacher_auth, fake_service)

    await session.request_contact("nobody")
    await session.open()

    assert session.selection.state == "unresolvable"
    assert session.state.active_contact is None
    assert not session.state.is_resolving_contact


@pytest.mark.asyncio
async def test_request_after_load_resolves_immediately(teacher_auth, fake_service, linked_parent):
    fake_service.get_teacher_linked_parents.return_value = TeacherLinkedParentsData(
        linked_parents=[linked_parent("parent-1", "Ravi"), linked_parent("parent-2", "Sara")]
    )
    session = _session(teacher_auth, fake_service)
    await session.open()
    assert session.state.active_contact.id == "parent-1"

    contact = await session.request_contact("parent-2")

    assert contact.id == "parent-2"
    assert session.state.active_contact.id == "parent-2"


@pytest.mark.asyncio
async def test_select_contact_cancels_pending_request(teacher_auth, fake_service, linked_parent):
    session = _session(teacher_auth, fake_service, auto_select=False)
    session.resolver.apply_linked_parents(
        TeacherLinkedParentsData(linked_parents=[linked_parent("parent-1", "Ravi")])
    )
    session.selection.request("someone-else")

    contact = await session.select_contact("parent-1")

    assert contact.id == "parent-1"
    assert session.selection.state == "idle"
    assert await session.select_contact("missing") is None


@pytest.mark.asyncio
async def test_messages_arriving_after_close_are_dropped(
    teacher_auth, fake_service, linked_parent, message_payload
):
    session = _session(teacher_auth, fake_service, auto_select=False)
    session.resolver.apply_linked_parents(
        TeacherLinkedParentsData(linked_parents=[linked_parent("parent-1", "Ravi", thread_id="thread-1")])
    )

    async def _close_then_answer(*args, **kwargs):
        await session.close()
        return ChatMessagesData(messages=[message_payload("m1", "thread-1", "Late")])

    fake_service.get_chat_messages.side_effect = _close_then_answer

    await session.select_contact("parent-1")

    assert len(session.state.messages) == 0
    assert not session.mounted


@pytest.mark.asyncio
async def test_realtime_frame_for_active_thread_is_upserted(teacher_auth, fake_service, linked_parent):
    session = _session(teacher_auth, fake_service, auto_select=False)
    session.resolver.apply_linked_parents(
        TeacherLinkedParentsData(linked_parents=[linked_parent("parent-1", "Ravi", thread_id="thread-1")])
    )
    await session.select_contact("parent-1")
    frame = RealtimeFrame(
        type="message_received",
        thread_id="thread-1",
        message_id="m9",
        content="Got it",
        sender=MessageSender(id="parent-1", full_name="Ravi"),
        created_at=datetime(2025, 8, 12, 9, 0, tzinfo=UTC),
    )

    await session.handle_realtime_frame(frame)
    await session.handle_realtime_frame(frame)

    assert len(session.state.messages) == 1
    assert not session.state.messages.last().is_own
    contact = session.resolver.get_contact("parent-1")
    assert contact.last_message_preview == "Got it"
    assert contact.last_message_label == "Today"


@pytest.mark.asyncio
async def test_realtime_frame_for_other_thread_counts_unread(teacher_auth, fake_service, linked_parent):
    session = _session(teacher_auth, fake_service, auto_select=False)
    session.resolver.apply_linked_parents(
        TeacherLinkedParentsData(
            linked_parents=[
                linked_parent("parent-1", "Ravi", thread_id="thread-1"),
                linked_parent("parent-2", "Sara", thread_id="thread-2"),
            ]
        )
    )
    await session.select_contact("parent-1")

    await session.handle_realtime_frame(
        RealtimeFrame(
            type="message_received",
            thread_id="thread-2",
            message_id="m1",
            content="Question",
            sender=MessageSender(id="parent-2", full_name="Sara"),
            created_at=datetime(2025, 8, 12, 9, 0, tzinfo=UTC),
        )
    )

    assert session.resolver.get_contact("parent-2").unread_count == 1
    assert len(session.state.messages) == 0

    await session.select_contact("parent-2")

    assert session.resolver.get_contact("parent-2").unread_count == 0


@pytest.mark.asyncio
async def test_realtime_failure_does_not_break_open(teacher_auth, fake_service, linked_parent):
    fake_service.get_teacher_linked_parents.return_value = TeacherLinkedParentsData(
        linked_parents=[linked_parent("parent-1", "Ravi", thread_id="thread-1")]
    )
    realtime = AsyncMock()
    realtime.on_message = lambda callback: None
    realtime.is_connected = lambda: False
    realtime.connect.side_effect = RealtimeError("refused")
    session = _session(teacher_auth, fake_service, realtime=realtime)

    await session.open()

    assert session.state.current_thread_id == "thread-1"
    realtime.subscribe_to_thread.assert_not_awaited()

    await session.close()
    realtime.disconnect.assert_awaited_once()


@pytest.mark.asyncio
async def test_snapshot_reports_loading_and_search(teacher_auth, fake_service, linked_parent):
    session = _session(teacher_auth, fake_service, auto_select=False)
    session.resolver.apply_linked_parents(
        TeacherLinkedParentsData(
            linked_parents=[linked_parent("parent-1", "Ravi", ["Anu"]), linked_parent("parent-2", "Sara")]
        )
    )

    snapshot = session.snapshot("anu")

    assert [c["id"] for c in snapshot["contacts"]] == ["parent-1"]
    assert snapshot["loading"] is True
    assert snapshot["active_contact_id"] is None


@pytest.mark.asyncio
async def test_switching_chats_during_thread_lookup_keeps_new_chat_thread(
    teacher_auth, fake_service, linked_parent, message_payload
):
    session = _session(teacher_auth, fake_service, auto_select=False)
    session.resolver.apply_linked_parents(
        TeacherLinkedParentsData(
            linked_parents=[
                linked_parent("parent-1", "Ravi"),
                linked_parent("parent-2", "Sara", thread_id="thread-2"),
            ]
        )
    )
    fake_service.get_chat_messages.return_value = ChatMessagesData(
        messages=[message_payload("m2", "thread-2", "Earlier", sender_id="parent-2", sender_name="Sara")]
    )
    fake_service.send_message.return_value = message_payload("m1", "thread-1", "hello")
    release = asyncio.Event()

    async def _held_lookup(*args, **kwargs):
        await release.wait()
        return CheckExistingThreadData(exists=True, thread=ExistingThreadRef(id="thread-1"))

    fake_service.check_existing_thread.side_effect = _held_lookup

    await session.select_contact("parent-1")
    sending = asyncio.create_task(session.send("hello"))
    await asyncio.sleep(0)
    await session.select_contact("parent-2")
    release.set()
    outcome = await sending

    assert outcome.status == "sent"
    assert fake_service.send_message.await_args.args[0].thread_id == "thread-1"
    assert session.state.active_contact.id == "parent-2"
    assert session.state.current_thread_id == "thread-2"
    assert [m.id for m in session.state.messages.ordered()] == ["m2"]
    ravi = session.resolver.get_contact("parent-1")
    assert ravi.linked_thread_id == "thread-1"
    assert ravi.last_message_preview == "hello"


@pytest.mark.asyncio
async def test_close_during_subscribe_skips_history_fetch(teacher_auth, fake_service, linked_parent):
    realtime = AsyncMock()
    realtime.on_message = lambda callback: None
    realtime.is_connected = lambda: True
    session = _session(teacher_auth, fake_service, realtime=realtime, auto_select=False)
    session.resolver.apply_linked_parents(
        TeacherLinkedParentsData(linked_parents=[linked_parent("parent-1", "Ravi", thread_id="thread-1")])
    )

    async def _close_on_subscribe(thread_id):
        await session.close()

    realtime.subscribe_to_thread.side_effect = _close_on_subscribe

    await session.select_contact("parent-1")

    fake_service.get_chat_messages.assert_not_awaited()
    assert not session.state.messages_loading
    await session.refresh_messages()
    fake_service.get_chat_messages.assert_not_awaited()


@pytest.mark.asyncio
async def test_participant_matched_thread_tracks_unread_and_preview(
    teacher_auth, fake_service, linked_parent, thread_payload
):
    session = _session(teacher_auth, fake_service, auto_select=False)
    session.resolver.apply_linked_parents(
        TeacherLinkedParentsData(
            linked_parents=[
                linked_parent("parent-1", "Ravi"),
                linked_parent("parent-2", "Sara", thread_id="thread-2"),
            ]
        )
    )
    session.resolver.apply_threads(
        [Thread.from_payload(thread_payload("thread-1", [("parent-1", "parent", "Ravi")], last_content="old"))]
    )
    await session.select_contact("parent-2")

    await session.handle_realtime_frame(
        RealtimeFrame(
            type="message_received",
            thread_id="thread-1",
            message_id="m5",
            content="Question",
            sender=MessageSender(id="parent-1", full_name="Ravi"),
            created_at=datetime(2025, 8, 12, 9, 0, tzinfo=UTC),
        )
    )

    ravi = session.resolver.get_contact("parent-1")
    assert ravi.unread_count == 1
    assert ravi.last_message_preview == "Question"

    await session.select_contact("parent-1")

    assert session.resolver.get_contact("parent-1").linked_thread_id == "thread-1"
    assert session.state.active_contact.linked_thread_id == "thread-1"
    assert session.state.current_thread_id == "thread-1"


@pytest.mark.asyncio
async def test_request_keeps_waiting_while_loaded_list_is_empty(teacher_auth, fake_service):
    session = _session(teacher_auth, fake_service)

    await session.request_contact("parent-1")
    await session.open()

    assert session.resolver.fully_loaded
    assert session.selection.state == "awaiting_contact_list"
    assert session.state.is_resolving_contact


@pytest.mark.asyncio
async def test_start_group_activates_group_found_after_refresh(
    teacher_auth, fake_service, linked_parent, thread_payload
):
    session = _session(teacher_auth, fake_service, auto_select=False)
    session.resolver.apply_linked_parents(
        TeacherLinkedParentsData(
            linked_parents=[linked_parent("parent-1", "Ravi"), linked_parent("parent-2", "Sara")]
        )
    )
    fake_service.check_existing_thread.return_value = CheckExistingThreadData(
        exists=True, thread=ExistingThreadRef(id="group-3")
    )
    fake_service.get_chat_threads.return_value = ChatThreadsData(
        threads=[
            thread_payload(
                "group-3",
                [("parent-1", "parent", "Ravi"), ("parent-2", "parent", "Sara")],
                thread_type="group",
            )
        ]
    )

    outcome = await session.start_group(["parent-1", "parent-2"], "Sports day")

    assert outcome.status == "existing"
    fake_service.get_chat_threads.assert_awaited_once_with("token-123")
    assert session.state.active_contact.id == "group-3"
    assert session.state.current_thread_id == "group-3"
    fake_service.get_chat_messages.assert_awaited_once_with("group-3", "token-123")


@pytest.mark.asyncio
async def test_division_parents_name_new_group_members(teacher_auth, fake_service):
    session = _session(teacher_auth, fake_service, auto_select=False)
    fake_service.get_division_parents.return_value = DivisionParentsData(
        class_division_id="div-5b",
        students=[
            DivisionStudentParents(
                student=DivisionStudent(id="s1", name="Anu"),
                parents=[DivisionParent(id="parent-7", name="Kiran")],
            ),
            DivisionStudentParents(
                student=DivisionStudent(id="s2", name="Dev"),
                parents=[DivisionParent(id="parent-7", name="Kiran"), DivisionParent(id="parent-8", name="Lata")],
            ),
        ],
    )
    fake_service.check_existing_thread.return_value = CheckExistingThreadData(exists=False)
    fake_service.start_conversation.return_value = StartConversationData(thread=StartedThread(id="G2"))

    parents = await session.division_parents("div-5b")
    outcome = await session.start_group([p.id for p in parents], "Parents of 5B", "Hello everyone")

    assert [p.id for p in parents] == ["parent-7", "parent-8"]
    assert outcome.status == "started"
    assert session.state.active_contact.id == "G2"
    assert session.state.active_contact.group_members == ["Kiran", "Lata"]
    fake_service.get_chat_threads.assert_not_awaited()


@pytest.mark.asyncio
async def test_unauthorized_load_marks_token_rejected(teacher_auth, fake_service):
    fake_service.get_chat_threads.side_effect = ChatServiceError("Authentication required", status_code=401)
    session = _session(teacher_auth, fake_service)

    await session.open()

    assert session.state.auth_rejected
