"""
Message composer.

Guarantees one thread exists for the active counterpart, then sends. The
message returned by the API is stored in the message log (keyed by id); the
draft is cleared on success and kept for retry on failure. Also creates group
threads.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Literal

from schoolchat.chat.contacts import group_contact
from schoolchat.chat.resolver import ContactThreadResolver
from schoolchat.chat.state import ActiveSession, Notifier
from schoolchat.infrastructure.observability.logging import get_logger
from schoolchat.models.api.school_payloads import (
    ChatMessagePayload,
    CheckExistingThreadRequest,
    SendMessageRequest,
    StartConversationRequest,
)
from schoolchat.models.domain.chat_domain import Contact, Message
from schoolchat.models.domain.user_domain import AuthSession
from schoolchat.services.chat_service import ChatService, ChatServiceError, chat_service

logger = get_logger(__name__)

SEND_FAILED_MESSAGE = "Failed to send message"
DEFAULT_GROUP_GREETING = "Hello! Welcome to the group."

SendStatus = Literal["skipped", "sent", "started", "existing", "failed"]
ThreadSubscriber = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class SendOutcome:
    status: SendStatus
    message: Message | None = None
    thread_id: str | None = None
    reason: str | None = None

    @property
    def delivered(self) -> bool:
        return self.status in ("sent", "started")


class MessageComposer:
    """
    Sends the draft of the active chat.

    Args:
        auth: signed-in user and token
        state: shared per-screen state
        resolver: contact list owner, told about adopted threads
        service: chat endpoints
        subscribe: best-effort realtime subscription for adopted threads
        notifier: user-visible notification for send failures
    """

    def __init__(
        self,
        auth: AuthSession,
        state: ActiveSession,
        resolver: ContactThreadResolver,
        service: ChatService | None = None,
        subscribe: ThreadSubscriber | None = None,
        notifier: Notifier | None = None,
    ):
        self.auth = auth
        self.state = state
        self.resolver = resolver
        self.service = service or chat_service
        self.subscribe = subscribe
        self.notifier = notifier

    def _is_active(self, contact_id: str) -> bool:
        active = self.state.active_contact
        return active is not None and active.id == contact_id

    async def send(self, text: str | None = None) -> SendOutcome:
        draft = self.state.pending_outbound_text if text is None else text
        contact = self.state.active_contact

        if not draft or not draft.strip() or contact is None or not self.auth.has_token:
            logger.debug(
                "Cannot send message - missing requirements",
                has_message=bool(draft and draft.strip()),
                has_active_chat=contact is not None,
                has_token=self.auth.has_token,
            )
            return SendOutcome(status="skipped", reason="invalid_input")

        self.state.pending_outbound_text = draft
        thread_id = self.state.current_thread_id

        if not thread_id:
            if not (contact.is_parent or contact.is_principal) or not contact.counterpart_user_id:
                logger.error(
                    "Cannot create conversation: no parent or principal counterpart",
                    contact_id=contact.id,
                    kind=contact.kind,
                )
                return SendOutcome(status="skipped", reason="no_counterpart")

            try:
                existing = await self.service.check_existing_thread(
                    CheckExistingThreadRequest(participants=[contact.counterpart_user_id]),
                    self.auth.token,
                )
            except ChatServiceError as e:
                return self._fail("check existing thread", e)

            if not self.state.mounted:
                return SendOutcome(status="skipped", reason="closed")

            if existing.exists and existing.thread:
                thread_id = existing.thread.id
                logger.info("Found existing thread", thread_id=thread_id, contact_id=contact.id)
                await self._adopt_thread(contact, thread_id)
            else:
                return await self._start_conversation(contact, draft)

        return await self._send_to_thread(contact, thread_id, draft)

    async def _start_conversation(self, contact: Contact, draft: str) -> SendOutcome:
        title = f"Chat with {contact.counterpart_name}"
        if contact.is_principal:
            title = f"{title} (Principal)"

        try:
            started = await self.service.start_conversation(
                StartConversationRequest(
                    participants=[contact.counterpart_user_id],
                    message_content=draft,
                    thread_type="direct",
                    title=title,
                ),
                self.auth.token,
            )
        except ChatServiceError as e:
            return self._fail("start conversation", e)

        if not self.state.mounted:
            return SendOutcome(status="skipped", reason="closed")

        thread_id = started.thread.id
        logger.info("Created thread", thread_id=thread_id, contact_id=contact.id)
        seed = self._seed_message(started.message, thread_id)

        if self._is_active(contact.id):
            if seed is not None:
                # The seed replaces any stale list instead of triggering a refetch
                self.state.messages.replace_all([seed])
            self.state.pending_outbound_text = ""
            self.state.error = None
        await self._adopt_thread(contact, thread_id)
        return SendOutcome(status="started", message=seed, thread_id=thread_id)

    async def _send_to_thread(self, contact: Contact, thread_id: str, draft: str) -> SendOutcome:
        try:
            sent = await self.service.send_message(
                SendMessageRequest(thread_id=thread_id, content=draft), self.auth.token
            )
        except ChatServiceError as e:
            return self._fail("send message", e)

        if not self.state.mounted:
            return SendOutcome(status="skipped", reason="closed")

        message = Message.from_payload(
            sent,
            self.auth.user.id,
            thread_id=thread_id,
            current_user_name=self.auth.user.full_name,
        )
        if self.state.current_thread_id == thread_id:
            self.state.messages.upsert(message)
        if self._is_active(contact.id):
            self.state.pending_outbound_text = ""
            self.state.error = None
        logger.info("Message sent successfully", thread_id=thread_id, message_id=message.id)
        return SendOutcome(status="sent", message=message, thread_id=thread_id)

    async def start_group_conversation(
        self,
        participant_ids: list[str],
        title: str,
        text: str | None = None,
        member_names: list[str] | None = None,
    ) -> SendOutcome:
        """
        Open a group with the given participants, reusing a matching group if one exists.

        A newly created group is merged into the contact list right away; an
        existing group is only reported back by thread id.
        """
        participants = list(dict.fromkeys(p for p in participant_ids if p))
        title = (title or "").strip()
        if not participants or not title or not self.auth.has_token:
            logger.debug(
                "Cannot create group - missing requirements",
                participants=len(participants),
                has_title=bool(title),
                has_token=self.auth.has_token,
            )
            return SendOutcome(status="skipped", reason="invalid_input")

        try:
            existing = await self.service.check_existing_thread(
                CheckExistingThreadRequest(participants=participants, thread_type="group"),
                self.auth.token,
            )
        except ChatServiceError as e:
            return self._fail("check existing group", e)

        if not self.state.mounted:
            return SendOutcome(status="skipped", reason="closed")

        if existing.exists and existing.thread:
            logger.info("Found existing group", thread_id=existing.thread.id)
            return SendOutcome(status="existing", thread_id=existing.thread.id)

        content = (text or "").strip() or DEFAULT_GROUP_GREETING
        try:
            started = await self.service.start_conversation(
                StartConversationRequest(
                    participants=participants,
                    message_content=content,
                    thread_type="group",
                    title=title,
                ),
                self.auth.token,
            )
        except ChatServiceError as e:
            return self._fail("start group", e)

        if not self.state.mounted:
            return SendOutcome(status="skipped", reason="closed")

        thread_id = started.thread.id
        seed = self._seed_message(started.message, thread_id)
        self.resolver.add_contacts(
            [
                group_contact(
                    thread_id,
                    started.thread.title or title,
                    member_names or [],
                    preview=seed.content if seed else None,
                )
            ]
        )
        logger.info("Created group", thread_id=thread_id, participants=len(participants))
        return SendOutcome(status="started", message=seed, thread_id=thread_id)

    def _seed_message(self, payload: ChatMessagePayload | None, thread_id: str) -> Message | None:
        if payload is None:
            logger.info("No message data in start conversation response", thread_id=thread_id)
            return None
        return Message.from_payload(
            payload,
            self.auth.user.id,
            thread_id=thread_id,
            current_user_name=self.auth.user.full_name,
        )

    async def _adopt_thread(self, contact: Contact, thread_id: str) -> None:
        self.resolver.link_thread(contact.id, thread_id)
        # The user may have switched chats while the thread was being resolved
        if not self._is_active(contact.id):
            logger.info("Active chat changed during send", contact_id=contact.id, thread_id=thread_id)
            return

        self.state.current_thread_id = thread_id
        self.state.active_contact = replace(self.state.active_contact, linked_thread_id=thread_id)
        if self.subscribe is not None:
            await self.subscribe(thread_id)

    def _fail(self, operation: str, error: ChatServiceError) -> SendOutcome:
        logger.error(
            "Error sending message",
            operation=operation,
            status_code=error.status_code,
            error=str(error),
        )
        self.state.record_failure(error.status_code)
        if self.state.mounted:
            self.state.error = SEND_FAILED_MESSAGE
            if self.notifier is not None:
                self.notifier(SEND_FAILED_MESSAGE)
        return SendOutcome(status="failed", reason=str(error))
