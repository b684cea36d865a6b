"""
Chat session: the state of one open chat screen.

Wires the resolver, the composer, the pending-selection state machine and the
optional realtime channel together. After close() no pending coroutine
mutates session state.
"""

from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from schoolchat.chat.composer import MessageComposer, SendOutcome
from schoolchat.chat.contacts import filter_contacts
from schoolchat.chat.formatting import day_label
from schoolchat.chat.realtime import RealtimeChannel, RealtimeError, RealtimeFrame
from schoolchat.chat.resolver import ContactThreadResolver
from schoolchat.chat.selection import PendingSelection
from schoolchat.chat.state import ActiveSession, Notifier
from schoolchat.chat.timeline import Timeline, build_timeline
from schoolchat.infrastructure.observability.logging import get_logger
from schoolchat.models.api.school_payloads import ChatMessagePayload, DivisionParent, MessageSender
from schoolchat.models.domain.chat_domain import Contact, Message
from schoolchat.models.domain.user_domain import AuthSession
from schoolchat.services.chat_service import ChatService, ChatServiceError, chat_service

logger = get_logger(__name__)


class ChatSession:
    """
    View-model of the chat screen.

    Args:
        auth: signed-in user and token, injected instead of read from context
        service: chat endpoints
        realtime: optional realtime channel; absence degrades to refresh-on-reopen
        notifier: called with user-visible error text (toast)
        auto_select: activate the first direct contact when nothing is selected
        now_provider: clock used for day labels
    """

    def __init__(
        self,
        auth: AuthSession,
        service: ChatService | None = None,
        realtime: RealtimeChannel | None = None,
        notifier: Notifier | None = None,
        auto_select: bool = True,
        now_provider: Callable[[], datetime] | None = None,
    ):
        self.auth = auth
        self.service = service or chat_service
        self.realtime = realtime
        self.auto_select = auto_select
        self.now_provider = now_provider
        self.state = ActiveSession()
        self._parent_names: dict[str, str] = {}
        self.selection = PendingSelection()
        self.resolver = ContactThreadResolver(
            auth,
            self.state,
            service=self.service,
            on_update=self._on_contacts_updated,
            now_provider=now_provider,
        )
        self.composer = MessageComposer(
            auth,
            self.state,
            self.resolver,
            service=self.service,
            subscribe=self._subscribe,
            notifier=notifier,
        )

        if self.realtime is not None:
            self.realtime.on_message(self.handle_realtime_frame)

    # =================================================================
    # LIFECYCLE
    # =================================================================

    @property
    def mounted(self) -> bool:
        return self.state.mounted

    @property
    def loading(self) -> bool:
        return self.resolver.loading

    @property
    def contacts(self) -> list[Contact]:
        return self.resolver.contacts

    async def open(self) -> None:
        """Connect the realtime channel (best-effort) and load contacts."""
        if self.realtime is not None:
            try:
                await self.realtime.connect()
            except RealtimeError as e:
                logger.warning("Chat will work without real-time updates", error=str(e))

        await self.resolver.load()

    async def close(self) -> None:
        """Tear down the view. Later completions of in-flight calls are dropped."""
        self.state.mounted = False
        self.state.is_resolving_contact = False
        self.selection.cancel()
        if self.realtime is not None:
            await self.realtime.disconnect()
        logger.debug("Chat session closed", user_id=self.auth.user.id)

    # =================================================================
    # SELECTION
    # =================================================================

    async def request_contact(self, target_id: str) -> Contact | None:
        """
        Open the chat for a contact requested from elsewhere in the app.

        The contact list may still be loading; the request then waits and is
        retried as sources arrive.
        """
        if not self.mounted:
            return None

        self.state.is_resolving_contact = True
        self.state.reset_conversation()
        self.selection.request(target_id)
        return await self._evaluate_selection()

    async def select_contact(self, contact_id: str) -> Contact | None:
        """A contact clicked in the list. Cancels any pending external request."""
        contact = self.resolver.get_contact(contact_id)
        if contact is None:
            return None
        self.selection.cancel()
        if self.state.active_contact is not None and self.state.active_contact.id == contact.id:
            return self.state.active_contact
        await self.activate_contact(contact)
        return contact

    async def activate_contact(self, contact: Contact) -> None:
        if not self.mounted:
            return

        self.state.active_contact = contact
        self.state.is_resolving_contact = False
        self.state.error = None
        if contact.unread_count:
            contact = replace(contact, unread_count=0)
            self.state.active_contact = contact
            self.resolver.update_contact(contact)

        resolution = self.resolver.resolve_thread(contact)
        if not resolution.found:
            logger.debug("No existing thread found", contact_id=contact.id)
            self.state.current_thread_id = None
            self.state.messages.clear()
            return

        logger.debug(
            "Opening thread", contact_id=contact.id, thread_id=resolution.thread_id, rule=resolution.rule
        )
        if resolution.rule != "linked":
            self.resolver.link_thread(contact.id, resolution.thread_id)
            self.state.active_contact = replace(contact, linked_thread_id=resolution.thread_id)
        if self.state.current_thread_id != resolution.thread_id:
            self.state.messages.clear()
        self.state.current_thread_id = resolution.thread_id
        await self._subscribe(resolution.thread_id)
        if not self.mounted:
            return
        await self.refresh_messages()

    async def _on_contacts_updated(self) -> None:
        if not self.mounted:
            return

        contact = await self._evaluate_selection()
        if contact is not None or not self.mounted:
            return

        if self.auto_select and not self.selection.blocks_auto_select and self.state.active_contact is None:
            first = self._first_auto_select_contact()
            if first is not None:
                logger.debug("Auto-selecting first contact", contact_id=first.id)
                await self.activate_contact(first)

    async def _evaluate_selection(self) -> Contact | None:
        # An empty list may still be filled by a refresh, so keep waiting
        contact = self.selection.evaluate(
            self.resolver.find_contact,
            fully_loaded=self.resolver.fully_loaded and bool(self.resolver.contacts),
            has_active_contact=self.state.active_contact is not None,
        )
        if contact is not None:
            await self.activate_contact(contact)
        elif self.selection.state == "unresolvable":
            self.state.is_resolving_contact = False
        return contact

    def _first_auto_select_contact(self) -> Contact | None:
        for contact in self.resolver.contacts:
            if not contact.is_group:
                return contact
        if self.auth.user.is_admin_or_principal and self.resolver.contacts:
            return self.resolver.contacts[0]
        return None

    # =================================================================
    # MESSAGES
    # =================================================================

    def set_draft(self, text: str) -> None:
        self.state.pending_outbound_text = text

    async def send(self, text: str | None = None) -> SendOutcome:
        outcome = await self.composer.send(text)
        if outcome.delivered and outcome.message is not None and self.mounted:
            self._update_preview(outcome.thread_id, outcome.message)
        return outcome

    async def refresh_messages(self) -> None:
        """Fetch the full history of the current thread."""
        if not self.mounted:
            return
        thread_id = self.state.current_thread_id
        if not thread_id or not self.auth.has_token:
            self.state.messages.clear()
            return

        self.state.messages_loading = True
        try:
            data = await self.service.get_chat_messages(thread_id, self.auth.token)
        except ChatServiceError as e:
            logger.error("Chat messages fetch error", thread_id=thread_id, error=str(e))
            self.state.record_failure(e.status_code)
            if self.mounted and self.state.current_thread_id == thread_id:
                self.state.messages_loading = False
            return

        # The view may have closed or switched threads while the fetch ran
        if not self.mounted or self.state.current_thread_id != thread_id:
            return

        self.state.messages.replace_all(
            [
                Message.from_payload(m, self.auth.user.id, thread_id=thread_id)
                for m in data.messages
            ]
        )
        self.state.messages_loading = False
        last = self.state.messages.last()
        if last is not None:
            self._update_preview(thread_id, last)

    async def refresh_threads(self) -> None:
        await self.resolver.refresh_threads()

    async def division_parents(self, division_id: str) -> list[DivisionParent]:
        """
        Parents of one class division, for picking group members.

        Raises:
            ChatServiceError: if the division cannot be loaded
        """
        try:
            data = await self.service.get_division_parents(division_id, self.auth.token)
        except ChatServiceError as e:
            self.state.record_failure(e.status_code)
            raise
        parents = data.unique_parents()
        for parent in parents:
            self._parent_names[parent.id] = parent.name
        return parents

    async def start_group(
        self, participant_ids: list[str], title: str, text: str | None = None
    ) -> SendOutcome:
        """Create (or reopen) a group chat and make it the active conversation."""
        names = []
        for participant_id in participant_ids:
            contact = self.resolver.get_contact(participant_id)
            name = contact.counterpart_name if contact else self._parent_names.get(participant_id)
            if name:
                names.append(name)

        outcome = await self.composer.start_group_conversation(
            participant_ids, title, text, member_names=names
        )
        if outcome.thread_id is None or not self.mounted:
            return outcome

        contact = self.resolver.contact_for_thread(outcome.thread_id)
        if contact is None:
            await self.resolver.refresh_threads()
            if not self.mounted:
                return outcome
            contact = self.resolver.contact_for_thread(outcome.thread_id)
        if contact is not None:
            self.selection.cancel()
            await self.activate_contact(contact)
        return outcome

    def timeline(self) -> Timeline:
        now = self.now_provider() if self.now_provider else None
        return build_timeline(self.state.messages.ordered(), now=now)

    def visible_contacts(self, search_term: str = "") -> list[Contact]:
        return filter_contacts(self.resolver.contacts, search_term)

    # =================================================================
    # REALTIME
    # =================================================================

    async def _subscribe(self, thread_id: str) -> None:
        if self.realtime is None or not self.realtime.is_connected():
            return
        try:
            await self.realtime.subscribe_to_thread(thread_id)
            logger.debug("Subscribed to thread", thread_id=thread_id)
        except RealtimeError as e:
            logger.warning("Thread subscription failed", thread_id=thread_id, error=str(e))

    async def handle_realtime_frame(self, frame: RealtimeFrame) -> None:
        """Append pushed messages; a message seen before overwrites its earlier copy."""
        if not self.mounted or frame.type != "message_received" or not frame.thread_id:
            return

        created_at = frame.created_at or datetime.now(UTC)
        sender = frame.sender or MessageSender(full_name="Unknown")
        message_id = frame.message_id or f"{frame.thread_id}:{sender.full_name}:{created_at.isoformat()}"
        message = Message.from_payload(
            ChatMessagePayload(
                id=message_id,
                thread_id=frame.thread_id,
                sender_id=frame.sender_id or sender.id,
                content=frame.content or "",
                status="delivered",
                created_at=created_at,
                sender=sender,
            ),
            self.auth.user.id,
            thread_id=frame.thread_id,
        )

        if frame.thread_id == self.state.current_thread_id:
            self.state.messages.upsert(message)
        else:
            contact = self.resolver.contact_for_thread(frame.thread_id)
            if contact is not None and not message.is_own:
                self.resolver.update_contact(replace(contact, unread_count=contact.unread_count + 1))
        self._update_preview(frame.thread_id, message)

    def _update_preview(self, thread_id: str | None, message: Message) -> None:
        if not thread_id:
            return
        now = self.now_provider() if self.now_provider else None
        contact = self.resolver.contact_for_thread(thread_id)
        if contact is None:
            return
        self.resolver.update_contact(
            replace(
                contact,
                last_message_preview=message.content,
                last_message_label=day_label(message.created_at, now=now),
            )
        )

    # =================================================================
    # RENDERING
    # =================================================================

    def snapshot(self, search_term: str = "") -> dict[str, Any]:
        active = self.state.active_contact
        return {
            "contacts": [c.to_dict() for c in self.visible_contacts(search_term)],
            "active_contact_id": active.id if active else None,
            "current_thread_id": self.state.current_thread_id,
            "loading": self.loading,
            "is_resolving_contact": self.state.is_resolving_contact,
            "source_status": dict(self.resolver.source_status),
            "error": self.state.error,
        }
