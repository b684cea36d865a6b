"""
Contact/Thread resolver.

Loads the contact sources concurrently, merges them into one ordered contact
list, keeps the authoritative thread directory and answers "which thread backs
this contact". Each source fails on its own and only logs.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from schoolchat.chat.contacts import (
    find_contact,
    link_thread,
    merge_contacts,
    parents_to_contacts,
    principal_to_contact,
    refresh_previews,
    threads_to_contacts,
)
from schoolchat.chat.state import ActiveSession, UpdateHook
from schoolchat.config import settings
from schoolchat.infrastructure.observability.logging import get_logger
from schoolchat.models.api.school_payloads import PrincipalChatsParams, TeacherLinkedParentsData
from schoolchat.models.domain.chat_domain import Contact, Thread
from schoolchat.models.domain.user_domain import AuthSession
from schoolchat.services.chat_service import ChatService, ChatServiceError, chat_service

logger = get_logger(__name__)

SourceStatus = Literal["pending", "loaded", "failed"]

LINKED_PARENTS_SOURCE = "linked_parents"
THREADS_SOURCE = "threads"
PRINCIPAL_CHATS_SOURCE = "principal_chats"

ResolutionRule = Literal["linked", "parent_participant", "principal_participant"]


class ThreadDirectory:
    """Authoritative thread collection, in API order."""

    def __init__(self, threads: list[Thread] | None = None):
        self._threads: dict[str, Thread] = {}
        self.replace(threads or [])

    def __len__(self) -> int:
        return len(self._threads)

    def __iter__(self):
        return iter(list(self._threads.values()))

    def replace(self, threads: list[Thread]) -> None:
        self._threads = {thread.id: thread for thread in threads}

    def get(self, thread_id: str) -> Thread | None:
        return self._threads.get(thread_id)

    def find_by_participant(self, user_id: str) -> Thread | None:
        """Scan for a thread that includes the user. First match wins."""
        matches = [t for t in self._threads.values() if t.has_participant(user_id)]
        if len(matches) > 1:
            logger.warning(
                "Multiple threads found for one counterpart",
                user_id=user_id,
                thread_ids=[t.id for t in matches],
            )
        return matches[0] if matches else None


@dataclass(frozen=True)
class ThreadResolution:
    thread_id: str | None
    thread: Thread | None = None
    rule: ResolutionRule | None = None

    @property
    def found(self) -> bool:
        return self.thread_id is not None


class ContactThreadResolver:
    """
    Builds and owns the contact list for one chat session.

    Args:
        auth: signed-in user and token
        state: shared per-screen state (checked for the mounted flag)
        service: chat endpoints
        on_update: awaited after every change to the contact list
        now_provider: clock used for preview labels
    """

    def __init__(
        self,
        auth: AuthSession,
        state: ActiveSession,
        service: ChatService | None = None,
        on_update: UpdateHook | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ):
        self.auth = auth
        self.state = state
        self.service = service or chat_service
        self.on_update = on_update
        self.now_provider = now_provider
        self.contacts: list[Contact] = []
        self.threads = ThreadDirectory()
        self.source_status: dict[str, SourceStatus] = {
            source: "pending" for source in self.sources()
        }

    def sources(self) -> list[str]:
        if self.auth.user.is_admin_or_principal:
            return [PRINCIPAL_CHATS_SOURCE]
        return [LINKED_PARENTS_SOURCE, THREADS_SOURCE]

    @property
    def loading(self) -> bool:
        return any(status == "pending" for status in self.source_status.values())

    @property
    def fully_loaded(self) -> bool:
        return not self.loading

    def _now(self) -> datetime | None:
        return self.now_provider() if self.now_provider else None

    # =================================================================
    # LOADING
    # =================================================================

    async def load(self) -> None:
        """Fetch every source concurrently. Never raises for source failures."""
        if not self.auth.has_token:
            logger.info("No authentication token available, skipping contact load")
            for source in self.source_status:
                self.source_status[source] = "failed"
            await self._notify()
            return

        if self.auth.user.is_admin_or_principal:
            await self.load_principal_chats()
            return

        await asyncio.gather(self.load_linked_parents(), self.load_threads())

    async def load_linked_parents(self) -> None:
        try:
            data = await self.service.get_teacher_linked_parents(self.auth.token, self.auth.user.id)
        except ChatServiceError as e:
            logger.error("Error fetching teacher-linked parents", error=str(e))
            self.state.record_failure(e.status_code)
            await self._finish_source(LINKED_PARENTS_SOURCE, "failed")
            return

        if not self.state.mounted:
            return
        self.apply_linked_parents(data)
        await self._finish_source(LINKED_PARENTS_SOURCE, "loaded")

    async def load_threads(self) -> None:
        try:
            data = await self.service.get_chat_threads(self.auth.token)
        except ChatServiceError as e:
            logger.error("Error fetching chat threads", error=str(e))
            self.state.record_failure(e.status_code)
            await self._finish_source(THREADS_SOURCE, "failed")
            return

        if not self.state.mounted:
            return
        self.apply_threads([Thread.from_payload(t) for t in data.threads])
        await self._finish_source(THREADS_SOURCE, "loaded")

    async def load_principal_chats(self, params: PrincipalChatsParams | None = None) -> None:
        params = params or PrincipalChatsParams(limit=settings.PRINCIPAL_CHATS_PAGE_SIZE)
        try:
            data = await self.service.get_principal_chats(self.auth.token, params)
        except ChatServiceError as e:
            logger.error("Error fetching principal chats", error=str(e))
            self.state.record_failure(e.status_code)
            await self._finish_source(PRINCIPAL_CHATS_SOURCE, "failed")
            return

        if not self.state.mounted:
            return
        normalized = [t.to_thread_payload() for t in data.threads]
        self.apply_threads([Thread.from_payload(t) for t in normalized if t is not None])
        await self._finish_source(PRINCIPAL_CHATS_SOURCE, "loaded")

    async def refresh_threads(self) -> None:
        """Re-fetch the thread source; merges new contacts and refreshes previews."""
        if self.auth.user.is_admin_or_principal:
            await self.load_principal_chats()
        else:
            await self.load_threads()

    async def _finish_source(self, source: str, status: SourceStatus) -> None:
        if not self.state.mounted:
            return
        self.source_status[source] = status
        await self._notify()

    async def _notify(self) -> None:
        if self.on_update and self.state.mounted:
            await self.on_update()

    # =================================================================
    # MERGING
    # =================================================================

    def apply_linked_parents(self, data: TeacherLinkedParentsData) -> list[Contact]:
        incoming = parents_to_contacts(data.linked_parents)
        if data.principal:
            incoming = [principal_to_contact(data.principal), *incoming]
        self.contacts = merge_contacts(self.contacts, incoming)
        logger.debug("Merged linked parents", contacts=len(self.contacts))
        return self.contacts

    def apply_threads(self, threads: list[Thread]) -> list[Contact]:
        self.threads.replace(threads)
        incoming = threads_to_contacts(threads, self.auth.user.id)
        before = len(self.contacts)
        self.contacts = merge_contacts(self.contacts, incoming)
        backing = {}
        for contact in self.contacts:
            resolution = self.resolve_thread(contact)
            if resolution.thread is not None:
                backing[contact.id] = resolution.thread
        self.contacts = refresh_previews(self.contacts, backing, now=self._now())
        logger.debug(
            "Merged chat threads",
            threads=len(threads),
            new_contacts=len(self.contacts) - before,
            contacts=len(self.contacts),
        )
        return self.contacts

    def link_thread(self, contact_id: str, thread_id: str) -> None:
        self.contacts = link_thread(self.contacts, contact_id, thread_id)

    def update_contact(self, contact: Contact) -> None:
        self.contacts = [contact if c.id == contact.id else c for c in self.contacts]

    def get_contact(self, contact_id: str) -> Contact | None:
        for contact in self.contacts:
            if contact.id == contact_id:
                return contact
        return None

    def find_contact(self, target_id: str) -> Contact | None:
        return find_contact(
            self.contacts, target_id, match_teacher=self.auth.user.is_admin_or_principal
        )

    def add_contacts(self, incoming: list[Contact]) -> None:
        self.contacts = merge_contacts(self.contacts, incoming)

    def contact_for_thread(self, thread_id: str) -> Contact | None:
        for contact in self.contacts:
            if contact.linked_thread_id == thread_id:
                return contact
        # Parents and the principal can be backed by a thread matched only by participant
        for contact in self.contacts:
            if contact.linked_thread_id is None and self.resolve_thread(contact).thread_id == thread_id:
                return contact
        return None

    # =================================================================
    # RESOLUTION
    # =================================================================

    def resolve_thread(self, contact: Contact) -> ThreadResolution:
        """
        Find the thread backing a contact.

        Precedence: the contact's linked thread id, then a participant scan for
        parents, then a participant scan for the principal.
        """
        if contact.linked_thread_id:
            return ThreadResolution(
                thread_id=contact.linked_thread_id,
                thread=self.threads.get(contact.linked_thread_id),
                rule="linked",
            )

        if contact.is_parent and contact.associated_parent:
            thread = self.threads.find_by_participant(contact.associated_parent.parent_id)
            if thread:
                return ThreadResolution(thread_id=thread.id, thread=thread, rule="parent_participant")

        elif contact.is_principal and contact.associated_principal:
            thread = self.threads.find_by_participant(contact.associated_principal.id)
            if thread:
                return ThreadResolution(thread_id=thread.id, thread=thread, rule="principal_participant")

        return ThreadResolution(thread_id=None)
