"""
Per-screen chat state shared by the resolver, the composer and the session.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from schoolchat.chat.timeline import MessageLog
from schoolchat.models.domain.chat_domain import Contact

Notifier = Callable[[str], None]
UpdateHook = Callable[[], Awaitable[None]]


@dataclass
class ActiveSession:
    """Ephemeral state of one open chat view."""

    active_contact: Contact | None = None
    current_thread_id: str | None = None
    pending_outbound_text: str = ""
    is_resolving_contact: bool = False
    error: str | None = None
    messages: MessageLog = field(default_factory=MessageLog)
    messages_loading: bool = False
    mounted: bool = True
    auth_rejected: bool = False

    def reset_conversation(self) -> None:
        """Forget the open conversation without touching the contact list."""
        self.active_contact = None
        self.current_thread_id = None
        self.messages.clear()

    def record_failure(self, status_code: int | None) -> None:
        """Remember that the API rejected the token; the session is then discarded."""
        if status_code == 401:
            self.auth_rejected = True
