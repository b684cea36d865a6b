"""
Pending resolution of an external "open chat with X" request.

The contact list may still be loading when the request arrives, so the
request waits in AWAITING_CONTACT_LIST and is re-evaluated every time a
contact source lands. Transitions are driven by data arrival only.

    IDLE --request--> AWAITING_CONTACT_LIST --found--> RESOLVED
                                            --all sources loaded--> UNRESOLVABLE
"""

from collections.abc import Callable
from typing import Literal

from schoolchat.infrastructure.observability.logging import get_logger
from schoolchat.models.domain.chat_domain import Contact

logger = get_logger(__name__)

SelectionState = Literal["idle", "awaiting_contact_list", "resolved", "unresolvable"]

IDLE: SelectionState = "idle"
AWAITING_CONTACT_LIST: SelectionState = "awaiting_contact_list"
RESOLVED: SelectionState = "resolved"
UNRESOLVABLE: SelectionState = "unresolvable"

ContactFinder = Callable[[str], Contact | None]


class PendingSelection:
    def __init__(self):
        self.state: SelectionState = IDLE
        self.target_id: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.state == AWAITING_CONTACT_LIST

    @property
    def blocks_auto_select(self) -> bool:
        """An external request, even a failed one, owns the selection."""
        return self.state != IDLE

    def request(self, target_id: str) -> None:
        self.target_id = target_id
        self.state = AWAITING_CONTACT_LIST
        logger.debug("Contact selection requested", target_id=target_id)

    def cancel(self) -> None:
        self.state = IDLE
        self.target_id = None

    def evaluate(
        self,
        find: ContactFinder,
        fully_loaded: bool,
        has_active_contact: bool,
    ) -> Contact | None:
        """
        Try to resolve the pending request.

        Returns the contact to activate, at most once per request.
        """
        if self.state != AWAITING_CONTACT_LIST or self.target_id is None:
            return None
        if has_active_contact:
            return None

        contact = find(self.target_id)
        if contact is not None:
            self.state = RESOLVED
            logger.info("Contact selection resolved", target_id=self.target_id, contact_id=contact.id)
            return contact

        if fully_loaded:
            self.state = UNRESOLVABLE
            logger.warning("Selected contact not found in contacts", target_id=self.target_id)

        return None
