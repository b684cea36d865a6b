"""
Message list of the active thread and its rendered timeline.

Messages are keyed by server id, so a message delivered twice (send response,
refetch, realtime push) replaces the earlier copy instead of being appended.
"""

from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, Literal

from schoolchat.chat.formatting import day_label, display_timezone, format_time, is_same_day
from schoolchat.models.domain.chat_domain import Message


@dataclass(frozen=True)
class DaySeparator:
    label: str
    date: str
    kind: Literal["separator"] = "separator"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "label": self.label, "date": self.date}


@dataclass(frozen=True)
class MessageEntry:
    message: Message
    time_label: str
    kind: Literal["message"] = "message"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "time_label": self.time_label, **self.message.to_dict()}


TimelineEntry = DaySeparator | MessageEntry


@dataclass(frozen=True)
class Timeline:
    header_label: str | None
    entries: list[TimelineEntry]

    @property
    def messages(self) -> list[Message]:
        return [e.message for e in self.entries if isinstance(e, MessageEntry)]

    @property
    def separators(self) -> list[DaySeparator]:
        return [e for e in self.entries if isinstance(e, DaySeparator)]


class MessageLog:
    """Messages of one thread, keyed by message id."""

    def __init__(self, messages: list[Message] | None = None):
        self._by_id: dict[str, Message] = {}
        for message in messages or []:
            self.upsert(message)

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._by_id

    def upsert(self, message: Message) -> bool:
        """Store a message. Returns True when it was not known before."""
        is_new = message.id not in self._by_id
        self._by_id[message.id] = message
        return is_new

    def replace_all(self, messages: list[Message]) -> None:
        self._by_id = {}
        for message in messages:
            self.upsert(message)

    def clear(self) -> None:
        self._by_id = {}

    def ordered(self) -> list[Message]:
        # sorted() is stable, so ties keep arrival order
        return sorted(self._by_id.values(), key=lambda m: m.created_at)

    def last(self) -> Message | None:
        ordered = self.ordered()
        return ordered[-1] if ordered else None


def build_timeline(
    messages: list[Message],
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> Timeline:
    """
    Sort messages by created_at and insert a day separator wherever the
    calendar day changes between consecutive messages.

    The first message's day is not preceded by a separator; it is returned as
    `header_label` for the sticky header instead.
    """
    zone = tz or display_timezone()
    ordered = sorted(messages, key=lambda m: m.created_at)
    entries: list[TimelineEntry] = []
    previous = None

    for message in ordered:
        local = message.created_at.astimezone(zone)
        if previous is not None and not is_same_day(previous.created_at, message.created_at, tz=zone):
            entries.append(
                DaySeparator(label=day_label(local, now=now, tz=zone), date=local.date().isoformat())
            )
        entries.append(MessageEntry(message=message, time_label=format_time(local, zone)))
        previous = message

    header_label = day_label(ordered[0].created_at, now=now, tz=zone) if ordered else None
    return Timeline(header_label=header_label, entries=entries)
