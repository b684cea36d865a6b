"""
Contact list construction.

Turns the three contact sources (teacher-linked parents, the principal record
and the user's chat threads) into Contact objects and merges them into one
de-duplicated, display-ordered list.
"""

from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime

from schoolchat.chat.formatting import day_label, format_date
from schoolchat.models.api.school_payloads import LinkedParent, PrincipalRecord
from schoolchat.models.domain.chat_domain import (
    PRINCIPAL_CONTACT_PREFIX,
    Contact,
    ParentRef,
    PrincipalRef,
    TeacherRef,
    Thread,
)

NO_MESSAGES_PREVIEW = "No messages yet"
PREVIOUS_CONVERSATION_PREVIEW = "Previous conversation available"
PRINCIPAL_PREVIEW = "Available for administrative discussions"
GROUP_NAME_LIMIT = 2


def principal_contact_id(principal_id: str) -> str:
    return f"{PRINCIPAL_CONTACT_PREFIX}{principal_id}"


def parents_to_contacts(parents: Iterable[LinkedParent]) -> list[Contact]:
    contacts = []
    for parent in parents:
        student_names = tuple(s.student_name for s in parent.linked_students if s.student_name)
        chat_info = parent.chat_info
        display_name = parent.full_name
        if student_names:
            display_name = f"{parent.full_name} (Parent of {', '.join(student_names)})"
        contacts.append(
            Contact(
                id=parent.parent_id,
                display_name=display_name,
                kind="individual-parent",
                last_message_preview=PREVIOUS_CONVERSATION_PREVIEW
                if chat_info.has_thread
                else NO_MESSAGES_PREVIEW,
                last_message_label=format_date(chat_info.updated_at) if chat_info.updated_at else "New",
                linked_thread_id=chat_info.thread_id if chat_info.has_thread else None,
                associated_parent=ParentRef(
                    parent_id=parent.parent_id,
                    full_name=parent.full_name,
                    linked_students=student_names,
                ),
            )
        )
    return contacts


def principal_to_contact(principal: PrincipalRecord) -> Contact:
    return Contact(
        id=principal_contact_id(principal.id),
        display_name=f"{principal.full_name} (Principal)",
        kind="principal",
        last_message_preview=PRINCIPAL_PREVIEW,
        last_message_label="Always",
        associated_principal=PrincipalRef(
            id=principal.id, full_name=principal.full_name, role=principal.role
        ),
    )


def _group_display_name(member_names: list[str], title: str) -> str:
    if not member_names:
        return title
    if len(member_names) <= GROUP_NAME_LIMIT:
        return ", ".join(member_names)
    return f"{', '.join(member_names[:GROUP_NAME_LIMIT])} …"


def thread_to_contact(thread: Thread, current_user_id: str | None) -> Contact:
    """
    Build the contact for one thread.

    Direct threads with a parent or the principal get the same id those people
    have in the linked-parents feed, so the id-based merge keeps one contact
    per counterpart. Groups and other direct threads use the thread id.
    """
    others = thread.other_participants(current_user_id)
    last = thread.last_message
    preview = last.content if last else NO_MESSAGES_PREVIEW
    label_source = last.created_at if last and last.created_at else thread.created_at
    label = format_date(label_source) if label_source else ""

    common = {
        "last_message_preview": preview,
        "last_message_label": label,
        "linked_thread_id": thread.id,
    }

    if thread.is_group or not others:
        member_names = [p.name for p in others if p.name]
        return Contact(
            id=thread.id,
            display_name=_group_display_name(member_names, thread.title),
            kind="group",
            group_members=member_names,
            **common,
        )

    counterpart = others[0]
    display_name = counterpart.name or thread.title

    if counterpart.role == "parent":
        return Contact(
            id=counterpart.user_id,
            display_name=display_name,
            kind="individual-parent",
            associated_parent=ParentRef(parent_id=counterpart.user_id, full_name=counterpart.name),
            **common,
        )

    if counterpart.role in ("principal", "admin"):
        return Contact(
            id=principal_contact_id(counterpart.user_id),
            display_name=display_name,
            kind="principal",
            associated_principal=PrincipalRef(
                id=counterpart.user_id, full_name=counterpart.name, role=counterpart.role
            ),
            **common,
        )

    return Contact(
        id=thread.id,
        display_name=display_name,
        kind="teacher",
        associated_teacher=TeacherRef(teacher_id=counterpart.user_id, full_name=counterpart.name),
        **common,
    )


def group_contact(
    thread_id: str, title: str, member_names: list[str], preview: str | None = None
) -> Contact:
    """Contact for a group created in this session, before the thread list is refetched."""
    return Contact(
        id=thread_id,
        display_name=_group_display_name(member_names, title),
        kind="group",
        last_message_preview=preview or NO_MESSAGES_PREVIEW,
        last_message_label="New",
        linked_thread_id=thread_id,
        group_members=member_names,
    )


def threads_to_contacts(threads: Iterable[Thread], current_user_id: str | None) -> list[Contact]:
    return [thread_to_contact(thread, current_user_id) for thread in threads]


def principal_first(contacts: list[Contact]) -> list[Contact]:
    """Stable partition: principal contacts first, everything else in order."""
    return [c for c in contacts if c.is_principal] + [c for c in contacts if not c.is_principal]


def merge_contacts(existing: list[Contact], incoming: Iterable[Contact]) -> list[Contact]:
    """
    Append incoming contacts whose id is not already present.

    Existing contacts keep their position and data. Running the same merge
    again is a no-op, so it is safe to re-run whenever a source updates.
    """
    seen = {c.id for c in existing}
    merged = list(existing)
    for contact in incoming:
        if contact.id in seen:
            continue
        seen.add(contact.id)
        merged.append(contact)
    return principal_first(merged)


def refresh_previews(
    contacts: list[Contact],
    threads_by_contact: dict[str, Thread],
    now: datetime | None = None,
) -> list[Contact]:
    """
    Recompute previews from the authoritative threads without reordering.

    `threads_by_contact` maps contact ids to the thread backing them, linked or
    matched by participant.
    """
    refreshed = []
    for contact in contacts:
        thread = threads_by_contact.get(contact.id)
        last = thread.last_message if thread else None
        if last is None:
            refreshed.append(contact)
            continue
        refreshed.append(
            replace(
                contact,
                last_message_preview=last.content,
                last_message_label=day_label(last.created_at, now=now)
                if last.created_at
                else contact.last_message_label,
            )
        )
    return refreshed


def link_thread(contacts: list[Contact], contact_id: str, thread_id: str) -> list[Contact]:
    """Attach a newly resolved or created thread to a contact."""
    return [
        replace(c, linked_thread_id=thread_id) if c.id == contact_id else c for c in contacts
    ]


def contact_matches_target(contact: Contact, target_id: str, match_teacher: bool = False) -> bool:
    """Whether an external "open chat with X" id refers to this contact."""
    if contact.id == target_id or contact.linked_thread_id == target_id:
        return True
    if contact.associated_parent and contact.associated_parent.parent_id == target_id:
        return True
    if match_teacher and contact.associated_teacher:
        return contact.associated_teacher.teacher_id == target_id
    return False


def find_contact(
    contacts: Iterable[Contact], target_id: str, match_teacher: bool = False
) -> Contact | None:
    contacts = list(contacts)
    for contact in contacts:
        if contact_matches_target(contact, target_id):
            return contact
    if match_teacher:
        for contact in contacts:
            if contact_matches_target(contact, target_id, match_teacher=True):
                return contact
    return None


def filter_contacts(contacts: Iterable[Contact], search_term: str) -> list[Contact]:
    """Case-insensitive search over names, linked students and group members."""
    term = (search_term or "").strip().lower()
    contacts = list(contacts)
    if not term:
        return contacts

    def matches(contact: Contact) -> bool:
        if term in contact.display_name.lower():
            return True
        if contact.associated_parent:
            parent = contact.associated_parent
            return term in parent.full_name.lower() or any(
                term in name.lower() for name in parent.linked_students
            )
        if contact.group_members:
            return any(term in member.lower() for member in contact.group_members)
        if contact.associated_principal:
            return term in contact.associated_principal.full_name.lower()
        return False

    return [c for c in contacts if matches(c)]
