"""Gerrit stream-events records.

The stream carries one JSON object per line, each with a ``type``
discriminant. ``Event`` keeps the whole record as a read-only payload and
exposes typed views over the fields consumers usually dispatch on.

See https://gerrit-review.googlesource.com/Documentation/cmd-stream-events.html
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any


class EventType(StrEnum):
    """Event kinds emitted by ``gerrit stream-events``."""

    ASSIGNEE_CHANGED = "assignee-changed"
    CHANGE_ABANDONED = "change-abandoned"
    CHANGE_DELETED = "change-deleted"
    CHANGE_MERGED = "change-merged"
    CHANGE_RESTORED = "change-restored"
    COMMENT_ADDED = "comment-added"
    DROPPED_OUTPUT = "dropped-output"
    HASHTAGS_CHANGED = "hashtags-changed"
    PROJECT_CREATED = "project-created"
    PATCHSET_CREATED = "patchset-created"
    REF_UPDATED = "ref-updated"
    REVIEWER_ADDED = "reviewer-added"
    REVIEWER_DELETED = "reviewer-deleted"
    TOPIC_CHANGED = "topic-changed"
    WIP_STATE_CHANGED = "wip-state-changed"
    PRIVATE_STATE_CHANGED = "private-state-changed"
    VOTE_DELETED = "vote-deleted"


# Field naming the account responsible for each event kind.
_ACTOR_FIELDS: dict[str, str] = {
    EventType.ASSIGNEE_CHANGED: "changer",
    EventType.CHANGE_ABANDONED: "abandoner",
    EventType.CHANGE_DELETED: "deleter",
    EventType.CHANGE_MERGED: "submitter",
    EventType.CHANGE_RESTORED: "restorer",
    EventType.COMMENT_ADDED: "author",
    EventType.HASHTAGS_CHANGED: "editor",
    EventType.PATCHSET_CREATED: "uploader",
    EventType.REF_UPDATED: "submitter",
    EventType.REVIEWER_ADDED: "adder",
    EventType.REVIEWER_DELETED: "remover",
    EventType.TOPIC_CHANGED: "changer",
    EventType.WIP_STATE_CHANGED: "changer",
    EventType.PRIVATE_STATE_CHANGED: "changer",
    EventType.VOTE_DELETED: "remover",
}


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# =============================================================================
# Schema records
# =============================================================================


@dataclass(frozen=True, slots=True)
class Account:
    name: str | None = None
    email: str | None = None
    username: str | None = None

    @classmethod
    def from_json(cls, data: Any) -> Account | None:
        data = _mapping(data)
        if not data:
            return None
        return cls(name=data.get("name"), email=data.get("email"), username=data.get("username"))


@dataclass(frozen=True, slots=True)
class Approval:
    type: str
    value: str
    description: str | None = None
    old_value: str | None = None
    granted_on: int | None = None
    by: Account | None = None

    @classmethod
    def from_json(cls, data: Any) -> Approval:
        data = _mapping(data)
        return cls(
            type=str(data.get("type", "")),
            value=str(data.get("value", "")),
            description=data.get("description"),
            old_value=data.get("oldValue"),
            granted_on=_int(data.get("grantedOn")),
            by=Account.from_json(data.get("by")),
        )


@dataclass(frozen=True, slots=True)
class PatchSet:
    number: int | None = None
    revision: str | None = None
    ref: str | None = None
    parents: tuple[str, ...] = ()
    uploader: Account | None = None
    author: Account | None = None
    created_on: int | None = None
    kind: str | None = None
    size_insertions: int | None = None
    size_deletions: int | None = None

    @classmethod
    def from_json(cls, data: Any) -> PatchSet | None:
        data = _mapping(data)
        if not data:
            return None
        return cls(
            number=_int(data.get("number")),
            revision=data.get("revision"),
            ref=data.get("ref"),
            parents=tuple(data.get("parents") or ()),
            uploader=Account.from_json(data.get("uploader")),
            author=Account.from_json(data.get("author")),
            created_on=_int(data.get("createdOn")),
            kind=data.get("kind"),
            size_insertions=_int(data.get("sizeInsertions")),
            size_deletions=_int(data.get("sizeDeletions")),
        )


@dataclass(frozen=True, slots=True)
class Change:
    project: str
    branch: str
    id: str | None = None
    number: int | None = None
    subject: str | None = None
    topic: str | None = None
    owner: Account | None = None
    url: str | None = None
    status: str | None = None
    open: bool | None = None
    wip: bool = False
    private: bool = False
    created_on: int | None = None
    last_updated: int | None = None

    @classmethod
    def from_json(cls, data: Any) -> Change | None:
        data = _mapping(data)
        if not data:
            return None
        return cls(
            project=str(data.get("project", "")),
            branch=str(data.get("branch", "")),
            id=data.get("id"),
            number=_int(data.get("number")),
            subject=data.get("subject"),
            topic=data.get("topic"),
            owner=Account.from_json(data.get("owner")),
            url=data.get("url"),
            status=data.get("status"),
            open=data.get("open"),
            wip=bool(data.get("wip", False)),
            private=bool(data.get("private", False)),
            created_on=_int(data.get("createdOn")),
            last_updated=_int(data.get("lastUpdated")),
        )


@dataclass(frozen=True, slots=True)
class RefUpdate:
    project: str
    ref_name: str
    old_rev: str | None = None
    new_rev: str | None = None

    @classmethod
    def from_json(cls, data: Any) -> RefUpdate | None:
        data = _mapping(data)
        if not data:
            return None
        return cls(
            project=str(data.get("project", "")),
            ref_name=str(data.get("refName", "")),
            old_rev=data.get("oldRev"),
            new_rev=data.get("newRev"),
        )


# =============================================================================
# Event
# =============================================================================


@dataclass(frozen=True, slots=True)
class Event:
    """One decoded stream record.

    Events compare by the whole payload but hash on ``(type, created_on)``,
    because the payload mapping itself is unhashable. Equal events always
    hash equal, so events can be deduplicated in sets.

    Attributes:
        type: Event kind discriminant, e.g. ``"patchset-created"``.
        payload: Entire decoded record (read-only).
    """

    type: str
    payload: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.payload, MappingProxyType):
            object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    def __hash__(self) -> int:
        return hash((self.type, self.created_on))

    @property
    def known(self) -> bool:
        return self.type in EventType

    @property
    def created_on(self) -> int | None:
        return _int(self.payload.get("eventCreatedOn"))

    @property
    def change(self) -> Change | None:
        return Change.from_json(self.payload.get("change"))

    @property
    def patch_set(self) -> PatchSet | None:
        return PatchSet.from_json(self.payload.get("patchSet"))

    @property
    def ref_update(self) -> RefUpdate | None:
        return RefUpdate.from_json(self.payload.get("refUpdate"))

    @property
    def approvals(self) -> tuple[Approval, ...]:
        return tuple(Approval.from_json(a) for a in self.payload.get("approvals") or ())

    @property
    def account(self) -> Account | None:
        """Account that triggered the event, if the kind defines one."""
        actor = _ACTOR_FIELDS.get(self.type)
        return Account.from_json(self.payload.get(actor)) if actor else None

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)


def parse_event(data: Mapping[str, Any]) -> Event:
    """Build an Event from a decoded JSON object.

    Raises:
        ValueError: If the discriminant is missing or not a string.
    """
    match data.get("type"):
        case str(kind) if kind:
            return Event(type=kind, payload=data)
        case None:
            raise ValueError("missing 'type' field")
        case other:
            raise ValueError(f"invalid 'type' field: {other!r}")
