"""
Entity lifecycle state machine.

Transition table:

    action              from                to
    submitForApproval   draft               pending
    approve             pending             published
    reject              pending             draft
    archive             published           archived
    restore             archived, draft     draft
    delete              any but deleted     deleted

The table only answers "is this legal"; privilege checks (approve/reject
need a superadmin, submitForApproval needs the owning org) and the storage
side effects live in store.entity_store.

Invariants:
    - deleted is terminal
    - Every action has exactly one target status

How to change safely:
    - A new action needs a target status and a row for every legal source
    - Clients render allowed_actions(); keep action wire names stable
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .store.types import Entity, EntityStatus


class TransitionAction(Enum):
    """Lifecycle actions, by wire name."""

    SUBMIT_FOR_APPROVAL = "submitForApproval"
    APPROVE = "approve"
    REJECT = "reject"
    ARCHIVE = "archive"
    RESTORE = "restore"
    DELETE = "delete"


TARGET_STATUS: dict[TransitionAction, EntityStatus] = {
    TransitionAction.SUBMIT_FOR_APPROVAL: EntityStatus.PENDING,
    TransitionAction.APPROVE: EntityStatus.PUBLISHED,
    TransitionAction.REJECT: EntityStatus.DRAFT,
    TransitionAction.ARCHIVE: EntityStatus.ARCHIVED,
    TransitionAction.RESTORE: EntityStatus.DRAFT,
    TransitionAction.DELETE: EntityStatus.DELETED,
}

_TRANSITIONS: dict[EntityStatus, tuple[TransitionAction, ...]] = {
    EntityStatus.DRAFT: (
        TransitionAction.SUBMIT_FOR_APPROVAL,
        TransitionAction.RESTORE,
        TransitionAction.DELETE,
    ),
    EntityStatus.PENDING: (
        TransitionAction.APPROVE,
        TransitionAction.REJECT,
        TransitionAction.DELETE,
    ),
    EntityStatus.PUBLISHED: (
        TransitionAction.ARCHIVE,
        TransitionAction.DELETE,
    ),
    EntityStatus.ARCHIVED: (
        TransitionAction.RESTORE,
        TransitionAction.DELETE,
    ),
    EntityStatus.DELETED: (),
}

# Actions only a superadmin may perform
PRIVILEGED_ACTIONS = frozenset({TransitionAction.APPROVE, TransitionAction.REJECT})


class TransitionTable:
    """Answers which lifecycle actions are legal from a status."""

    def is_valid_transition(self, status: EntityStatus, action: TransitionAction) -> bool:
        return action in _TRANSITIONS.get(status, ())

    def allowed_actions(self, status: EntityStatus) -> list[TransitionAction]:
        return list(_TRANSITIONS.get(status, ()))

    def target_status(self, action: TransitionAction) -> EntityStatus:
        return TARGET_STATUS[action]


def parse_action(value: str | TransitionAction) -> TransitionAction:
    """Action from its wire name.

    Raises:
        ValueError: For an unknown action name
    """
    if isinstance(value, TransitionAction):
        return value
    try:
        return TransitionAction(value)
    except ValueError:
        names = ", ".join(a.value for a in TransitionAction)
        raise ValueError(f"Unknown action '{value}'. Must be one of: {names}")


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a lifecycle action.

    Attributes:
        entity: The newly written version
        from_status: Status before the action
        to_status: Status after the action
        action: Action performed
        feedback: Reviewer feedback for approve/reject
    """

    entity: Entity
    from_status: EntityStatus
    to_status: EntityStatus
    action: TransitionAction
    feedback: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity.to_dict(),
            "fromStatus": self.from_status.value,
            "toStatus": self.to_status.value,
            "action": self.action.value,
            "feedback": self.feedback,
        }
