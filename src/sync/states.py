"""Sync state definitions and transition map.

Every local record moves through this table; only the orchestrator fires
triggers, and only after the corresponding remote call has returned.
"""

from __future__ import annotations

from src.models.enums import SyncStatus

# Transition map: {current_state: {trigger_name: next_state}}
TRANSITIONS: dict[SyncStatus, dict[str, SyncStatus]] = {
    SyncStatus.DRAFT: {
        "create": SyncStatus.PENDING,
        "fail": SyncStatus.ERROR,
    },
    SyncStatus.PENDING: {
        "update": SyncStatus.PENDING,
        "submit": SyncStatus.SUBMITTED,
        "cancel": SyncStatus.CANCELLED,
        "fail": SyncStatus.ERROR,
    },
    SyncStatus.SUBMITTED: {
        "accept": SyncStatus.ACCEPTED,
        "reject": SyncStatus.REJECTED,
        "processing": SyncStatus.SUBMITTED,
        "cancel": SyncStatus.CANCELLED,
        "fail": SyncStatus.ERROR,
    },
    # Recovery: repeat whichever call failed, or learn the outcome by polling.
    SyncStatus.ERROR: {
        "create": SyncStatus.PENDING,
        "update": SyncStatus.PENDING,
        "submit": SyncStatus.SUBMITTED,
        "accept": SyncStatus.ACCEPTED,
        "reject": SyncStatus.REJECTED,
        "processing": SyncStatus.SUBMITTED,
        "fail": SyncStatus.ERROR,
    },
    # A corrected record starts a new submission cycle; a failed correction is an error.
    SyncStatus.REJECTED: {
        "update": SyncStatus.PENDING,
        "fail": SyncStatus.ERROR,
    },
    SyncStatus.ACCEPTED: {},
    SyncStatus.CANCELLED: {},
}

# Outcomes after which polling stops for the current submission cycle.
TERMINAL_STATES: frozenset[SyncStatus] = frozenset(
    {SyncStatus.ACCEPTED, SyncStatus.REJECTED, SyncStatus.CANCELLED}
)

# Remote status vocabulary → trigger. Unknown statuses leave the state alone.
REMOTE_STATUS_TRIGGERS: dict[str, str] = {
    "accepted": "accept",
    "aceptada": "accept",
    "correcto": "accept",
    "rejected": "reject",
    "rechazada": "reject",
    "incorrecto": "reject",
    "sent": "processing",
    "submitted": "processing",
    "processing": "processing",
    "enviada": "processing",
    "cancelled": "cancel",
    "anulada": "cancel",
}
