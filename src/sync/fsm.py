"""Finite state machine for a record's synchronization lifecycle.

The FSM validates transitions and emits state-change events.
Remote responses never set a status directly — only the FSM does.
"""

from __future__ import annotations

import logging

from src.events.bus import emit
from src.models.enums import EntityKind, SyncStatus
from src.schemas.events import EventType, SystemEvent
from src.sync.states import TERMINAL_STATES, TRANSITIONS

logger = logging.getLogger(__name__)


class InvalidTransitionError(ValueError):
    """Trigger not allowed from the record's current sync status."""


class SyncFSM:
    """Manages sync status transitions for a single record."""

    def __init__(
        self,
        kind: EntityKind,
        entity_id: str,
        initial_state: SyncStatus = SyncStatus.DRAFT,
    ) -> None:
        self.kind = kind
        self.entity_id = entity_id
        self.current_state = initial_state

    def can_transition(self, trigger: str) -> bool:
        return trigger in TRANSITIONS.get(self.current_state, {})

    def get_valid_triggers(self) -> list[str]:
        return list(TRANSITIONS.get(self.current_state, {}).keys())

    def ensure_can_transition(self, trigger: str) -> None:
        """Raise before any remote call is attempted.

        Raises:
            InvalidTransitionError: If the trigger is not valid from the current state.
        """
        if not self.can_transition(trigger):
            msg = (
                f"Invalid transition: {self.current_state.value} --{trigger}--> ??? "
                f"(valid: {self.get_valid_triggers()})"
            )
            raise InvalidTransitionError(msg)

    async def transition(self, trigger: str) -> SyncStatus:
        """Execute a state transition and return the new state."""
        self.ensure_can_transition(trigger)
        old_state = self.current_state
        self.current_state = TRANSITIONS[old_state][trigger]

        logger.info(
            "Sync transition: %s --%s--> %s (%s=%s)",
            old_state.value,
            trigger,
            self.current_state.value,
            self.kind.value,
            self.entity_id,
        )

        if old_state is not self.current_state:
            await emit(SystemEvent(
                event_type=EventType.SYNC_STATE_CHANGED,
                entity_kind=self.kind.value,
                entity_id=self.entity_id,
                data={
                    "from_state": old_state.value,
                    "to_state": self.current_state.value,
                    "trigger": trigger,
                },
                source_module="sync.fsm",
            ))

        return self.current_state

    @property
    def is_terminal(self) -> bool:
        return self.current_state in TERMINAL_STATES
