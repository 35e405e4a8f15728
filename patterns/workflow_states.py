"""Enum-based workflow state machine pattern.

Defines workflow states as Python enums with explicit transition validation.
The state definitions are independent of whatever executes them.

Domain: one delivery-estimate request. It moves forward through a single
pass (no retries) and always ends in exactly one terminal state.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# State definitions
# ---------------------------------------------------------------------------

class EstimateState(str, Enum):
    """Delivery-estimate request states."""

    RECEIVED = "received"
    ADMITTED = "admitted"
    VALIDATED = "validated"
    RULES_FETCHED = "rules_fetched"
    DEFAULT_LOOKUP = "default_lookup"
    # Terminal
    RATE_LIMITED = "rate_limited"
    INVALID = "invalid"
    FETCH_FAILED = "fetch_failed"
    MATCHED = "matched"
    SHOP_DEFAULT = "shop_default"
    GENERIC_FALLBACK = "generic_fallback"
    NO_RULES_FOUND = "no_rules_found"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Transition rules
# ---------------------------------------------------------------------------

# FAILED (uncaught exception) is reachable from every non-terminal state.
_ESTIMATE_TRANSITIONS: dict[EstimateState, list[EstimateState]] = {
    EstimateState.RECEIVED: [
        EstimateState.ADMITTED,
        EstimateState.RATE_LIMITED,
        EstimateState.INVALID,  # wrong method
        EstimateState.FAILED,
    ],
    EstimateState.ADMITTED: [EstimateState.VALIDATED, EstimateState.INVALID, EstimateState.FAILED],
    EstimateState.VALIDATED: [
        EstimateState.RULES_FETCHED,
        EstimateState.FETCH_FAILED,
        EstimateState.DEFAULT_LOOKUP,  # no shop: nothing to fetch
        EstimateState.FAILED,
    ],
    EstimateState.RULES_FETCHED: [
        EstimateState.MATCHED,
        EstimateState.DEFAULT_LOOKUP,
        EstimateState.FAILED,
    ],
    EstimateState.DEFAULT_LOOKUP: [
        EstimateState.SHOP_DEFAULT,
        EstimateState.GENERIC_FALLBACK,
        EstimateState.NO_RULES_FOUND,
        EstimateState.FAILED,
    ],
    EstimateState.RATE_LIMITED: [],
    EstimateState.INVALID: [],
    EstimateState.FETCH_FAILED: [],
    EstimateState.MATCHED: [],
    EstimateState.SHOP_DEFAULT: [],
    EstimateState.GENERIC_FALLBACK: [],
    EstimateState.NO_RULES_FOUND: [],
    EstimateState.FAILED: [],
}


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

@dataclass
class WorkflowTransition:
    """Record of a single state transition."""

    from_state: str
    to_state: str
    timestamp: datetime
    actor: str = "system"
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class WorkflowInstance:
    """A running workflow instance with state tracking.

    Usage::

        wf = WorkflowInstance(workflow_id=request_id)
        wf.transition(EstimateState.ADMITTED, actor="rate_limiter")
        wf.transition(EstimateState.VALIDATED, actor="validator")
    """

    workflow_id: str
    current_state: EstimateState = EstimateState.RECEIVED
    history: list[WorkflowTransition] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def can_transition(self, to_state: EstimateState) -> bool:
        """Check if a transition is allowed from the current state."""
        allowed = _ESTIMATE_TRANSITIONS.get(self.current_state, [])
        return to_state in allowed

    def transition(
        self,
        to_state: EstimateState,
        actor: str = "system",
        metadata: dict[str, Any] | None = None,
    ) -> WorkflowTransition:
        """Execute a state transition.

        Raises ValueError if the transition is not allowed.
        """
        if not self.can_transition(to_state):
            allowed = _ESTIMATE_TRANSITIONS.get(self.current_state, [])
            allowed_names = [s.value for s in allowed]
            raise ValueError(
                f"Cannot transition from {self.current_state.value} to {to_state.value}. "
                f"Allowed: {allowed_names}"
            )

        record = WorkflowTransition(
            from_state=self.current_state.value,
            to_state=to_state.value,
            timestamp=datetime.now(timezone.utc),
            actor=actor,
            metadata=metadata or {},
        )
        self.history.append(record)
        self.current_state = to_state
        return record

    @property
    def is_terminal(self) -> bool:
        """Check if the workflow is in a terminal state."""
        return len(_ESTIMATE_TRANSITIONS.get(self.current_state, [])) == 0

    @property
    def path(self) -> list[str]:
        """States visited, starting state included."""
        if not self.history:
            return [self.current_state.value]
        return [self.history[0].from_state] + [t.to_state for t in self.history]
