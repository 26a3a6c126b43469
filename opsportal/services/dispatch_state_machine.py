"""
Branch Sub-Dispatch State Machine

All status changes of a branch sub-dispatch go through this module.
The forward flow is pending -> packing -> packed -> dispatched -> received;
any non-terminal status may be flagged as an issue, and only the resolve
operation takes a branch back out of the issue state.
"""

from typing import Optional, List, Dict
from datetime import datetime, timezone

from opsportal.models.dispatch import DispatchStatus
from opsportal.schemas.dispatch import BranchDispatch
from opsportal.services.dispatch_errors import InvalidTransitionError


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: current_status -> [list of allowed next statuses]
DISPATCH_TRANSITIONS: Dict[str, List[str]] = {
    DispatchStatus.PENDING.value: [
        DispatchStatus.PACKING.value,     # Kitchen starts packing
        DispatchStatus.ISSUE.value,
    ],
    DispatchStatus.PACKING.value: [
        DispatchStatus.PACKED.value,      # Packing signed off
        DispatchStatus.ISSUE.value,
    ],
    DispatchStatus.PACKED.value: [
        DispatchStatus.DISPATCHED.value,  # Loaded and sent
        DispatchStatus.ISSUE.value,
    ],
    DispatchStatus.DISPATCHED.value: [
        DispatchStatus.RECEIVED.value,    # Branch confirms receipt
        DispatchStatus.ISSUE.value,
    ],
    DispatchStatus.RECEIVED.value: [],    # Terminal
    DispatchStatus.ISSUE.value: [],       # Left only through resolve
}

# Forward order; a move to a lower rank is reported as going backward
STATUS_ORDER: Dict[str, int] = {
    DispatchStatus.PENDING.value: 0,
    DispatchStatus.PACKING.value: 1,
    DispatchStatus.PACKED.value: 2,
    DispatchStatus.DISPATCHED.value: 3,
    DispatchStatus.RECEIVED.value: 4,
}

TRANSITION_ACTIONS: Dict[tuple, str] = {
    (DispatchStatus.PENDING.value, DispatchStatus.PACKING.value): "Start Packing",
    (DispatchStatus.PACKING.value, DispatchStatus.PACKED.value): "Complete Packing",
    (DispatchStatus.PACKED.value, DispatchStatus.DISPATCHED.value): "Dispatch",
    (DispatchStatus.DISPATCHED.value, DispatchStatus.RECEIVED.value): "Confirm Receipt",
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _value(status) -> str:
    return status.value if isinstance(status, DispatchStatus) else str(status)


def parse_status(value: str) -> DispatchStatus:
    """Convert a client-supplied status string; raises ValueError when unknown."""
    return DispatchStatus(str(value).strip().lower())


def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return _value(new_status) in DISPATCH_TRANSITIONS.get(_value(current_status), [])


def get_allowed_transitions(current_status: str) -> List[str]:
    """Get list of statuses that can be transitioned to from current status."""
    return list(DISPATCH_TRANSITIONS.get(_value(current_status), []))


def get_transition_action(current_status: str, new_status: str) -> str:
    current, new = _value(current_status), _value(new_status)
    if new == DispatchStatus.ISSUE.value:
        return "Flag Issue"
    return TRANSITION_ACTIONS.get((current, new), f"{current} -> {new}")


def can_receive_new_items(status) -> bool:
    """Late items may only join a branch that has not finished packing."""
    return _value(status) in (DispatchStatus.PENDING.value, DispatchStatus.PACKING.value)


def is_terminal(status) -> bool:
    return _value(status) == DispatchStatus.RECEIVED.value


def is_flagged(status) -> bool:
    return _value(status) == DispatchStatus.ISSUE.value


def is_backward(current_status, new_status) -> bool:
    """True when both statuses are on the forward flow and new comes earlier."""
    current, new = _value(current_status), _value(new_status)
    if current not in STATUS_ORDER or new not in STATUS_ORDER:
        return False
    return STATUS_ORDER[new] < STATUS_ORDER[current]


def validate_transition(current_status: str, new_status: str) -> None:
    """
    Validate a status transition. Raises InvalidTransitionError if invalid.
    A same-status write is a progress save and always allowed.
    """
    current, new = _value(current_status), _value(new_status)
    if current == new:
        return

    if not can_transition(current, new):
        allowed = get_allowed_transitions(current)
        if is_flagged(current):
            message = "Branch dispatch is flagged with an issue. Resolve the issue before continuing."
        elif is_terminal(current):
            message = f"Branch dispatch in '{current}' status cannot change status. This is a terminal state."
        elif is_backward(current, new):
            message = (
                f"Branch dispatch cannot move back from '{current}' to '{new}'. "
                f"Allowed transitions: {', '.join(allowed)}"
            )
        else:
            message = (
                f"Cannot change branch dispatch from '{current}' to '{new}'. "
                f"Allowed transitions: {', '.join(allowed)}"
            )
        raise InvalidTransitionError(message, current, new, allowed)


# =============================================================================
# REQUIRED DATA
# =============================================================================

def _missing_quantities(branch: BranchDispatch, field: str) -> List[str]:
    return [
        item.name for item in branch.items
        if getattr(item, field) is None and item.issue is None
    ]


def validate_required_data(branch: BranchDispatch, new_status: str, strict: bool = False) -> None:
    """
    Check that a branch carries what the target status needs.

    packed requires the packer's name and received the receiver's name.
    With strict reconciliation every item must also have the matching
    quantity recorded or an issue flagged.
    """
    new = _value(new_status)
    current = _value(branch.status)

    if new == DispatchStatus.PACKED.value:
        if not (branch.packed_by or "").strip():
            raise InvalidTransitionError("Packer name is required to complete packing", current, new)
        if strict:
            missing = _missing_quantities(branch, "packed_qty")
            if missing:
                raise InvalidTransitionError(
                    f"Packed quantity or issue required for: {', '.join(missing)}", current, new
                )

    elif new == DispatchStatus.RECEIVED.value:
        if not (branch.received_by or "").strip():
            raise InvalidTransitionError("Receiver name is required to confirm receipt", current, new)
        if strict:
            missing = _missing_quantities(branch, "received_qty")
            if missing:
                raise InvalidTransitionError(
                    f"Received quantity or issue required for: {', '.join(missing)}", current, new
                )


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def advance(
    branch: BranchDispatch,
    new_status,
    strict: bool = False,
    now: Optional[datetime] = None,
) -> BranchDispatch:
    """
    Move a branch sub-dispatch to a new status.

    This function:
    1. Validates the transition is allowed
    2. Validates the data the target status requires
    3. Updates the status and stamps the matching checkpoint

    The branch is modified in place and returned.

    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    current = _value(branch.status)
    new = _value(new_status)

    validate_transition(current, new)
    if current == new:
        return branch

    validate_required_data(branch, new, strict=strict)

    now = now or datetime.now(timezone.utc)

    if new == DispatchStatus.ISSUE.value:
        branch.status_before_issue = DispatchStatus(current)
    elif new == DispatchStatus.PACKING.value:
        if branch.packing_started_at is None:
            branch.packing_started_at = now
    elif new == DispatchStatus.PACKED.value:
        branch.packing_completed_at = now
    elif new == DispatchStatus.DISPATCHED.value:
        branch.dispatched_at = now
    elif new == DispatchStatus.RECEIVED.value:
        branch.received_at = now

    branch.status = DispatchStatus(new)
    return branch


def resolve(branch: BranchDispatch) -> BranchDispatch:
    """Return a flagged branch to the status it held before the issue."""
    current = _value(branch.status)
    if not is_flagged(current):
        raise InvalidTransitionError(
            f"Branch dispatch in '{current}' status has no issue to resolve",
            current,
            current,
        )

    restored = branch.status_before_issue or DispatchStatus.PENDING
    branch.status = DispatchStatus(_value(restored))
    branch.status_before_issue = None
    return branch
