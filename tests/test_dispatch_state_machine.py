"""Branch sub-dispatch status transitions."""

import pytest

from opsportal.models.dispatch import DispatchStatus
from opsportal.schemas.dispatch import BranchDispatch, DispatchItem
from opsportal.services import dispatch_state_machine as sm
from opsportal.services.dispatch_errors import InvalidTransitionError


def _branch(status=DispatchStatus.PENDING, **kwargs) -> BranchDispatch:
    return BranchDispatch(
        branch_slug="north",
        branch_name="North Branch",
        status=status,
        items=[DispatchItem(id="north-item-0", name="Rice", unit="KG", ordered_qty=50)],
        **kwargs,
    )


class TestTransitionTable:
    def test_forward_steps_are_adjacent_only(self):
        assert sm.can_transition("pending", "packing")
        assert sm.can_transition("packing", "packed")
        assert sm.can_transition("packed", "dispatched")
        assert sm.can_transition("dispatched", "received")
        assert not sm.can_transition("pending", "packed")
        assert not sm.can_transition("pending", "received")

    def test_backward_moves_rejected(self):
        with pytest.raises(InvalidTransitionError) as exc:
            sm.validate_transition("packed", "packing")
        assert "cannot move back" in exc.value.message
        assert exc.value.allowed == ["dispatched", "issue"]

        with pytest.raises(InvalidTransitionError) as exc:
            sm.validate_transition("received", "pending")
        assert "terminal state" in exc.value.message

    def test_skipping_ahead_is_not_reported_as_backward(self):
        assert not sm.is_backward("pending", "dispatched")
        assert not sm.is_backward("issue", "pending")
        with pytest.raises(InvalidTransitionError) as exc:
            sm.validate_transition("pending", "dispatched")
        assert exc.value.message.startswith("Cannot change branch dispatch")

    def test_issue_reachable_from_every_non_terminal_status(self):
        for status in ("pending", "packing", "packed", "dispatched"):
            assert sm.can_transition(status, "issue")
        assert not sm.can_transition("received", "issue")

    def test_issue_cannot_rejoin_flow_directly(self):
        with pytest.raises(InvalidTransitionError) as exc:
            sm.validate_transition("issue", "packing")
        assert "Resolve the issue" in exc.value.message

    def test_same_status_is_progress_save(self):
        sm.validate_transition("packing", "packing")

    def test_can_receive_new_items(self):
        assert sm.can_receive_new_items(DispatchStatus.PENDING)
        assert sm.can_receive_new_items("packing")
        for status in ("packed", "dispatched", "received", "issue"):
            assert not sm.can_receive_new_items(status)

    def test_every_forward_step_raises_rank(self):
        for current, targets in sm.DISPATCH_TRANSITIONS.items():
            for target in targets:
                if target != "issue":
                    assert sm.STATUS_ORDER[target] == sm.STATUS_ORDER[current] + 1


class TestAdvance:
    def test_start_packing_stamps_once(self):
        branch = _branch()
        sm.advance(branch, "packing")
        first = branch.packing_started_at
        assert branch.status == DispatchStatus.PACKING
        assert first is not None

        sm.advance(branch, "packing")
        assert branch.packing_started_at == first

    def test_packed_requires_packer_name(self):
        branch = _branch(DispatchStatus.PACKING)
        with pytest.raises(InvalidTransitionError) as exc:
            sm.advance(branch, "packed")
        assert "Packer name" in exc.value.message
        assert branch.status == DispatchStatus.PACKING

        branch.packed_by = "Kitchen Lead"
        sm.advance(branch, "packed")
        assert branch.status == DispatchStatus.PACKED
        assert branch.packing_completed_at is not None

    def test_received_requires_receiver_name(self):
        branch = _branch(DispatchStatus.DISPATCHED)
        with pytest.raises(InvalidTransitionError):
            sm.advance(branch, "received")

        branch.received_by = "Branch Manager"
        sm.advance(branch, "received")
        assert branch.received_at is not None

    def test_strict_reconciliation_requires_quantities_or_issue(self):
        branch = _branch(DispatchStatus.PACKING, packed_by="Kitchen Lead")
        with pytest.raises(InvalidTransitionError) as exc:
            sm.advance(branch, "packed", strict=True)
        assert "Rice" in exc.value.message

        branch.items[0].packed_qty = 48
        sm.advance(branch, "packed", strict=True)
        assert branch.status == DispatchStatus.PACKED

    def test_lenient_mode_allows_missing_quantities(self):
        branch = _branch(DispatchStatus.PACKING, packed_by="Kitchen Lead")
        sm.advance(branch, "packed", strict=False)
        assert branch.status == DispatchStatus.PACKED


class TestResolve:
    def test_resolve_restores_previous_status(self):
        branch = _branch(DispatchStatus.PACKED, packed_by="Kitchen Lead")
        sm.advance(branch, "issue")
        assert branch.status == DispatchStatus.ISSUE
        assert branch.status_before_issue == DispatchStatus.PACKED

        sm.resolve(branch)
        assert branch.status == DispatchStatus.PACKED
        assert branch.status_before_issue is None

    def test_resolve_rejects_unflagged_branch(self):
        with pytest.raises(InvalidTransitionError):
            sm.resolve(_branch(DispatchStatus.PACKING))
