"""
Dispatch workflow rules.

Pure functions over the dispatch schemas: building a manifest from branch
plans, merging a partial update into one branch, and injecting a late item
into several branches. Nothing here touches the database; callers persist
the returned objects. Every function validates its whole input before
changing anything, and works on copies so a rejected request leaves the
caller's objects untouched.
"""
import math
import secrets
import string
import uuid
from dataclasses import dataclass, field
from datetime import datetime, date, timezone
from typing import Dict, List, Optional, Set

from opsportal.models.dispatch import DispatchStatus
from opsportal.schemas.dispatch import (
    BranchDispatch,
    BranchDispatchUpdate,
    BranchPlan,
    DispatchItem,
    DispatchManifest,
    LateItemRequest,
)
from opsportal.services import dispatch_state_machine as state_machine
from opsportal.services.dispatch_errors import DispatchValidationError, PartialFailureError
from opsportal.services.dispatch_unit_mappings import get_item_unit


LATE_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits

QUANTITY_MESSAGE = "All quantities must be greater than 0"


def is_positive_quantity(value: Optional[float]) -> bool:
    """True for a finite number above zero. NaN and infinity are rejected."""
    return value is not None and math.isfinite(value) and value > 0


# ==================== IDS ====================

def generate_manifest_id(delivery_date: date) -> str:
    """Generate a unique manifest id, e.g. dispatch-2025-01-10-3f9a1c2b7d4e."""
    return f"dispatch-{delivery_date.isoformat()}-{uuid.uuid4().hex[:12]}"


def generate_late_item_id(branch_slug: str, existing_ids: Set[str], now: Optional[datetime] = None) -> str:
    """Generate a late item id unique within its branch."""
    now = now or datetime.now(timezone.utc)
    millis = int(now.timestamp() * 1000)
    while True:
        suffix = "".join(secrets.choice(LATE_SUFFIX_ALPHABET) for _ in range(5))
        item_id = f"{branch_slug}-late-{millis}-{suffix}"
        if item_id not in existing_ids:
            return item_id


# ==================== CREATE ====================

def validate_branch_plans(plans: List[BranchPlan]) -> None:
    if not plans:
        raise DispatchValidationError("At least one branch is required")

    seen: Set[str] = set()
    for plan in plans:
        slug = (plan.branch_slug or "").strip()
        if not slug:
            raise DispatchValidationError("Branch slug is required")
        if not (plan.branch_name or "").strip():
            raise DispatchValidationError(f"Branch name is required for '{slug}'")
        if slug in seen:
            raise DispatchValidationError(f"Branch '{slug}' appears more than once")
        seen.add(slug)

        if not plan.items:
            raise DispatchValidationError(f"Branch '{slug}' has no items")
        for item in plan.items:
            if not (item.name or "").strip():
                raise DispatchValidationError(f"Item name is required for branch '{slug}'")
            if not is_positive_quantity(item.quantity):
                raise DispatchValidationError(QUANTITY_MESSAGE, {"branch_slug": slug, "item": item.name})


def build_manifest(
    delivery_date: date,
    created_by: str,
    plans: List[BranchPlan],
    now: Optional[datetime] = None,
) -> DispatchManifest:
    """Build a new manifest with every branch sub-dispatch pending."""
    now = now or datetime.now(timezone.utc)

    validate_branch_plans(plans)
    if delivery_date < now.date():
        raise DispatchValidationError("Delivery date cannot be before the creation date")
    if not (created_by or "").strip():
        raise DispatchValidationError("Creator is required")

    branches = []
    for plan in plans:
        slug = plan.branch_slug.strip()
        items = [
            DispatchItem(
                id=f"{slug}-item-{index}",
                name=item.name.strip(),
                unit=(item.unit or "").strip() or get_item_unit(item.name),
                ordered_qty=item.quantity,
            )
            for index, item in enumerate(plan.items)
        ]
        branches.append(BranchDispatch(
            branch_slug=slug,
            branch_name=plan.branch_name.strip(),
            status=DispatchStatus.PENDING,
            items=items,
        ))

    return DispatchManifest(
        id=generate_manifest_id(delivery_date),
        created_date=now,
        delivery_date=delivery_date,
        created_by=created_by.strip(),
        branch_dispatches=branches,
    )


# ==================== BRANCH UPDATE ====================

def _check_quantity(value: Optional[float], field_name: str, item_id: str) -> None:
    if value is None:
        return
    if not math.isfinite(value):
        raise DispatchValidationError(
            f"{field_name} must be a finite number",
            {"item_id": item_id, "field": field_name},
        )
    if value < 0:
        raise DispatchValidationError(
            f"{field_name} cannot be negative",
            {"item_id": item_id, "field": field_name},
        )


def validate_branch_patch(branch: BranchDispatch, patch: BranchDispatchUpdate) -> Optional[DispatchStatus]:
    """Validate a patch against the branch; returns the parsed target status, if any."""
    target = None
    if patch.status is not None:
        try:
            target = state_machine.parse_status(patch.status)
        except ValueError:
            raise DispatchValidationError(
                f"Invalid status '{patch.status}'",
                {"allowed": [s.value for s in DispatchStatus]},
            )

    if patch.items:
        known_ids = {item.id for item in branch.items}
        for item_patch in patch.items:
            if item_patch.id not in known_ids:
                raise DispatchValidationError(
                    f"Item '{item_patch.id}' not found in branch dispatch",
                    {"item_id": item_patch.id},
                )
            _check_quantity(item_patch.packed_qty, "packed_qty", item_patch.id)
            _check_quantity(item_patch.received_qty, "received_qty", item_patch.id)

    return target


def apply_branch_patch(
    branch: BranchDispatch,
    patch: BranchDispatchUpdate,
    strict: bool = False,
    now: Optional[datetime] = None,
) -> BranchDispatch:
    """
    Merge a partial update into a copy of one branch sub-dispatch.

    Only the fields the client sent are applied. Checkpoint names and item
    edits are applied before the status change, so a single request can
    record the packer and complete packing.
    """
    target = validate_branch_patch(branch, patch)
    updated = branch.model_copy(deep=True)

    for field_name in ("packed_by", "received_by", "overall_notes"):
        if field_name in patch.model_fields_set:
            value = getattr(patch, field_name)
            setattr(updated, field_name, value.strip() if isinstance(value, str) else value)

    if patch.items:
        items_by_id = {item.id: item for item in updated.items}
        for item_patch in patch.items:
            item = items_by_id[item_patch.id]
            for field_name in item_patch.model_fields_set - {"id"}:
                value = getattr(item_patch, field_name)
                if field_name in ("packed_checked", "received_checked") and value is None:
                    continue
                if field_name == "notes" and value is None:
                    value = ""
                setattr(item, field_name, value)

    if target is not None:
        state_machine.advance(updated, target, strict=strict, now=now)

    return updated


# ==================== LATE ITEMS ====================

@dataclass
class LateItemResult:
    """Branches changed by a late addition, and the ones skipped with reasons."""
    updated: List[BranchDispatch] = field(default_factory=list)
    skipped: List[Dict[str, str]] = field(default_factory=list)

    @property
    def updated_branches(self) -> List[str]:
        return [branch.branch_name for branch in self.updated]

    @property
    def skipped_branches(self) -> List[str]:
        return [entry["branch"] for entry in self.skipped]


def validate_late_item(request: LateItemRequest) -> None:
    if not (request.item_name or "").strip():
        raise DispatchValidationError("Item name is required")
    if not (request.unit or "").strip():
        raise DispatchValidationError("Unit is required")
    if not request.branches:
        raise DispatchValidationError("At least one branch must be selected")
    if not all(is_positive_quantity(target.quantity) for target in request.branches):
        raise DispatchValidationError(QUANTITY_MESSAGE)

    slugs = [target.branch_slug for target in request.branches]
    if len(slugs) != len(set(slugs)):
        raise DispatchValidationError("Each branch may only be selected once")


def inject_late_item(
    manifest: DispatchManifest,
    request: LateItemRequest,
    added_by: str,
    now: Optional[datetime] = None,
) -> LateItemResult:
    """
    Append one new item to each requested branch that can still take it.

    Branches missing from the manifest, or already past packing, are
    skipped with a reason. If no branch can take the item nothing changes
    and PartialFailureError is raised.
    """
    validate_late_item(request)
    now = now or datetime.now(timezone.utc)

    name = request.item_name.strip()
    unit = request.unit.strip()
    reason = (request.reason or "").strip() or None

    result = LateItemResult()
    for target in request.branches:
        branch = manifest.find_branch(target.branch_slug)
        if branch is None:
            result.skipped.append({
                "branch": target.branch_slug,
                "reason": "Branch not found in this dispatch",
            })
            continue

        if not state_machine.can_receive_new_items(branch.status):
            result.skipped.append({
                "branch": branch.branch_name,
                "reason": f"Branch dispatch is already {branch.status.value}",
            })
            continue

        updated = branch.model_copy(deep=True)
        existing_ids = {item.id for item in updated.items}
        updated.items.append(DispatchItem(
            id=generate_late_item_id(updated.branch_slug, existing_ids, now),
            name=name,
            unit=unit,
            ordered_qty=target.quantity,
            added_late=True,
            added_at=now,
            added_by=added_by,
            added_reason=reason,
        ))
        result.updated.append(updated)

    if not result.updated:
        raise PartialFailureError(
            "Could not add item to any branches. They may already be dispatched or completed.",
            result.skipped,
        )

    return result
