"""Pydantic schemas for dispatch manifests, branch sub-dispatches and items."""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime, date
import uuid

from opsportal.models.dispatch import DispatchStatus, ItemIssue
from opsportal.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


# ==================== ITEM SCHEMAS ====================

class DispatchItem(BaseResponseSchema):
    """One line of a branch sub-dispatch."""
    id: str
    name: str
    unit: str
    ordered_qty: float
    packed_qty: Optional[float] = None
    received_qty: Optional[float] = None
    packed_checked: bool = False
    received_checked: bool = False
    notes: str = ""
    issue: Optional[ItemIssue] = None

    # Late-addition provenance
    added_late: bool = False
    added_at: Optional[datetime] = None
    added_by: Optional[str] = None
    added_reason: Optional[str] = None


class DispatchItemUpdate(BaseUpdateSchema):
    """Partial edit of one item, addressed by id. Fields not sent are left alone."""
    id: str
    packed_qty: Optional[float] = None
    received_qty: Optional[float] = None
    packed_checked: Optional[bool] = None
    received_checked: Optional[bool] = None
    notes: Optional[str] = None
    issue: Optional[ItemIssue] = None


# ==================== BRANCH SCHEMAS ====================

class BranchDispatch(BaseResponseSchema):
    """One branch's portion of a manifest."""
    id: Optional[uuid.UUID] = None
    branch_slug: str
    branch_name: str
    status: DispatchStatus = DispatchStatus.PENDING
    status_before_issue: Optional[DispatchStatus] = None
    items: List[DispatchItem] = []

    packed_by: Optional[str] = None
    packing_started_at: Optional[datetime] = None
    packing_completed_at: Optional[datetime] = None
    dispatched_at: Optional[datetime] = None
    received_by: Optional[str] = None
    received_at: Optional[datetime] = None
    overall_notes: Optional[str] = None

    version: int = 0


class BranchDispatchUpdate(BaseUpdateSchema):
    """
    Partial update of a single branch sub-dispatch.

    status is accepted as a plain string so an unknown value is reported as a
    dispatch validation error rather than a request shape error.
    """
    status: Optional[str] = None
    items: Optional[List[DispatchItemUpdate]] = None
    packed_by: Optional[str] = None
    received_by: Optional[str] = None
    overall_notes: Optional[str] = None
    expected_version: Optional[int] = Field(
        None, description="Reject the write if the branch has changed since this version was read"
    )


class BranchDispatchSummary(BaseResponseSchema):
    """A branch's sub-dispatch together with its manifest header (branch dashboard)."""
    dispatch_id: str
    delivery_date: date
    branch: BranchDispatch


class ResolveIssueRequest(BaseCreateSchema):
    """Take a branch out of the issue state."""
    note: Optional[str] = None


# ==================== MANIFEST SCHEMAS ====================

class DispatchManifest(BaseResponseSchema):
    """A dispatch manifest, active or archived."""
    id: str
    created_date: datetime
    delivery_date: date
    created_by: str
    branch_dispatches: List[BranchDispatch] = []

    is_archived: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None

    def find_branch(self, branch_slug: str) -> Optional[BranchDispatch]:
        for branch in self.branch_dispatches:
            if branch.branch_slug == branch_slug:
                return branch
        return None


class DispatchManifestListResponse(BaseModel):
    """List of manifests."""
    items: List[DispatchManifest]
    total: int


class DispatchItemPlan(BaseCreateSchema):
    """Item requested for a branch at creation. Blank unit is inferred from the name."""
    name: str
    quantity: float
    unit: Optional[str] = None


class BranchPlan(BaseCreateSchema):
    """Items requested for one branch at creation."""
    branch_slug: str
    branch_name: str
    items: List[DispatchItemPlan] = []


class DispatchCreate(BaseCreateSchema):
    """Manifest creation schema."""
    delivery_date: date
    branches: List[BranchPlan]
    created_by: Optional[str] = None


class DispatchDeleteResponse(BaseModel):
    """Result of archiving a manifest."""
    success: bool = True
    message: str
    archived: DispatchManifest


# ==================== LATE ITEM SCHEMAS ====================

class LateItemBranch(BaseCreateSchema):
    """Target branch and quantity for a late addition."""
    branch_slug: str
    quantity: float


class LateItemRequest(BaseCreateSchema):
    """Add one item to several branches of an existing manifest."""
    item_name: str
    unit: str
    reason: Optional[str] = None
    branches: List[LateItemBranch]


class SkippedBranch(BaseModel):
    """A branch the late item could not be added to, and why."""
    branch: str
    reason: str


class LateItemResponse(BaseModel):
    """Outcome of a late addition."""
    success: bool
    message: str
    updated_branches: List[str]
    skipped_branches: List[str]
    skipped: List[SkippedBranch] = []
    manifest: Optional[DispatchManifest] = None


# ==================== REPORT SCHEMAS ====================

class BranchIssueSummary(BaseModel):
    branch_slug: str
    branch_name: str
    status: DispatchStatus
    issue_count: int


class DispatchReport(BaseModel):
    """Per-manifest statistics."""
    dispatch_id: str
    delivery_date: date
    total_branches: int
    completed_branches: int
    pending_branches: int
    in_progress_branches: int
    flagged_branches: int
    total_items: int
    items_with_issues: int
    issues_by_type: Dict[str, int]
    branches_with_issues: List[BranchIssueSummary]


# ==================== IMPORT SCHEMAS ====================

class ImportPreviewRequest(BaseCreateSchema):
    """Tab-separated text pasted from the planning spreadsheet."""
    raw_text: str = Field(..., min_length=1)


class ImportPreviewResponse(BaseModel):
    """Branch plans parsed from a pasted sheet, ready to send to create."""
    branches: List[BranchPlan]
    unmatched_columns: List[str] = []
    total_items: int = 0
