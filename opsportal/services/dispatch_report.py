"""Dispatch report: per-manifest statistics and CSV exports."""
import csv
import io
from typing import List, Optional

from opsportal.models.dispatch import DispatchStatus, ItemIssue
from opsportal.schemas.dispatch import (
    BranchDispatch,
    BranchIssueSummary,
    DispatchItem,
    DispatchManifest,
    DispatchReport,
)


ISSUE_COLUMNS = [
    "Branch Name", "Item Name", "Ordered Qty", "Packed Qty", "Received Qty",
    "Still to Send", "Unit", "Issue Type", "Notes", "Status", "Packed By", "Received By",
]

COMPLETE_COLUMNS = [
    "Branch Name", "Item Name", "Ordered Qty", "Packed Qty", "Received Qty",
    "Still to Send", "Unit", "Issue Type", "Notes", "Packed Checked", "Received Checked",
    "Status", "Packed By", "Received By", "Received At",
]

IN_PROGRESS_STATUSES = (
    DispatchStatus.PACKING,
    DispatchStatus.PACKED,
    DispatchStatus.DISPATCHED,
)


def _issue_count(branch: BranchDispatch) -> int:
    return sum(1 for item in branch.items if item.issue is not None)


def build_report(manifest: DispatchManifest) -> DispatchReport:
    """Branch progress and item issue counts for one manifest."""
    branches = manifest.branch_dispatches
    all_items = [item for branch in branches for item in branch.items]

    issues_by_type = {issue.value: 0 for issue in ItemIssue}
    for item in all_items:
        if item.issue is not None:
            issues_by_type[item.issue.value] += 1

    return DispatchReport(
        dispatch_id=manifest.id,
        delivery_date=manifest.delivery_date,
        total_branches=len(branches),
        completed_branches=sum(1 for b in branches if b.status == DispatchStatus.RECEIVED),
        pending_branches=sum(1 for b in branches if b.status == DispatchStatus.PENDING),
        in_progress_branches=sum(1 for b in branches if b.status in IN_PROGRESS_STATUSES),
        flagged_branches=sum(1 for b in branches if b.status == DispatchStatus.ISSUE),
        total_items=len(all_items),
        items_with_issues=sum(issues_by_type.values()),
        issues_by_type=issues_by_type,
        branches_with_issues=[
            BranchIssueSummary(
                branch_slug=b.branch_slug,
                branch_name=b.branch_name,
                status=b.status,
                issue_count=_issue_count(b),
            )
            for b in branches if _issue_count(b) > 0
        ],
    )


def still_to_send(item: DispatchItem) -> float:
    """Ordered quantity the branch has not received yet."""
    return item.ordered_qty - (item.received_qty or 0)


def _fmt(value: Optional[float]) -> str:
    if value is None:
        return ""
    return f"{value:g}"


def _base_row(branch: BranchDispatch, item: DispatchItem) -> List[str]:
    packed = item.packed_qty if item.packed_qty is not None else item.ordered_qty
    return [
        branch.branch_name,
        item.name,
        _fmt(item.ordered_qty),
        _fmt(packed),
        _fmt(item.received_qty or 0),
        _fmt(still_to_send(item)),
        item.unit,
        item.issue.value if item.issue else "none",
        item.notes or "",
    ]


def export_issues_csv(manifest: DispatchManifest, issue_type: Optional[ItemIssue] = None) -> str:
    """Items with an issue, optionally only one issue type."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(ISSUE_COLUMNS)

    for branch in manifest.branch_dispatches:
        for item in branch.items:
            if item.issue is None:
                continue
            if issue_type is not None and item.issue != issue_type:
                continue
            writer.writerow(_base_row(branch, item) + [
                branch.status.value,
                branch.packed_by or "",
                branch.received_by or "",
            ])

    return buffer.getvalue()


def export_complete_csv(manifest: DispatchManifest, issues_only: bool = False) -> str:
    """Every item with its checklist flags and branch checkpoints."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(COMPLETE_COLUMNS)

    for branch in manifest.branch_dispatches:
        for item in branch.items:
            if issues_only and item.issue is None:
                continue
            writer.writerow(_base_row(branch, item) + [
                str(item.packed_checked).lower(),
                str(item.received_checked).lower(),
                branch.status.value,
                branch.packed_by or "",
                branch.received_by or "",
                branch.received_at.isoformat() if branch.received_at else "",
            ])

    return buffer.getvalue()


def export_filename(manifest: DispatchManifest, scope: str) -> str:
    prefix = "dispatch-complete-details" if scope == "complete" else "dispatch-report"
    return f"{prefix}-{manifest.delivery_date.isoformat()}.csv"
