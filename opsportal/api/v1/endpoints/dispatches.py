"""Dispatch API endpoints: manifests, branch progress, late items and archive."""
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from opsportal.api.deps import DB, CurrentActor, Permissions, require_permissions, require_branch_access
from opsportal.core.permissions import PermissionChecker
from opsportal.models.dispatch import ItemIssue
from opsportal.schemas.dispatch import (
    BranchDispatchSummary,
    BranchDispatchUpdate,
    DispatchCreate,
    DispatchDeleteResponse,
    DispatchManifest,
    DispatchManifestListResponse,
    DispatchReport,
    ImportPreviewRequest,
    ImportPreviewResponse,
    LateItemRequest,
    LateItemResponse,
    ResolveIssueRequest,
)
from opsportal.services.dispatch_import import parse_planning_sheet
from opsportal.services.dispatch_report import build_report, export_complete_csv, export_filename, export_issues_csv
from opsportal.services.dispatch_service import DispatchService


router = APIRouter()


def scope_to_branches(manifest: DispatchManifest, checker: PermissionChecker) -> Optional[DispatchManifest]:
    """Hide branches the caller cannot access. None when nothing is left."""
    if checker.has_all_branch_access():
        return manifest
    visible = [b for b in manifest.branch_dispatches if checker.can_access_branch(b.branch_slug)]
    if not visible:
        return None
    return manifest.model_copy(update={"branch_dispatches": visible})


def visible_manifest(manifest: DispatchManifest, checker: PermissionChecker) -> DispatchManifest:
    """Scope a manifest to the caller's branches; 403 if none of them are on it."""
    scoped = scope_to_branches(manifest, checker)
    if scoped is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="None of your branches are on this dispatch"
        )
    return scoped


# ==================== MANIFESTS ====================

@router.get(
    "",
    response_model=DispatchManifestListResponse,
    dependencies=[Depends(require_permissions("dispatch:view"))]
)
async def list_dispatches(
    db: DB,
    permissions: Permissions,
):
    """Active dispatches, newest delivery date first."""
    manifests = await DispatchService(db).list_manifests()
    scoped = [m for m in (scope_to_branches(m, permissions) for m in manifests) if m is not None]
    return DispatchManifestListResponse(items=scoped, total=len(scoped))


@router.post(
    "",
    response_model=DispatchManifest,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions("dispatch:create"))]
)
async def create_dispatch(
    data: DispatchCreate,
    db: DB,
    actor: CurrentActor,
):
    """Create a dispatch with one pending sub-dispatch per branch."""
    return await DispatchService(db).create_manifest(data, actor)


@router.post(
    "/import/preview",
    response_model=ImportPreviewResponse,
    dependencies=[Depends(require_permissions("dispatch:create"))]
)
async def preview_import(data: ImportPreviewRequest):
    """Parse a pasted planning sheet into branch plans without creating anything."""
    parsed = parse_planning_sheet(data.raw_text)
    return ImportPreviewResponse(
        branches=parsed.branches,
        unmatched_columns=parsed.unmatched_columns,
        total_items=parsed.total_items,
    )


# ==================== ARCHIVE ====================

@router.get(
    "/archive",
    response_model=DispatchManifestListResponse,
    dependencies=[Depends(require_permissions("dispatch:archive_view"))]
)
async def list_archived_dispatches(db: DB):
    """Deleted dispatches, most recently deleted first."""
    manifests = await DispatchService(db).list_archived()
    return DispatchManifestListResponse(items=manifests, total=len(manifests))


@router.get(
    "/archive/{dispatch_id}",
    response_model=DispatchManifest,
    dependencies=[Depends(require_permissions("dispatch:archive_view"))]
)
async def get_archived_dispatch(dispatch_id: str, db: DB):
    return await DispatchService(db).get_archived(dispatch_id)


# ==================== BRANCH VIEW ====================

@router.get(
    "/branches/{branch_slug}",
    response_model=List[BranchDispatchSummary],
    dependencies=[Depends(require_permissions("dispatch:view"))]
)
async def list_branch_dispatches(
    branch_slug: str,
    db: DB,
    permissions: Permissions,
):
    """A branch's sub-dispatches across all active dispatches."""
    require_branch_access(permissions, branch_slug)
    return await DispatchService(db).list_branch_dispatches(branch_slug)


# ==================== SINGLE MANIFEST ====================

@router.get(
    "/{dispatch_id}",
    response_model=DispatchManifest,
    dependencies=[Depends(require_permissions("dispatch:view"))]
)
async def get_dispatch(
    dispatch_id: str,
    db: DB,
    permissions: Permissions,
):
    manifest = await DispatchService(db).get_manifest(dispatch_id)
    return visible_manifest(manifest, permissions)


@router.patch(
    "/{dispatch_id}/branches/{branch_slug}",
    response_model=DispatchManifest,
    dependencies=[Depends(require_permissions("dispatch:update"))]
)
async def update_branch_dispatch(
    dispatch_id: str,
    branch_slug: str,
    data: BranchDispatchUpdate,
    db: DB,
    actor: CurrentActor,
    permissions: Permissions,
):
    """
    Update one branch's sub-dispatch: item quantities, checklist flags,
    notes, issues, checkpoint names and status. Other branches are untouched.
    """
    require_branch_access(permissions, branch_slug)
    manifest = await DispatchService(db).update_branch_dispatch(dispatch_id, branch_slug, data, actor)
    return scope_to_branches(manifest, permissions)


@router.post(
    "/{dispatch_id}/branches/{branch_slug}/resolve",
    response_model=DispatchManifest,
    dependencies=[Depends(require_permissions("dispatch:resolve"))]
)
async def resolve_branch_issue(
    dispatch_id: str,
    branch_slug: str,
    data: ResolveIssueRequest,
    db: DB,
    actor: CurrentActor,
):
    """Return a flagged branch to the status it held before the issue."""
    return await DispatchService(db).resolve_issue(dispatch_id, branch_slug, actor, data.note)


@router.post(
    "/{dispatch_id}/add-item",
    response_model=LateItemResponse,
    dependencies=[Depends(require_permissions("dispatch:add_item"))]
)
async def add_late_item(
    dispatch_id: str,
    data: LateItemRequest,
    db: DB,
    actor: CurrentActor,
):
    """Add an item to branches that have not finished packing."""
    return await DispatchService(db).add_late_item(dispatch_id, data, actor)


@router.delete(
    "/{dispatch_id}",
    response_model=DispatchDeleteResponse,
    dependencies=[Depends(require_permissions("dispatch:delete"))]
)
async def delete_dispatch(
    dispatch_id: str,
    db: DB,
    actor: CurrentActor,
):
    """Archive a dispatch. It is kept whole in the archive, never destroyed."""
    archived = await DispatchService(db).delete_manifest(dispatch_id, actor)
    return DispatchDeleteResponse(
        message="Dispatch archived successfully",
        archived=archived,
    )


# ==================== REPORT ====================

@router.get(
    "/{dispatch_id}/report",
    response_model=DispatchReport,
    dependencies=[Depends(require_permissions("dispatch:view"))]
)
async def get_dispatch_report(
    dispatch_id: str,
    db: DB,
    permissions: Permissions,
):
    """Statistics over the branches the caller can see."""
    manifest = await DispatchService(db).get_manifest(dispatch_id)
    return build_report(visible_manifest(manifest, permissions))


@router.get(
    "/{dispatch_id}/report/export",
    dependencies=[Depends(require_permissions("dispatch:view"))]
)
async def export_dispatch_report(
    dispatch_id: str,
    db: DB,
    permissions: Permissions,
    scope: str = Query("issues", pattern="^(issues|complete)$"),
    issue_type: Optional[ItemIssue] = Query(None),
    issues_only: bool = Query(False),
):
    """
    Export items as CSV.

    scope=issues lists flagged items (optionally one issue type);
    scope=complete lists every item with checklist flags.
    """
    manifest = visible_manifest(await DispatchService(db).get_manifest(dispatch_id), permissions)

    if scope == "complete":
        content = export_complete_csv(manifest, issues_only=issues_only)
    else:
        content = export_issues_csv(manifest, issue_type=issue_type)

    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={export_filename(manifest, scope)}"}
    )
