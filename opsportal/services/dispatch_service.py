"""Dispatch Service for manifest creation, branch progress, late items and archival."""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from opsportal.config import settings
from opsportal.core.permissions import Actor
from opsportal.schemas.dispatch import (
    BranchDispatchSummary,
    BranchDispatchUpdate,
    DispatchCreate,
    DispatchManifest,
    LateItemRequest,
    LateItemResponse,
    SkippedBranch,
)
from opsportal.services import dispatch_state_machine as state_machine
from opsportal.services.dispatch_errors import (
    BranchNotFoundError,
    ConcurrencyConflictError,
    ManifestNotFoundError,
)
from opsportal.services.dispatch_workflow import apply_branch_patch, build_manifest, inject_late_item
from opsportal.services.manifest_store import (
    ArchiveStore,
    ManifestStore,
    SqlArchiveStore,
    SqlManifestStore,
)


logger = logging.getLogger(__name__)


class DispatchService:
    """Service for dispatch workflow operations."""

    def __init__(
        self,
        db: AsyncSession,
        manifests: Optional[ManifestStore] = None,
        archive: Optional[ArchiveStore] = None,
        strict_reconciliation: Optional[bool] = None,
    ):
        self.db = db
        self.manifests = manifests or SqlManifestStore(db)
        self.archive = archive or SqlArchiveStore(db)
        if strict_reconciliation is None:
            strict_reconciliation = settings.DISPATCH_STRICT_RECONCILIATION
        self.strict_reconciliation = strict_reconciliation

    # ==================== READ ====================

    async def list_manifests(self) -> List[DispatchManifest]:
        """Active manifests, newest delivery date first."""
        return await self.manifests.list_active()

    async def get_manifest(self, manifest_id: str) -> DispatchManifest:
        manifest = await self.manifests.get(manifest_id)
        if manifest is None:
            raise ManifestNotFoundError(manifest_id)
        return manifest

    async def list_branch_dispatches(self, branch_slug: str) -> List[BranchDispatchSummary]:
        """One branch's sub-dispatches across all active manifests."""
        return await self.manifests.list_for_branch(branch_slug)

    async def list_archived(self) -> List[DispatchManifest]:
        return await self.archive.list_all()

    async def get_archived(self, manifest_id: str) -> DispatchManifest:
        manifest = await self.archive.get(manifest_id)
        if manifest is None:
            raise ManifestNotFoundError(manifest_id)
        return manifest

    # ==================== WRITE ====================

    async def create_manifest(self, data: DispatchCreate, actor: Actor) -> DispatchManifest:
        """Create a manifest with every branch sub-dispatch pending."""
        created_by = (data.created_by or "").strip() or actor.display_name
        manifest = build_manifest(data.delivery_date, created_by, data.branches)

        created = await self.manifests.add(manifest)
        await self.db.commit()

        logger.info(
            "Created dispatch %s for %s with %d branches (by %s)",
            created.id, created.delivery_date, len(created.branch_dispatches), actor.identity,
        )
        return created

    async def update_branch_dispatch(
        self,
        manifest_id: str,
        branch_slug: str,
        patch: BranchDispatchUpdate,
        actor: Actor,
    ) -> DispatchManifest:
        """Merge a partial update into one branch sub-dispatch."""
        manifest = await self.get_manifest(manifest_id)
        branch = manifest.find_branch(branch_slug)
        if branch is None:
            raise BranchNotFoundError(manifest_id, branch_slug)

        if patch.expected_version is not None and patch.expected_version != branch.version:
            raise ConcurrencyConflictError(manifest_id, branch_slug, patch.expected_version, branch.version)

        updated = apply_branch_patch(branch, patch, strict=self.strict_reconciliation)
        await self.manifests.save_branch(manifest_id, updated, expected_version=branch.version)
        await self.db.commit()

        if updated.status != branch.status:
            logger.info(
                "Dispatch %s branch %s: %s (%s -> %s) by %s",
                manifest_id, branch_slug,
                state_machine.get_transition_action(branch.status, updated.status),
                branch.status.value, updated.status.value, actor.identity,
            )
        else:
            logger.info("Dispatch %s branch %s updated by %s", manifest_id, branch_slug, actor.identity)

        return await self.get_manifest(manifest_id)

    async def resolve_issue(
        self,
        manifest_id: str,
        branch_slug: str,
        actor: Actor,
        note: Optional[str] = None,
    ) -> DispatchManifest:
        """Return a flagged branch to the status it held before the issue."""
        manifest = await self.get_manifest(manifest_id)
        branch = manifest.find_branch(branch_slug)
        if branch is None:
            raise BranchNotFoundError(manifest_id, branch_slug)

        updated = state_machine.resolve(branch.model_copy(deep=True))
        note = (note or "").strip()
        if note:
            entry = f"Issue resolved by {actor.display_name}: {note}"
            updated.overall_notes = f"{updated.overall_notes}\n{entry}" if updated.overall_notes else entry

        await self.manifests.save_branch(manifest_id, updated, expected_version=branch.version)
        await self.db.commit()

        logger.info(
            "Dispatch %s branch %s issue resolved back to %s by %s",
            manifest_id, branch_slug, updated.status.value, actor.identity,
        )
        return await self.get_manifest(manifest_id)

    async def add_late_item(
        self,
        manifest_id: str,
        request: LateItemRequest,
        actor: Actor,
    ) -> LateItemResponse:
        """Add one item to several branches after the manifest was created."""
        manifest = await self.get_manifest(manifest_id)
        result = inject_late_item(manifest, request, added_by=actor.display_name)

        versions = {b.branch_slug: b.version for b in manifest.branch_dispatches}
        for branch in result.updated:
            await self.manifests.save_branch(manifest_id, branch, expected_version=versions[branch.branch_slug])
        await self.db.commit()

        logger.info(
            "Late item '%s' added to %s on dispatch %s by %s",
            request.item_name.strip(), ", ".join(result.updated_branches), manifest_id, actor.identity,
        )
        if result.skipped:
            logger.warning(
                "Late item '%s' skipped on dispatch %s: %s",
                request.item_name.strip(), manifest_id,
                "; ".join(f"{s['branch']} ({s['reason']})" for s in result.skipped),
            )

        return LateItemResponse(
            success=True,
            message=f"Item added to {len(result.updated)} branch(es)",
            updated_branches=result.updated_branches,
            skipped_branches=result.skipped_branches,
            skipped=[SkippedBranch(**entry) for entry in result.skipped],
            manifest=await self.get_manifest(manifest_id),
        )

    async def delete_manifest(self, manifest_id: str, actor: Actor) -> DispatchManifest:
        """
        Move a manifest to the archive.

        The archive copy is written before the active copy is removed, and
        both happen in one transaction, so a manifest is never lost.
        """
        manifest = await self.get_manifest(manifest_id)
        archived = manifest.model_copy(update={
            "is_archived": True,
            "deleted_at": datetime.now(timezone.utc),
            "deleted_by": actor.display_name,
        })

        try:
            stored = await self.archive.append(archived)
        except IntegrityError:
            # A concurrent delete archived it first
            await self.db.rollback()
            logger.warning("Dispatch %s already archived, delete by %s ignored", manifest_id, actor.identity)
            raise ManifestNotFoundError(manifest_id)
        await self.manifests.remove(manifest_id)
        await self.db.commit()

        logger.info("Dispatch %s archived by %s", manifest_id, actor.identity)
        return stored
