"""
Manifest persistence.

ManifestStore holds active manifests and ArchiveStore holds deleted ones.
The SQL implementations work inside the caller's AsyncSession and only
flush; DispatchService owns the commit, so archiving a manifest (append to
archive, then remove from active) is one transaction.
"""
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from opsportal.models.dispatch import (
    Dispatch,
    BranchDispatch as BranchDispatchRow,
    DispatchArchive,
)
from opsportal.schemas.dispatch import BranchDispatch, BranchDispatchSummary, DispatchManifest
from opsportal.services.dispatch_errors import BranchNotFoundError, ConcurrencyConflictError


logger = logging.getLogger(__name__)


class ManifestStore(ABC):
    """Active manifests."""

    @abstractmethod
    async def list_active(self) -> List[DispatchManifest]:
        """All active manifests, newest delivery date first."""

    @abstractmethod
    async def get(self, manifest_id: str) -> Optional[DispatchManifest]:
        ...

    @abstractmethod
    async def add(self, manifest: DispatchManifest) -> DispatchManifest:
        ...

    @abstractmethod
    async def save_branch(
        self,
        manifest_id: str,
        branch: BranchDispatch,
        expected_version: Optional[int] = None,
    ) -> BranchDispatch:
        """Write one branch sub-dispatch. Fails if it changed since expected_version."""

    @abstractmethod
    async def remove(self, manifest_id: str) -> bool:
        ...

    @abstractmethod
    async def list_for_branch(self, branch_slug: str) -> List[BranchDispatchSummary]:
        ...


class ArchiveStore(ABC):
    """Deleted manifests. Append-only."""

    @abstractmethod
    async def append(self, manifest: DispatchManifest) -> DispatchManifest:
        ...

    @abstractmethod
    async def list_all(self) -> List[DispatchManifest]:
        ...

    @abstractmethod
    async def get(self, manifest_id: str) -> Optional[DispatchManifest]:
        ...


# ==================== SQL ====================

def _items_payload(branch: BranchDispatch) -> list:
    return [item.model_dump(mode="json") for item in branch.items]


def _to_manifest(row: Dispatch) -> DispatchManifest:
    return DispatchManifest(
        id=row.id,
        created_date=row.created_date,
        delivery_date=row.delivery_date,
        created_by=row.created_by,
        branch_dispatches=[BranchDispatch.model_validate(b) for b in row.branches],
    )


class SqlManifestStore(ManifestStore):
    """Active manifests in the dispatches and branch_dispatches tables."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_row(self, manifest_id: str) -> Optional[Dispatch]:
        query = (
            select(Dispatch)
            .options(selectinload(Dispatch.branches))
            .where(Dispatch.id == manifest_id)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_active(self) -> List[DispatchManifest]:
        query = (
            select(Dispatch)
            .options(selectinload(Dispatch.branches))
            .order_by(Dispatch.delivery_date.desc(), Dispatch.created_date.desc())
        )
        result = await self.db.execute(query)
        return [_to_manifest(row) for row in result.scalars().all()]

    async def get(self, manifest_id: str) -> Optional[DispatchManifest]:
        row = await self._get_row(manifest_id)
        return _to_manifest(row) if row else None

    async def add(self, manifest: DispatchManifest) -> DispatchManifest:
        row = Dispatch(
            id=manifest.id,
            created_date=manifest.created_date,
            delivery_date=manifest.delivery_date,
            created_by=manifest.created_by,
            branches=[
                BranchDispatchRow(
                    position=position,
                    branch_slug=branch.branch_slug,
                    branch_name=branch.branch_name,
                    status=branch.status.value,
                    items=_items_payload(branch),
                )
                for position, branch in enumerate(manifest.branch_dispatches)
            ],
        )
        self.db.add(row)
        await self.db.flush()
        return _to_manifest(row)

    async def save_branch(
        self,
        manifest_id: str,
        branch: BranchDispatch,
        expected_version: Optional[int] = None,
    ) -> BranchDispatch:
        query = (
            select(BranchDispatchRow)
            .where(
                BranchDispatchRow.dispatch_id == manifest_id,
                BranchDispatchRow.branch_slug == branch.branch_slug,
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        row = result.scalar_one_or_none()
        if row is None:
            raise BranchNotFoundError(manifest_id, branch.branch_slug)

        if expected_version is not None and row.version != expected_version:
            logger.warning(
                "Stale write to %s/%s: expected version %s, found %s",
                manifest_id, branch.branch_slug, expected_version, row.version,
            )
            raise ConcurrencyConflictError(manifest_id, branch.branch_slug, expected_version, row.version)

        row.status = branch.status.value
        row.status_before_issue = branch.status_before_issue.value if branch.status_before_issue else None
        row.items = _items_payload(branch)
        row.packed_by = branch.packed_by
        row.packing_started_at = branch.packing_started_at
        row.packing_completed_at = branch.packing_completed_at
        row.dispatched_at = branch.dispatched_at
        row.received_by = branch.received_by
        row.received_at = branch.received_at
        row.overall_notes = branch.overall_notes

        try:
            await self.db.flush()
        except StaleDataError:
            logger.warning("Concurrent write to %s/%s lost the race", manifest_id, branch.branch_slug)
            raise ConcurrencyConflictError(manifest_id, branch.branch_slug, expected_version)

        return BranchDispatch.model_validate(row)

    async def remove(self, manifest_id: str) -> bool:
        row = await self._get_row(manifest_id)
        if row is None:
            return False
        await self.db.delete(row)
        await self.db.flush()
        return True

    async def list_for_branch(self, branch_slug: str) -> List[BranchDispatchSummary]:
        query = (
            select(BranchDispatchRow, Dispatch.delivery_date)
            .join(Dispatch, BranchDispatchRow.dispatch_id == Dispatch.id)
            .where(BranchDispatchRow.branch_slug == branch_slug)
            .order_by(Dispatch.delivery_date.desc(), Dispatch.created_date.desc())
        )
        result = await self.db.execute(query)
        return [
            BranchDispatchSummary(
                dispatch_id=row.dispatch_id,
                delivery_date=delivery_date,
                branch=BranchDispatch.model_validate(row),
            )
            for row, delivery_date in result.all()
        ]


class SqlArchiveStore(ArchiveStore):
    """Deleted manifests in the dispatch_archive table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _to_manifest(row: DispatchArchive) -> DispatchManifest:
        return DispatchManifest(
            id=row.id,
            created_date=row.created_date,
            delivery_date=row.delivery_date,
            created_by=row.created_by,
            branch_dispatches=[BranchDispatch.model_validate(b) for b in row.branch_dispatches or []],
            is_archived=row.is_archived,
            deleted_at=row.deleted_at,
            deleted_by=row.deleted_by,
        )

    async def append(self, manifest: DispatchManifest) -> DispatchManifest:
        row = DispatchArchive(
            id=manifest.id,
            created_date=manifest.created_date,
            delivery_date=manifest.delivery_date,
            created_by=manifest.created_by,
            branch_dispatches=[b.model_dump(mode="json") for b in manifest.branch_dispatches],
            is_archived=True,
            deleted_at=manifest.deleted_at,
            deleted_by=manifest.deleted_by,
        )
        self.db.add(row)
        await self.db.flush()
        return self._to_manifest(row)

    async def list_all(self) -> List[DispatchManifest]:
        query = select(DispatchArchive).order_by(DispatchArchive.deleted_at.desc())
        result = await self.db.execute(query)
        return [self._to_manifest(row) for row in result.scalars().all()]

    async def get(self, manifest_id: str) -> Optional[DispatchManifest]:
        row = await self.db.get(DispatchArchive, manifest_id)
        return self._to_manifest(row) if row else None
