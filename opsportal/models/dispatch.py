"""Dispatch models: active manifests, per-branch sub-dispatches, and the archive."""
import uuid
from datetime import datetime, date, timezone
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, DateTime, Date, ForeignKey, Integer, Text, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from opsportal.database import Base
from opsportal.db_types import JSONType, UUIDType


class DispatchStatus(str, Enum):
    """Branch sub-dispatch status."""
    PENDING = "pending"        # Created, nothing packed yet
    PACKING = "packing"        # Central kitchen is packing
    PACKED = "packed"          # Packing completed and signed off
    DISPATCHED = "dispatched"  # Left the central kitchen
    RECEIVED = "received"      # Branch confirmed receipt
    ISSUE = "issue"            # Flagged for follow-up


class ItemIssue(str, Enum):
    """Discrepancy recorded against a single dispatch item."""
    MISSING = "missing"
    DAMAGED = "damaged"
    PARTIAL = "partial"
    SHORTAGE = "shortage"


class Dispatch(Base):
    """
    Active dispatch manifest for one delivery date.
    Fans out into one BranchDispatch row per destination branch.
    """
    __tablename__ = "dispatches"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="Opaque manifest id e.g., dispatch-2025-01-10-3f9a1c2b7d4e"
    )

    created_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    created_by: Mapped[str] = mapped_column(String(200), nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    branches: Mapped[List["BranchDispatch"]] = relationship(
        "BranchDispatch",
        back_populates="dispatch",
        cascade="all, delete-orphan",
        order_by="BranchDispatch.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Dispatch(id='{self.id}', delivery_date='{self.delivery_date}')>"


class BranchDispatch(Base):
    """
    One branch's portion of a manifest.

    Stored as its own row with a version counter so writes to different
    branches never overwrite each other, and concurrent writes to the same
    branch fail instead of silently losing data.
    """
    __tablename__ = "branch_dispatches"
    __table_args__ = (
        UniqueConstraint("dispatch_id", "branch_slug", name="uq_branch_dispatch_slug"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    dispatch_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("dispatches.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    branch_slug: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    branch_name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Status
    status: Mapped[str] = mapped_column(
        String(50),
        default=DispatchStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="pending, packing, packed, dispatched, received, issue"
    )
    status_before_issue: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Status held when the branch was flagged, restored on resolve"
    )

    items: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    # Checkpoints
    packed_by: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    packing_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    packing_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    received_by: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    overall_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    dispatch: Mapped["Dispatch"] = relationship("Dispatch", back_populates="branches")

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<BranchDispatch(dispatch_id='{self.dispatch_id}', branch='{self.branch_slug}', status='{self.status}')>"


class DispatchArchive(Base):
    """
    Deleted manifests, kept whole for audit and recovery.
    Branch sub-dispatches are stored as a JSON snapshot.
    """
    __tablename__ = "dispatch_archive"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    created_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    created_by: Mapped[str] = mapped_column(String(200), nullable=False)

    branch_dispatches: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    is_archived: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    deleted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    deleted_by: Mapped[str] = mapped_column(String(200), nullable=False)

    archived_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<DispatchArchive(id='{self.id}', deleted_by='{self.deleted_by}')>"
