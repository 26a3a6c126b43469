"""Dispatch workflow exceptions.

Each carries the HTTP status it maps to; the API layer turns them into JSON
error responses in one exception handler.
"""
from typing import Dict, List, Optional


class DispatchError(Exception):
    """Base exception for dispatch workflow errors."""
    status_code: int = 400

    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class DispatchValidationError(DispatchError):
    """Malformed input. Raised before any write."""
    status_code = 400


class NotFoundError(DispatchError):
    status_code = 404


class ManifestNotFoundError(NotFoundError):
    def __init__(self, manifest_id: str):
        self.manifest_id = manifest_id
        super().__init__("Dispatch not found", {"dispatch_id": manifest_id})


class BranchNotFoundError(NotFoundError):
    def __init__(self, manifest_id: str, branch_slug: str):
        self.manifest_id = manifest_id
        self.branch_slug = branch_slug
        super().__init__(
            "Branch dispatch not found",
            {"dispatch_id": manifest_id, "branch_slug": branch_slug},
        )


class InvalidTransitionError(DispatchError):
    """A status change the transition table does not allow, or that lacks required data."""
    status_code = 409

    def __init__(self, message: str, current_status: str, target_status: str,
                 allowed: Optional[List[str]] = None):
        self.current_status = current_status
        self.target_status = target_status
        self.allowed = allowed or []
        super().__init__(message, {
            "current_status": current_status,
            "target_status": target_status,
            "allowed_transitions": self.allowed,
        })


class PartialFailureError(DispatchError):
    """A late addition could not be applied to any requested branch."""
    status_code = 400

    def __init__(self, message: str, skipped: List[Dict[str, str]]):
        self.skipped = skipped
        super().__init__(message, {
            "skipped_branches": [entry["branch"] for entry in skipped],
            "skipped": skipped,
        })


class ConcurrencyConflictError(DispatchError):
    """The branch sub-dispatch changed since the caller read it."""
    status_code = 409

    def __init__(self, manifest_id: str, branch_slug: str,
                 expected_version: Optional[int] = None, current_version: Optional[int] = None):
        super().__init__(
            "Branch dispatch was modified by another user. Reload and try again.",
            {
                "dispatch_id": manifest_id,
                "branch_slug": branch_slug,
                "expected_version": expected_version,
                "current_version": current_version,
            },
        )
