# Models module
from opsportal.models.dispatch import (
    Dispatch,
    BranchDispatch,
    DispatchArchive,
    DispatchStatus,
    ItemIssue,
)

__all__ = [
    "Dispatch",
    "BranchDispatch",
    "DispatchArchive",
    "DispatchStatus",
    "ItemIssue",
]
