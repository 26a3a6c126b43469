# Services module
from opsportal.services.dispatch_service import DispatchService
from opsportal.services.manifest_store import (
    ManifestStore,
    ArchiveStore,
    SqlManifestStore,
    SqlArchiveStore,
)

__all__ = [
    "DispatchService",
    "ManifestStore",
    "ArchiveStore",
    "SqlManifestStore",
    "SqlArchiveStore",
]
