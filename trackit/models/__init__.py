# Database models
from trackit.models.database import QueuedEntry, StoredCredential
from trackit.models.sync_log import SyncLog

__all__ = [
    "QueuedEntry",
    "StoredCredential",
    "SyncLog",
]
