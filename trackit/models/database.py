from datetime import datetime
from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    String,
    DateTime,
    Float,
    JSON,
    Index,
)
from trackit.core.database import Base


class QueuedEntry(Base):
    """Metric or image entry tracked for reconciliation with the server."""

    __tablename__ = "sync_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    local_id = Column(String, nullable=False, unique=True, index=True)
    kind = Column(String, nullable=False)  # "metric", "image"
    server_id = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, index=True)

    # Metric payload
    metric_type_id = Column(Integer, nullable=True)
    value = Column(Float, nullable=True)
    is_apple_health = Column(Boolean, nullable=False, default=False)

    # Image payload
    file_path = Column(String, nullable=True)
    image_type_id = Column(Integer, nullable=True)

    date = Column(String, nullable=False)  # ISO 8601, as sent to the server

    # Edit or deletion received while an upload was in flight
    deferred_edit = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_sync_attempt = Column(DateTime, nullable=True)

    __table_args__ = (Index("ix_sync_entries_status_created", "status", "created_at"),)


class StoredCredential(Base):
    """Durable key/value slot for the session and device identity."""

    __tablename__ = "credentials"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String, nullable=False, unique=True)
    document = Column(JSON, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
