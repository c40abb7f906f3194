"""Sync log model for tracking sync passes."""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON

from trackit.core.database import Base


class SyncLog(Base):
    """Log of sync passes."""

    __tablename__ = "sync_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trigger = Column(String, nullable=False)  # "manual", "connectivity", "auto"
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    status = Column(String, nullable=False)  # "success", "partial", "failed", "aborted"
    details = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
