"""
SQLAlchemy models for sync schedules, portal sessions and stored credentials.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, JSON
from sqlalchemy.sql import func
import enum

from studysync.core.database import Base


class SyncFrequency(str, enum.Enum):
    """Available schedule frequencies."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MANUAL = "manual"


class SyncScheduleRecord(Base):
    """The single persisted sync schedule of a user."""

    __tablename__ = "sync_schedules"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), unique=True, index=True, nullable=False)

    enabled = Column(Boolean, default=False)
    frequency = Column(String(10), nullable=False, default=SyncFrequency.DAILY.value)
    time = Column(String(5), nullable=False)  # "HH:MM"

    last_sync = Column(DateTime, nullable=True)
    next_sync = Column(DateTime, nullable=True)
    last_result = Column(JSON, nullable=True)

    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class PortalSessionRecord(Base):
    """Persisted portal session used to rehydrate authentication state."""

    __tablename__ = "portal_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), unique=True, index=True, nullable=False)
    session_id = Column(String(255), nullable=False)
    portal_user = Column(String(255), nullable=False)
    expires_at = Column(DateTime, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PortalCredentialRecord(Base):
    """Encrypted portal credentials; never holds plaintext."""

    __tablename__ = "portal_credentials"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), unique=True, index=True, nullable=False)
    blob = Column(Text, nullable=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
