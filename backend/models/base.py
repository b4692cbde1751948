"""
Base SQLAlchemy model with common fields and utilities.
"""
from datetime import datetime
from typing import Any
from sqlalchemy import Column, Integer, DateTime, String, Boolean, JSON
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.sql import func
import uuid

from ..config.database import Base


class BaseModel(Base):
    """
    Abstract base model with common fields and methods for all models.
    """
    __abstract__ = True

    # Primary key
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # UUID for external references
    uuid = Column(String(36), unique=True, index=True, default=lambda: str(uuid.uuid4()))

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Soft delete functionality
    is_active = Column(Boolean, default=True, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    # Audit fields
    created_by = Column(String(100), nullable=True)
    updated_by = Column(String(100), nullable=True)

    # Version control for optimistic locking
    version = Column(Integer, default=1, nullable=False)

    @hybrid_property
    def is_valid(self):
        """Check if record is active and not deleted."""
        return self.is_active and not self.is_deleted

    def soft_delete(self, deleted_by: str = None):
        """Soft delete the record."""
        self.is_deleted = True
        self.is_active = False
        self.deleted_at = datetime.utcnow()
        self.updated_by = deleted_by
        self.version += 1

    def __repr__(self):
        return f"<{self.__class__.__name__}(id={self.id}, uuid={self.uuid})>"


class MetadataMixin:
    """Mixin for free-form JSON metadata."""
    extra_data = Column(JSON, nullable=True)

    def update_metadata(self, key: str, value: Any):
        """Update metadata with key-value pair."""
        metadata = dict(self.extra_data or {})
        metadata[key] = value
        self.extra_data = metadata

    def get_metadata(self, key: str = None):
        """Get metadata value by key or all metadata."""
        metadata = self.extra_data or {}
        return metadata.get(key) if key else metadata
