"""
SQLAlchemy Base for the Funnel Recovery Engine.

This module provides the declarative base for all SQLAlchemy models and
the UTCDateTime column type.

Usage:
    from src.models.base import Base, UTCDateTime

    class MyModel(Base):
        __tablename__ = "my_table"
        created_at = Column(UTCDateTime, nullable=False)
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator


class Base(DeclarativeBase):
    """Declarative base shared by every table."""


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC datetime column.

    Values are normalized to UTC on the way in and come back tz-aware on
    the way out, also on backends (SQLite) that store naive timestamps.
    Naive inputs are taken to be UTC already.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC) if dialect.name != "sqlite" else value
        value = value.astimezone(UTC)
        return value.replace(tzinfo=None) if dialect.name == "sqlite" else value

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def new_id() -> str:
    """Primary key factory for all records."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


__all__ = ["Base", "UTCDateTime", "new_id", "utcnow"]
