"""
Declarative base for the campaign kernel tables.

Row ids are uuid4 values stored as 36-char strings so that the same schema
runs on PostgreSQL in production and SQLite in tests.  Python ``int``
columns map to BIGINT because ledger campaign ids are unbounded on-chain,
and datetimes are always timezone-aware.

Nothing here imports from models/, services/ or selectors/.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """uuid.UUID in Python, VARCHAR(36) in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Adds created_at / updated_at.

    ORM updates refresh updated_at through ``onupdate``.  The guarded Core
    UPDATE in SubmissionStore does not go through the ORM, so it sets
    updated_at itself from the injected clock.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
    )
