"""SQLAlchemy declarative base and common column mixins for Agentmux.

All models inherit from Base and include TimestampMixin for a consistent
integer primary key and creation/update timestamps.

Example:
    >>> class MyModel(TimestampMixin, Base):
    ...     __tablename__ = "my_table"
    ...     name: Mapped[str] = mapped_column(Text, nullable=False)
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy 2.0 declarative base for all Agentmux models."""

    pass


class TimestampMixin:
    """Mixin providing id, created_at, and updated_at columns.

    Attributes:
        id: Autoincrementing integer primary key. Ordering by id gives
            insertion order, which the record store relies on for
            newest-first listings.
        created_at: Timestamp set by the database on row creation.
        updated_at: Timestamp set on creation and on each modification.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
