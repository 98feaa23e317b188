"""
Declarative base for the PO and shipment snapshot tables.

Column conventions shared by every ``orm.py``:

    id           UUID, generated with uuid4, stored as VARCHAR(36) so the
                 same schema runs on SQLite and PostgreSQL
    int          BIGINT; money columns hold integer cents
    Decimal      NUMERIC(38, 9); unit costs carry sub-cent precision and
                 measures carry fractional CBM and kg
    datetime     TIMESTAMP WITH TIME ZONE

Nothing here imports the domain layer.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID on the Python side, 36-character string in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        int: BigInteger,
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Adds row audit columns.

    ``created_by`` / ``updated_by`` hold the actor id passed to the service
    call (a user id or a job name); they are not foreign keys.  Business
    timestamps such as ``sent_at`` come from the injected Clock and live on
    the models themselves; the two timestamps here are set by the database.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())
    created_by: Mapped[str | None] = mapped_column(String(100))
    updated_by: Mapped[str | None] = mapped_column(String(100))
