import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, String
from sqlalchemy.types import TypeDecorator

from sched_core.db import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that comes back as UTC on every dialect"""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            # SQLite compares timestamps as text; store one canonical form
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class BaseModel(Base):
    __abstract__ = True

    # Primary key
    id = Column(String(36), primary_key=True, default=new_id)

    created_at = Column(
        UTCDateTime,
        nullable=False,
        default=utc_now
    )

    updated_at = Column(
        UTCDateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now  # Auto-update on changes
    )
