from sqlalchemy import Column, DateTime, func, String
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone
import uuid

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored datetime is naive UTC"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class TimestampedModel(Base):
    __abstract__ = True

    # UUID primary keys stored as strings - compatible with both SQLite and PostgreSQL
    id = Column(
        String(36),
        primary_key=True,
        default=new_id
    )

    created_at = Column(
        DateTime,
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    updated_at = Column(
        DateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now()
    )
