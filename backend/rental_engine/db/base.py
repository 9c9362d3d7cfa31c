"""
Declarative base and shared column mixins.
"""

import uuid

from sqlalchemy import Column, DateTime, func
from sqlalchemy.orm import declarative_base

from rental_engine.core.clock import utcnow

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    # Python-side defaults so values are known after flush without a refresh
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )
