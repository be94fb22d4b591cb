from typing import Any

from sqlalchemy.orm import DeclarativeBase

# Host platform table prefix
TABLE_PREFIX = "mdl_"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    type_annotation_map: dict[type, Any] = {}
