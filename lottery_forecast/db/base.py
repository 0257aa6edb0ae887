"""Declarative base and portable column types."""

from sqlalchemy import ARRAY, JSON, Float, Integer
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase

# Native arrays / JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
IntArray = JSON().with_variant(ARRAY(Integer), "postgresql")
FloatArray = JSON().with_variant(ARRAY(Float), "postgresql")
JSONDoc = JSON().with_variant(JSONB, "postgresql")


class Base(DeclarativeBase):
    # Fetch server-generated timestamps on flush; async sessions cannot lazy-load them
    __mapper_args__ = {"eager_defaults": True}
