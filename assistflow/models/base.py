"""Declarative base and shared column helpers."""

from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def enum_type(enum_cls, length: int = 30) -> SAEnum:
    """Store a str enum by value as VARCHAR (portable across PostgreSQL and SQLite)."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
