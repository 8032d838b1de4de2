"""SQLAlchemy ORM schema for the rule store.

Defines the database tables: rules and _tabrules_meta.

A rule's subject, condition and action trees are stored as one JSON
document (``definition_json``) produced by the pydantic models; scalar
fields that are listed or filtered on get their own columns.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import JSON, BigInteger, Boolean, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all tabrules ORM models."""

    pass


class RuleRow(Base):
    """A stored automation rule.

    ``position`` fixes evaluation order: rules are returned sorted by it.
    """

    __tablename__ = "rules"

    rule_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    definition_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)  # epoch ms
    updated_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)  # epoch ms

    __table_args__ = (
        Index("ix_rules_position", "position"),
    )


class MetaRow(Base):
    """Key-value metadata table (schema version)."""

    __tablename__ = "_tabrules_meta"

    key: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
