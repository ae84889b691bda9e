"""Structured load/validation error models."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from transit_patterns.models.base import Base


class ErrorRecord(Base):
    """One non-fatal error found while deriving patterns."""

    __tablename__ = "errors"

    error_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    problems: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class ErrorReference(Base):
    """Entity referenced by an error (e.g. the pattern with several shapes)."""

    __tablename__ = "error_refs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    error_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("errors.error_id", ondelete="CASCADE"), nullable=False
    )
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    line_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    sequence_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    __table_args__ = (Index("ix_error_refs_error_id", "error_id"),)
