"""SQLAlchemy models for the processed-artifact ledger.

processed_artifacts holds one row per identity with the digest that last
reached Persisted; orchestration_outcomes is an append-only history of
terminal and retryable outcomes.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import String, Text, Integer, DateTime, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class ProcessedArtifact(Base):
    __tablename__ = "processed_artifacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(214), nullable=False)
    version: Mapped[str] = mapped_column(String(128), nullable=False)
    integrity_digest: Mapped[str] = mapped_column(String(128), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("name", "version", name="uq_processed_identity"),
    )


class OrchestrationOutcome(Base):
    __tablename__ = "orchestration_outcomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(214), nullable=False)
    version: Mapped[str] = mapped_column(String(128), nullable=False)
    integrity_digest: Mapped[str] = mapped_column(String(128), nullable=False)
    state: Mapped[str] = mapped_column(String(16), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    attempt: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("ix_outcomes_identity", "name", "version"),
    )
