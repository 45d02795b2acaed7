"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Only enough schema to express ownership lives
here: every user-owned row carries a text user_id, which is the owner's
canonical identity (issuer id, wallet address, or internal id). Postgres
row-level-security policies compare it with the id the gateway bound on
the connection (see migrations).

Key concepts:
- user_profiles.user_id is UNIQUE: the first committed create for an
  owner wins; a racing second create fails on the constraint.
- stats/preferences hang off the profile and cascade on delete.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class UserProfile(Base):
    """A user's profile, the root resource for bootstrap creation."""

    __tablename__ = "user_profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=new_uuid
    )
    user_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    wallet_address: Mapped[Optional[str]] = mapped_column(String(44), nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=utcnow
    )

    # Relationships
    stats: Mapped[Optional["UserStats"]] = relationship(
        back_populates="profile", cascade="all, delete-orphan", uselist=False
    )
    preferences: Mapped[Optional["UserPreferences"]] = relationship(
        back_populates="profile", cascade="all, delete-orphan", uselist=False
    )


class UserStats(Base):
    """Counters updated in bursts, written through the batch coalescer."""

    __tablename__ = "user_stats"

    id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=new_uuid
    )
    user_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("user_profiles.user_id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    streak_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=utcnow
    )

    profile: Mapped["UserProfile"] = relationship(back_populates="stats")


class UserPreferences(Base):
    __tablename__ = "user_preferences"

    id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=new_uuid
    )
    user_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("user_profiles.user_id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    notifications_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    theme: Mapped[str] = mapped_column(
        String(10), nullable=False, default="system"
    )  # light, dark, system
    language: Mapped[str] = mapped_column(String(10), nullable=False, default="en")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=utcnow
    )

    profile: Mapped["UserProfile"] = relationship(back_populates="preferences")
