from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class Card(Base):
    __tablename__ = "cards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    habit: Mapped["HabitProperties | None"] = relationship(
        "HabitProperties",
        back_populates="card",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )


class HabitProperties(Base):
    __tablename__ = "habit_properties"

    card_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cards.id", ondelete="CASCADE"), primary_key=True
    )
    dtstart_local: Mapped[str] = mapped_column(String(32), nullable=False)
    tzid: Mapped[str] = mapped_column(String(64), nullable=False)
    rrule: Mapped[str] = mapped_column(Text, nullable=False)
    rdates_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    exdates_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    unit_label: Mapped[str | None] = mapped_column(String(32), nullable=True)
    target_per_occurrence: Mapped[float] = mapped_column(Float, default=1, server_default="1", nullable=False)
    adherence_target: Mapped[float | None] = mapped_column(Float, nullable=True)
    streak_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    last_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="active", server_default="active", nullable=False)
    color_hex: Mapped[str | None] = mapped_column(String(16), nullable=True)
    icon: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    card: Mapped[Card] = relationship("Card", back_populates="habit")


class HabitInstance(Base):
    __tablename__ = "habit_instances_cache"
    __table_args__ = (Index("ix_habit_instances_cache_card_start", "card_id", "start_utc"),)

    card_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cards.id", ondelete="CASCADE"), primary_key=True
    )
    occurrence_key: Mapped[str] = mapped_column(String(16), primary_key=True)
    start_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_exception: Mapped[bool] = mapped_column(Boolean, default=False, server_default="0", nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class HabitLog(Base):
    __tablename__ = "habit_logs"
    __table_args__ = (UniqueConstraint("card_id", "occurrence_key", name="uq_habit_logs_card_occurrence"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    card_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, index=True
    )
    occurrence_key: Mapped[str] = mapped_column(String(16), nullable=False)
    done_quantity: Mapped[float] = mapped_column(Float, nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
