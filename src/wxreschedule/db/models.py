"""SQLAlchemy ORM models for all persistent tables."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(256), default="")
    name: Mapped[str] = mapped_column(String(256), default="")
    role: Mapped[str] = mapped_column(String(16), default="STUDENT")
    training_level: Mapped[str | None] = mapped_column(String(32), nullable=True)
    # Instructor weekly schedule + exceptions, JSON
    availability_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    notifications: Mapped[list[NotificationRow]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class BookingRow(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    student_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    instructor_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    departure_location: Mapped[str] = mapped_column(String(64))
    arrival_location: Mapped[str] = mapped_column(String(64))
    scheduled_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    scheduled_end: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    duration_minutes: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(32), default="SCHEDULED", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    student: Mapped[UserRow] = relationship(foreign_keys=[student_id])
    instructor: Mapped[UserRow] = relationship(foreign_keys=[instructor_id])
    weather_checks: Mapped[list[WeatherCheckRow]] = relationship(
        back_populates="booking", cascade="all, delete-orphan"
    )
    candidates: Mapped[list[RescheduleCandidateRow]] = relationship(
        back_populates="booking", cascade="all, delete-orphan"
    )


class WeatherCheckRow(Base):
    """Append-only audit record of one route evaluation."""

    __tablename__ = "weather_checks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("bookings.id", ondelete="CASCADE"), index=True
    )
    checked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    overall_status: Mapped[str] = mapped_column(String(16))
    waypoint_data_json: Mapped[str] = mapped_column(Text, default="[]")
    violation_summary_json: Mapped[str] = mapped_column(Text, default="[]")
    violation_reasons_json: Mapped[str] = mapped_column(Text, default="[]")

    booking: Mapped[BookingRow] = relationship(back_populates="weather_checks")


class RescheduleCandidateRow(Base):
    __tablename__ = "reschedule_candidates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("bookings.id", ondelete="CASCADE"), index=True
    )
    proposed_datetime: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    reasoning: Mapped[str] = mapped_column(Text, default="")
    confidence: Mapped[float] = mapped_column(Float)
    weather_safe: Mapped[bool] = mapped_column(Boolean, default=True)
    instructor_available: Mapped[bool] = mapped_column(Boolean, default=True)
    # Disposition, owned by the booking flow
    is_selected: Mapped[bool] = mapped_column(Boolean, default=False)
    selected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    metadata_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    booking: Mapped[BookingRow] = relationship(back_populates="candidates")


class NotificationRow(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    booking_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True
    )
    type: Mapped[str] = mapped_column(String(32))
    channel: Mapped[str] = mapped_column(String(16), default="IN_APP")
    title: Mapped[str] = mapped_column(String(256))
    message: Mapped[str] = mapped_column(Text, default="")
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    user: Mapped[UserRow] = relationship(back_populates="notifications")
