"""SQLAlchemy models for the booking domain."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    resources: Mapped[list["Resource"]] = relationship(back_populates="organization", cascade="all, delete-orphan")


class Resource(Base):
    __tablename__ = "resources"
    __table_args__ = (
        CheckConstraint("capacity IS NULL OR capacity >= 1", name="ck_resources_capacity_positive"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(
        String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    # NULL means no limit on simultaneous bookings.
    capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    organization: Mapped[Organization] = relationship(back_populates="resources")
    bookings: Mapped[list["Booking"]] = relationship(back_populates="resource", cascade="all, delete-orphan")
    unavailabilities: Mapped[list["Unavailability"]] = relationship(
        back_populates="resource", cascade="all, delete-orphan"
    )
    slots: Mapped[list["ResourceSlot"]] = relationship(back_populates="resource", cascade="all, delete-orphan")


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    resource_id: Mapped[str] = mapped_column(
        String, ForeignKey("resources.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(64), nullable=False, default="", index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    # "metadata" is reserved on declarative classes.
    details: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    resource: Mapped[Resource] = relationship(back_populates="bookings")


class Unavailability(Base):
    __tablename__ = "unavailabilities"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    resource_id: Mapped[str] = mapped_column(
        String, ForeignKey("resources.id", ondelete="CASCADE"), nullable=False, index=True
    )
    organization_id: Mapped[str] = mapped_column(
        String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    resource: Mapped[Resource] = relationship(back_populates="unavailabilities")


class ResourceSlot(Base):
    """A weekly opening window of a resource, e.g. monday 09:00-12:00."""

    __tablename__ = "resource_slots"
    __table_args__ = (
        CheckConstraint("quantity IS NULL OR quantity >= 1", name="ck_resource_slots_quantity_positive"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    resource_id: Mapped[str] = mapped_column(
        String, ForeignKey("resources.id", ondelete="CASCADE"), nullable=False, index=True
    )
    day: Mapped[str] = mapped_column(String(9), nullable=False)
    # HH:MM wall-clock times in the resource timezone
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    # bookings allowed against the slot per day; NULL means no limit
    quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    resource: Mapped[Resource] = relationship(back_populates="slots")
