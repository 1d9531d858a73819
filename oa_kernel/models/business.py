"""
Module: oa_kernel.models.business
Responsibility: ORM persistence for the business rows that ride on the
    approval engine (leave, overtime, business trip, transfer, resignation,
    probation, asset disposal, vehicle use, seal use, document sign-off and
    meeting-room booking) and the resources some of them govern (assets,
    vehicles, seals).

Architecture position: Kernel > Models.  May import from db/base.py only.
    Only the fields the side-effect dispatcher reads or writes matter to the
    kernel; the rest are carried so the rows are useful on their own.

Invariants enforced:
    - Each application row carries a status and a nullable
      approval_record_id pointing at the instance that governs it.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from oa_kernel.db.base import SoftDeleteMixin, TimestampedBase


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    IN_REVIEW = "in_review"
    SIGNED = "signed"


class AssetStatus(str, Enum):
    IDLE = "idle"
    IN_USE = "in_use"
    REPAIRING = "repairing"
    DISPOSED = "disposed"


class VehicleStatus(str, Enum):
    IDLE = "idle"
    IN_USE = "in_use"
    REPAIRING = "repairing"
    SCRAPPED = "scrapped"


class SealStatus(str, Enum):
    IN_STOCK = "in_stock"
    CHECKED_OUT = "checked_out"
    VOIDED = "voided"


class ApplicationBase(TimestampedBase, SoftDeleteMixin):
    """Columns shared by every row governed by an approval instance."""

    __abstract__ = True

    applicant_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=ApplicationStatus.PENDING.value, nullable=False,
    )
    approval_record_id: Mapped[int | None] = mapped_column(
        ForeignKey("approval_records.id"), nullable=True,
    )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id} status={self.status}>"


# ---------------------------------------------------------------------------
# Human resources
# ---------------------------------------------------------------------------


class LeaveApplication(ApplicationBase):
    __tablename__ = "leave_applications"

    leave_type: Mapped[str] = mapped_column(String(30), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    days: Mapped[Decimal] = mapped_column(Numeric(6, 1), default=0, nullable=False)
    reason: Mapped[str] = mapped_column(String(500), default="", nullable=False)


class OvertimeApplication(ApplicationBase):
    __tablename__ = "overtime_applications"

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    hours: Mapped[Decimal] = mapped_column(Numeric(6, 1), default=0, nullable=False)
    reason: Mapped[str] = mapped_column(String(500), default="", nullable=False)


class BusinessTripApplication(ApplicationBase):
    __tablename__ = "business_trip_applications"

    destination: Mapped[str] = mapped_column(String(200), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    purpose: Mapped[str] = mapped_column(String(500), default="", nullable=False)


class TransferApplication(ApplicationBase):
    __tablename__ = "transfer_applications"

    old_department_id: Mapped[int | None] = mapped_column(
        ForeignKey("departments.id"), nullable=True,
    )
    new_department_id: Mapped[int] = mapped_column(
        ForeignKey("departments.id"), nullable=False,
    )
    effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    reason: Mapped[str] = mapped_column(String(500), default="", nullable=False)


class ResignationApplication(ApplicationBase):
    __tablename__ = "resignation_applications"

    last_working_day: Mapped[date | None] = mapped_column(Date, nullable=True)
    handover_to: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), nullable=True,
    )
    reason: Mapped[str] = mapped_column(String(500), default="", nullable=False)


class ProbationReview(ApplicationBase):
    __tablename__ = "probation_reviews"

    probation_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    summary: Mapped[str] = mapped_column(Text, default="", nullable=False)


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------


class Asset(TimestampedBase, SoftDeleteMixin):
    __tablename__ = "assets"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=AssetStatus.IDLE.value, nullable=False,
    )
    disposed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )


class AssetDisposal(ApplicationBase):
    __tablename__ = "asset_disposals"

    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id"), nullable=False)
    method: Mapped[str] = mapped_column(String(30), default="scrap", nullable=False)
    reason: Mapped[str] = mapped_column(String(500), default="", nullable=False)


# ---------------------------------------------------------------------------
# Vehicles
# ---------------------------------------------------------------------------


class Vehicle(TimestampedBase, SoftDeleteMixin):
    __tablename__ = "vehicles"

    plate_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    brand: Mapped[str] = mapped_column(String(50), default="", nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=VehicleStatus.IDLE.value, nullable=False,
    )
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)


class VehicleApplication(ApplicationBase):
    __tablename__ = "vehicle_applications"

    vehicle_id: Mapped[int] = mapped_column(ForeignKey("vehicles.id"), nullable=False)
    purpose: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Seals
# ---------------------------------------------------------------------------


class Seal(TimestampedBase, SoftDeleteMixin):
    __tablename__ = "seals"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    keeper_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=SealStatus.IN_STOCK.value, nullable=False,
    )


class SealApplication(ApplicationBase):
    __tablename__ = "seal_applications"

    seal_id: Mapped[int] = mapped_column(ForeignKey("seals.id"), nullable=False)
    purpose: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    copies: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


# ---------------------------------------------------------------------------
# Documents and meetings
# ---------------------------------------------------------------------------


class Document(ApplicationBase):
    """Document sign-off.  Status follows DocumentStatus, not ApplicationStatus."""

    __tablename__ = "documents"

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    doc_number: Mapped[str] = mapped_column(String(50), default="", nullable=False)
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    sign_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class MeetingReservation(ApplicationBase):
    __tablename__ = "meeting_reservations"

    room_id: Mapped[int] = mapped_column(Integer, nullable=False)
    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
