"""Data models for the care-plan engine."""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import declarative_base, relationship

from time_utils import ensure_utc

# SQLAlchemy base
Base = declarative_base()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, enum.Enum):
    """Account roles known to the engine."""

    PATIENT = "PATIENT"
    DOCTOR = "DOCTOR"
    CARETAKER = "CARETAKER"
    ADMIN = "ADMIN"


class TaskKind(str, enum.Enum):
    """Care-plan task kinds."""

    REGULAR = "REGULAR"
    REQUEST = "REQUEST"


class RequestType(str, enum.Enum):
    """Doctor request types carried by REQUEST tasks."""

    PREVISIT_QUESTIONNAIRE = "PREVISIT_QUESTIONNAIRE"
    BP_7_DAYS = "BP_7_DAYS"
    UPLOAD_ANALYSIS = "UPLOAD_ANALYSIS"


class Recurrence(str, enum.Enum):
    """Recurrence rules shared by tasks and reminders."""

    NONE = "NONE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class TaskStatus(str, enum.Enum):
    """Activity axis of a care-plan task."""

    ACTIVE = "ACTIVE"
    SNOOZED = "SNOOZED"
    COMPLETED = "COMPLETED"


class ApprovalStatus(str, enum.Enum):
    """Approval axis of a care-plan task."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class CheckInType(str, enum.Enum):
    """Audit entry kinds appended on task transitions."""

    NOTE = "NOTE"
    COMPLETE = "COMPLETE"
    REOPEN = "REOPEN"
    SNOOZE = "SNOOZE"


class ReminderChannel(str, enum.Enum):
    """Delivery channels a reminder can be addressed to."""

    EMAIL = "EMAIL"
    PUSH = "PUSH"
    SMS = "SMS"


class DeliveryStatus(str, enum.Enum):
    """Outcome of one delivery attempt."""

    SENT = "SENT"
    FAILED = "FAILED"


def _enum_column(enum_cls: type[enum.Enum], name: str) -> Enum:
    """Build a non-native, string-validated enum column type."""
    return Enum(enum_cls, name=name, native_enum=False, validate_strings=True, length=50)


# Database models
class User(Base):
    """Platform account; the engine only needs identity, email and role."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String(320), nullable=False, unique=True)
    name = Column(String(200), nullable=True)
    role = Column(_enum_column(UserRole, "user_role"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utc_now)


class PatientRecord(Base):
    """Established clinical relationship between a doctor and a patient."""

    __tablename__ = "patient_records"
    __table_args__ = (
        UniqueConstraint("doctor_id", "patient_id", name="uq_patient_records_pair"),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utc_now)


class Appointment(Base):
    """Booked appointment between a doctor and a patient."""

    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utc_now)


class CarePlanTask(Base):
    """Actionable obligation tracked on an approval axis and an activity axis."""

    __tablename__ = "care_plan_tasks"
    __table_args__ = (
        CheckConstraint(
            "approval_status != 'PENDING' OR reminder_id IS NULL",
            name="ck_care_plan_tasks_pending_without_reminder",
        ),
        CheckConstraint(
            "kind = 'REQUEST' OR request_type IS NULL",
            name="ck_care_plan_tasks_request_type_kind",
        ),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_by_doctor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    kind = Column(_enum_column(TaskKind, "task_kind"), nullable=False, default=TaskKind.REGULAR)
    request_type = Column(_enum_column(RequestType, "request_type"), nullable=True)
    request_meta = Column(JSON, nullable=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    due_at = Column(DateTime(timezone=True), nullable=True)
    recurrence = Column(
        _enum_column(Recurrence, "recurrence"), nullable=False, default=Recurrence.NONE
    )
    status = Column(
        _enum_column(TaskStatus, "task_status"), nullable=False, default=TaskStatus.ACTIVE
    )
    approval_status = Column(
        _enum_column(ApprovalStatus, "approval_status"),
        nullable=False,
        default=ApprovalStatus.APPROVED,
    )
    approval_requested_at = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    snoozed_until = Column(DateTime(timezone=True), nullable=True)
    protocol_key = Column(String(100), nullable=True)
    reminder_id = Column(
        Integer, ForeignKey("reminders.id", ondelete="SET NULL"), nullable=True
    )
    analysis_id = Column(Integer, nullable=True)
    document_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utc_now)
    updated_at = Column(DateTime(timezone=True), default=_utc_now)

    check_ins = relationship(
        "CarePlanCheckIn",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="CarePlanCheckIn.id",
    )


class CarePlanCheckIn(Base):
    """Append-only audit entry explaining a task transition."""

    __tablename__ = "care_plan_check_ins"

    id = Column(Integer, primary_key=True)
    task_id = Column(
        Integer,
        ForeignKey("care_plan_tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type = Column(_enum_column(CheckInType, "check_in_type"), nullable=False)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)

    task = relationship("CarePlanTask", back_populates="check_ins")


class Reminder(Base):
    """Time-stamped, channel-addressed notification obligation."""

    __tablename__ = "reminders"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    due_at = Column(DateTime(timezone=True), nullable=False)
    recurrence = Column(
        _enum_column(Recurrence, "reminder_recurrence"), nullable=False, default=Recurrence.NONE
    )
    channels = Column(JSON, nullable=False)
    analysis_id = Column(Integer, nullable=True)
    document_id = Column(Integer, nullable=True)
    # Traceability only; the owning task points here through reminder_id.
    task_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utc_now)
    updated_at = Column(DateTime(timezone=True), default=_utc_now)

    deliveries = relationship(
        "ReminderDelivery",
        back_populates="reminder",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ReminderDelivery.id",
    )


class ReminderDelivery(Base):
    """One send attempt of a reminder, recorded by the external dispatcher."""

    __tablename__ = "reminder_deliveries"

    id = Column(Integer, primary_key=True)
    reminder_id = Column(
        Integer,
        ForeignKey("reminders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    channel = Column(_enum_column(ReminderChannel, "delivery_channel"), nullable=False)
    status = Column(_enum_column(DeliveryStatus, "delivery_status"), nullable=False)
    error = Column(Text, nullable=True)
    attempted_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)

    reminder = relationship("Reminder", back_populates="deliveries")


class ReminderPreference(Base):
    """Per-user channel flags used for machine-generated reminders."""

    __tablename__ = "reminder_preferences"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    email = Column(Boolean, nullable=False, default=False)
    push = Column(Boolean, nullable=False, default=True)
    sms = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), default=_utc_now)


class CareRelationship(Base):
    """Delegated, capability-scoped access from a caretaker to a patient."""

    __tablename__ = "care_relationships"
    __table_args__ = (
        UniqueConstraint("caretaker_id", "patient_id", name="uq_care_relationships_pair"),
        CheckConstraint("caretaker_id != patient_id", name="ck_care_relationships_distinct"),
    )

    id = Column(Integer, primary_key=True)
    caretaker_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    permissions = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utc_now)
    updated_at = Column(DateTime(timezone=True), default=_utc_now)


class DiaryEntry(Base):
    """Patient health diary entry."""

    __tablename__ = "diary_entries"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    entry_date = Column(DateTime(timezone=True), nullable=False)
    systolic = Column(Integer, nullable=True)
    diastolic = Column(Integer, nullable=True)
    pulse = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utc_now)


_TIMESTAMP_FIELDS: dict[type, tuple[str, ...]] = {
    User: ("created_at",),
    PatientRecord: ("created_at",),
    Appointment: ("scheduled_at", "created_at"),
    CarePlanTask: (
        "due_at",
        "approval_requested_at",
        "approved_at",
        "rejected_at",
        "snoozed_until",
        "created_at",
        "updated_at",
    ),
    CarePlanCheckIn: ("created_at",),
    Reminder: ("due_at", "created_at", "updated_at"),
    ReminderDelivery: ("attempted_at",),
    ReminderPreference: ("updated_at",),
    CareRelationship: ("created_at", "updated_at"),
    DiaryEntry: ("entry_date", "created_at"),
}


def _register_timestamp_normalizer(model: type, fields: tuple[str, ...]) -> None:
    """Ensure loaded timestamps retain UTC awareness."""

    @event.listens_for(model, "load")
    def _normalize_on_load(target, _context: object) -> None:
        for field in fields:
            value = target.__dict__.get(field)
            if value is not None:
                target.__dict__[field] = ensure_utc(value)

    @event.listens_for(model, "refresh")
    def _normalize_on_refresh(target, _context: object, _attrs: object) -> None:
        _normalize_on_load(target, _context)


for _model, _fields in _TIMESTAMP_FIELDS.items():
    _register_timestamp_normalizer(_model, _fields)


@event.listens_for(CarePlanCheckIn, "before_update")
def _reject_check_in_update(_mapper, _connection, target: CarePlanCheckIn) -> None:
    """Check-ins are append-only."""
    raise ValueError(f"Check-in records are append-only: check_in_id={target.id}")
