import enum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_id():
    """Generate a string UUID primary key"""
    return str(uuid.uuid4())


class UserRole(str, enum.Enum):
    PATIENT = "PATIENT"
    DOCTOR = "DOCTOR"
    ADMIN = "ADMIN"


class AppointmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class AppointmentType(str, enum.Enum):
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"


class ScheduleStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    BOOKED = "BOOKED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, enum.Enum):
    VNPAY = "VNPAY"
    MOMO = "MOMO"
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"


class NotificationType(str, enum.Enum):
    APPOINTMENT_CREATED = "APPOINTMENT_CREATED"
    APPOINTMENT_CONFIRMED = "APPOINTMENT_CONFIRMED"
    APPOINTMENT_CANCELLED = "APPOINTMENT_CANCELLED"
    APPOINTMENT_COMPLETED = "APPOINTMENT_COMPLETED"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_FAILED = "PAYMENT_FAILED"


# Statuses that still occupy a doctor's time window
ACTIVE_APPOINTMENT_STATUSES = (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), default=UserRole.PATIENT.value, nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient", back_populates="user", uselist=False)
    doctor = relationship("Doctor", back_populates="user", uselist=False)
    notifications = relationship("Notification", back_populates="user")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Patient(Base):
    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)
    blood_type = Column(String(10), nullable=True)
    allergies = Column(Text, nullable=True)
    emergency_contact = Column(String(255), nullable=True)
    insurance_number = Column(String(100), nullable=True)

    user = relationship("User", back_populates="patient")
    appointments = relationship("Appointment", back_populates="patient")
    payments = relationship("Payment", back_populates="patient")


class Specialty(Base):
    __tablename__ = "specialties"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), unique=True, nullable=False)
    description = Column(Text, nullable=True)

    doctors = relationship("Doctor", back_populates="specialty")


class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)
    license_number = Column(String(100), unique=True, nullable=False)
    specialty_id = Column(String(36), ForeignKey("specialties.id"), nullable=False)
    experience = Column(Integer, default=0, nullable=False)  # Years of practice
    biography = Column(Text, nullable=True)
    consultation_fee = Column(Numeric(10, 2), nullable=False)  # VND
    average_rating = Column(Float, default=0, nullable=False)
    total_reviews = Column(Integer, default=0, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)

    user = relationship("User", back_populates="doctor")
    specialty = relationship("Specialty", back_populates="doctors")
    clinic_links = relationship("ClinicDoctor", back_populates="doctor")
    appointments = relationship("Appointment", back_populates="doctor")


class Clinic(Base):
    __tablename__ = "clinics"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=False)
    phone = Column(String(50), nullable=False)
    email = Column(String(255), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    open_time = Column(String(5), nullable=False)  # HH:MM format
    close_time = Column(String(5), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    doctor_links = relationship("ClinicDoctor", back_populates="clinic")


class ClinicDoctor(Base):
    """Working hours template of a doctor at one clinic"""

    __tablename__ = "clinic_doctors"
    __table_args__ = (UniqueConstraint("clinic_id", "doctor_id", name="uq_clinic_doctor"),)

    id = Column(String(36), primary_key=True, default=generate_id)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=False)
    doctor_id = Column(String(36), ForeignKey("doctors.id"), nullable=False)
    working_days = Column(JSON, default=list, nullable=False)  # ["MONDAY", "TUESDAY", ...]
    start_time = Column(String(5), nullable=False)  # HH:MM format
    end_time = Column(String(5), nullable=False)

    clinic = relationship("Clinic", back_populates="doctor_links")
    doctor = relationship("Doctor", back_populates="clinic_links")


class Schedule(Base):
    """Declared slot; status is informational, the appointment index is the guard"""

    __tablename__ = "schedules"
    __table_args__ = (
        UniqueConstraint("doctor_id", "date", "start_time", name="uq_schedule_doctor_slot"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    doctor_id = Column(String(36), ForeignKey("doctors.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    status = Column(String(20), default=ScheduleStatus.AVAILABLE.value, nullable=False)
    note = Column(Text, nullable=True)


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # No double-booking: one live appointment per doctor/date/start time
        Index(
            "uq_appointments_doctor_slot_active",
            "doctor_id",
            "appointment_date",
            "start_time",
            unique=True,
            postgresql_where=text("status <> 'CANCELLED'"),
            sqlite_where=text("status <> 'CANCELLED'"),
        ),
        Index("ix_appointments_patient_date", "patient_id", "appointment_date"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False)
    doctor_id = Column(String(36), ForeignKey("doctors.id"), nullable=False, index=True)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=True)
    schedule_id = Column(String(36), ForeignKey("schedules.id"), nullable=True)

    appointment_date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)  # HH:MM format
    end_time = Column(String(5), nullable=False)
    type = Column(String(20), default=AppointmentType.OFFLINE.value, nullable=False)

    # Status workflow: PENDING → CONFIRMED → COMPLETED, CANCELLED from either live state
    status = Column(String(20), default=AppointmentStatus.PENDING.value, nullable=False, index=True)

    symptoms = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    meeting_url = Column(String(500), nullable=True)
    meeting_id = Column(String(100), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("Doctor", back_populates="appointments")
    clinic = relationship("Clinic")
    schedule = relationship("Schedule")
    payment = relationship("Payment", back_populates="appointment", uselist=False)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=generate_id)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), unique=True, nullable=False)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    method = Column(String(20), default=PaymentMethod.VNPAY.value, nullable=False)

    # PENDING → PAID | FAILED, only through gateway reconciliation; a later genuine
    # success still moves FAILED → PAID
    status = Column(String(20), default=PaymentStatus.PENDING.value, nullable=False)

    transaction_id = Column(String(255), unique=True, nullable=True)  # vnp_TransactionNo
    gateway_transaction_id = Column(String(255), nullable=True)  # vnp_BankTranNo
    gateway_response = Column(JSON, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    attempt_started_at = Column(DateTime, nullable=True)  # UTC, reset on every new gateway attempt
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    appointment = relationship("Appointment", back_populates="payment")
    patient = relationship("Patient", back_populates="payments")
    callbacks = relationship("PaymentCallback", back_populates="payment")


class PaymentCallback(Base):
    """One gateway result applied to a payment; a signature is only ever applied once"""

    __tablename__ = "payment_callbacks"

    id = Column(String(36), primary_key=True, default=generate_id)
    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=False, index=True)
    signature = Column(String(128), unique=True, nullable=False)  # vnp_SecureHash, lower-case
    transaction_no = Column(String(255), nullable=True)  # vnp_TransactionNo
    response_code = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False)  # payment status this callback produced
    created_at = Column(DateTime, server_default=func.now())

    payment = relationship("Payment", back_populates="callbacks")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="notifications")
