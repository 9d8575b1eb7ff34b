"""Appointment domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, HttpUrl, field_validator, model_validator

from ...models import AppointmentStatus, AppointmentType
from ...shared.validators import normalize_time, validate_not_past, validate_time_window

MAX_TEXT_LENGTH = 1000
MAX_REASON_LENGTH = 500


class AppointmentCreate(BaseModel):
    """Schema for booking a new appointment"""

    doctorId: str = Field(min_length=1)
    clinicId: Optional[str] = None
    appointmentDate: date
    startTime: str
    endTime: str
    type: AppointmentType = AppointmentType.OFFLINE
    symptoms: Optional[str] = Field(None, max_length=MAX_TEXT_LENGTH)
    notes: Optional[str] = Field(None, max_length=MAX_TEXT_LENGTH)

    @field_validator("startTime", "endTime")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return normalize_time(v)

    @field_validator("appointmentDate")
    @classmethod
    def validate_date(cls, v: date) -> date:
        return validate_not_past(v)

    @model_validator(mode="after")
    def validate_window(self):
        validate_time_window(self.startTime, self.endTime)
        return self


class AppointmentUpdate(BaseModel):
    """Schema for updating an appointment; unset fields are left alone"""

    status: Optional[AppointmentStatus] = None
    symptoms: Optional[str] = Field(None, max_length=MAX_TEXT_LENGTH)
    notes: Optional[str] = Field(None, max_length=MAX_TEXT_LENGTH)
    meetingUrl: Optional[HttpUrl] = None
    meetingId: Optional[str] = Field(None, max_length=100)

    # Rescheduling
    appointmentDate: Optional[date] = None
    startTime: Optional[str] = None
    endTime: Optional[str] = None

    @field_validator("startTime", "endTime")
    @classmethod
    def validate_time(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return normalize_time(v)

    @field_validator("appointmentDate")
    @classmethod
    def validate_date(cls, v: Optional[date]) -> Optional[date]:
        if v is None:
            return v
        return validate_not_past(v)

    @model_validator(mode="after")
    def validate_window(self):
        if self.startTime and self.endTime:
            validate_time_window(self.startTime, self.endTime)
        return self

    @property
    def reschedules(self) -> bool:
        return bool({"appointmentDate", "startTime", "endTime"} & self.model_fields_set)


class CancelRequest(BaseModel):
    """Schema for cancelling an appointment"""

    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class AvailableSlotsQuery(BaseModel):
    doctorId: str = Field(min_length=1)
    date: date

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: date) -> date:
        return validate_not_past(v)


class AvailableSlot(BaseModel):
    startTime: str
    endTime: str
    clinicId: str
    clinicName: str


class DoctorSummary(BaseModel):
    id: str
    name: Optional[str] = None
    specialty: Optional[str] = None
    consultationFee: Optional[Decimal] = None


class PatientSummary(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None


class ClinicSummary(BaseModel):
    id: str
    name: str
    address: Optional[str] = None


class PaymentSummary(BaseModel):
    id: str
    status: str
    amount: Decimal
    paidAt: Optional[datetime] = None


class AppointmentResponse(BaseModel):
    """Schema for appointment response"""

    id: str
    patientId: str
    doctorId: str
    clinicId: Optional[str] = None
    appointmentDate: date
    startTime: str
    endTime: str
    type: str
    status: str
    symptoms: Optional[str] = None
    notes: Optional[str] = None
    cancellationReason: Optional[str] = None
    meetingUrl: Optional[str] = None
    meetingId: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None
    doctor: Optional[DoctorSummary] = None
    patient: Optional[PatientSummary] = None
    clinic: Optional[ClinicSummary] = None
    payment: Optional[PaymentSummary] = None

    @classmethod
    def from_model(cls, appointment) -> "AppointmentResponse":
        doctor = appointment.doctor
        patient = appointment.patient
        clinic = appointment.clinic
        payment = appointment.payment

        return cls(
            id=appointment.id,
            patientId=appointment.patient_id,
            doctorId=appointment.doctor_id,
            clinicId=appointment.clinic_id,
            appointmentDate=appointment.appointment_date,
            startTime=appointment.start_time,
            endTime=appointment.end_time,
            type=appointment.type,
            status=appointment.status,
            symptoms=appointment.symptoms,
            notes=appointment.notes,
            cancellationReason=appointment.cancellation_reason,
            meetingUrl=appointment.meeting_url,
            meetingId=appointment.meeting_id,
            createdAt=appointment.created_at,
            updatedAt=appointment.updated_at,
            doctor=DoctorSummary(
                id=doctor.id,
                name=doctor.user.full_name if doctor.user else None,
                specialty=doctor.specialty.name if doctor.specialty else None,
                consultationFee=doctor.consultation_fee,
            )
            if doctor
            else None,
            patient=PatientSummary(
                id=patient.id,
                name=patient.user.full_name if patient.user else None,
                email=patient.user.email if patient.user else None,
            )
            if patient
            else None,
            clinic=ClinicSummary(id=clinic.id, name=clinic.name, address=clinic.address)
            if clinic
            else None,
            payment=PaymentSummary(
                id=payment.id, status=payment.status, amount=payment.amount, paidAt=payment.paid_at
            )
            if payment
            else None,
        )


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int


class AppointmentListResponse(BaseModel):
    data: list[AppointmentResponse]
    pagination: Pagination
