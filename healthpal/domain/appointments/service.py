"""Appointment service - Booking lifecycle, slot conflicts and access control"""

import logging
import math
from datetime import date
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...auth import CurrentUser
from ...config import SLOT_DURATION_MINUTES
from ...errors import (
    BusinessError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationFailed,
)
from ...models import (
    ACTIVE_APPOINTMENT_STATUSES,
    Appointment,
    AppointmentStatus,
    AppointmentType,
    ClinicDoctor,
    Doctor,
    NotificationType,
    Patient,
    UserRole,
)
from ...shared.validators import (
    clinic_now,
    minutes_to_time,
    validate_time_window,
    weekday_name,
)
from ..notifications.dispatcher import NotificationDispatcher, appointment_event
from .repository import AppointmentRepository
from .schemas import AppointmentCreate, AppointmentUpdate, AvailableSlot
from .time_slots import fits_within, generate_time_slots, remove_booked

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING.value: {
        AppointmentStatus.CONFIRMED.value,
        AppointmentStatus.CANCELLED.value,
    },
    AppointmentStatus.CONFIRMED.value: {
        AppointmentStatus.COMPLETED.value,
        AppointmentStatus.CANCELLED.value,
    },
    AppointmentStatus.COMPLETED.value: set(),
    AppointmentStatus.CANCELLED.value: set(),
}

DOCTOR_UPDATABLE_FIELDS = {"status", "notes", "meetingUrl", "meetingId"}
PATIENT_UPDATABLE_FIELDS = {"symptoms", "notes", "appointmentDate", "startTime", "endTime"}

DOCTOR_SLOT_TAKEN = "Doctor already has an appointment at this time"
PATIENT_SLOT_TAKEN = "Patient already has an appointment at this time"


def validate_status_transition(current: str, target: str) -> None:
    """Raise InvalidTransitionError unless current -> target is an edge of the state machine"""
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(current, target)


class AppointmentService:
    """Service layer for appointment business logic"""

    def __init__(self, db: Session, dispatcher: NotificationDispatcher):
        self.db = db
        self.repo = AppointmentRepository()
        self.dispatcher = dispatcher

    # ==========================================
    # PROFILES & ACCESS
    # ==========================================

    def get_patient_profile(self, user: CurrentUser) -> Patient:
        patient = self.repo.get_patient_by_user_id(self.db, user.sub)
        if not patient:
            raise NotFoundError("Patient profile not found")
        return patient

    def get_doctor_profile(self, user: CurrentUser) -> Doctor:
        doctor = self.repo.get_doctor_by_user_id(self.db, user.sub)
        if not doctor:
            raise NotFoundError("Doctor profile not found")
        return doctor

    def check_user_access(self, user: CurrentUser, appointment: Appointment) -> bool:
        """Admins see everything; patients and doctors only their own appointments"""
        if user.is_admin:
            return True
        if user.role == UserRole.PATIENT:
            return appointment.patient is not None and appointment.patient.user_id == user.sub
        if user.role == UserRole.DOCTOR:
            return appointment.doctor is not None and appointment.doctor.user_id == user.sub
        return False

    def get_appointment(self, appointment_id: str, user: CurrentUser) -> Appointment:
        appointment = self.repo.get_by_id(self.db, appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")
        if not self.check_user_access(user, appointment):
            raise ForbiddenError("You do not have access to this appointment")
        return appointment

    # ==========================================
    # BOOKING
    # ==========================================

    def create_appointment(self, patient_id: str, data: AppointmentCreate) -> Appointment:
        """
        Book an appointment for a patient

        The overlap queries reject the common case early; the partial unique
        index on (doctor_id, appointment_date, start_time) settles races
        between concurrent bookings.
        """
        logger.info(
            f"📥 Booking request: patient={patient_id} doctor={data.doctorId} "
            f"{data.appointmentDate} {data.startTime}-{data.endTime}"
        )

        doctor = self.repo.get_doctor(self.db, data.doctorId)
        if not doctor:
            raise NotFoundError("Doctor not found")
        if not doctor.is_available:
            raise BusinessError("Doctor is not available for appointments")

        patient = self.repo.get_patient(self.db, patient_id)
        if not patient:
            raise NotFoundError("Patient not found")

        self._ensure_clinic(doctor, data.clinicId, data.type)
        self._ensure_within_working_hours(
            doctor.id, data.clinicId, data.appointmentDate, data.startTime, data.endTime
        )
        self._ensure_no_conflicts(
            doctor.id, patient.id, data.appointmentDate, data.startTime, data.endTime
        )

        try:
            schedule = self.repo.claim_schedule_slot(
                self.db, doctor.id, data.appointmentDate, data.startTime, data.endTime
            )
            appointment = self.repo.add(
                self.db,
                Appointment(
                    patient_id=patient.id,
                    doctor_id=doctor.id,
                    clinic_id=data.clinicId,
                    schedule_id=schedule.id,
                    appointment_date=data.appointmentDate,
                    start_time=data.startTime,
                    end_time=data.endTime,
                    type=data.type.value,
                    status=AppointmentStatus.PENDING.value,
                    symptoms=data.symptoms,
                    notes=data.notes,
                ),
            )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(
                f"⚠️ Booking lost a race for doctor {doctor.id} on "
                f"{data.appointmentDate} {data.startTime}: {e.orig}"
            )
            raise ConflictError(DOCTOR_SLOT_TAKEN) from e

        logger.info(f"✅ Appointment {appointment.id} created (PENDING)")

        patient_name = patient.user.full_name if patient.user else "A patient"
        self.dispatcher.dispatch(
            appointment_event(
                doctor.user_id,
                NotificationType.APPOINTMENT_CREATED,
                "New appointment request",
                f"{patient_name} booked {data.appointmentDate} {data.startTime}-{data.endTime}",
                appointment.id,
            )
        )
        return self.repo.get_by_id(self.db, appointment.id)

    def _ensure_clinic(self, doctor: Doctor, clinic_id: Optional[str], appointment_type) -> None:
        if not clinic_id:
            if appointment_type == AppointmentType.OFFLINE:
                raise BusinessError("Offline appointments require a clinic")
            return

        if not self.repo.get_clinic(self.db, clinic_id):
            raise NotFoundError("Clinic not found")
        if not self.repo.get_working_hours(self.db, doctor.id, clinic_id):
            raise BusinessError("Doctor does not work at this clinic")

    def _ensure_within_working_hours(
        self,
        doctor_id: str,
        clinic_id: Optional[str],
        appointment_date: date,
        start_time: str,
        end_time: str,
    ) -> ClinicDoctor:
        weekday = weekday_name(appointment_date)
        for template in self.repo.get_working_hours(self.db, doctor_id, clinic_id):
            working_days = {d.upper() for d in template.working_days or []}
            if weekday in working_days and fits_within(
                start_time, end_time, template.start_time, template.end_time
            ):
                return template
        raise BusinessError("Requested time is outside the doctor's working hours")

    def _ensure_no_conflicts(
        self,
        doctor_id: str,
        patient_id: str,
        appointment_date: date,
        start_time: str,
        end_time: str,
        exclude_id: Optional[str] = None,
    ) -> None:
        if self.repo.find_overlapping(
            self.db, appointment_date, start_time, end_time, doctor_id=doctor_id, exclude_id=exclude_id
        ):
            raise ConflictError(DOCTOR_SLOT_TAKEN)
        if self.repo.find_overlapping(
            self.db, appointment_date, start_time, end_time, patient_id=patient_id, exclude_id=exclude_id
        ):
            raise ConflictError(PATIENT_SLOT_TAKEN)

    # ==========================================
    # UPDATES
    # ==========================================

    def update_appointment(
        self, appointment_id: str, patch: AppointmentUpdate, user: CurrentUser
    ) -> Appointment:
        appointment = self.get_appointment(appointment_id, user)
        fields = set(patch.model_fields_set)
        if not fields:
            return appointment

        self._check_update_permission(user, appointment, fields)

        target_status = patch.status.value if patch.status is not None else None
        if target_status == appointment.status:
            target_status = None
        if target_status:
            validate_status_transition(appointment.status, target_status)

        try:
            if patch.reschedules:
                self._reschedule(appointment, patch)
            if "symptoms" in fields:
                appointment.symptoms = patch.symptoms
            if "notes" in fields:
                appointment.notes = patch.notes
            if "meetingUrl" in fields:
                appointment.meeting_url = str(patch.meetingUrl) if patch.meetingUrl else None
            if "meetingId" in fields:
                appointment.meeting_id = patch.meetingId
            # Field edits and the status change commit together or not at all
            if target_status:
                self._stage_transition(appointment, target_status)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Reschedule of appointment {appointment_id} lost a race: {e.orig}")
            raise ConflictError(DOCTOR_SLOT_TAKEN) from e

        logger.info(f"✏️ Appointment {appointment_id} updated: {', '.join(sorted(fields))}")

        if target_status:
            return self._after_transition(appointment, target_status, user)
        return self.repo.get_by_id(self.db, appointment_id)

    def _check_update_permission(
        self, user: CurrentUser, appointment: Appointment, fields: set[str]
    ) -> None:
        if user.is_admin:
            return

        if user.role == UserRole.PATIENT:
            if appointment.status != AppointmentStatus.PENDING.value:
                raise ForbiddenError("Patients can only update pending appointments")
            allowed = PATIENT_UPDATABLE_FIELDS
        else:
            allowed = DOCTOR_UPDATABLE_FIELDS

        denied = fields - allowed
        if denied:
            raise ForbiddenError(f"You cannot update: {', '.join(sorted(denied))}")

    def _reschedule(self, appointment: Appointment, patch: AppointmentUpdate) -> None:
        """Move the appointment to a new window; the caller commits"""
        if appointment.status not in ACTIVE_APPOINTMENT_STATUSES:
            raise BusinessError("Only pending or confirmed appointments can be rescheduled")

        new_date = patch.appointmentDate or appointment.appointment_date
        new_start = patch.startTime or appointment.start_time
        new_end = patch.endTime or appointment.end_time
        try:
            validate_time_window(new_start, new_end)
        except ValueError as e:
            raise ValidationFailed(str(e)) from e

        self._ensure_within_working_hours(
            appointment.doctor_id, appointment.clinic_id, new_date, new_start, new_end
        )
        self._ensure_no_conflicts(
            appointment.doctor_id,
            appointment.patient_id,
            new_date,
            new_start,
            new_end,
            exclude_id=appointment.id,
        )

        previous_schedule_id = appointment.schedule_id
        schedule = self.repo.claim_schedule_slot(
            self.db, appointment.doctor_id, new_date, new_start, new_end
        )
        appointment.appointment_date = new_date
        appointment.start_time = new_start
        appointment.end_time = new_end
        appointment.schedule_id = schedule.id
        if previous_schedule_id != schedule.id:
            self.repo.release_schedule_slot(self.db, previous_schedule_id)

        logger.info(
            f"📅 Appointment {appointment.id} rescheduled to {new_date} {new_start}-{new_end}"
        )

    # ==========================================
    # STATUS TRANSITIONS
    # ==========================================

    def confirm_appointment(self, appointment_id: str, user: CurrentUser) -> Appointment:
        appointment = self._get_for_assigned_doctor(appointment_id, user, "confirm")
        if appointment.status != AppointmentStatus.PENDING.value:
            raise BusinessError("Only pending appointments can be confirmed")
        return self._transition(appointment, AppointmentStatus.CONFIRMED.value, user)

    def complete_appointment(self, appointment_id: str, user: CurrentUser) -> Appointment:
        appointment = self._get_for_assigned_doctor(appointment_id, user, "complete")
        if appointment.status != AppointmentStatus.CONFIRMED.value:
            raise BusinessError("Only confirmed appointments can be completed")
        return self._transition(appointment, AppointmentStatus.COMPLETED.value, user)

    def cancel_appointment(
        self, appointment_id: str, reason: Optional[str], user: CurrentUser
    ) -> Appointment:
        appointment = self.get_appointment(appointment_id, user)
        if appointment.status == AppointmentStatus.CANCELLED.value:
            raise BusinessError("Appointment is already cancelled")
        if appointment.status == AppointmentStatus.COMPLETED.value:
            raise BusinessError("Cannot cancel completed appointment")
        return self._transition(appointment, AppointmentStatus.CANCELLED.value, user, reason)

    def _get_for_assigned_doctor(
        self, appointment_id: str, user: CurrentUser, action: str
    ) -> Appointment:
        appointment = self.repo.get_by_id(self.db, appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")
        if appointment.doctor is None or appointment.doctor.user_id != user.sub:
            raise ForbiddenError(f"Only the assigned doctor can {action} this appointment")
        return appointment

    def _apply_status(self, appointment: Appointment, target: str, **fields) -> None:
        """Conditional status write; raises when another request moved the row first"""
        current = appointment.status
        validate_status_transition(current, target)
        if not self.repo.transition_status(self.db, appointment.id, current, target, **fields):
            self.db.rollback()
            logger.warning(
                f"⚠️ Appointment {appointment.id} left {current} before {target} was applied"
            )
            raise BusinessError(f"Appointment is no longer {current.lower()}")

    def _stage_transition(
        self, appointment: Appointment, target: str, reason: Optional[str] = None
    ) -> None:
        """Write the status change into the open transaction; the caller commits"""
        if target == AppointmentStatus.CANCELLED.value:
            self._apply_status(appointment, target, cancellation_reason=reason)
            self.repo.release_schedule_slot(self.db, appointment.schedule_id)
        else:
            self._apply_status(appointment, target)

    def _transition(
        self,
        appointment: Appointment,
        target: str,
        user: CurrentUser,
        reason: Optional[str] = None,
    ) -> Appointment:
        self._stage_transition(appointment, target, reason)
        self.db.commit()
        return self._after_transition(appointment, target, user, reason)

    def _after_transition(
        self,
        appointment: Appointment,
        target: str,
        user: CurrentUser,
        reason: Optional[str] = None,
    ) -> Appointment:
        """Log and notify once a status change is committed"""
        if target == AppointmentStatus.CONFIRMED.value:
            logger.info(f"✅ Appointment {appointment.id} confirmed")
            events = appointment_event(
                self._patient_user_id(appointment),
                NotificationType.APPOINTMENT_CONFIRMED,
                "Appointment confirmed",
                f"Dr. {self._doctor_name(appointment)} confirmed your appointment on "
                f"{appointment.appointment_date} at {appointment.start_time}",
                appointment.id,
            )
        elif target == AppointmentStatus.COMPLETED.value:
            logger.info(f"🏁 Appointment {appointment.id} completed")
            events = appointment_event(
                self._patient_user_id(appointment),
                NotificationType.APPOINTMENT_COMPLETED,
                "Appointment completed",
                f"Your appointment with Dr. {self._doctor_name(appointment)} has been completed",
                appointment.id,
            )
        else:
            logger.info(f"🚫 Appointment {appointment.id} cancelled by {user.role.value}")
            events = self._cancellation_events(appointment, reason, user)

        self.dispatcher.dispatch(events)
        return self.repo.get_by_id(self.db, appointment.id)

    def _cancellation_events(
        self, appointment: Appointment, reason: Optional[str], user: CurrentUser
    ) -> list:
        """Tell whichever parties did not cancel; both when an admin did"""
        patient_user_id = self._patient_user_id(appointment)
        doctor_user_id = appointment.doctor.user_id if appointment.doctor else None
        recipients = []
        if user.sub != patient_user_id:
            recipients.append(patient_user_id)
        if user.sub != doctor_user_id:
            recipients.append(doctor_user_id)

        message = f"Appointment on {appointment.appointment_date} at {appointment.start_time} was cancelled"
        if reason:
            message = f"{message}: {reason}"

        events = []
        for recipient in recipients:
            events.extend(
                appointment_event(
                    recipient,
                    NotificationType.APPOINTMENT_CANCELLED,
                    "Appointment cancelled",
                    message,
                    appointment.id,
                    cancelledBy=user.role.value,
                )
            )
        return events

    @staticmethod
    def _patient_user_id(appointment: Appointment) -> Optional[str]:
        return appointment.patient.user_id if appointment.patient else None

    @staticmethod
    def _doctor_name(appointment: Appointment) -> str:
        doctor = appointment.doctor
        if doctor and doctor.user:
            return doctor.user.full_name
        return "your doctor"

    # ==========================================
    # AVAILABILITY
    # ==========================================

    def get_available_slots(self, doctor_id: str, slot_date: date) -> list[AvailableSlot]:
        """
        Free fixed-length slots of a doctor on a date, across all clinics

        Windows come from the ClinicDoctor templates whose working days include
        the date's weekday; windows overlapping a live appointment are removed.
        """
        doctor = self.repo.get_doctor(self.db, doctor_id)
        if not doctor:
            raise NotFoundError("Doctor not found")
        if not doctor.is_available:
            return []

        weekday = weekday_name(slot_date)
        booked = self.repo.get_booked_windows(self.db, doctor_id, slot_date)

        # Slots that already started today (clinic time) are not bookable
        cutoff = None
        now = clinic_now()
        if slot_date == now.date():
            cutoff = minutes_to_time(now.hour * 60 + now.minute)

        slots = []
        for template in self.repo.get_working_hours(self.db, doctor_id):
            if weekday not in {d.upper() for d in template.working_days or []}:
                continue
            windows = generate_time_slots(
                template.start_time, template.end_time, SLOT_DURATION_MINUTES
            )
            for start, end in remove_booked(windows, booked):
                if cutoff and start <= cutoff:
                    continue
                slots.append(
                    AvailableSlot(
                        startTime=start,
                        endTime=end,
                        clinicId=template.clinic_id,
                        clinicName=template.clinic.name,
                    )
                )

        slots.sort(key=lambda s: (s.startTime, s.clinicName))
        logger.debug(f"🔍 {len(slots)} free slot(s) for doctor {doctor_id} on {slot_date}")
        return slots

    # ==========================================
    # LISTING
    # ==========================================

    def list_patient_appointments(
        self,
        user: CurrentUser,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        patient = self.get_patient_profile(user)
        items, total = self.repo.list_appointments(
            self.db, patient_id=patient.id, status=status, page=page, limit=limit
        )
        return self._paginate(items, total, page, limit)

    def list_doctor_appointments(
        self,
        user: CurrentUser,
        status: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        doctor = self.get_doctor_profile(user)
        items, total = self.repo.list_appointments(
            self.db,
            doctor_id=doctor.id,
            status=status,
            date_from=date_from,
            date_to=date_to,
            page=page,
            limit=limit,
        )
        return self._paginate(items, total, page, limit)

    @staticmethod
    def _paginate(items: list[Appointment], total: int, page: int, limit: int) -> dict:
        return {
            "data": items,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit) if limit else 0,
            },
        }
