"""Appointment repository - Database operations for appointments and slots"""

from datetime import date
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import (
    ACTIVE_APPOINTMENT_STATUSES,
    Appointment,
    Clinic,
    ClinicDoctor,
    Doctor,
    Patient,
    Schedule,
    ScheduleStatus,
)


def _with_relations(query):
    return query.options(
        joinedload(Appointment.doctor).joinedload(Doctor.user),
        joinedload(Appointment.doctor).joinedload(Doctor.specialty),
        joinedload(Appointment.patient).joinedload(Patient.user),
        joinedload(Appointment.clinic),
        joinedload(Appointment.payment),
    )


class AppointmentRepository:
    """
    Repository for appointment database operations

    Write helpers only flush; the service owns the transaction so that the
    slot claim and the appointment row commit or roll back together.
    """

    # ==========================================
    # LOOKUPS
    # ==========================================

    @staticmethod
    def get_by_id(db: Session, appointment_id: str) -> Optional[Appointment]:
        return _with_relations(db.query(Appointment)).filter(Appointment.id == appointment_id).first()

    @staticmethod
    def get_doctor(db: Session, doctor_id: str) -> Optional[Doctor]:
        return db.query(Doctor).filter(Doctor.id == doctor_id).first()

    @staticmethod
    def get_patient(db: Session, patient_id: str) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.id == patient_id).first()

    @staticmethod
    def get_patient_by_user_id(db: Session, user_id: str) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.user_id == user_id).first()

    @staticmethod
    def get_doctor_by_user_id(db: Session, user_id: str) -> Optional[Doctor]:
        return db.query(Doctor).filter(Doctor.user_id == user_id).first()

    @staticmethod
    def get_clinic(db: Session, clinic_id: str) -> Optional[Clinic]:
        return db.query(Clinic).filter(Clinic.id == clinic_id).first()

    @staticmethod
    def get_working_hours(
        db: Session, doctor_id: str, clinic_id: Optional[str] = None
    ) -> list[ClinicDoctor]:
        """Working-hours templates of a doctor, optionally for one clinic"""
        query = (
            db.query(ClinicDoctor)
            .options(joinedload(ClinicDoctor.clinic))
            .filter(ClinicDoctor.doctor_id == doctor_id)
        )
        if clinic_id:
            query = query.filter(ClinicDoctor.clinic_id == clinic_id)
        return query.all()

    # ==========================================
    # CONFLICT QUERIES
    # ==========================================

    @staticmethod
    def find_overlapping(
        db: Session,
        appointment_date: date,
        start_time: str,
        end_time: str,
        doctor_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        exclude_id: Optional[str] = None,
    ) -> Optional[Appointment]:
        """
        First non-cancelled appointment intersecting [start_time, end_time)

        Times are zero-padded HH:mm so string comparison orders them correctly.
        """
        query = db.query(Appointment).filter(
            Appointment.appointment_date == appointment_date,
            Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
            Appointment.start_time < end_time,
            Appointment.end_time > start_time,
        )
        if doctor_id:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if patient_id:
            query = query.filter(Appointment.patient_id == patient_id)
        if exclude_id:
            query = query.filter(Appointment.id != exclude_id)
        return query.first()

    @staticmethod
    def get_booked_windows(db: Session, doctor_id: str, appointment_date: date) -> list[tuple[str, str]]:
        rows = (
            db.query(Appointment.start_time, Appointment.end_time)
            .filter(
                Appointment.doctor_id == doctor_id,
                Appointment.appointment_date == appointment_date,
                Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
            )
            .all()
        )
        return [(row.start_time, row.end_time) for row in rows]

    # ==========================================
    # SLOT CLAIMS
    # ==========================================

    @staticmethod
    def claim_schedule_slot(
        db: Session, doctor_id: str, slot_date: date, start_time: str, end_time: str
    ) -> Schedule:
        """Find or create the doctor's Schedule row for this start time and mark it BOOKED"""
        schedule = (
            db.query(Schedule)
            .filter(
                Schedule.doctor_id == doctor_id,
                Schedule.date == slot_date,
                Schedule.start_time == start_time,
            )
            .first()
        )
        if schedule is None:
            schedule = Schedule(
                doctor_id=doctor_id,
                date=slot_date,
                start_time=start_time,
                end_time=end_time,
                status=ScheduleStatus.BOOKED.value,
            )
            db.add(schedule)
        else:
            schedule.end_time = end_time
            schedule.status = ScheduleStatus.BOOKED.value
        db.flush()
        return schedule

    @staticmethod
    def release_schedule_slot(db: Session, schedule_id: Optional[str]) -> None:
        if not schedule_id:
            return
        db.query(Schedule).filter(Schedule.id == schedule_id).update(
            {Schedule.status: ScheduleStatus.AVAILABLE.value}, synchronize_session=False
        )

    # ==========================================
    # WRITES
    # ==========================================

    @staticmethod
    def add(db: Session, appointment: Appointment) -> Appointment:
        db.add(appointment)
        db.flush()
        return appointment

    @staticmethod
    def transition_status(
        db: Session, appointment_id: str, expected: str, target: str, **fields
    ) -> bool:
        """
        Conditional status write

        Returns:
            True if the row was still in ``expected`` and has been moved to ``target``
        """
        values = {Appointment.status: target}
        for name, value in fields.items():
            values[getattr(Appointment, name)] = value

        updated = (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.status == expected)
            .update(values, synchronize_session=False)
        )
        return updated == 1

    # ==========================================
    # LISTING
    # ==========================================

    @staticmethod
    def list_appointments(
        db: Session,
        patient_id: Optional[str] = None,
        doctor_id: Optional[str] = None,
        status: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Appointment], int]:
        """Returns one page of appointments and the total match count"""
        query = db.query(Appointment)
        if patient_id:
            query = query.filter(Appointment.patient_id == patient_id)
        if doctor_id:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if status:
            query = query.filter(Appointment.status == status)
        if date_from:
            query = query.filter(Appointment.appointment_date >= date_from)
        if date_to:
            query = query.filter(Appointment.appointment_date <= date_to)

        total = query.count()
        items = (
            _with_relations(query)
            .order_by(Appointment.appointment_date.desc(), Appointment.start_time.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total
