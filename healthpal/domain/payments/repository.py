"""Payment repository - Database operations for payments"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import (
    Appointment,
    AppointmentStatus,
    Doctor,
    Patient,
    Payment,
    PaymentCallback,
    PaymentMethod,
    PaymentStatus,
)


class PaymentRepository:
    """Repository for payment database operations"""

    @staticmethod
    def get_patient_by_user_id(db: Session, user_id: str) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.user_id == user_id).first()

    @staticmethod
    def get_appointment(
        db: Session, appointment_id: str, patient_id: Optional[str] = None
    ) -> Optional[Appointment]:
        """Appointment with doctor, patient and payment loaded, optionally scoped to a patient"""
        query = (
            db.query(Appointment)
            .options(
                joinedload(Appointment.doctor).joinedload(Doctor.user),
                joinedload(Appointment.doctor).joinedload(Doctor.specialty),
                joinedload(Appointment.patient).joinedload(Patient.user),
                joinedload(Appointment.payment),
            )
            .filter(Appointment.id == appointment_id)
        )
        if patient_id:
            query = query.filter(Appointment.patient_id == patient_id)
        return query.first()

    @staticmethod
    def get_by_id(db: Session, payment_id: str) -> Optional[Payment]:
        return (
            db.query(Payment)
            .options(joinedload(Payment.appointment))
            .filter(Payment.id == payment_id)
            .first()
        )

    @staticmethod
    def get_by_appointment_id(db: Session, appointment_id: str) -> Optional[Payment]:
        return db.query(Payment).filter(Payment.appointment_id == appointment_id).first()

    @staticmethod
    def create_pending(
        db: Session, appointment_id: str, patient_id: str, amount: Decimal
    ) -> Payment:
        payment = Payment(
            appointment_id=appointment_id,
            patient_id=patient_id,
            amount=amount,
            method=PaymentMethod.VNPAY.value,
            status=PaymentStatus.PENDING.value,
            attempt_started_at=datetime.utcnow(),
        )
        db.add(payment)
        db.flush()
        return payment

    @staticmethod
    def reset_to_pending(db: Session, payment_id: str, amount: Decimal) -> bool:
        """Restart a non-PAID payment for a new gateway attempt"""
        updated = (
            db.query(Payment)
            .filter(Payment.id == payment_id, Payment.status != PaymentStatus.PAID.value)
            .update(
                {
                    Payment.status: PaymentStatus.PENDING.value,
                    Payment.amount: amount,
                    Payment.method: PaymentMethod.VNPAY.value,
                    Payment.paid_at: None,
                    Payment.attempt_started_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    @staticmethod
    def record_callback(
        db: Session,
        payment_id: str,
        signature: str,
        transaction_no: Optional[str],
        response_code: str,
        status: str,
    ) -> PaymentCallback:
        """
        Claim a gateway callback for processing

        Raises:
            IntegrityError: The same signed payload was already applied
        """
        callback = PaymentCallback(
            payment_id=payment_id,
            signature=signature,
            transaction_no=transaction_no,
            response_code=response_code,
            status=status,
        )
        db.add(callback)
        db.flush()
        return callback

    @staticmethod
    def apply_gateway_result(db: Session, payment_id: str, status: str, **fields) -> bool:
        """
        Move a payment to its gateway outcome

        A failure only applies to a PENDING payment; a success also
        overrides an earlier failure of the same appointment.

        Returns:
            False when the payment is in no state to accept this outcome
        """
        values = {Payment.status: status}
        for name, value in fields.items():
            values[getattr(Payment, name)] = value

        accepted_from = [PaymentStatus.PENDING.value]
        if status == PaymentStatus.PAID.value:
            accepted_from.append(PaymentStatus.FAILED.value)

        updated = (
            db.query(Payment)
            .filter(Payment.id == payment_id, Payment.status.in_(accepted_from))
            .update(values, synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def confirm_pending_appointment(db: Session, appointment_id: str) -> bool:
        updated = (
            db.query(Appointment)
            .filter(
                Appointment.id == appointment_id,
                Appointment.status == AppointmentStatus.PENDING.value,
            )
            .update(
                {Appointment.status: AppointmentStatus.CONFIRMED.value},
                synchronize_session=False,
            )
        )
        return updated == 1
