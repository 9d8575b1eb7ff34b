"""Payment service - VNPay payment creation and callback reconciliation"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...auth import CurrentUser
from ...errors import (
    BusinessError,
    InvalidSignatureError,
    NotFoundError,
    ValidationFailed,
    format_validation_issues,
)
from ...models import (
    ACTIVE_APPOINTMENT_STATUSES,
    Appointment,
    NotificationType,
    Payment,
    PaymentStatus,
)
from ..notifications.dispatcher import NotificationDispatcher, appointment_event
from .repository import PaymentRepository
from .schemas import VNPayCallback
from .vnpay_service import VNPayService, parse_vnpay_date

logger = logging.getLogger(__name__)

VNPAY_SUCCESS_CODE = "00"


@dataclass
class ReconcileResult:
    """Outcome of processing one gateway callback"""

    success: bool
    applied: bool
    payment: Payment
    appointment_id: str
    message: str


class PaymentService:
    """Service layer for payment business logic"""

    def __init__(self, db: Session, dispatcher: NotificationDispatcher, vnpay: VNPayService):
        self.db = db
        self.repo = PaymentRepository()
        self.dispatcher = dispatcher
        self.vnpay = vnpay

    # ==========================================
    # PAYMENT CREATION
    # ==========================================

    def create_gateway_payment(
        self,
        appointment_id: str,
        user: CurrentUser,
        return_url: Optional[str] = None,
        client_ip: Optional[str] = None,
    ) -> dict:
        """
        Start (or restart) a VNPay payment for one of the caller's appointments

        Returns:
            Dict with paymentUrl, the PENDING payment and the appointment
        """
        patient = self.repo.get_patient_by_user_id(self.db, user.sub)
        appointment = (
            self.repo.get_appointment(self.db, appointment_id, patient_id=patient.id)
            if patient
            else None
        )
        if not appointment:
            raise NotFoundError("Appointment not found or access denied")

        if appointment.payment and appointment.payment.status == PaymentStatus.PAID.value:
            raise BusinessError("Appointment is already paid")
        if appointment.status not in ACTIVE_APPOINTMENT_STATUSES:
            raise BusinessError("Appointment is not in valid status for payment")

        doctor = appointment.doctor
        amount = Decimal(doctor.consultation_fee)
        doctor_name = doctor.user.full_name if doctor.user else "doctor"
        specialty = doctor.specialty.name if doctor.specialty else ""
        order_info = f"Thanh toan kham benh - BS {doctor_name} - {specialty}".rstrip(" -")

        payment = self._upsert_pending_payment(appointment, amount)

        payment_url = self.vnpay.create_payment_url(
            txn_ref=appointment.id,
            amount=amount,
            order_info=order_info,
            return_url=return_url,
            client_ip=client_ip,
        )
        logger.info(f"💳 Payment {payment.id} pending for appointment {appointment.id}")

        return {"paymentUrl": payment_url, "payment": payment, "appointment": appointment}

    def _upsert_pending_payment(self, appointment: Appointment, amount: Decimal) -> Payment:
        existing = appointment.payment
        if existing is None:
            try:
                payment = self.repo.create_pending(
                    self.db, appointment.id, appointment.patient_id, amount
                )
                self.db.commit()
                return payment
            except IntegrityError:
                # Another request created the row first
                self.db.rollback()
                logger.info(f"🔄 Payment for {appointment.id} created concurrently, re-reading")
                existing = self.repo.get_by_appointment_id(self.db, appointment.id)
                if existing is None:
                    raise

        if not self.repo.reset_to_pending(self.db, existing.id, amount):
            self.db.rollback()
            raise BusinessError("Appointment is already paid")
        self.db.commit()
        self.db.refresh(existing)
        return existing

    # ==========================================
    # GATEWAY RECONCILIATION
    # ==========================================

    def reconcile_callback(self, params: dict) -> ReconcileResult:
        """
        Apply a VNPay return/IPN callback to the stored payment

        Safe to call any number of times with the same parameters: each signed
        payload is applied at most once, and only an applied payload emits
        events. A failure reported for an attempt older than the current one is
        ignored; a success always wins over a stored failure.
        """
        try:
            callback = VNPayCallback.model_validate(params)
        except ValidationError as e:
            raise ValidationFailed(
                "Invalid VNPay callback", issues=format_validation_issues(e.errors())
            ) from e

        if not self.vnpay.verify_signature(params):
            logger.warning(f"🚫 Rejected VNPay callback for {callback.vnp_TxnRef}: bad signature")
            raise InvalidSignatureError("Invalid VNPay signature")

        appointment = self.repo.get_appointment(self.db, callback.vnp_TxnRef)
        if not appointment:
            raise NotFoundError("Appointment not found")

        payment = appointment.payment
        if payment is None:
            raise BusinessError("No payment was started for this appointment")

        paid_amount = Decimal(callback.vnp_Amount) / 100
        if paid_amount != Decimal(payment.amount):
            logger.warning(
                f"⚠️ VNPay amount mismatch for {appointment.id}: "
                f"got {paid_amount}, expected {payment.amount}"
            )
            raise BusinessError("Payment amount mismatch")

        is_paid = callback.vnp_ResponseCode == VNPAY_SUCCESS_CODE
        pay_date = parse_vnpay_date(callback.vnp_PayDate) if callback.vnp_PayDate else None
        if not is_paid and self._before_current_attempt(payment, pay_date):
            logger.info(f"⏪ Ignoring VNPay failure for {appointment.id} from an earlier attempt")
            return self._already_processed(appointment.id, payment)

        updates = {
            "gateway_transaction_id": callback.vnp_BankTranNo,
            "gateway_response": dict(params),
        }
        if is_paid:
            updates["transaction_id"] = callback.vnp_TransactionNo or None
            updates["paid_at"] = pay_date or datetime.utcnow()

        target = PaymentStatus.PAID.value if is_paid else PaymentStatus.FAILED.value
        appointment_id = appointment.id

        # Replays of an applied payload (even after a retry reset the payment) stop here
        try:
            self.repo.record_callback(
                self.db,
                payment.id,
                signature=callback.vnp_SecureHash.lower(),
                transaction_no=callback.vnp_TransactionNo,
                response_code=callback.vnp_ResponseCode,
                status=target,
            )
        except IntegrityError:
            self.db.rollback()
            return self._already_processed(appointment_id, payment)

        if not self.repo.apply_gateway_result(self.db, payment.id, target, **updates):
            self.db.rollback()
            return self._already_processed(appointment_id, payment)

        promoted = False
        if is_paid:
            promoted = self.repo.confirm_pending_appointment(self.db, appointment.id)
        self.db.commit()
        self.db.refresh(payment)

        if is_paid:
            logger.info(
                f"✅ Payment {payment.id} PAID for appointment {appointment.id}"
                f"{' (appointment confirmed)' if promoted else ''}"
            )
        else:
            logger.info(
                f"❌ Payment {payment.id} FAILED for appointment {appointment.id} "
                f"(code {callback.vnp_ResponseCode})"
            )

        self.dispatcher.dispatch(self._payment_events(appointment, payment, is_paid))

        return ReconcileResult(
            success=is_paid,
            applied=True,
            payment=payment,
            appointment_id=appointment.id,
            message="Payment successful" if is_paid else "Payment failed",
        )

    @staticmethod
    def _before_current_attempt(payment: Payment, pay_date: Optional[datetime]) -> bool:
        """VNPay dates have second precision, so compare at whole seconds"""
        if pay_date is None or payment.attempt_started_at is None:
            return False
        return pay_date < payment.attempt_started_at.replace(microsecond=0)

    def _already_processed(self, appointment_id: str, payment: Payment) -> ReconcileResult:
        self.db.refresh(payment)
        logger.info(
            f"🔁 Duplicate VNPay callback for {appointment_id}; payment already {payment.status}"
        )
        return ReconcileResult(
            success=payment.status == PaymentStatus.PAID.value,
            applied=False,
            payment=payment,
            appointment_id=appointment_id,
            message="Payment already processed",
        )

    @staticmethod
    def _payment_events(appointment: Appointment, payment: Payment, is_paid: bool) -> list:
        patient_user_id = appointment.patient.user_id if appointment.patient else None
        amount = str(payment.amount)

        if not is_paid:
            return appointment_event(
                patient_user_id,
                NotificationType.PAYMENT_FAILED,
                "Payment failed",
                "Your payment could not be completed. Please try again.",
                appointment.id,
                paymentId=payment.id,
            )

        doctor_user_id = appointment.doctor.user_id if appointment.doctor else None
        return appointment_event(
            patient_user_id,
            NotificationType.PAYMENT_SUCCESS,
            "Payment successful",
            f"Payment of {amount} VND received for your appointment on "
            f"{appointment.appointment_date}",
            appointment.id,
            paymentId=payment.id,
            amount=amount,
        ) + appointment_event(
            doctor_user_id,
            NotificationType.PAYMENT_SUCCESS,
            "Appointment paid",
            f"The appointment on {appointment.appointment_date} at {appointment.start_time} "
            f"has been paid",
            appointment.id,
            paymentId=payment.id,
            amount=amount,
        )

    # ==========================================
    # QUERIES
    # ==========================================

    def get_payment_status(self, payment_id: str, user: CurrentUser) -> Payment:
        payment = self.repo.get_by_id(self.db, payment_id)
        if payment and not user.is_admin:
            patient = self.repo.get_patient_by_user_id(self.db, user.sub)
            if not patient or payment.patient_id != patient.id:
                payment = None
        if not payment:
            raise NotFoundError("Payment not found")
        return payment
