"""Payment domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl


class CreatePaymentRequest(BaseModel):
    """Schema for starting a VNPay payment"""

    appointmentId: str = Field(min_length=1)
    returnUrl: Optional[HttpUrl] = None


class VNPayCallback(BaseModel):
    """
    Parameters VNPay sends to the return URL and the IPN endpoint

    Unknown vnp_* fields are kept because they take part in the signature.
    """

    model_config = ConfigDict(extra="allow")

    vnp_Amount: str = Field(pattern=r"^\d+$")
    vnp_TxnRef: str = Field(min_length=1)
    vnp_ResponseCode: str
    vnp_SecureHash: str = Field(min_length=1)
    vnp_TmnCode: Optional[str] = None
    vnp_TransactionNo: Optional[str] = None
    vnp_TransactionStatus: Optional[str] = None
    vnp_BankCode: Optional[str] = None
    vnp_BankTranNo: Optional[str] = None
    vnp_CardType: Optional[str] = None
    vnp_OrderInfo: Optional[str] = None
    vnp_PayDate: Optional[str] = Field(None, pattern=r"^\d{14}$")
    vnp_SecureHashType: Optional[str] = None


class PaymentResponse(BaseModel):
    id: str
    appointmentId: str
    amount: Decimal
    method: str
    status: str
    transactionId: Optional[str] = None
    paidAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None

    @classmethod
    def from_model(cls, payment) -> "PaymentResponse":
        return cls(
            id=payment.id,
            appointmentId=payment.appointment_id,
            amount=payment.amount,
            method=payment.method,
            status=payment.status,
            transactionId=payment.transaction_id,
            paidAt=payment.paid_at,
            createdAt=payment.created_at,
        )


class PaymentAppointment(BaseModel):
    id: str
    status: str
    appointmentDate: date
    startTime: str
    endTime: str
    doctorName: Optional[str] = None
    specialty: Optional[str] = None

    @classmethod
    def from_model(cls, appointment) -> "PaymentAppointment":
        doctor = appointment.doctor
        return cls(
            id=appointment.id,
            status=appointment.status,
            appointmentDate=appointment.appointment_date,
            startTime=appointment.start_time,
            endTime=appointment.end_time,
            doctorName=doctor.user.full_name if doctor and doctor.user else None,
            specialty=doctor.specialty.name if doctor and doctor.specialty else None,
        )


class CreatePaymentResponse(BaseModel):
    paymentUrl: str
    payment: PaymentResponse
    appointment: PaymentAppointment


class PaymentStatusResponse(PaymentResponse):
    appointment: Optional[PaymentAppointment] = None


class IPNResponse(BaseModel):
    RspCode: str
    Message: str
