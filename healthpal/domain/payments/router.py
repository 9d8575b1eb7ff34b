"""Payment router - VNPay payment creation, return URL, IPN and status"""

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from ...auth import CurrentUser, get_current_user, require_role
from ...config import FRONTEND_URL, PAYMENT_RATE_LIMIT, PAYMENT_RATE_WINDOW
from ...database import get_db
from ...errors import AppError
from ...models import UserRole
from ...rate_limiter import client_ip_from_request, create_rate_limiter
from ..notifications.dispatcher import NotificationDispatcher, get_notification_dispatcher
from .schemas import (
    CreatePaymentRequest,
    CreatePaymentResponse,
    IPNResponse,
    PaymentAppointment,
    PaymentResponse,
    PaymentStatusResponse,
)
from .service import PaymentService
from .vnpay_service import VNPayService, get_vnpay_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])

payment_rate_limit = create_rate_limiter(
    limit=PAYMENT_RATE_LIMIT, window_seconds=PAYMENT_RATE_WINDOW, key_prefix="payment_create"
)


def get_payment_service(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    vnpay: VNPayService = Depends(get_vnpay_service),
) -> PaymentService:
    """Dependency injection for PaymentService"""
    return PaymentService(db, dispatcher, vnpay)


async def _callback_params(request: Request) -> dict:
    """Merge query string, form body and JSON body into one flat dict of strings"""
    params = dict(request.query_params)
    content_type = request.headers.get("content-type", "")

    if "application/json" in content_type:
        body = await request.json()
        if isinstance(body, dict):
            params.update({k: str(v) for k, v in body.items() if v is not None})
    elif "form" in content_type:
        form = await request.form()
        params.update({k: v for k, v in form.items() if isinstance(v, str)})

    return params


def _result_redirect(success: bool, appointment_id: str, message: str) -> RedirectResponse:
    query = urlencode(
        {"success": str(success).lower(), "appointmentId": appointment_id, "message": message}
    )
    return RedirectResponse(url=f"{FRONTEND_URL}/payment/result?{query}", status_code=302)


# ============================================================================
# PAYMENT CREATION
# ============================================================================


@router.post("/vnpay/create", response_model=CreatePaymentResponse)
async def create_vnpay_payment(
    data: CreatePaymentRequest,
    request: Request,
    _: None = Depends(payment_rate_limit),
    current_user: CurrentUser = Depends(require_role(UserRole.PATIENT)),
    service: PaymentService = Depends(get_payment_service),
):
    """Create a signed VNPay URL for one of the caller's appointments"""
    result = service.create_gateway_payment(
        data.appointmentId,
        current_user,
        return_url=str(data.returnUrl) if data.returnUrl else None,
        client_ip=client_ip_from_request(request),
    )
    return CreatePaymentResponse(
        paymentUrl=result["paymentUrl"],
        payment=PaymentResponse.from_model(result["payment"]),
        appointment=PaymentAppointment.from_model(result["appointment"]),
    )


# ============================================================================
# GATEWAY CALLBACKS (PUBLIC, SIGNATURE-VERIFIED)
# ============================================================================


@router.get("/vnpay/callback")
async def vnpay_callback(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    """Browser return URL; always redirects to the frontend result page"""
    params = dict(request.query_params)
    try:
        result = service.reconcile_callback(params)
    except AppError as e:
        logger.warning(f"⚠️ VNPay return rejected ({e.code}): {e.message}")
        return _result_redirect(False, params.get("vnp_TxnRef", ""), e.message)
    except Exception as e:
        logger.error(f"❌ VNPay return processing failed: {e}", exc_info=True)
        return _result_redirect(False, params.get("vnp_TxnRef", ""), "Payment processing failed")

    return _result_redirect(result.success, result.appointment_id, result.message)


@router.post("/vnpay/ipn", response_model=IPNResponse)
async def vnpay_ipn(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    """Server-to-server notification; VNPay only understands RspCode, never the error envelope"""
    try:
        params = await _callback_params(request)
        result = service.reconcile_callback(params)
    except Exception as e:
        logger.error(f"❌ VNPay IPN processing failed: {e}")
        return IPNResponse(RspCode="99", Message="error")

    logger.info(
        f"📨 VNPay IPN for {result.appointment_id} processed "
        f"(applied={result.applied}, success={result.success})"
    )
    return IPNResponse(RspCode="00", Message="success")


# ============================================================================
# STATUS
# ============================================================================


@router.get("/{payment_id}/status", response_model=PaymentStatusResponse)
async def get_payment_status(
    payment_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    payment = service.get_payment_status(payment_id, current_user)
    return PaymentStatusResponse(
        **PaymentResponse.from_model(payment).model_dump(),
        appointment=PaymentAppointment.from_model(payment.appointment)
        if payment.appointment
        else None,
    )
