"""Appointment router - FastAPI endpoints for booking and lifecycle operations"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import CurrentUser, get_current_user, require_role
from ...database import get_db
from ...models import AppointmentStatus, UserRole
from ..notifications.dispatcher import NotificationDispatcher, get_notification_dispatcher
from .schemas import (
    AppointmentCreate,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentUpdate,
    AvailableSlot,
    AvailableSlotsQuery,
    CancelRequest,
)
from .service import AppointmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


def get_appointment_service(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> AppointmentService:
    """Dependency injection for AppointmentService"""
    return AppointmentService(db, dispatcher)


def _to_list_response(result: dict) -> AppointmentListResponse:
    return AppointmentListResponse(
        data=[AppointmentResponse.from_model(a) for a in result["data"]],
        pagination=result["pagination"],
    )


# ============================================================================
# AVAILABILITY (PUBLIC)
# ============================================================================


@router.get("/available-slots", response_model=list[AvailableSlot])
async def get_available_slots(
    doctor_id: str = Query(..., alias="doctorId"),
    slot_date: date = Query(..., alias="date"),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Free 30 minute slots of a doctor on a date, across all of the doctor's clinics"""
    query = AvailableSlotsQuery(doctorId=doctor_id, date=slot_date)
    return service.get_available_slots(query.doctorId, query.date)


# ============================================================================
# BOOKING
# ============================================================================


@router.post("", response_model=AppointmentResponse, status_code=201)
async def create_appointment(
    data: AppointmentCreate,
    current_user: CurrentUser = Depends(require_role(UserRole.PATIENT)),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Book an appointment for the calling patient"""
    patient = service.get_patient_profile(current_user)
    appointment = service.create_appointment(patient.id, data)
    return AppointmentResponse.from_model(appointment)


# ============================================================================
# LISTING
# ============================================================================


@router.get("/patient/my", response_model=AppointmentListResponse)
async def get_my_patient_appointments(
    status: Optional[AppointmentStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    current_user: CurrentUser = Depends(require_role(UserRole.PATIENT)),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Get the calling patient's appointments, newest first"""
    result = service.list_patient_appointments(
        current_user, status=status.value if status else None, page=page, limit=limit
    )
    return _to_list_response(result)


@router.get("/doctor/my", response_model=AppointmentListResponse)
async def get_my_doctor_appointments(
    status: Optional[AppointmentStatus] = Query(None),
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    current_user: CurrentUser = Depends(require_role(UserRole.DOCTOR)),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Get the calling doctor's appointments, optionally within a date range"""
    result = service.list_doctor_appointments(
        current_user,
        status=status.value if status else None,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    return _to_list_response(result)


# ============================================================================
# SINGLE APPOINTMENT OPERATIONS
# ============================================================================


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.get_appointment(appointment_id, current_user)
    return AppointmentResponse.from_model(appointment)


@router.put("/{appointment_id}", response_model=AppointmentResponse)
@router.patch("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: str,
    data: AppointmentUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Update notes, meeting details, status or reschedule, depending on the caller's role"""
    appointment = service.update_appointment(appointment_id, data, current_user)
    return AppointmentResponse.from_model(appointment)


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: str,
    data: Optional[CancelRequest] = None,
    current_user: CurrentUser = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Cancel an appointment; frees the slot and notifies the other party"""
    reason = data.reason if data else None
    appointment = service.cancel_appointment(appointment_id, reason, current_user)
    return AppointmentResponse.from_model(appointment)


@router.post("/{appointment_id}/confirm", response_model=AppointmentResponse)
async def confirm_appointment(
    appointment_id: str,
    current_user: CurrentUser = Depends(require_role(UserRole.DOCTOR)),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.confirm_appointment(appointment_id, current_user)
    return AppointmentResponse.from_model(appointment)


@router.post("/{appointment_id}/complete", response_model=AppointmentResponse)
async def complete_appointment(
    appointment_id: str,
    current_user: CurrentUser = Depends(require_role(UserRole.DOCTOR)),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.complete_appointment(appointment_id, current_user)
    return AppointmentResponse.from_model(appointment)
