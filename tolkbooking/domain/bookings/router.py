"""Booking router - FastAPI endpoints for booking operations"""

import logging

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from ...database import get_db
from ...services.gateway import NotificationGateway, ProviderGateway
from ...services.notification_service import NotificationDispatcher
from .clock import Clock
from .schemas import AdminJobUpdate, BookingResult, JobCreate
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def get_clock() -> Clock:
    return Clock()


def get_notification_gateway() -> NotificationGateway:
    return ProviderGateway()


def get_booking_service(
    db: Session = Depends(get_db),
    gateway: NotificationGateway = Depends(get_notification_gateway),
    clock: Clock = Depends(get_clock),
) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db, NotificationDispatcher(gateway, clock))


# ============================================================================
# CUSTOMER
# ============================================================================


@router.post("", response_model=BookingResult)
async def create_job(
    data: JobCreate,
    user_id: int = Header(..., alias="X-User-Id"),
    service: BookingService = Depends(get_booking_service),
):
    """Create a booking for the calling customer"""
    return await service.create_job(user_id, data)


@router.post("/{job_id}/cancel", response_model=BookingResult)
async def cancel_job(
    job_id: int,
    user_id: int = Header(..., alias="X-User-Id"),
    service: BookingService = Depends(get_booking_service),
):
    """Withdraw (customer) or hand back (translator) a booking"""
    return await service.cancel_job(user_id, job_id)


# ============================================================================
# TRANSLATOR
# ============================================================================


@router.get("/eligible", response_model=BookingResult)
async def find_eligible_jobs(
    user_id: int = Header(..., alias="X-User-Id"),
    service: BookingService = Depends(get_booking_service),
):
    """Open bookings the calling translator may accept"""
    return await service.find_eligible_jobs_for_translator(user_id)


@router.post("/{job_id}/accept", response_model=BookingResult)
async def accept_job(
    job_id: int,
    user_id: int = Header(..., alias="X-User-Id"),
    service: BookingService = Depends(get_booking_service),
):
    return await service.accept_job(user_id, job_id)


@router.post("/{job_id}/accept-by-id", response_model=BookingResult)
async def accept_job_by_id(
    job_id: int,
    user_id: int = Header(..., alias="X-User-Id"),
    service: BookingService = Depends(get_booking_service),
):
    return await service.accept_job_by_id(user_id, job_id)


@router.post("/{job_id}/end", response_model=BookingResult)
async def end_job(
    job_id: int,
    user_id: int = Header(..., alias="X-User-Id"),
    service: BookingService = Depends(get_booking_service),
):
    return await service.end_job(job_id, user_id)


@router.post("/{job_id}/customer-no-show", response_model=BookingResult)
async def customer_no_show(job_id: int, service: BookingService = Depends(get_booking_service)):
    return await service.customer_no_show(job_id)


# ============================================================================
# ADMIN
# ============================================================================


@router.patch("/{job_id}", response_model=BookingResult)
async def admin_update_job(
    job_id: int,
    data: AdminJobUpdate,
    user_id: int = Header(..., alias="X-User-Id"),
    service: BookingService = Depends(get_booking_service),
):
    """Admin edit of status, due, language and translator"""
    return await service.admin_update_job(job_id, data, user_id)


@router.post("/{job_id}/reopen", response_model=BookingResult)
async def reopen_job(
    job_id: int,
    user_id: int = Header(..., alias="X-User-Id"),
    service: BookingService = Depends(get_booking_service),
):
    return await service.reopen_job(job_id, user_id)


@router.post("/{job_id}/notify-expired", response_model=BookingResult)
async def notify_expired(job_id: int, service: BookingService = Depends(get_booking_service)):
    return await service.notify_expired(job_id)


@router.post("/{job_id}/resend-push", response_model=BookingResult)
async def resend_notifications(job_id: int, service: BookingService = Depends(get_booking_service)):
    return await service.resend_notifications(job_id)


@router.post("/{job_id}/resend-sms", response_model=BookingResult)
async def resend_sms_notifications(job_id: int, service: BookingService = Depends(get_booking_service)):
    return await service.resend_sms_notifications(job_id)
