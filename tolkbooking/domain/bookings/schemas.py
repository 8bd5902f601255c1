"""Booking domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import validate_email
from .enums import JobForOption, ResultStatus


class JobCreate(BaseModel):
    """Schema for a customer booking request"""

    from_language_id: int
    immediate: bool = False
    due_date: Optional[str] = None  # MM/DD/YYYY
    due_time: Optional[str] = None  # HH:MM
    duration: int = Field(gt=0)
    job_for: list[JobForOption] = []
    customer_phone_type: bool = False
    customer_physical_type: bool = False
    town: Optional[str] = None
    address: Optional[str] = None
    instructions: Optional[str] = None
    reference: Optional[str] = None
    user_email: Optional[str] = None
    specific_translator_id: Optional[int] = None
    by_admin: bool = False

    @field_validator("user_email")
    @classmethod
    def validate_user_email(cls, v):
        if v:
            return validate_email(v)
        return v


class AdminJobUpdate(BaseModel):
    """Schema for an admin edit of a booking; unset fields are left alone"""

    status: Optional[str] = None
    due: Optional[datetime] = None
    from_language_id: Optional[int] = None
    admin_comments: Optional[str] = None
    reference: Optional[str] = None
    session_time: Optional[str] = None
    translator: Optional[int] = None
    translator_email: Optional[str] = None

    @field_validator("translator_email")
    @classmethod
    def validate_translator_email(cls, v):
        if v:
            return validate_email(v)
        return v


class BookingResult(BaseModel):
    """Outcome of every booking operation"""

    status: ResultStatus
    message: Optional[str] = None
    data: Optional[Any] = None

    @classmethod
    def success(cls, data: Any = None, message: Optional[str] = None) -> "BookingResult":
        return cls(status=ResultStatus.SUCCESS, message=message, data=data)

    @classmethod
    def fail(cls, message: str, data: Any = None) -> "BookingResult":
        return cls(status=ResultStatus.FAIL, message=message, data=data)

    @classmethod
    def error(cls, message: str) -> "BookingResult":
        return cls(status=ResultStatus.ERROR, message=message)
