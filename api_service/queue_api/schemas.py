"""Pydantic schemas for request bodies and directory documents.

Request bodies accept the camelCase keys the web client sends
(``hospitalId``, ``appointmentDateTime`` ...) as well as snake_case names.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from bson import ObjectId
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

HH_MM_PATTERN = r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$"


class TicketStatus(str, Enum):
    """Persisted ticket states."""

    BOOKED = "booked"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class PatientType(str, Enum):
    NEW = "new"
    FOLLOW_UP = "follow_up"
    EMERGENCY = "emergency"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    EMERGENCY = "emergency"


class CounterType(str, Enum):
    OPD = "OPD"
    GENERAL = "General"
    EMERGENCY = "Emergency"
    SPECIALIST = "Specialist"
    PHARMACY = "Pharmacy"
    LAB = "Lab"
    RADIOLOGY = "Radiology"
    BILLING = "Billing"


def _check_object_id(value: Optional[str]) -> Optional[str]:
    if value is not None and not ObjectId.is_valid(value):
        raise ValueError("must be a valid id")
    return value


class CamelModel(BaseModel):
    """Base model accepting camelCase aliases and field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class InsuranceInfo(CamelModel):
    has_insurance: bool = False
    provider: Optional[str] = None
    policy_number: Optional[str] = None


class TicketNotes(CamelModel):
    patient: Optional[str] = None
    staff: Optional[str] = None
    doctor: Optional[str] = None


class BookTicketRequest(CamelModel):
    """Body of ``POST /api/tickets/book``."""

    hospital_id: str
    counter_id: str
    appointment_date_time: datetime
    reason_for_visit: Optional[str] = Field(default=None, max_length=500)
    symptoms: List[str] = Field(default_factory=list)
    patient_type: PatientType = PatientType.NEW
    priority: Priority = Priority.NORMAL
    insurance: InsuranceInfo = Field(default_factory=InsuranceInfo)

    @field_validator("hospital_id", "counter_id")
    @classmethod
    def check_ids(cls, value):
        return _check_object_id(value)


class StatusUpdateRequest(CamelModel):
    """Body of ``PUT /api/tickets/{id}/status``."""

    status: TicketStatus
    cancellation_reason: Optional[str] = Field(default=None, max_length=500, validate_default=True)
    notes: Optional[TicketNotes] = None

    @field_validator("cancellation_reason")
    @classmethod
    def reason_required_for_cancellation(cls, value, info: ValidationInfo):
        if info.data.get("status") == TicketStatus.CANCELLED and not value:
            raise ValueError("cancellationReason is required when cancelling")
        return value


class RatingRequest(CamelModel):
    """Body of ``POST /api/tickets/{id}/rating``."""

    service_rating: Optional[int] = Field(default=None, ge=1, le=5)
    doctor_rating: Optional[int] = Field(default=None, ge=1, le=5)
    facility_rating: Optional[int] = Field(default=None, ge=1, le=5)
    overall_rating: int = Field(ge=1, le=5)
    feedback: Optional[str] = Field(default=None, max_length=1000)


class WorkingHours(BaseModel):
    start: str = Field(pattern=HH_MM_PATTERN)
    end: str = Field(pattern=HH_MM_PATTERN)

    @property
    def start_hour(self) -> int:
        return int(self.start.split(":")[0])

    @property
    def end_hour(self) -> int:
        return int(self.end.split(":")[0])


class CounterSchema(BaseModel):
    """A service counter, stored in its own collection."""

    id: Optional[str] = None
    hospital_id: str
    name: str = Field(min_length=1)
    type: CounterType
    department: str = Field(min_length=1)
    is_active: bool = True
    current_queue_length: int = Field(default=0, ge=0)
    average_service_time: int = Field(default=15, ge=1)
    working_hours: WorkingHours
    max_capacity_per_hour: int = Field(default=30, ge=1)
    specialization: Optional[str] = None
    version: int = Field(default=0, ge=0)

    @field_validator("id", "hospital_id")
    @classmethod
    def check_ids(cls, value):
        return _check_object_id(value)


class Address(BaseModel):
    street: str
    city: str
    state: str
    zip_code: str
    country: str = "India"


class BedCapacity(BaseModel):
    total: int = Field(default=0, ge=0)
    available: int = Field(default=0, ge=0)
    icu: int = Field(default=0, ge=0)
    general: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def within_total(self):
        if self.available > self.total:
            raise ValueError("Available beds cannot exceed total bed capacity")
        if self.icu + self.general > self.total:
            raise ValueError("Sum of ICU and general beds cannot exceed total capacity")
        return self


class HospitalSchema(BaseModel):
    """Hospital document as written by the directory."""

    id: Optional[str] = None
    name: str = Field(min_length=1, max_length=100)
    email: str
    phone: str = Field(pattern=r"^\+?[\d\s\-\(\)]+$")
    address: Address
    type: str
    category: str
    specialties: List[str] = Field(default_factory=list)
    emergency_services: bool = False
    bed_capacity: BedCapacity = Field(default_factory=BedCapacity)
    is_active: bool = True
    is_verified: bool = False

    @field_validator("id")
    @classmethod
    def check_id(cls, value):
        return _check_object_id(value)
