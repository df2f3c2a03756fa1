"""Pure rules for tickets: fees, documents, transitions and eligibility.

Ticket arguments are the raw MongoDB documents (snake_case keys). Every
function that depends on the clock takes an optional ``now`` so callers and
tests can pin it.
"""

import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, FrozenSet, List, Optional
from zoneinfo import ZoneInfo

from queue_api.config import settings
from queue_api.schemas import PatientType, TicketStatus

CONSULTATION_FEES: Dict[str, int] = {
    "OPD": 500,
    "General": 300,
    "Emergency": 1000,
    "Specialist": 800,
    "Pharmacy": 0,
    "Lab": 200,
    "Radiology": 600,
    "Billing": 0,
}
DEFAULT_CONSULTATION_FEE = 300
FOLLOW_UP_FEE_FACTOR = 0.7
FEE_CURRENCY = "INR"

# Month-day pairs, matched regardless of year.
HOLIDAYS: FrozenSet[str] = frozenset({"01-01", "01-26", "08-15", "10-02"})

NON_TERMINAL_STATUSES: FrozenSet[TicketStatus] = frozenset(
    {TicketStatus.BOOKED, TicketStatus.CONFIRMED, TicketStatus.IN_PROGRESS}
)

VALID_TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
    TicketStatus.BOOKED: frozenset(
        {TicketStatus.CONFIRMED, TicketStatus.CANCELLED, TicketStatus.NO_SHOW}
    ),
    TicketStatus.CONFIRMED: frozenset(
        {TicketStatus.IN_PROGRESS, TicketStatus.CANCELLED, TicketStatus.NO_SHOW}
    ),
    TicketStatus.IN_PROGRESS: frozenset(
        {TicketStatus.COMPLETED, TicketStatus.CANCELLED}
    ),
    TicketStatus.COMPLETED: frozenset(),
    TicketStatus.CANCELLED: frozenset(),
    TicketStatus.NO_SHOW: frozenset(),
}

CHECK_IN_OPENS_BEFORE = timedelta(minutes=30)
CHECK_IN_CLOSES_AFTER = timedelta(minutes=15)
ARRIVAL_LEAD = timedelta(minutes=15)


def utcnow() -> datetime:
    """Current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def local_zone() -> ZoneInfo:
    return ZoneInfo(settings.local_timezone)


def ensure_aware(moment: datetime) -> datetime:
    """Attach the local hospital timezone to naive datetimes."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=local_zone())
    return moment


def to_local(moment: datetime) -> datetime:
    return ensure_aware(moment).astimezone(local_zone())


def get_consultation_fee(counter_type: str, patient_type: str) -> int:
    """Look up the counter fee, discounting follow-up visits by 30%."""
    fee = CONSULTATION_FEES.get(counter_type, DEFAULT_CONSULTATION_FEE)
    if patient_type == PatientType.FOLLOW_UP.value:
        fee = fee * FOLLOW_UP_FEE_FACTOR
    return int(math.floor(fee + 0.5))


def get_required_documents(counter_type: str, patient_type: str) -> List[str]:
    documents = ["Valid ID proof", "Insurance card (if applicable)"]

    if patient_type == PatientType.NEW.value:
        documents.append("Previous medical records (if any)")
    elif patient_type == PatientType.FOLLOW_UP.value:
        documents.append("Previous prescription")
        documents.append("Test reports (if any)")

    if counter_type == "Emergency":
        documents.append("Emergency contact information")

    return documents


def is_holiday(moment: datetime) -> bool:
    local_moment = to_local(moment)
    return local_moment.strftime("%m-%d") in HOLIDAYS


def is_valid_status_transition(current_status: str, new_status: str) -> bool:
    """Return True when the transition table allows ``current -> new``."""
    try:
        current = TicketStatus(current_status)
        target = TicketStatus(new_status)
    except ValueError:
        return False
    return target in VALID_TRANSITIONS[current]


def can_be_cancelled(ticket: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    """Cancellation is allowed until the cutoff before the appointment."""
    if ticket.get("status") in (TicketStatus.CANCELLED.value, TicketStatus.COMPLETED.value):
        return False
    now = now or utcnow()
    appointment = ensure_aware(ticket["appointment_date_time"])
    cutoff = timedelta(minutes=settings.cancellation_cutoff_minutes)
    return appointment - now > cutoff


def can_check_in(ticket: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    """Check-in needs a booked, not yet checked-in ticket inside the window.

    The window opens 30 minutes before the appointment and closes 15 minutes
    after it.
    """
    if ticket.get("is_checked_in") or ticket.get("status") != TicketStatus.BOOKED.value:
        return False
    now = now or utcnow()
    time_diff = ensure_aware(ticket["appointment_date_time"]) - now
    return -CHECK_IN_CLOSES_AFTER <= time_diff <= CHECK_IN_OPENS_BEFORE


def time_until_appointment(appointment: datetime, now: Optional[datetime] = None) -> int:
    """Whole minutes until the appointment, 0 once it has started."""
    now = now or utcnow()
    seconds = (ensure_aware(appointment) - now).total_seconds()
    if seconds <= 0:
        return 0
    return int(math.floor(seconds / 60.0 + 0.5))


def display_status(ticket: Dict[str, Any], now: Optional[datetime] = None) -> str:
    """Status shown to clients; past booked/confirmed tickets read as overdue."""
    status = ticket.get("status")
    if status in (TicketStatus.BOOKED.value, TicketStatus.CONFIRMED.value):
        now = now or utcnow()
        if ensure_aware(ticket["appointment_date_time"]) < now:
            return "overdue"
    return status


def minutes_between(start: datetime, end: datetime) -> int:
    seconds = (ensure_aware(end) - ensure_aware(start)).total_seconds()
    return int(math.floor(seconds / 60.0 + 0.5))


def format_ticket_number(booking_day: date, sequence: int) -> str:
    """Format ``TK{YY}{MM}{DD}{seq:04d}``."""
    return f"TK{booking_day:%y%m%d}{sequence:04d}"


def arrival_time(appointment: datetime) -> datetime:
    return ensure_aware(appointment) - ARRIVAL_LEAD


def qr_code_payload(ticket: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "ticketId": str(ticket["_id"]),
        "ticketNumber": ticket.get("ticket_number"),
        "userId": str(ticket["user_id"]),
        "hospitalId": str(ticket["hospital_id"]),
        "appointmentDateTime": ensure_aware(ticket["appointment_date_time"]).isoformat(),
        "checkInAllowed": can_check_in(ticket, now),
    }
