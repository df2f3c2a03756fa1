"""Ticket service: booking, status transitions, check-in, rating and reads.

Documents are stored snake_case in the ``tickets`` collection; everything
returned from this module is already shaped for the JSON response
(camelCase keys, string ids, ISO-8601 datetimes).
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic.alias_generators import to_camel

from queue_api.config import settings
from queue_api.database import get_database, to_object_id
from queue_api.errors import (
    CancellationNotAllowedError,
    CheckInNotAllowedError,
    ConflictingAppointmentError,
    ForbiddenError,
    InactiveResourceError,
    InvalidTimeWindowError,
    InvalidTransitionError,
    NotFoundError,
    OutsideWorkingHoursError,
    RatingNotAllowedError,
)
from queue_api.schemas import (
    BookTicketRequest,
    RatingRequest,
    StatusUpdateRequest,
    TicketNotes,
    TicketStatus,
    WorkingHours,
)
from queue_api.services import directory
from queue_api.services.sequences import (
    next_sequence_value,
    queue_sequence_key,
    ticket_sequence_key,
)
from queue_api.services.ticket_rules import (
    FEE_CURRENCY,
    NON_TERMINAL_STATUSES,
    arrival_time,
    can_be_cancelled,
    can_check_in,
    display_status,
    ensure_aware,
    format_ticket_number,
    get_consultation_fee,
    get_required_documents,
    is_holiday,
    is_valid_status_transition,
    minutes_between,
    qr_code_payload,
    time_until_appointment,
    to_local,
    utcnow,
)
from queue_api.services.wait_time import WaitTimeFeatures, WaitTimeOracle, estimate_wait_time

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


def _to_wire(value: Any) -> Any:
    """Convert a stored value into its JSON response form."""
    if isinstance(value, dict):
        return {
            (key if key == "_id" else to_camel(key)): _to_wire(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_to_wire(item) for item in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return ensure_aware(value).isoformat()
    return value


def counter_summary(counter: Optional[Dict[str, Any]], with_hours: bool = False):
    if not counter:
        return None
    summary = {
        "id": str(counter["_id"]),
        "name": counter.get("name"),
        "type": counter.get("type"),
        "department": counter.get("department"),
    }
    if with_hours:
        summary["workingHours"] = counter.get("working_hours")
    return summary


def serialize_ticket(
    ticket: Dict[str, Any],
    now: Optional[datetime] = None,
    derived_status: bool = False,
    **related: Any,
) -> Dict[str, Any]:
    """Shape a ticket document for a response.

    ``related`` may carry ``hospital``, ``counter`` or ``user`` summaries,
    which are attached under those keys. With ``derived_status`` the
    ``status`` field reports ``overdue`` for past booked/confirmed tickets.
    """
    now = now or utcnow()
    wire = _to_wire(ticket)
    wire["appointmentStatus"] = display_status(ticket, now)
    wire["canBeCancelled"] = can_be_cancelled(ticket, now)
    wire["canCheckIn"] = can_check_in(ticket, now)
    wire["timeUntilAppointment"] = time_until_appointment(ticket["appointment_date_time"], now)
    if derived_status:
        wire["status"] = wire["appointmentStatus"]
    for key, value in related.items():
        wire[key] = _to_wire(value) if key != "counter" else value
    return wire


def _ensure_owner(user: Dict[str, Any], ticket: Dict[str, Any], allow_admin: bool) -> None:
    is_owner = str(user["_id"]) == str(ticket["user_id"])
    if is_owner or (allow_admin and user.get("role") == ADMIN_ROLE):
        return
    raise ForbiddenError("Access denied")


async def _load_ticket(ticket_id) -> Dict[str, Any]:
    database = get_database()
    ticket = await database["tickets"].find_one({"_id": to_object_id(ticket_id, "Ticket")})
    if not ticket:
        raise NotFoundError("Ticket")
    return ticket


async def book_ticket(
    user: Dict[str, Any],
    request: BookTicketRequest,
    now: Optional[datetime] = None,
    oracle: Optional[WaitTimeOracle] = None,
) -> Dict[str, Any]:
    """Validate and persist a new ticket, then grow the counter's queue.

    Parameters
    ----------
    user : dict
        Authenticated user document.
    request : BookTicketRequest
        Parsed request body.
    now : datetime, optional
        Request time; defaults to the current UTC time.
    oracle : WaitTimeOracle, optional
        Overrides the configured wait-time oracle.

    Returns
    -------
    dict
        ``{"ticket", "counter", "recommendations"}`` ready for the response.
    """
    now = now or utcnow()
    database = get_database()

    hospital = await directory.get_hospital(request.hospital_id)
    if not hospital:
        raise NotFoundError("Hospital")
    if not hospital.get("is_active", True):
        raise InactiveResourceError("Hospital")

    counter = await directory.get_counter(hospital["_id"], request.counter_id)
    if not counter:
        raise NotFoundError("Counter")
    if not counter.get("is_active", True):
        raise InactiveResourceError("Counter")

    appointment = ensure_aware(request.appointment_date_time)
    if appointment < now + timedelta(minutes=settings.booking_lead_minutes):
        raise InvalidTimeWindowError(
            f"Appointment time must be at least {settings.booking_lead_minutes} "
            "minutes from now"
        )

    working_hours = WorkingHours(**counter["working_hours"])
    local_appointment = to_local(appointment)
    if not working_hours.start_hour <= local_appointment.hour < working_hours.end_hour:
        raise OutsideWorkingHoursError(
            f"Appointment must be between {working_hours.start} and {working_hours.end}"
        )

    window = timedelta(minutes=settings.conflict_window_minutes)
    existing = await database["tickets"].find_one(
        {
            "user_id": user["_id"],
            "appointment_date_time": {"$gte": appointment - window, "$lte": appointment + window},
            "status": {"$in": sorted(status.value for status in NON_TERMINAL_STATUSES)},
        }
    )
    if existing:
        raise ConflictingAppointmentError("You already have an appointment around this time")

    queue_length = int(counter.get("current_queue_length", 0))
    average_service_time = int(counter.get("average_service_time", 15))
    features = WaitTimeFeatures(
        hospital_id=str(hospital["_id"]),
        counter_id=str(counter["_id"]),
        current_queue_length=queue_length,
        time_of_day=local_appointment.hour,
        day_of_week=local_appointment.isoweekday() % 7,
        counter_type=counter.get("type", "OPD"),
        doctor_available=True,
        weather_condition="clear",
        is_holiday=is_holiday(appointment),
    )
    estimated_wait = await estimate_wait_time(
        features, fallback_minutes=queue_length * average_service_time, oracle=oracle
    )

    booking_day = to_local(now).date()
    sequence = await next_sequence_value(ticket_sequence_key(booking_day))
    queue_position = await next_sequence_value(
        queue_sequence_key(hospital["_id"], counter["_id"], local_appointment.date())
    )

    patient_type = request.patient_type.value
    ticket = {
        "ticket_number": format_ticket_number(booking_day, sequence),
        "user_id": user["_id"],
        "hospital_id": hospital["_id"],
        "counter_id": counter["_id"],
        "appointment_date_time": appointment,
        "booking_date_time": now,
        "status": TicketStatus.BOOKED.value,
        "priority": request.priority.value,
        "queue_position": queue_position,
        "estimated_wait_time": estimated_wait,
        "reason_for_visit": request.reason_for_visit,
        "symptoms": request.symptoms,
        "patient_type": patient_type,
        "payment_status": "pending",
        "consultation_fee": {
            "amount": get_consultation_fee(counter.get("type"), patient_type),
            "currency": FEE_CURRENCY,
        },
        "insurance": request.insurance.model_dump(),
        "is_checked_in": False,
        "notes": {},
        "created_at": now,
        "updated_at": now,
    }
    result = await database["tickets"].insert_one(ticket)
    ticket["_id"] = result.inserted_id

    await directory.increment_queue_length(counter["_id"])
    capacity = counter.get("max_capacity_per_hour")
    if capacity and queue_length + 1 > capacity:
        logger.warning(
            "Counter %s queue length %s exceeds hourly capacity %s",
            counter["_id"],
            queue_length + 1,
            capacity,
        )

    logger.info(
        "Booked ticket %s for user %s at counter %s (position %s, wait %s min)",
        ticket["ticket_number"],
        user["_id"],
        counter["_id"],
        queue_position,
        estimated_wait,
    )

    return {
        "ticket": serialize_ticket(
            ticket,
            now,
            user={key: user.get(key) for key in ("_id", "name", "phone", "email")},
            hospital={key: hospital.get(key) for key in ("_id", "name", "address", "phone")},
        ),
        "counter": {
            "name": counter.get("name"),
            "type": counter.get("type"),
            "department": counter.get("department"),
        },
        "recommendations": {
            "arrivalTime": arrival_time(appointment).isoformat(),
            "estimatedServiceTime": average_service_time,
            "documentsNeeded": get_required_documents(counter.get("type"), patient_type),
        },
    }


def plan_status_transition(
    ticket: Dict[str, Any],
    new_status: str,
    actor_id: ObjectId,
    now: datetime,
    cancellation_reason: Optional[str] = None,
    notes: Optional[TicketNotes] = None,
) -> Dict[str, Any]:
    """Return the field updates for moving ``ticket`` to ``new_status``.

    Raises
    ------
    InvalidTransitionError
        The transition table does not allow the change.
    CancellationNotAllowedError
        Cancelling inside the cutoff, or a ticket already closed.
    """
    current_status = ticket["status"]
    if not is_valid_status_transition(current_status, new_status):
        raise InvalidTransitionError(current_status, new_status)

    updates: Dict[str, Any] = {"status": new_status, "updated_at": now}

    if new_status == TicketStatus.CANCELLED.value:
        if not can_be_cancelled(ticket, now):
            raise CancellationNotAllowedError()
        updates["cancellation_reason"] = cancellation_reason
        updates["cancelled_at"] = now
        updates["cancelled_by"] = actor_id

    if new_status == TicketStatus.COMPLETED.value:
        updates["service_end_time"] = now
        if ticket.get("service_start_time"):
            updates["actual_wait_time"] = minutes_between(ticket["service_start_time"], now)

    if new_status == TicketStatus.IN_PROGRESS.value:
        updates["service_start_time"] = now

    if notes:
        merged = dict(ticket.get("notes") or {})
        merged.update(notes.model_dump(exclude_none=True))
        updates["notes"] = merged

    return updates


async def update_ticket_status(
    user: Dict[str, Any],
    ticket_id: str,
    request: StatusUpdateRequest,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Drive the ticket state machine and apply its side effects."""
    now = now or utcnow()
    ticket = await _load_ticket(ticket_id)
    _ensure_owner(user, ticket, allow_admin=True)

    current_status = ticket["status"]
    new_status = request.status.value
    updates = plan_status_transition(
        ticket,
        new_status,
        actor_id=user["_id"],
        now=now,
        cancellation_reason=request.cancellation_reason,
        notes=request.notes,
    )

    database = get_database()
    result = await database["tickets"].update_one(
        {"_id": ticket["_id"], "status": current_status}, {"$set": updates}
    )
    if result.matched_count == 0:
        # Another request moved the ticket first.
        raise InvalidTransitionError(current_status, new_status)

    if new_status == TicketStatus.CANCELLED.value:
        await directory.decrement_queue_length(ticket["counter_id"])

    ticket.update(updates)
    logger.info(
        "Ticket %s moved from %s to %s by %s",
        ticket.get("ticket_number"),
        current_status,
        new_status,
        user["_id"],
    )
    return {"ticket": serialize_ticket(ticket, now)}


async def check_in(
    user: Dict[str, Any], ticket_id: str, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Check the patient in and confirm the ticket."""
    now = now or utcnow()
    ticket = await _load_ticket(ticket_id)
    _ensure_owner(user, ticket, allow_admin=False)

    if ticket.get("is_checked_in"):
        raise CheckInNotAllowedError("Already checked in")
    if not can_check_in(ticket, now):
        raise CheckInNotAllowedError("Check-in not allowed at this time")

    updates = {
        "is_checked_in": True,
        "check_in_time": now,
        "status": TicketStatus.CONFIRMED.value,
        "updated_at": now,
    }
    database = get_database()
    result = await database["tickets"].update_one(
        {"_id": ticket["_id"], "status": TicketStatus.BOOKED.value, "is_checked_in": {"$ne": True}},
        {"$set": updates},
    )
    if result.matched_count == 0:
        raise CheckInNotAllowedError("Check-in not allowed at this time")

    ticket.update(updates)
    logger.info("Ticket %s checked in", ticket.get("ticket_number"))
    return {"ticket": serialize_ticket(ticket, now)}


async def rate_ticket(
    user: Dict[str, Any],
    ticket_id: str,
    request: RatingRequest,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    ticket = await _load_ticket(ticket_id)
    _ensure_owner(user, ticket, allow_admin=False)

    if ticket["status"] != TicketStatus.COMPLETED.value:
        raise RatingNotAllowedError()

    rating = request.model_dump()
    rating["rated_at"] = now
    database = get_database()
    await database["tickets"].update_one(
        {"_id": ticket["_id"]}, {"$set": {"rating": rating, "updated_at": now}}
    )
    return {"rating": _to_wire(rating)}


async def list_user_tickets(
    user: Dict[str, Any],
    user_id: str,
    statuses: Optional[List[TicketStatus]] = None,
    hospital: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 50,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Page through one user's tickets, newest appointment first."""
    now = now or utcnow()
    if str(user["_id"]) != user_id and user.get("role") != ADMIN_ROLE:
        raise ForbiddenError("Access denied. You can only view your own tickets.")

    query: Dict[str, Any] = {"user_id": to_object_id(user_id, "User")}
    if statuses:
        values = [status.value for status in statuses]
        query["status"] = values[0] if len(values) == 1 else {"$in": values}
    if hospital:
        query["hospital_id"] = to_object_id(hospital, "Hospital")
    if start_date or end_date:
        date_range = {}
        if start_date:
            date_range["$gte"] = ensure_aware(start_date)
        if end_date:
            date_range["$lte"] = ensure_aware(end_date)
        query["appointment_date_time"] = date_range

    database = get_database()
    collection = database["tickets"]
    tickets = (
        await collection.find(query)
        .sort("appointment_date_time", -1)
        .skip((page - 1) * limit)
        .limit(limit)
        .to_list(length=limit)
    )
    total = await collection.count_documents(query)

    hospitals = await directory.get_hospitals_by_ids(t["hospital_id"] for t in tickets)
    counters = await directory.get_counters_by_ids(t["counter_id"] for t in tickets)

    serialized = [
        serialize_ticket(
            ticket,
            now,
            derived_status=True,
            hospital=hospitals.get(ticket["hospital_id"]),
            counter=counter_summary(counters.get(ticket["counter_id"])),
        )
        for ticket in tickets
    ]

    return {
        "tickets": serialized,
        "pagination": {
            "current": page,
            "total": math.ceil(total / limit),
            "count": len(serialized),
            "totalRecords": total,
        },
        "summary": {
            "upcoming": sum(
                1
                for t in tickets
                if ensure_aware(t["appointment_date_time"]) > now
                and t["status"] != TicketStatus.CANCELLED.value
            ),
            "completed": sum(1 for t in tickets if t["status"] == TicketStatus.COMPLETED.value),
            "cancelled": sum(1 for t in tickets if t["status"] == TicketStatus.CANCELLED.value),
        },
    }


async def get_ticket_details(
    user: Dict[str, Any], ticket_id: str, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Full ticket view with counter hours and the QR payload."""
    now = now or utcnow()
    ticket = await _load_ticket(ticket_id)
    _ensure_owner(user, ticket, allow_admin=True)

    database = get_database()
    owner = await database["users"].find_one(
        {"_id": ticket["user_id"]}, projection={"name": 1, "phone": 1, "email": 1}
    )
    hospital = await database["hospitals"].find_one(
        {"_id": ticket["hospital_id"]}, projection={"name": 1, "address": 1, "phone": 1}
    )
    counter = await directory.get_counter(ticket["hospital_id"], ticket["counter_id"])

    details = serialize_ticket(
        ticket,
        now,
        derived_status=True,
        user=owner,
        hospital=hospital,
        counter=counter_summary(counter, with_hours=True),
    )
    details["qrCode"] = qr_code_payload(ticket, now)
    return {"ticket": details}
