import asyncio
from datetime import timedelta

import pytest
from bson import ObjectId
from pydantic import ValidationError

from queue_api.errors import (
    CancellationNotAllowedError,
    CheckInNotAllowedError,
    ConflictingAppointmentError,
    ForbiddenError,
    InactiveResourceError,
    InvalidIdentifierError,
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
    TicketStatus,
)
from queue_api.services import ticket_service
from queue_api.services.wait_time import WaitTimeOracle, WaitTimePrediction

from conftest import (
    APPOINTMENT,
    COUNTER_ID,
    HOSPITAL_ID,
    NOW,
    TICKET_ID,
    USER_ID,
    make_cursor,
)


class FixedOracle(WaitTimeOracle):
    name = "fixed"

    def __init__(self, minutes=42):
        self.minutes = minutes

    async def predict(self, features):
        return WaitTimePrediction(wait_minutes=self.minutes, confidence=0.9)


class FailingOracle(WaitTimeOracle):
    name = "failing"

    async def predict(self, features):
        raise ConnectionError("ml service down")


def booking_request(**overrides):
    body = {
        "hospitalId": str(HOSPITAL_ID),
        "counterId": str(COUNTER_ID),
        "appointmentDateTime": APPOINTMENT,
        "reasonForVisit": "Persistent cough",
        "symptoms": ["cough", "fever"],
    }
    body.update(overrides)
    return BookTicketRequest(**body)


# ---------- booking ----------


@pytest.mark.asyncio
async def test_book_ticket_persists_ticket_and_grows_queue(mock_db, patient):
    result = await ticket_service.book_ticket(
        patient, booking_request(), now=NOW, oracle=FixedOracle(42)
    )

    ticket = result["ticket"]
    assert ticket["ticketNumber"] == "TK2503120001"
    assert ticket["queuePosition"] == 1
    assert ticket["estimatedWaitTime"] == 42
    assert ticket["status"] == "booked"
    assert ticket["paymentStatus"] == "pending"
    assert ticket["consultationFee"] == {"amount": 500, "currency": "INR"}
    assert ticket["isCheckedIn"] is False
    assert ticket["canBeCancelled"] is True
    assert ticket["hospital"]["name"] == "City General Hospital"

    stored = mock_db["tickets"].insert_one.call_args.args[0]
    assert stored["user_id"] == USER_ID
    assert stored["counter_id"] == COUNTER_ID
    assert stored["appointment_date_time"] == APPOINTMENT
    assert stored["booking_date_time"] == NOW

    mock_db["counters"].update_one.assert_awaited_once_with(
        {"_id": COUNTER_ID}, {"$inc": {"current_queue_length": 1, "version": 1}}
    )

    assert result["counter"] == {
        "name": "OPD Counter 1",
        "type": "OPD",
        "department": "General Medicine",
    }
    recommendations = result["recommendations"]
    assert recommendations["arrivalTime"] == (APPOINTMENT - timedelta(minutes=15)).isoformat()
    assert recommendations["estimatedServiceTime"] == 15
    assert "Previous medical records (if any)" in recommendations["documentsNeeded"]


@pytest.mark.asyncio
async def test_book_ticket_follow_up_fee_is_discounted(mock_db, patient):
    result = await ticket_service.book_ticket(
        patient, booking_request(patientType="follow_up"), now=NOW, oracle=FixedOracle()
    )
    assert result["ticket"]["consultationFee"]["amount"] == 350


@pytest.mark.asyncio
async def test_book_ticket_unknown_hospital(mock_db, patient):
    mock_db["hospitals"].find_one.return_value = None
    with pytest.raises(NotFoundError, match="Hospital not found"):
        await ticket_service.book_ticket(patient, booking_request(), now=NOW)
    mock_db["tickets"].insert_one.assert_not_awaited()


@pytest.mark.asyncio
async def test_book_ticket_inactive_hospital(mock_db, patient, hospital):
    mock_db["hospitals"].find_one.return_value = dict(hospital, is_active=False)
    with pytest.raises(InactiveResourceError, match="Hospital is currently inactive"):
        await ticket_service.book_ticket(patient, booking_request(), now=NOW)


@pytest.mark.asyncio
async def test_book_ticket_counter_must_belong_to_hospital(mock_db, patient):
    mock_db["counters"].find_one.return_value = None
    with pytest.raises(NotFoundError, match="Counter not found"):
        await ticket_service.book_ticket(patient, booking_request(), now=NOW)

    query = mock_db["counters"].find_one.call_args.args[0]
    assert query == {"_id": COUNTER_ID, "hospital_id": HOSPITAL_ID}


@pytest.mark.asyncio
async def test_book_ticket_inactive_counter(mock_db, patient, counter):
    mock_db["counters"].find_one.return_value = dict(counter, is_active=False)
    with pytest.raises(InactiveResourceError, match="Counter is currently inactive"):
        await ticket_service.book_ticket(patient, booking_request(), now=NOW)


@pytest.mark.asyncio
async def test_book_ticket_needs_thirty_minutes_lead(mock_db, patient):
    request = booking_request(appointmentDateTime=NOW + timedelta(minutes=20))
    with pytest.raises(InvalidTimeWindowError, match="at least 30 minutes"):
        await ticket_service.book_ticket(patient, request, now=NOW)
    mock_db["tickets"].insert_one.assert_not_awaited()


@pytest.mark.asyncio
async def test_book_ticket_outside_working_hours(mock_db, patient):
    # 18:00 local time; the counter closes at 17:00.
    request = booking_request(appointmentDateTime=APPOINTMENT + timedelta(hours=6))
    with pytest.raises(OutsideWorkingHoursError, match="between 09:00 and 17:00"):
        await ticket_service.book_ticket(patient, request, now=NOW)


@pytest.mark.asyncio
async def test_book_ticket_inside_closing_hour_is_rejected(mock_db, patient):
    # 17:30 local time; the closing hour itself is not bookable.
    request = booking_request(appointmentDateTime=APPOINTMENT + timedelta(hours=5, minutes=30))
    with pytest.raises(OutsideWorkingHoursError, match="between 09:00 and 17:00"):
        await ticket_service.book_ticket(patient, request, now=NOW)
    mock_db["tickets"].insert_one.assert_not_awaited()


@pytest.mark.asyncio
async def test_book_ticket_at_opening_time(mock_db, patient):
    # 09:00 local time, booked at 08:00.
    request = booking_request(appointmentDateTime=APPOINTMENT - timedelta(hours=3))
    result = await ticket_service.book_ticket(
        patient, request, now=APPOINTMENT - timedelta(hours=4), oracle=FixedOracle()
    )
    assert result["ticket"]["status"] == "booked"
    mock_db["tickets"].insert_one.assert_awaited_once()


@pytest.mark.asyncio
async def test_book_ticket_exactly_thirty_minutes_ahead(mock_db, patient):
    request = booking_request(appointmentDateTime=NOW + timedelta(minutes=30))
    result = await ticket_service.book_ticket(patient, request, now=NOW, oracle=FixedOracle())
    assert result["ticket"]["queuePosition"] == 1
    mock_db["tickets"].insert_one.assert_awaited_once()


@pytest.mark.asyncio
async def test_book_ticket_twenty_nine_minutes_ahead(mock_db, patient):
    request = booking_request(appointmentDateTime=NOW + timedelta(minutes=29))
    with pytest.raises(InvalidTimeWindowError, match="at least 30 minutes"):
        await ticket_service.book_ticket(patient, request, now=NOW, oracle=FixedOracle())
    mock_db["tickets"].insert_one.assert_not_awaited()


@pytest.mark.asyncio
async def test_book_ticket_rejects_overlapping_appointment(mock_db, patient, ticket):
    mock_db["tickets"].find_one.return_value = ticket
    with pytest.raises(ConflictingAppointmentError):
        await ticket_service.book_ticket(patient, booking_request(), now=NOW)

    query = mock_db["tickets"].find_one.call_args.args[0]
    assert query["user_id"] == USER_ID
    assert query["status"] == {"$in": ["booked", "confirmed", "in_progress"]}
    assert query["appointment_date_time"] == {
        "$gte": APPOINTMENT - timedelta(minutes=30),
        "$lte": APPOINTMENT + timedelta(minutes=30),
    }
    mock_db["tickets"].insert_one.assert_not_awaited()


@pytest.mark.asyncio
async def test_book_ticket_falls_back_when_oracle_fails(mock_db, patient):
    result = await ticket_service.book_ticket(
        patient, booking_request(), now=NOW, oracle=FailingOracle()
    )
    # 4 patients queued x 15 minutes each.
    assert result["ticket"]["estimatedWaitTime"] == 60


@pytest.mark.asyncio
async def test_book_ticket_sends_local_calendar_features(mock_db, patient):
    seen = []

    class RecordingOracle(FixedOracle):
        async def predict(self, features):
            seen.append(features)
            return await super().predict(features)

    await ticket_service.book_ticket(patient, booking_request(), now=NOW, oracle=RecordingOracle())

    features = seen[0]
    assert features.time_of_day == 12
    assert features.day_of_week == 3
    assert features.current_queue_length == 4
    assert features.counter_type == "OPD"
    assert features.is_holiday is False


@pytest.mark.asyncio
async def test_concurrent_bookings_get_unique_numbers_and_positions(mock_db, patient):
    results = await asyncio.gather(
        *(
            ticket_service.book_ticket(patient, booking_request(), now=NOW, oracle=FixedOracle())
            for _ in range(50)
        )
    )

    numbers = [result["ticket"]["ticketNumber"] for result in results]
    positions = sorted(result["ticket"]["queuePosition"] for result in results)
    assert len(set(numbers)) == 50
    assert positions == list(range(1, 51))
    assert "TK2503120050" in numbers
    assert mock_db["counters"].update_one.await_count == 50


@pytest.mark.asyncio
async def test_book_ticket_logs_when_over_capacity(mock_db, patient, counter, caplog):
    mock_db["counters"].find_one.return_value = dict(counter, current_queue_length=30)
    await ticket_service.book_ticket(patient, booking_request(), now=NOW, oracle=FixedOracle())
    assert "exceeds hourly capacity" in caplog.text


# ---------- status transitions ----------


@pytest.mark.asyncio
async def test_cancel_releases_queue_slot(mock_db, patient, ticket):
    mock_db["tickets"].find_one.return_value = ticket
    request = StatusUpdateRequest(status="cancelled", cancellationReason="Feeling better")

    result = await ticket_service.update_ticket_status(patient, str(TICKET_ID), request, now=NOW)

    assert result["ticket"]["status"] == "cancelled"
    assert result["ticket"]["cancellationReason"] == "Feeling better"
    filter_, update = mock_db["tickets"].update_one.call_args.args
    assert filter_ == {"_id": TICKET_ID, "status": "booked"}
    assert update["$set"]["cancelled_by"] == USER_ID
    assert update["$set"]["cancelled_at"] == NOW
    mock_db["counters"].update_one.assert_awaited_once_with(
        {"_id": COUNTER_ID, "current_queue_length": {"$gt": 0}},
        {"$inc": {"current_queue_length": -1, "version": 1}},
    )


@pytest.mark.asyncio
async def test_cancel_inside_cutoff_is_rejected(mock_db, patient, ticket):
    mock_db["tickets"].find_one.return_value = ticket
    request = StatusUpdateRequest(status="cancelled", cancellationReason="Running late")

    with pytest.raises(CancellationNotAllowedError):
        await ticket_service.update_ticket_status(
            patient, str(TICKET_ID), request, now=APPOINTMENT - timedelta(minutes=20)
        )
    mock_db["tickets"].update_one.assert_not_awaited()
    mock_db["counters"].update_one.assert_not_awaited()


@pytest.mark.asyncio
async def test_invalid_transition_leaves_ticket_untouched(mock_db, patient, ticket):
    mock_db["tickets"].find_one.return_value = ticket
    request = StatusUpdateRequest(status="completed")

    with pytest.raises(InvalidTransitionError, match="Cannot change status from booked to completed"):
        await ticket_service.update_ticket_status(patient, str(TICKET_ID), request, now=NOW)
    mock_db["tickets"].update_one.assert_not_awaited()


@pytest.mark.asyncio
async def test_start_and_complete_record_service_times(mock_db, admin, ticket):
    mock_db["tickets"].find_one.return_value = dict(ticket, status="confirmed")
    started = await ticket_service.update_ticket_status(
        admin, str(TICKET_ID), StatusUpdateRequest(status="in_progress"), now=APPOINTMENT
    )
    assert started["ticket"]["serviceStartTime"] == APPOINTMENT.isoformat()

    mock_db["tickets"].find_one.return_value = dict(
        ticket, status="in_progress", service_start_time=APPOINTMENT
    )
    finished = await ticket_service.update_ticket_status(
        admin,
        str(TICKET_ID),
        StatusUpdateRequest(status="completed", notes={"doctor": "Rest for two days"}),
        now=APPOINTMENT + timedelta(minutes=23),
    )
    assert finished["ticket"]["status"] == "completed"
    assert finished["ticket"]["actualWaitTime"] == 23
    assert finished["ticket"]["notes"] == {"doctor": "Rest for two days"}


@pytest.mark.asyncio
async def test_losing_a_concurrent_transition_is_reported(mock_db, patient, ticket):
    mock_db["tickets"].find_one.return_value = ticket
    mock_db["tickets"].update_one.return_value.matched_count = 0

    with pytest.raises(InvalidTransitionError):
        await ticket_service.update_ticket_status(
            patient, str(TICKET_ID), StatusUpdateRequest(status="confirmed"), now=NOW
        )


@pytest.mark.asyncio
async def test_other_patients_cannot_change_status(mock_db, ticket):
    mock_db["tickets"].find_one.return_value = ticket
    stranger = {"_id": ObjectId(), "role": "patient"}
    with pytest.raises(ForbiddenError):
        await ticket_service.update_ticket_status(
            stranger, str(TICKET_ID), StatusUpdateRequest(status="confirmed"), now=NOW
        )


@pytest.mark.asyncio
async def test_missing_ticket(mock_db, patient):
    with pytest.raises(NotFoundError, match="Ticket not found"):
        await ticket_service.update_ticket_status(
            patient, str(TICKET_ID), StatusUpdateRequest(status="confirmed"), now=NOW
        )


def test_plan_status_transition_is_pure(ticket):
    updates = ticket_service.plan_status_transition(ticket, "no_show", USER_ID, NOW)
    assert updates == {"status": "no_show", "updated_at": NOW}
    assert ticket["status"] == "booked"


def test_cancellation_reason_is_reported_on_its_field():
    with pytest.raises(ValidationError) as excinfo:
        StatusUpdateRequest(status="cancelled")
    error = excinfo.value.errors()[0]
    assert error["loc"] == ("cancellationReason",)
    assert "cancellationReason is required" in error["msg"]
    assert StatusUpdateRequest(status="no_show").cancellation_reason is None


# ---------- check-in ----------


@pytest.mark.asyncio
async def test_check_in_confirms_ticket(mock_db, patient, ticket):
    mock_db["tickets"].find_one.return_value = ticket
    now = APPOINTMENT - timedelta(minutes=20)

    result = await ticket_service.check_in(patient, str(TICKET_ID), now=now)

    assert result["ticket"]["status"] == "confirmed"
    assert result["ticket"]["isCheckedIn"] is True
    assert result["ticket"]["checkInTime"] == now.isoformat()
    filter_ = mock_db["tickets"].update_one.call_args.args[0]
    assert filter_["status"] == "booked"


@pytest.mark.asyncio
async def test_check_in_twice(mock_db, patient, ticket):
    mock_db["tickets"].find_one.return_value = dict(ticket, is_checked_in=True)
    with pytest.raises(CheckInNotAllowedError, match="Already checked in"):
        await ticket_service.check_in(patient, str(TICKET_ID), now=APPOINTMENT)


@pytest.mark.asyncio
async def test_check_in_needs_booked_status(mock_db, patient, ticket):
    mock_db["tickets"].find_one.return_value = dict(ticket, status="confirmed")
    with pytest.raises(CheckInNotAllowedError, match="not allowed at this time"):
        await ticket_service.check_in(patient, str(TICKET_ID), now=APPOINTMENT)


@pytest.mark.asyncio
async def test_check_in_too_early(mock_db, patient, ticket):
    mock_db["tickets"].find_one.return_value = ticket
    with pytest.raises(CheckInNotAllowedError):
        await ticket_service.check_in(patient, str(TICKET_ID), now=NOW)
    mock_db["tickets"].update_one.assert_not_awaited()


@pytest.mark.asyncio
async def test_admins_cannot_check_in_for_patients(mock_db, admin, ticket):
    mock_db["tickets"].find_one.return_value = ticket
    with pytest.raises(ForbiddenError):
        await ticket_service.check_in(admin, str(TICKET_ID), now=APPOINTMENT)


# ---------- rating ----------


@pytest.mark.asyncio
async def test_rate_completed_ticket(mock_db, patient, ticket):
    mock_db["tickets"].find_one.return_value = dict(ticket, status="completed")
    request = RatingRequest(overallRating=5, doctorRating=4, feedback="Quick and kind")

    result = await ticket_service.rate_ticket(patient, str(TICKET_ID), request, now=NOW)

    assert result["rating"]["overallRating"] == 5
    assert result["rating"]["doctorRating"] == 4
    assert result["rating"]["ratedAt"] == NOW.isoformat()
    update = mock_db["tickets"].update_one.call_args.args[1]
    assert update["$set"]["rating"]["overall_rating"] == 5


@pytest.mark.asyncio
async def test_rate_requires_completed_ticket(mock_db, patient, ticket):
    mock_db["tickets"].find_one.return_value = ticket
    with pytest.raises(RatingNotAllowedError):
        await ticket_service.rate_ticket(
            patient, str(TICKET_ID), RatingRequest(overallRating=3), now=NOW
        )


# ---------- reads ----------


@pytest.mark.asyncio
async def test_list_user_tickets(mock_db, patient, ticket, hospital, counter):
    past = dict(ticket, appointment_date_time=NOW - timedelta(days=1))
    mock_db["tickets"].find.return_value = make_cursor([past])
    mock_db["tickets"].count_documents.return_value = 1
    mock_db["hospitals"].find.return_value = make_cursor([hospital])
    mock_db["counters"].find.return_value = make_cursor([counter])

    result = await ticket_service.list_user_tickets(
        patient,
        str(USER_ID),
        statuses=[TicketStatus.BOOKED, TicketStatus.CONFIRMED],
        hospital=str(HOSPITAL_ID),
        page=1,
        limit=10,
        now=NOW,
    )

    query = mock_db["tickets"].find.call_args.args[0]
    assert query == {
        "user_id": USER_ID,
        "status": {"$in": ["booked", "confirmed"]},
        "hospital_id": HOSPITAL_ID,
    }
    listed = result["tickets"][0]
    assert listed["status"] == "overdue"
    assert listed["appointmentStatus"] == "overdue"
    assert listed["counter"]["name"] == "OPD Counter 1"
    assert listed["hospital"]["name"] == "City General Hospital"
    assert result["pagination"] == {"current": 1, "total": 1, "count": 1, "totalRecords": 1}
    assert result["summary"] == {"upcoming": 0, "completed": 0, "cancelled": 0}


@pytest.mark.asyncio
async def test_list_pages_through_results(mock_db, patient):
    mock_db["tickets"].count_documents.return_value = 45

    result = await ticket_service.list_user_tickets(
        patient, str(USER_ID), page=3, limit=20, now=NOW
    )

    cursor = mock_db["tickets"].find.return_value
    cursor.sort.assert_called_once_with("appointment_date_time", -1)
    cursor.skip.assert_called_once_with(40)
    cursor.limit.assert_called_once_with(20)
    assert result["pagination"]["total"] == 3


@pytest.mark.asyncio
async def test_patients_only_list_their_own_tickets(mock_db, patient):
    with pytest.raises(ForbiddenError, match="only view your own tickets"):
        await ticket_service.list_user_tickets(patient, str(ObjectId()), now=NOW)


@pytest.mark.asyncio
async def test_admin_can_list_any_user(mock_db, admin):
    result = await ticket_service.list_user_tickets(admin, str(USER_ID), now=NOW)
    assert result["pagination"]["totalRecords"] == 0
    assert result["pagination"]["total"] == 0


@pytest.mark.asyncio
async def test_ticket_details_include_qr_payload(mock_db, patient, ticket):
    mock_db["tickets"].find_one.return_value = ticket
    now = APPOINTMENT - timedelta(minutes=10)

    result = await ticket_service.get_ticket_details(patient, str(TICKET_ID), now=now)

    details = result["ticket"]
    assert details["counter"]["workingHours"] == {"start": "09:00", "end": "17:00"}
    assert details["user"]["name"] == "Asha Rao"
    assert details["canCheckIn"] is True
    assert details["timeUntilAppointment"] == 10
    assert details["qrCode"] == {
        "ticketId": str(TICKET_ID),
        "ticketNumber": "TK2503120001",
        "userId": str(USER_ID),
        "hospitalId": str(HOSPITAL_ID),
        "appointmentDateTime": APPOINTMENT.isoformat(),
        "checkInAllowed": True,
    }


@pytest.mark.asyncio
async def test_ticket_details_invalid_id(mock_db, patient):
    with pytest.raises(InvalidIdentifierError, match="Invalid ticket ID"):
        await ticket_service.get_ticket_details(patient, "not-an-id", now=NOW)
