"""Shared pytest fixtures for testing the ticketing API."""

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest
from bson import ObjectId
from httpx import ASGITransport, AsyncClient

from queue_api.config import settings
from queue_api.main import api_application

HOSPITAL_ID = ObjectId("655f1c2e9b1e8a3d4c2b1a00")
COUNTER_ID = ObjectId("655f1c2e9b1e8a3d4c2b1a01")
USER_ID = ObjectId("655f1c2e9b1e8a3d4c2b1a02")
ADMIN_ID = ObjectId("655f1c2e9b1e8a3d4c2b1a03")
TICKET_ID = ObjectId("655f1c2e9b1e8a3d4c2b1a04")

# 10:00 in Asia/Kolkata on a Wednesday; appointments are at 12:00 local.
NOW = datetime(2025, 3, 12, 4, 30, tzinfo=timezone.utc)
APPOINTMENT = datetime(2025, 3, 12, 6, 30, tzinfo=timezone.utc)

DATABASE_USERS = (
    "queue_api.auth.get_database",
    "queue_api.seeds.get_database",
    "queue_api.services.directory.get_database",
    "queue_api.services.sequences.get_database",
    "queue_api.services.ticket_service.get_database",
)


def make_cursor(documents=None):
    """Chainable stand-in for a Motor cursor."""
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=list(documents or []))
    return cursor


def make_collection():
    collection = AsyncMock()
    collection.find_one.return_value = None
    collection.find = MagicMock(return_value=make_cursor())
    collection.insert_one.return_value = MagicMock(inserted_id=ObjectId())
    collection.update_one.return_value = MagicMock(matched_count=1, modified_count=1)
    collection.count_documents.return_value = 0
    return collection


def make_sequences():
    """A sequences collection whose ``$inc`` upserts behave like MongoDB's."""
    values = {}

    def find_one_and_update(query, update, **_kwargs):
        key = query["_id"]
        values[key] = values.get(key, 0) + update["$inc"]["seq"]
        return {"_id": key, "seq": values[key]}

    collection = make_collection()
    collection.find_one_and_update = AsyncMock(side_effect=find_one_and_update)
    return collection


def make_token(user_id, expires_in=timedelta(hours=1)):
    payload = {"id": str(user_id), "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


@pytest.fixture
def hospital():
    return {
        "_id": HOSPITAL_ID,
        "name": "City General Hospital",
        "address": {"street": "12 MG Road", "city": "Pune", "state": "MH", "zip_code": "411001"},
        "phone": "+91 20 5555 0100",
        "type": "Private",
        "is_active": True,
    }


@pytest.fixture
def counter():
    return {
        "_id": COUNTER_ID,
        "hospital_id": HOSPITAL_ID,
        "name": "OPD Counter 1",
        "type": "OPD",
        "department": "General Medicine",
        "is_active": True,
        "current_queue_length": 4,
        "average_service_time": 15,
        "working_hours": {"start": "09:00", "end": "17:00"},
        "max_capacity_per_hour": 30,
        "version": 3,
    }


@pytest.fixture
def patient():
    return {
        "_id": USER_ID,
        "name": "Asha Rao",
        "email": "asha@example.com",
        "phone": "+91 98765 43210",
        "role": "patient",
        "is_active": True,
    }


@pytest.fixture
def admin():
    return {"_id": ADMIN_ID, "name": "Front Desk", "role": "admin", "is_active": True}


@pytest.fixture
def ticket():
    return {
        "_id": TICKET_ID,
        "ticket_number": "TK2503120001",
        "user_id": USER_ID,
        "hospital_id": HOSPITAL_ID,
        "counter_id": COUNTER_ID,
        "appointment_date_time": APPOINTMENT,
        "booking_date_time": NOW,
        "status": "booked",
        "priority": "normal",
        "queue_position": 1,
        "estimated_wait_time": 60,
        "patient_type": "new",
        "payment_status": "pending",
        "consultation_fee": {"amount": 500, "currency": "INR"},
        "is_checked_in": False,
        "notes": {},
    }


@pytest.fixture
def mock_db(monkeypatch, hospital, counter, patient):
    """
    Replace MongoDB with per-collection async mocks.

    Hospitals, counters and users resolve to the default fixtures; the
    tickets collection starts empty. Individual tests override return
    values on the collection they exercise.

    Returns
    -------
    dict
        Collection name to mock collection.
    """
    collections = defaultdict(make_collection)
    collections["sequences"] = make_sequences()
    collections["hospitals"].find_one.return_value = hospital
    collections["counters"].find_one.return_value = counter
    collections["users"].find_one.return_value = patient

    database = MagicMock()
    database.__getitem__.side_effect = lambda name: collections[name]

    for target in DATABASE_USERS:
        monkeypatch.setattr(target, lambda: database)

    return collections


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token(USER_ID)}"}


@pytest.fixture
async def client(mock_db):  # pylint: disable=unused-argument
    """
    Provide an async HTTP test client for the FastAPI application.

    Yields
    ------
    tuple
        The HTTP client and the mock collections.
    """
    transport = ASGITransport(app=api_application)

    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client, mock_db
