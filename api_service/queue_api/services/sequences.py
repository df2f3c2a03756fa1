"""Atomic per-key sequences backed by the ``sequences`` collection.

Ticket numbers and queue positions are both drawn from here. A single
``$inc`` upsert hands out each value, so concurrent bookings never receive
the same number.
"""

from datetime import date, datetime, timezone

from pymongo import ReturnDocument

from queue_api.database import get_database


def ticket_sequence_key(booking_day: date) -> str:
    return f"ticket:{booking_day:%y%m%d}"


def queue_sequence_key(hospital_id, counter_id, appointment_day: date) -> str:
    return f"queue:{hospital_id}:{counter_id}:{appointment_day.isoformat()}"


async def next_sequence_value(key: str) -> int:
    """Increment the sequence stored under ``key`` and return the new value.

    Parameters
    ----------
    key : str
        Sequence identifier, e.g. ``ticket:251018``.

    Returns
    -------
    int
        The incremented value; the first call for a key returns 1.
    """
    database = get_database()
    document = await database["sequences"].find_one_and_update(
        {"_id": key},
        {"$inc": {"seq": 1}, "$setOnInsert": {"created_at": datetime.now(timezone.utc)}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return int(document["seq"])
