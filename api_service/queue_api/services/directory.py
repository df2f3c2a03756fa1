"""Hospital and counter directory backed by MongoDB.

Counters live in their own collection, referenced by ``hospital_id``, so a
queue-length change touches one small document instead of the whole
hospital. Queue-length changes use atomic ``$inc`` updates; edits to a
counter's configuration go through an optimistic ``version`` check.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from bson import ObjectId

from queue_api.database import get_database, to_object_id
from queue_api.errors import ConcurrentModificationError
from queue_api.schemas import CounterSchema, HospitalSchema

logger = logging.getLogger(__name__)


async def get_hospital(hospital_id) -> Optional[Dict[str, Any]]:
    database = get_database()
    return await database["hospitals"].find_one(
        {"_id": to_object_id(hospital_id, "Hospital")}
    )


async def get_counter(hospital_id, counter_id) -> Optional[Dict[str, Any]]:
    """Return the counter only if it belongs to the given hospital."""
    database = get_database()
    return await database["counters"].find_one(
        {
            "_id": to_object_id(counter_id, "Counter"),
            "hospital_id": to_object_id(hospital_id, "Hospital"),
        }
    )


async def get_counters_by_ids(counter_ids: Iterable[ObjectId]) -> Dict[ObjectId, Dict[str, Any]]:
    """Fetch several counters at once, keyed by id."""
    unique_ids = list({cid for cid in counter_ids if cid is not None})
    if not unique_ids:
        return {}
    database = get_database()
    counters = await database["counters"].find({"_id": {"$in": unique_ids}}).to_list(
        length=len(unique_ids)
    )
    return {counter["_id"]: counter for counter in counters}


async def get_hospitals_by_ids(hospital_ids: Iterable[ObjectId]) -> Dict[ObjectId, Dict[str, Any]]:
    unique_ids = list({hid for hid in hospital_ids if hid is not None})
    if not unique_ids:
        return {}
    database = get_database()
    hospitals = await database["hospitals"].find(
        {"_id": {"$in": unique_ids}},
        projection={"name": 1, "address": 1, "phone": 1, "type": 1},
    ).to_list(length=len(unique_ids))
    return {hospital["_id"]: hospital for hospital in hospitals}


async def increment_queue_length(counter_id: ObjectId) -> None:
    database = get_database()
    await database["counters"].update_one(
        {"_id": counter_id},
        {"$inc": {"current_queue_length": 1, "version": 1}},
    )


async def decrement_queue_length(counter_id: ObjectId) -> bool:
    """Decrement the live queue length, never going below zero.

    Returns
    -------
    bool
        True if a document was decremented, False if the counter was
        missing or its queue was already empty.
    """
    database = get_database()
    result = await database["counters"].update_one(
        {"_id": counter_id, "current_queue_length": {"$gt": 0}},
        {"$inc": {"current_queue_length": -1, "version": 1}},
    )
    return result.modified_count > 0


async def save_hospital(hospital: HospitalSchema) -> ObjectId:
    """Insert or replace a hospital after schema validation."""
    database = get_database()
    document = hospital.model_dump(exclude={"id"}, mode="json")
    if hospital.id is None:
        result = await database["hospitals"].insert_one(document)
        logger.info("Created hospital %s", result.inserted_id)
        return result.inserted_id

    hospital_id = to_object_id(hospital.id, "Hospital")
    await database["hospitals"].replace_one({"_id": hospital_id}, document, upsert=True)
    return hospital_id


async def save_counter(counter: CounterSchema) -> ObjectId:
    """Insert a counter, or update one whose stored version still matches.

    Raises
    ------
    ConcurrentModificationError
        If the counter changed since ``counter.version`` was read.
    """
    database = get_database()
    document = counter.model_dump(exclude={"id", "version"}, mode="json")
    document["hospital_id"] = to_object_id(counter.hospital_id, "Hospital")

    if counter.id is None:
        document["version"] = 0
        result = await database["counters"].insert_one(document)
        return result.inserted_id

    counter_id = to_object_id(counter.id, "Counter")
    # The live queue length is owned by the ticket workflows.
    document.pop("current_queue_length", None)
    result = await database["counters"].update_one(
        {"_id": counter_id, "version": counter.version},
        {"$set": document, "$inc": {"version": 1}},
    )
    if result.matched_count == 0:
        logger.warning("Version conflict saving counter %s", counter_id)
        raise ConcurrentModificationError(
            "Counter was modified by another request; reload and retry"
        )
    return counter_id
