"""Load sample hospitals and counters into MongoDB.

Run with ``hospital-queue-seed`` after installing the package. Every record
goes through ``HospitalSchema``/``CounterSchema`` and the directory's save
functions, so seeded data obeys the same rules as any other write.
"""

import asyncio
import logging
from typing import Any, Dict, List

from bson import ObjectId

from queue_api.config import settings
from queue_api.database import close_mongo_client, get_database
from queue_api.schemas import CounterSchema, HospitalSchema
from queue_api.services.directory import save_counter, save_hospital

logger = logging.getLogger(__name__)

SAMPLE_HOSPITALS: List[Dict[str, Any]] = [
    {
        "name": "City General Hospital",
        "email": "info@citygeneralhospital.com",
        "phone": "+91-11-2345-6789",
        "address": {
            "street": "123 MG Road",
            "city": "New Delhi",
            "state": "Delhi",
            "zip_code": "110001",
        },
        "type": "Government",
        "category": "Tertiary",
        "specialties": ["Cardiology", "Neurology", "Orthopedics", "General Surgery"],
        "emergency_services": True,
        "bed_capacity": {"total": 500, "available": 45, "icu": 50, "general": 450},
        "is_verified": True,
        "counters": [
            {
                "name": "General OPD",
                "type": "OPD",
                "department": "General Medicine",
                "current_queue_length": 12,
                "average_service_time": 15,
                "working_hours": {"start": "09:00", "end": "17:00"},
                "max_capacity_per_hour": 20,
                "specialization": "General Consultation",
            },
            {
                "name": "Cardiology Counter",
                "type": "Specialist",
                "department": "Cardiology",
                "current_queue_length": 8,
                "average_service_time": 25,
                "working_hours": {"start": "10:00", "end": "16:00"},
                "max_capacity_per_hour": 12,
                "specialization": "Heart Diseases",
            },
            {
                "name": "Emergency Counter",
                "type": "Emergency",
                "department": "Emergency Medicine",
                "current_queue_length": 5,
                "average_service_time": 10,
                "working_hours": {"start": "00:00", "end": "23:59"},
                "max_capacity_per_hour": 60,
                "specialization": "Emergency Care",
            },
            {
                "name": "Pharmacy Counter",
                "type": "Pharmacy",
                "department": "Pharmacy",
                "current_queue_length": 3,
                "average_service_time": 5,
                "working_hours": {"start": "08:00", "end": "20:00"},
                "max_capacity_per_hour": 40,
                "specialization": "Medicine Dispensing",
            },
        ],
    },
    {
        "name": "Apollo Healthcare Center",
        "email": "contact@apollohealthcare.com",
        "phone": "+91-11-9876-5432",
        "address": {
            "street": "456 Nehru Place",
            "city": "New Delhi",
            "state": "Delhi",
            "zip_code": "110019",
        },
        "type": "Private",
        "category": "Secondary",
        "specialties": ["Gynecology", "Pediatrics", "Dermatology", "ENT"],
        "emergency_services": False,
        "bed_capacity": {"total": 200, "available": 25, "icu": 20, "general": 180},
        "is_verified": True,
        "counters": [
            {
                "name": "Pediatrics OPD",
                "type": "Specialist",
                "department": "Pediatrics",
                "current_queue_length": 6,
                "average_service_time": 20,
                "working_hours": {"start": "09:00", "end": "17:00"},
                "max_capacity_per_hour": 15,
                "specialization": "Child Healthcare",
            },
            {
                "name": "Gynecology Counter",
                "type": "Specialist",
                "department": "Gynecology",
                "current_queue_length": 10,
                "average_service_time": 30,
                "working_hours": {"start": "10:00", "end": "18:00"},
                "max_capacity_per_hour": 10,
                "specialization": "Women's Health",
            },
            {
                "name": "General Counter",
                "type": "General",
                "department": "General Medicine",
                "current_queue_length": 15,
                "average_service_time": 12,
                "working_hours": {"start": "08:00", "end": "18:00"},
                "max_capacity_per_hour": 25,
                "specialization": "General Consultation",
            },
            {
                "name": "Lab Counter",
                "type": "Lab",
                "department": "Laboratory",
                "current_queue_length": 4,
                "average_service_time": 8,
                "working_hours": {"start": "07:00", "end": "19:00"},
                "max_capacity_per_hour": 50,
                "specialization": "Blood Tests & Diagnostics",
            },
        ],
    },
]


async def seed_directory(clear: bool = True) -> Dict[ObjectId, List[ObjectId]]:
    """
    Insert the sample hospitals and their counters.

    Parameters
    ----------
    clear : bool
        Delete existing hospitals and counters first.

    Returns
    -------
    dict
        Hospital id to the ids of the counters created for it.
    """
    database = get_database()
    if clear:
        await database["hospitals"].delete_many({})
        await database["counters"].delete_many({})
        logger.info("Cleared hospitals and counters")

    seeded = {}
    for sample in SAMPLE_HOSPITALS:
        fields = {key: value for key, value in sample.items() if key != "counters"}
        hospital_id = await save_hospital(HospitalSchema(**fields))
        counter_ids = []
        for counter in sample["counters"]:
            counter_ids.append(
                await save_counter(CounterSchema(hospital_id=str(hospital_id), **counter))
            )
        seeded[hospital_id] = counter_ids
        logger.info("Seeded %s (%s) with %d counters", fields["name"], hospital_id, len(counter_ids))

    return seeded


async def _run() -> None:
    try:
        seeded = await seed_directory()
        logger.info("Seeding finished: %d hospitals", len(seeded))
    finally:
        close_mongo_client()


def main() -> None:
    """Console entry point."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(_run())


if __name__ == "__main__":
    main()
