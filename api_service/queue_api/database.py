"""Database module providing MongoDB client and database access.

This module manages the connection to MongoDB using Motor (async client).
It maintains a module-level client cache to avoid reconnecting for each request.
"""

import logging

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING

from .config import settings
from .errors import InvalidIdentifierError

logger = logging.getLogger(__name__)

# Module-level cache for the MongoDB client instance
mongo_client_instance: AsyncIOMotorClient | None = None  # pylint: disable=invalid-name


def get_mongo_client() -> AsyncIOMotorClient:
    """
    Create or return the existing MongoDB client.

    Returns
    -------
    AsyncIOMotorClient
        A connected MongoDB client instance using configuration from
        the global `settings` object. Datetimes come back timezone-aware
        (UTC).
    """
    global mongo_client_instance  # pylint: disable=global-statement
    if mongo_client_instance is None:
        connection_string = (
            f"mongodb://{settings.mongo_username}:{settings.mongo_password}"
            f"@{settings.mongo_host}:{settings.mongo_port}/"
            f"{settings.mongo_database_name}"
            f"?authSource={settings.mongo_database_name}"
        )
        mongo_client_instance = AsyncIOMotorClient(connection_string, tz_aware=True)
    return mongo_client_instance


def close_mongo_client():
    """
    Close the MongoDB client safely. Required for testing to avoid
    'Event loop is closed' errors caused by stale async client instances.
    """
    global mongo_client_instance  # pylint: disable=global-statement
    if mongo_client_instance is not None:
        mongo_client_instance.close()
        mongo_client_instance = None


def get_database():
    """
    Return the MongoDB database object for the configured database name.

    Returns
    -------
    motor.motor_asyncio.AsyncIOMotorDatabase
        The database object corresponding to `settings.mongo_database_name`.
    """
    client_instance = get_mongo_client()
    return client_instance[settings.mongo_database_name]


async def ensure_indexes() -> None:
    """Create the indexes the ticket workflows query by."""
    database = get_database()
    tickets = database["tickets"]
    await tickets.create_index("ticket_number", unique=True)
    await tickets.create_index([("user_id", ASCENDING), ("status", ASCENDING)])
    await tickets.create_index(
        [
            ("hospital_id", ASCENDING),
            ("counter_id", ASCENDING),
            ("appointment_date_time", ASCENDING),
        ]
    )
    await tickets.create_index([("booking_date_time", DESCENDING)])
    await database["counters"].create_index("hospital_id")
    logger.info("MongoDB indexes ensured")


def to_object_id(value, resource: str) -> ObjectId:
    """Convert a path/body identifier to ObjectId or raise a 400 error."""
    if isinstance(value, ObjectId):
        return value
    if value is None:
        raise InvalidIdentifierError(resource)
    try:
        return ObjectId(value)
    except (InvalidId, TypeError) as error:
        raise InvalidIdentifierError(resource) from error
