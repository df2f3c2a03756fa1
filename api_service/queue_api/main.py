"""Main FastAPI application: logging, lifecycle, error handlers and routes
for the Hospital Queue API.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .database import close_mongo_client, ensure_indexes, get_mongo_client
from .errors import TicketingError
from .responses import envelope_response
from .routes.tickets import router as tickets_router
from .services.ticket_rules import utcnow

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """Configure root logging once for the service process."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Application lifespan: logging, MongoDB connection and indexes."""
    setup_logging()
    get_mongo_client()
    try:
        await ensure_indexes()
    except PyMongoError:
        logger.exception("Could not create MongoDB indexes")
    yield
    close_mongo_client()


api_application = FastAPI(lifespan=lifespan, title="Hospital Queue API")
api_application.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _field_name(location) -> str:
    parts = [str(part) for part in location if part not in ("body", "query", "path")]
    return ".".join(parts) or "request"


@api_application.exception_handler(TicketingError)
async def ticketing_error_handler(_request: Request, error: TicketingError):
    return envelope_response(error.message, status_code=error.status_code, errors=error.errors)


@api_application.exception_handler(RequestValidationError)
async def validation_error_handler(_request: Request, error: RequestValidationError):
    """Report request validation failures as 400 with per-field messages."""
    errors = [
        {"field": _field_name(item.get("loc", ())), "message": item.get("msg", "Invalid value")}
        for item in error.errors()
    ]
    return envelope_response("Validation error", status_code=400, errors=errors)


@api_application.exception_handler(StarletteHTTPException)
async def http_error_handler(_request: Request, error: StarletteHTTPException):
    if error.status_code == 404:
        return envelope_response("Route not found", status_code=404)
    return envelope_response(str(error.detail), status_code=error.status_code)


@api_application.exception_handler(Exception)
async def unhandled_error_handler(request: Request, _error: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return envelope_response("Internal server error", status_code=500)


@api_application.get("/api/health")
async def health_check():
    """Liveness probe."""
    return envelope_response(
        "Hospital Queue API is running",
        data={"status": "ok", "timestamp": utcnow().isoformat()},
    )


api_application.include_router(tickets_router)
