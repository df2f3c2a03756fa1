"""Ticket routes mounted under ``/api/tickets``."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from queue_api.auth import get_current_user
from queue_api.responses import envelope_response
from queue_api.schemas import (
    BookTicketRequest,
    RatingRequest,
    StatusUpdateRequest,
    TicketStatus,
)
from queue_api.services import ticket_service

router = APIRouter(prefix="/api/tickets", tags=["Tickets"])


@router.post("/book")
async def book_ticket(
    payload: BookTicketRequest,
    user: Dict[str, Any] = Depends(get_current_user),
):
    """Book a ticket for a hospital counter and time slot."""
    data = await ticket_service.book_ticket(user, payload)
    return envelope_response("Ticket booked successfully", data=data, status_code=201)


@router.get("/details/{ticket_id}")
async def get_ticket_details(
    ticket_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
):
    """Return one ticket with derived fields and its QR payload."""
    data = await ticket_service.get_ticket_details(user, ticket_id)
    return envelope_response("Ticket details retrieved successfully", data=data)


@router.get("/{user_id}")
async def get_user_tickets(
    user_id: str,
    status: Optional[List[TicketStatus]] = Query(None),
    hospital: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    limit: int = Query(50, ge=1, le=100),
    page: int = Query(1, ge=1),
    user: Dict[str, Any] = Depends(get_current_user),
):
    """List a user's tickets; users see their own, admins anyone's."""
    data = await ticket_service.list_user_tickets(
        user,
        user_id,
        statuses=status,
        hospital=hospital,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return envelope_response("User tickets retrieved successfully", data=data)


@router.put("/{ticket_id}/status")
async def update_ticket_status(
    ticket_id: str,
    payload: StatusUpdateRequest,
    user: Dict[str, Any] = Depends(get_current_user),
):
    """Confirm, start, complete, cancel or mark a ticket as no-show."""
    data = await ticket_service.update_ticket_status(user, ticket_id, payload)
    return envelope_response("Ticket status updated successfully", data=data)


@router.post("/{ticket_id}/checkin")
async def check_in(
    ticket_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
):
    data = await ticket_service.check_in(user, ticket_id)
    return envelope_response("Checked in successfully", data=data)


@router.post("/{ticket_id}/rating")
async def rate_service(
    ticket_id: str,
    payload: RatingRequest,
    user: Dict[str, Any] = Depends(get_current_user),
):
    data = await ticket_service.rate_ticket(user, ticket_id, payload)
    return envelope_response("Rating submitted successfully", data=data)
