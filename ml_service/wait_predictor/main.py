"""Main FastAPI application for the Wait Time Predictor Service.

Defines endpoints for health checking and wait time predictions based
on the current queue, the appointment hour and day, and counter details.
"""

from typing import List, Optional

from fastapi import FastAPI
from pydantic import BaseModel, Field

from .predictor import predict_wait_time

ml_application = FastAPI(title="Wait Time Predictor Service")


class PredictionRequest(BaseModel):
    """Request schema for predicting wait time. ``day_of_week`` uses Sunday = 0."""

    hospital_id: Optional[str] = None
    counter_id: Optional[str] = None
    current_queue_length: int = Field(0, ge=0)
    time_of_day: int = Field(..., ge=0, le=23)
    day_of_week: int = Field(..., ge=0, le=6)
    counter_type: str = "OPD"
    doctor_available: bool = True
    weather_condition: str = "clear"
    is_holiday: bool = False


class PredictionResponse(BaseModel):
    """Response schema for predicted wait time, confidence and factors."""

    predicted_wait_minutes: float
    confidence: float
    factors: List[str]


@ml_application.get("/health")
async def health_check() -> dict:
    """Health check endpoint to confirm service is running."""
    return {"status": "ok"}


@ml_application.post("/predict", response_model=PredictionResponse)
async def predict_endpoint(payload: PredictionRequest) -> PredictionResponse:
    """Predict the wait for a new ticket at a counter.

    Parameters
    ----------
    payload : PredictionRequest
        Queue length, calendar features and counter details.

    Returns
    -------
    PredictionResponse
        Predicted wait in minutes, a confidence in [0.5, 0.95] and the
        factors driving the estimate.
    """
    prediction = predict_wait_time(**payload.model_dump())
    return PredictionResponse(**prediction)
