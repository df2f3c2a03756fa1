"""Client module for interacting with the external ML service for wait time predictions."""

from typing import Any, Dict

import httpx
from queue_api.config import settings  # global settings instance


def get_ml_service_base_url() -> str:
    """
    Determine the base URL for the ML service.

    Returns
    -------
    str
        The URL to use for HTTP requests to the ML service, read from
        `settings.ml_service_url` (env `ML_SERVICE_URL`) without a trailing slash.
    """
    return settings.ml_service_url.rstrip("/")


async def request_wait_time_prediction(features: Dict[str, Any]) -> Dict[str, Any]:
    """
    Request a predicted wait time from the ML service.

    Parameters
    ----------
    features : Dict[str, Any]
        Queue and calendar features: current queue length, hour of day,
        day of week, counter type, doctor availability, weather and the
        holiday flag.

    Returns
    -------
    Dict[str, Any]
        JSON response from the ML service containing the predicted wait
        time, a confidence score and the factors behind it.
    """
    base_url = get_ml_service_base_url()

    async with httpx.AsyncClient() as http_client:
        response = await http_client.post(f"{base_url}/predict", json=features, timeout=5.0)
        response.raise_for_status()
        return response.json()
