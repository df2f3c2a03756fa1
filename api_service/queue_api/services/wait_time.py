"""Wait-time oracles used when booking a ticket.

Two interchangeable variants implement :class:`WaitTimeOracle`:

- ``heuristic``: queue-length arithmetic with time-of-day, weekday, counter,
  weather and holiday multipliers plus a little noise.
- ``external``: the ``/predict`` endpoint of the ML service.

The variant is chosen by ``settings.wait_time_oracle``. Callers go through
:func:`estimate_wait_time`, which bounds the call with a timeout and falls
back to ``queue length x average service time`` on any failure.
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import List, Optional

from queue_api.config import settings
from queue_api.errors import OracleError
from queue_api.services.ml_client import request_wait_time_prediction

logger = logging.getLogger(__name__)

MINUTES_PER_PATIENT = 15
MIN_WAIT_MINUTES = 5
MAX_WAIT_MINUTES = 180

COUNTER_FACTORS = {
    "Emergency": 0.8,
    "OPD": 1.0,
    "Specialist": 1.4,
    "Lab": 0.6,
    "Pharmacy": 0.5,
}


@dataclass
class WaitTimeFeatures:
    """Inputs to a wait-time prediction. ``day_of_week`` uses Sunday = 0."""

    hospital_id: Optional[str]
    counter_id: Optional[str]
    current_queue_length: int = 0
    time_of_day: Optional[int] = None
    day_of_week: Optional[int] = None
    counter_type: str = "OPD"
    doctor_available: bool = True
    weather_condition: str = "clear"
    is_holiday: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class WaitTimePrediction:
    wait_minutes: int
    confidence: float
    factors: List[str] = field(default_factory=list)


class WaitTimeOracle(ABC):
    """Interface every wait-time predictor implements."""

    name = "base"

    @abstractmethod
    async def predict(self, features: WaitTimeFeatures) -> WaitTimePrediction:
        """Return the predicted wait for a new ticket, raising on failure."""


def _require_core_features(features: WaitTimeFeatures) -> None:
    if (
        not features.hospital_id
        or not features.counter_id
        or features.time_of_day is None
        or features.day_of_week is None
    ):
        raise OracleError("Missing required features for wait time prediction")


def wait_time_factors(features: WaitTimeFeatures) -> List[str]:
    factors = []
    if features.current_queue_length > 10:
        factors.append("High current queue length")
    if 9 <= features.time_of_day <= 12:
        factors.append("Morning rush hour")
    if features.day_of_week == 1:
        factors.append("Monday rush")
    if not features.doctor_available:
        factors.append("Limited doctor availability")
    if features.weather_condition == "rain":
        factors.append("Rainy weather may increase footfall")
    return factors


class HeuristicWaitTimeOracle(WaitTimeOracle):
    """Rule-of-thumb estimate; no trained model involved."""

    name = "heuristic"

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def base_wait_minutes(self, features: WaitTimeFeatures) -> float:
        """Deterministic part of the estimate, before noise and clamping."""
        wait = features.current_queue_length * MINUTES_PER_PATIENT

        if 9 <= features.time_of_day <= 12:
            wait *= 1.3
        elif 16 <= features.time_of_day <= 19:
            wait *= 1.2

        if features.day_of_week in (1, 6):
            wait *= 1.15

        wait *= COUNTER_FACTORS.get(features.counter_type, 1.0)

        if not features.doctor_available:
            wait *= 2.0
        if features.weather_condition in ("rain", "storm"):
            wait *= 1.1
        if features.is_holiday:
            wait *= 0.7
        return wait

    def confidence(self, features: WaitTimeFeatures) -> float:
        present = sum(1 for value in features.to_dict().values() if value is not None)
        score = 0.7 + (present / 10) * 0.2 + self._rng.random() * 0.1
        return min(0.95, max(0.5, score))

    async def predict(self, features: WaitTimeFeatures) -> WaitTimePrediction:
        _require_core_features(features)
        noisy = self.base_wait_minutes(features) * (0.8 + self._rng.random() * 0.4)
        clamped = max(MIN_WAIT_MINUTES, min(MAX_WAIT_MINUTES, noisy))
        return WaitTimePrediction(
            wait_minutes=round(clamped),
            confidence=self.confidence(features),
            factors=wait_time_factors(features),
        )


class ExternalModelWaitTimeOracle(WaitTimeOracle):
    """Delegates to the ML service over HTTP."""

    name = "external"

    async def predict(self, features: WaitTimeFeatures) -> WaitTimePrediction:
        _require_core_features(features)
        response = await request_wait_time_prediction(features.to_dict())
        try:
            minutes = float(response["predicted_wait_minutes"])
        except (KeyError, TypeError, ValueError) as error:
            raise OracleError(f"Malformed ML service response: {response!r}") from error
        return WaitTimePrediction(
            wait_minutes=round(minutes),
            confidence=float(response.get("confidence", 0.0)),
            factors=list(response.get("factors", [])),
        )


_ORACLES = {
    HeuristicWaitTimeOracle.name: HeuristicWaitTimeOracle,
    ExternalModelWaitTimeOracle.name: ExternalModelWaitTimeOracle,
}


def get_wait_time_oracle(kind: Optional[str] = None) -> WaitTimeOracle:
    """Build the oracle named by ``kind`` or by ``settings.wait_time_oracle``."""
    kind = kind or settings.wait_time_oracle
    try:
        return _ORACLES[kind]()
    except KeyError as error:
        raise ValueError(f"Unknown wait time oracle: {kind}") from error


async def estimate_wait_time(
    features: WaitTimeFeatures,
    fallback_minutes: int,
    oracle: Optional[WaitTimeOracle] = None,
    timeout: Optional[float] = None,
) -> int:
    """Ask the oracle for a wait estimate, never failing the caller.

    Parameters
    ----------
    features : WaitTimeFeatures
        Queue and calendar features for the prospective ticket.
    fallback_minutes : int
        Value returned when the oracle errors or exceeds the timeout.
    oracle : WaitTimeOracle, optional
        Defaults to the configured oracle.
    timeout : float, optional
        Seconds to wait; defaults to ``settings.oracle_timeout_seconds``.

    Returns
    -------
    int
        Estimated wait in minutes.
    """
    oracle = oracle or get_wait_time_oracle()
    timeout = settings.oracle_timeout_seconds if timeout is None else timeout
    try:
        prediction = await asyncio.wait_for(oracle.predict(features), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(
            "%s wait time oracle timed out after %.2fs; using fallback %s min",
            oracle.name,
            timeout,
            fallback_minutes,
        )
        return fallback_minutes
    except Exception:  # pylint: disable=broad-except
        logger.exception(
            "%s wait time oracle failed; using fallback %s min", oracle.name, fallback_minutes
        )
        return fallback_minutes
    return prediction.wait_minutes
