"""Predictor module for estimating hospital counter wait times.

This module provides:
- Feature vector construction from queue, calendar and counter features
- Synthetic data generation labelled by the queue-length rule of thumb
- Training of a RandomForest model and prediction with confidence and factors
"""

from typing import Any, Dict, List, Optional, Tuple
import random

import numpy as np
from sklearn.ensemble import RandomForestRegressor


COUNTER_TYPES: List[str] = ["Emergency", "OPD", "Specialist", "Lab", "Pharmacy"]
WEATHER_CONDITIONS: List[str] = ["clear", "rain", "storm"]

COUNTER_FACTORS = {
    "Emergency": 0.8,
    "OPD": 1.0,
    "Specialist": 1.4,
    "Lab": 0.6,
    "Pharmacy": 0.5,
}

MIN_WAIT_MINUTES = 5.0
MAX_WAIT_MINUTES = 180.0
FEATURE_COUNT = 5 + len(COUNTER_TYPES) + len(WEATHER_CONDITIONS)


def build_feature_vector(
    current_queue_length: int,
    time_of_day: int,
    day_of_week: int,
    counter_type: str = "OPD",
    doctor_available: bool = True,
    weather_condition: str = "clear",
    is_holiday: bool = False,
) -> np.ndarray:
    """Convert prediction inputs into a numeric feature vector.

    Counter type and weather are one-hot encoded; unknown values encode as
    all zeros.
    """
    counter_flags = [1.0 if counter_type == name else 0.0 for name in COUNTER_TYPES]
    weather_flags = [1.0 if weather_condition == name else 0.0 for name in WEATHER_CONDITIONS]
    return np.array(
        [
            float(current_queue_length),
            float(time_of_day),
            float(day_of_week),
            1.0 if doctor_available else 0.0,
            1.0 if is_holiday else 0.0,
        ]
        + counter_flags
        + weather_flags,
        dtype=float,
    )


def simulate_true_wait_time(
    current_queue_length: int,
    time_of_day: int,
    day_of_week: int,
    counter_type: str,
    doctor_available: bool,
    weather_condition: str,
    is_holiday: bool,
) -> float:
    """Simulate the 'true' wait time for synthetic data generation."""
    wait = current_queue_length * 15.0
    if 9 <= time_of_day <= 12:
        wait *= 1.3
    elif 16 <= time_of_day <= 19:
        wait *= 1.2
    if day_of_week in (1, 6):
        wait *= 1.15
    wait *= COUNTER_FACTORS.get(counter_type, 1.0)
    if not doctor_available:
        wait *= 2.0
    if weather_condition in ("rain", "storm"):
        wait *= 1.1
    if is_holiday:
        wait *= 0.7

    noise_multiplier = 0.8 + random.random() * 0.4
    return min(max(wait * noise_multiplier, MIN_WAIT_MINUTES), MAX_WAIT_MINUTES)


def build_training_set(sample_count: int) -> Tuple[np.ndarray, np.ndarray]:
    """Generate synthetic training data for the RandomForest model."""
    feature_rows: List[np.ndarray] = []
    target_values: List[float] = []

    for _ in range(sample_count):
        sample = {
            "current_queue_length": random.randint(0, 30),
            "time_of_day": random.randint(6, 21),
            "day_of_week": random.randint(0, 6),
            "counter_type": random.choice(COUNTER_TYPES),
            "doctor_available": random.random() > 0.1,
            "weather_condition": random.choices(WEATHER_CONDITIONS, weights=[7, 2, 1])[0],
            "is_holiday": random.random() < 0.05,
        }
        feature_rows.append(build_feature_vector(**sample))
        target_values.append(simulate_true_wait_time(**sample))

    return np.vstack(feature_rows), np.array(target_values, dtype=float)


def train_model() -> RandomForestRegressor:
    """Train the RandomForest model on synthetic data."""
    random.seed(42)
    np.random.seed(42)

    feature_matrix, target_vector = build_training_set(2000)

    model = RandomForestRegressor(
        n_estimators=150,
        max_depth=12,
        random_state=42,
        n_jobs=-1,
    )
    model.fit(feature_matrix, target_vector)
    return model


MODEL: RandomForestRegressor = train_model()


def describe_factors(
    current_queue_length: int,
    time_of_day: int,
    day_of_week: int,
    doctor_available: bool,
    weather_condition: str,
) -> List[str]:
    """Human-readable reasons behind a long wait."""
    factors = []
    if current_queue_length > 10:
        factors.append("High current queue length")
    if 9 <= time_of_day <= 12:
        factors.append("Morning rush hour")
    if day_of_week == 1:
        factors.append("Monday rush")
    if not doctor_available:
        factors.append("Limited doctor availability")
    if weather_condition == "rain":
        factors.append("Rainy weather may increase footfall")
    return factors


def estimate_confidence(feature_vector: np.ndarray) -> float:
    """Confidence from the spread of the forest's per-tree predictions."""
    feature_matrix = feature_vector.reshape(1, -1)
    tree_predictions = np.array([tree.predict(feature_matrix)[0] for tree in MODEL.estimators_])
    mean_prediction = float(np.mean(tree_predictions))
    if mean_prediction <= 0.0:
        return 0.5
    relative_spread = float(np.std(tree_predictions)) / mean_prediction
    return min(max(0.95 - relative_spread, 0.5), 0.95)


def predict_wait_time(
    current_queue_length: int,
    time_of_day: int,
    day_of_week: int,
    counter_type: str = "OPD",
    doctor_available: bool = True,
    weather_condition: str = "clear",
    is_holiday: bool = False,
    hospital_id: Optional[str] = None,  # pylint: disable=unused-argument
    counter_id: Optional[str] = None,  # pylint: disable=unused-argument
) -> Dict[str, Any]:
    """Predict wait time, confidence and contributing factors."""
    feature_vector = build_feature_vector(
        current_queue_length,
        time_of_day,
        day_of_week,
        counter_type=counter_type,
        doctor_available=doctor_available,
        weather_condition=weather_condition,
        is_holiday=is_holiday,
    )
    predicted_array = MODEL.predict(feature_vector.reshape(1, -1))
    predicted_wait = min(max(float(predicted_array[0]), MIN_WAIT_MINUTES), MAX_WAIT_MINUTES)

    return {
        "predicted_wait_minutes": predicted_wait,
        "confidence": estimate_confidence(feature_vector),
        "factors": describe_factors(
            current_queue_length, time_of_day, day_of_week, doctor_available, weather_condition
        ),
    }
