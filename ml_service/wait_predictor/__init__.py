"""
Entry point for the wait time predictor package.

This module exposes the FastAPI application instance `ml_application`
so it can be imported and run by an ASGI server or other entry scripts.
"""
from .main import ml_application

__all__ = ["ml_application"]
