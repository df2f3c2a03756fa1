"""Hospital queue ticketing API service."""
