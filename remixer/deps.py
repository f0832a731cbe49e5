"""FastAPI dependency providers backed by state created in the app lifespan."""

from fastapi import Request

from remixer.errors import ValidationError
from remixer.jobs import JobRegistry
from remixer.models import Owner


def get_owner(request: Request) -> Owner:
    """The owner every request acts as. A single demo user for now."""
    return request.app.state.owner


def get_registry(request: Request) -> JobRegistry:
    return request.app.state.registry


def parse_track_id(track_id: str) -> int:
    try:
        value = int(track_id)
    except ValueError:
        raise ValidationError("Invalid track ID")
    if value <= 0:
        raise ValidationError("Invalid track ID")
    return value
