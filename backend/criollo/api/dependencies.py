"""FastAPI dependencies shared by the floor routers."""

from decimal import Decimal
from typing import Optional

from fastapi import Request

from criollo.services.floor import FloorCoordinator


def get_coordinator(request: Request) -> FloorCoordinator:
    """The FloorCoordinator created at startup and kept in app.state."""
    return request.app.state.coordinator


def money(value: Optional[Decimal]) -> Optional[float]:
    """Decimal amounts leave the API as floats with two decimals."""
    if value is None:
        return None
    return float(value)
