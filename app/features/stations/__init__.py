"""Stations feature module"""

from app.features.stations.domain import (
    InvalidTransfer,
    PaidEvent,
    StationNotFound,
    StationRecord,
    idle_fields,
)
from app.features.stations.schemas import StationUpdate

__all__ = [
    "InvalidTransfer",
    "PaidEvent",
    "StationNotFound",
    "StationRecord",
    "StationUpdate",
    "idle_fields",
]
