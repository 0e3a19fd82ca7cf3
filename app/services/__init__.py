"""Services module"""

# Client-side station timer
from app.services.timer import GameStationClient, PaidEventListener, TimerEngine

__all__ = [
    "GameStationClient",
    "PaidEventListener",
    "TimerEngine",
]
