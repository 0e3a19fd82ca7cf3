from app.services.timer.models.timer_state import ServerTime, TimerPhase

__all__ = ["ServerTime", "TimerPhase"]
