"""Timer engine errors"""


class TimerError(Exception):
    """Base class for timer engine failures"""


class ServerTimeUnavailable(TimerError):
    """The server clock could not be sampled; the engine keeps its last anchor"""


class StoreReadFailed(TimerError):
    """A station could not be read from the Station Store"""


class PersistenceWriteFailed(TimerError):
    """
    A station write was not accepted by the Station Store.

    Local state keeps the attempted transition; the next successful
    read replaces it.
    """


class InvalidTransition(TimerError):
    """The requested operation does not apply to the station's current state"""

    def __init__(self, operation: str, phase: str, reason: str = ""):
        message = f"Cannot {operation} a station that is {phase}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.operation = operation
        self.phase = phase
