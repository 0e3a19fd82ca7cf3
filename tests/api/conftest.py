import pytest

from app.utils.datetime_helper import utcnow


@pytest.fixture
def now():
    # Requests resolve subscriptions against the real clock
    return utcnow()
