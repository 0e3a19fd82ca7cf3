"""Authoritative server time for client timer reconciliation"""

from fastapi import APIRouter

from app.utils.datetime_helper import server_time_payload

router = APIRouter(prefix="/api/time", tags=["time"])


@router.get("")
async def get_server_time():
    """
    Current server time.

    ``timestamp`` is true UTC epoch milliseconds; the string fields are
    in cafe local time.
    """
    return server_time_payload()
