"""Database package"""

from app.db.session import get_db, SessionLocal, engine

__all__ = ["get_db", "SessionLocal", "engine"]
