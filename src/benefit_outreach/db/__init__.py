"""Database module.

Provides:
- SQLAlchemy ORM models for practices, patients and outreach
- Async session management with dependency injection
- Repository pattern for data access
"""
from benefit_outreach.db.base import Base, TimestampMixin, UUIDMixin, UUIDType
from benefit_outreach.db.session import (
    close_db,
    create_test_engine,
    get_db,
    get_engine,
    get_session_factory,
    get_test_session_factory,
    init_db,
)

__all__ = [
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "UUIDType",
    "get_engine",
    "get_session_factory",
    "get_db",
    "init_db",
    "close_db",
    "create_test_engine",
    "get_test_session_factory",
]
