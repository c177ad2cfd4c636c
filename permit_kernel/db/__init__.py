"""Database layer - engine, base classes, column types."""

from permit_kernel.db.base import Base, UTCDateTime, UUIDString
from permit_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)

__all__ = [
    "Base",
    "UTCDateTime",
    "UUIDString",
    "create_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
]
