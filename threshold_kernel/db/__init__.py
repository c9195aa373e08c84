"""Database layer - engine, base classes and portable column types."""

from threshold_kernel.db.base import UUID, Base, UTCDateTime, UUIDString
from threshold_kernel.db.engine import (
    create_engine_for_url,
    create_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "init_engine_from_url",
    "create_engine_for_url",
    "create_tables",
    "reset_engine",
    "Base",
    "UUIDString",
    "UTCDateTime",
    "UUID",
]
