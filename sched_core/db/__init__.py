from sched_core.db.database import Base, get_db, get_session_factory

__all__ = [
    "Base",
    "get_db",
    "get_session_factory",
]
