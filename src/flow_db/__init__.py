"""flow_db — PostgreSQL persistence for flow session snapshots.

The engine keeps sessions in memory; this package stores point-in-time
snapshots of them so hosts can list, inspect, resume and purge runs.  It
provides the ORM model, async engine factory and repository.
"""

from flow_db.engine import get_engine, get_session_factory
from flow_db.models.session import FlowSessionRecord
from flow_db.repository import SessionSnapshotRepository

__all__ = [
    "FlowSessionRecord",
    "get_engine",
    "get_session_factory",
    "SessionSnapshotRepository",
]
