"""ORM models for flow_db."""

from flow_db.models.base import Base
from flow_db.models.session import FlowSessionRecord

__all__ = ["Base", "FlowSessionRecord"]
