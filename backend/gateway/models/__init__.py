"""
AI Gateway — ORM Models
========================

Importing this package registers every table on `Base.metadata`, which is
what Alembic's env.py relies on for autogenerate.
"""

from gateway.models.audit import AuditLog
from gateway.models.cache import ModelCache
from gateway.models.usage import AccountLimit, DailyUsage

__all__ = ["AccountLimit", "AuditLog", "DailyUsage", "ModelCache"]
