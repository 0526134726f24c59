"""
src.db - Tenant-scoped data access.

Provides:
  - ScopedGateway: query builder/executor that always applies the tenant
    and soft-delete predicates
"""

from src.db.gateway import ScopedGateway

__all__ = ["ScopedGateway"]
