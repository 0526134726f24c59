"""ORM models package.

Import all models here so that SQLAlchemy's metadata is fully populated
when Alembic runs autogenerate. The order of imports matters for foreign
key resolution.
"""

from src.models.profile import Profile
from src.models.tenant import Plan, Tenant
from src.models.membership import Membership, MembershipStatus, Role
from src.models.invitation import Invitation
from src.models.audit import AuditLog

__all__ = [
    "AuditLog",
    "Invitation",
    "Membership",
    "MembershipStatus",
    "Plan",
    "Profile",
    "Role",
    "Tenant",
]
