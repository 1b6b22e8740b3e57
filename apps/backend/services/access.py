"""
Caller context and role predicates shared by the services.

The API layer resolves an OrganizationContext per request (see
api.auth_dependencies); services only read it.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

from backend.database.models import FederationRole, MemberRole, UserRole
from backend.services.errors import ForbiddenError

MANAGER_ROLES = frozenset({MemberRole.OWNER.value, MemberRole.ADMIN.value})
STAFF_ROLES = MANAGER_ROLES | {MemberRole.COACH.value}


@dataclass
class OrganizationContext:
    user: Dict
    organization_id: Optional[int] = None
    role: Optional[str] = None
    memberships: Dict[int, str] = field(default_factory=dict)

    @property
    def user_id(self) -> int:
        return self.user["id"]

    @property
    def is_system_admin(self) -> bool:
        return self.user.get("role") == UserRole.ADMIN.value

    @property
    def federation_id(self) -> Optional[int]:
        return self.user.get("federation_id")

    @property
    def federation_role(self) -> Optional[str]:
        return self.user.get("federation_role")

    @property
    def is_org_manager(self) -> bool:
        return self.is_system_admin or self.role in MANAGER_ROLES

    @property
    def is_org_staff(self) -> bool:
        return self.is_system_admin or self.role in STAFF_ROLES

    def is_federation_admin(self, federation_id: int) -> bool:
        if self.is_system_admin:
            return True
        return (
            self.federation_id == federation_id
            and self.federation_role == FederationRole.ADMIN.value
        )

    def is_federation_staff(self, federation_id: int) -> bool:
        """Federation admins and editors of this federation (or system admins)."""
        if self.is_system_admin:
            return True
        return self.federation_id == federation_id and self.federation_role in (
            FederationRole.ADMIN.value,
            FederationRole.EDITOR.value,
        )

    def require_organization(self) -> int:
        if self.organization_id is None:
            raise ForbiddenError("No active organization")
        return self.organization_id

    def require_org_manager(self) -> int:
        org_id = self.require_organization()
        if not self.is_org_manager:
            raise ForbiddenError("Organization owner or admin access required")
        return org_id

    def require_org_staff(self) -> int:
        org_id = self.require_organization()
        if not self.is_org_staff:
            raise ForbiddenError("Organization owner, admin or coach access required")
        return org_id

    def require_federation_admin(self, federation_id: int) -> None:
        if not self.is_federation_admin(federation_id):
            raise ForbiddenError("Federation admin access required")

    def require_federation_staff(self, federation_id: int) -> None:
        if not self.is_federation_staff(federation_id):
            raise ForbiddenError("Federation admin or editor access required")
