"""
User and principal models.

The authenticated principal is built from Firebase ID token claims; user
profiles (device tokens, station membership, email preferences) live in the
`users` collection.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Closed set of roles carried in the `roles` custom claim."""
    USER = "user"
    POLICE_OFFICER = "police_officer"
    POLICE_ADMIN = "police_admin"
    CITY_ADMIN = "city_admin"
    SUPER_ADMIN = "super_admin"


POLICE_ROLES = (Role.POLICE_OFFICER, Role.POLICE_ADMIN)


class Principal(BaseModel):
    """Authenticated caller of a core operation."""
    id: str = Field(..., description="Firebase uid")
    roles: List[Role] = Field(default_factory=lambda: [Role.USER])
    police_station: Optional[str] = Field(None, description="Station id for police roles")
    city: Optional[str] = Field(None, description="City for city_admin scoping")
    email: Optional[str] = None
    name: Optional[str] = None

    def has_role(self, *roles: Role) -> bool:
        return any(role in self.roles for role in roles)

    @property
    def is_police(self) -> bool:
        return self.has_role(*POLICE_ROLES)

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "Principal":
        """Build a principal from decoded token claims, dropping unknown roles."""
        raw_roles = claims.get("roles") or [Role.USER.value]
        if isinstance(raw_roles, str):
            raw_roles = [raw_roles]
        known = {role.value for role in Role}
        roles = [Role(r) for r in raw_roles if r in known] or [Role.USER]
        return cls(
            id=claims.get("uid") or claims.get("user_id") or claims["sub"],
            roles=roles,
            police_station=claims.get("police_station"),
            city=claims.get("city"),
            email=claims.get("email"),
            name=claims.get("name"),
        )


class UserResponse(BaseModel):
    """Public view of a user profile."""
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    roles: List[Role] = Field(default_factory=list)
    police_station: Optional[str] = None
    city: Optional[str] = None
