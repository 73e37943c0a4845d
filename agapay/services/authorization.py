"""
Authorization - role → capability table checked at the route boundary.

Ownership rules (only the reporter edits their report) and station scoping
are enforced inside the services; this table only answers "may this role
attempt the operation at all".
"""

import logging
from enum import Enum
from typing import Dict, FrozenSet

from fastapi import Depends

from agapay.core.errors import PermissionDenied
from agapay.models.user import Principal, Role
from agapay.utils.security import get_current_principal

logger = logging.getLogger(__name__)


class Capability(str, Enum):
    CREATE_REPORT = "create_report"
    EDIT_OWN_REPORT = "edit_own_report"
    VIEW_OWN_REPORTS = "view_own_reports"
    VIEW_STATION_REPORTS = "view_station_reports"
    ASSIGN_STATION = "assign_station"
    ASSIGN_OFFICER = "assign_officer"
    UPDATE_STATUS = "update_status"
    ADD_FOLLOW_UP = "add_follow_up"
    REASSIGN_STATION = "reassign_station"
    TRANSFER_REPORT = "transfer_report"
    DELETE_REPORT = "delete_report"
    PUBLISH_REPORT = "publish_report"
    VIEW_ANALYTICS = "view_analytics"
    MANAGE_STATIONS = "manage_stations"
    CREATE_FINDER_REPORT = "create_finder_report"
    VERIFY_FINDER_REPORT = "verify_finder_report"
    VIEW_FINDER_REPORTS = "view_finder_reports"


_POLICE = frozenset({Role.POLICE_OFFICER, Role.POLICE_ADMIN})
_POLICE_ADMINS = frozenset({Role.POLICE_ADMIN, Role.CITY_ADMIN, Role.SUPER_ADMIN})
_STAFF = frozenset({Role.POLICE_OFFICER, Role.POLICE_ADMIN, Role.CITY_ADMIN, Role.SUPER_ADMIN})
_EVERYONE = frozenset(Role)

PERMISSIONS: Dict[Capability, FrozenSet[Role]] = {
    Capability.CREATE_REPORT: _EVERYONE,
    Capability.EDIT_OWN_REPORT: _EVERYONE,
    Capability.VIEW_OWN_REPORTS: _EVERYONE,
    Capability.VIEW_STATION_REPORTS: _STAFF,
    Capability.ASSIGN_STATION: _POLICE_ADMINS,
    Capability.ASSIGN_OFFICER: _POLICE_ADMINS,
    Capability.UPDATE_STATUS: _POLICE,
    Capability.ADD_FOLLOW_UP: _POLICE,
    Capability.REASSIGN_STATION: frozenset({Role.CITY_ADMIN, Role.SUPER_ADMIN}),
    Capability.TRANSFER_REPORT: _POLICE_ADMINS,
    Capability.DELETE_REPORT: frozenset({Role.SUPER_ADMIN}),
    Capability.PUBLISH_REPORT: _POLICE_ADMINS,
    Capability.VIEW_ANALYTICS: _STAFF,
    Capability.MANAGE_STATIONS: frozenset({Role.CITY_ADMIN, Role.SUPER_ADMIN}),
    Capability.CREATE_FINDER_REPORT: _EVERYONE,
    Capability.VERIFY_FINDER_REPORT: _STAFF,
    Capability.VIEW_FINDER_REPORTS: _STAFF,
}


def has_capability(principal: Principal, capability: Capability) -> bool:
    allowed = PERMISSIONS.get(capability, frozenset())
    return any(role in allowed for role in principal.roles)


def ensure_capability(principal: Principal, capability: Capability) -> None:
    if not has_capability(principal, capability):
        logger.info(f"Denied {capability.value} for {principal.id} with roles {[r.value for r in principal.roles]}")
        raise PermissionDenied(
            f"Not allowed to {capability.value.replace('_', ' ')}",
            {"capability": capability.value},
        )


def requires(capability: Capability):
    """FastAPI dependency: resolves the principal and checks the capability."""

    async def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        ensure_capability(principal, capability)
        return principal

    return dependency
