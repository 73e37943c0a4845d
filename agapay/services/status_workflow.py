"""
Status Workflow Engine - report lifecycle state machine.

DESIGN PRINCIPLES:
- Status only moves forward: Pending → Assigned → Under Investigation → Resolved
- Skipping ahead is allowed, going back or staying put is not
- All transitions logged in status_history
- Transfer to another agency is not a status; the report leaves the collection
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from agapay.core.errors import InvalidTransition

logger = logging.getLogger(__name__)


class ReportStatus(str, Enum):
    PENDING = "Pending"
    ASSIGNED = "Assigned"
    UNDER_INVESTIGATION = "Under Investigation"
    RESOLVED = "Resolved"


# Officer assignment is allowed from these statuses and lands on UNDER_INVESTIGATION
OFFICER_ASSIGNABLE = (ReportStatus.ASSIGNED, ReportStatus.UNDER_INVESTIGATION)


class StatusWorkflowEngine:
    """
    Forward-only state machine for report statuses.

    Rules:
    - No backward transitions
    - No same-status "transitions"
    - Resolved is terminal
    """

    # Allowed transitions map: {from_status: [to_status, ...]}
    ALLOWED_TRANSITIONS: Dict[ReportStatus, List[ReportStatus]] = {
        ReportStatus.PENDING: [
            ReportStatus.ASSIGNED,
            ReportStatus.UNDER_INVESTIGATION,
            ReportStatus.RESOLVED,
        ],
        ReportStatus.ASSIGNED: [ReportStatus.UNDER_INVESTIGATION, ReportStatus.RESOLVED],
        ReportStatus.UNDER_INVESTIGATION: [ReportStatus.RESOLVED],
        ReportStatus.RESOLVED: [],  # Terminal state
    }

    @classmethod
    def parse_status(cls, value: str) -> ReportStatus:
        try:
            return ReportStatus(value)
        except ValueError:
            raise InvalidTransition(
                f"Unknown status: {value}",
                {"allowed": [s.value for s in ReportStatus]},
            )

    @classmethod
    def is_valid_transition(cls, from_status: str, to_status: str) -> bool:
        try:
            from_enum = ReportStatus(from_status)
            to_enum = ReportStatus(to_status)
        except ValueError:
            return False
        return to_enum in cls.ALLOWED_TRANSITIONS.get(from_enum, [])

    @classmethod
    def get_allowed_transitions(cls, current_status: str) -> List[str]:
        try:
            current_enum = ReportStatus(current_status)
        except ValueError:
            return []
        return [status.value for status in cls.ALLOWED_TRANSITIONS.get(current_enum, [])]

    @classmethod
    def create_status_history_entry(
        cls,
        from_status: Optional[str],
        to_status: str,
        changed_by: str,
        note: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Dict:
        """
        Create a status history entry for the audit trail.

        Timestamps are client-side so entries can live inside arrays.
        """
        return {
            "from": from_status or "",
            "to": to_status,
            "changed_by": changed_by,
            "timestamp": timestamp or datetime.now(timezone.utc),
            "note": note or "",
        }

    @classmethod
    def validate_and_transition(
        cls,
        current_status: str,
        new_status: str,
        changed_by: str,
        note: Optional[str] = None,
    ) -> Dict:
        """
        Validate a transition and build its history entry.

        Raises:
            InvalidTransition: if the move is not forward
        """
        target = cls.parse_status(new_status)
        if not cls.is_valid_transition(current_status, target.value):
            allowed = cls.get_allowed_transitions(current_status)
            raise InvalidTransition(
                f"Invalid status transition: {current_status} → {target.value}",
                {"current": current_status, "requested": target.value, "allowed": allowed},
            )

        history_entry = cls.create_status_history_entry(
            from_status=current_status,
            to_status=target.value,
            changed_by=changed_by,
            note=note,
        )
        logger.info(f"Status transition {current_status} → {target.value} by {changed_by}")
        return {
            "valid": True,
            "from_status": current_status,
            "to_status": target.value,
            "history_entry": history_entry,
        }
