"""
Responder directory: available staff lookup by role and zone
"""
from abc import ABC, abstractmethod
from sqlalchemy.orm import Session
from typing import Optional, Tuple
import logging

from app.models.staff import StaffRole, ResponderRole

logger = logging.getLogger(__name__)


class ResponderDirectory(ABC):
    """Lookup of available responders"""

    @abstractmethod
    def find_available(self, role: ResponderRole, zone: Optional[str]) -> Optional[str]:
        """
        Return the user id of an available responder holding `role`.

        A zone of None means no zone filter.
        """


class SQLResponderDirectory(ResponderDirectory):
    """Directory backed by the staff_roles table"""

    def __init__(self, db: Session):
        self.db = db

    def find_available(self, role: ResponderRole, zone: Optional[str]) -> Optional[str]:
        query = self.db.query(StaffRole).filter(
            StaffRole.role == role,
            StaffRole.is_available.is_(True)
        )
        if zone is not None:
            query = query.filter(StaffRole.zone == zone)
        staff = query.order_by(StaffRole.created_at, StaffRole.id).first()
        return staff.user_id if staff else None


def resolve_responder(
    directory: ResponderDirectory,
    role: ResponderRole,
    zone: Optional[str]
) -> Tuple[Optional[str], bool]:
    """
    Zone-filtered lookup first, then any zone.

    Returns:
        (user_id or None, matched_in_zone)
    """
    if zone is not None:
        user_id = directory.find_available(role, zone)
        if user_id:
            return user_id, True
        logger.info("No %s available in zone %s, falling back to any zone", role.value, zone)

    user_id = directory.find_available(role, None)
    return user_id, False
