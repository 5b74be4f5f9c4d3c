"""
Clinical staff role model (responder directory)
"""
from sqlalchemy import Column, String, DateTime, Boolean
from sqlalchemy.dialects.postgresql import UUID
from datetime import datetime
import uuid
import enum
from app.core.database import Base, value_enum


class ResponderRole(str, enum.Enum):
    NURSE = "nurse"
    PHYSICIAN = "physician"
    SENIOR_PHYSICIAN = "senior_physician"
    CHARGE_NURSE = "charge_nurse"


class StaffRole(Base):
    __tablename__ = "staff_roles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    role = Column(value_enum(ResponderRole, "responderrole"), nullable=False, index=True)
    zone = Column(String, nullable=True, index=True)
    display_name = Column(String, nullable=True)
    is_available = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
