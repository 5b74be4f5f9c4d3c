"""
Routing assignment and escalation event models
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Index, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum
from app.core.database import Base, value_enum
from app.models.staff import ResponderRole


class AssignmentStatus(str, enum.Enum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    ESCALATED = "escalated"


class EscalationReason(str, enum.Enum):
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    MANUAL = "manual"


class RoutingAssignment(Base):
    __tablename__ = "routing_assignments"
    __table_args__ = (
        # At most one pending assignment per case
        Index(
            "uq_routing_assignments_one_pending",
            "triage_case_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    triage_case_id = Column(UUID(as_uuid=True), ForeignKey("triage_cases.id"), nullable=False, index=True)
    assigned_to = Column(String, nullable=False, index=True)
    assigned_role = Column(value_enum(ResponderRole, "responderrole"), nullable=False)
    escalation_level = Column(Integer, nullable=False, default=0)  # 0 physician, 1 senior, 2 charge nurse
    escalation_deadline = Column(DateTime, nullable=True, index=True)  # null on the terminal rung
    status = Column(value_enum(AssignmentStatus, "assignmentstatus"), nullable=False, default=AssignmentStatus.PENDING, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    acknowledged_at = Column(DateTime, nullable=True)
    response_time_ms = Column(Integer, nullable=True)

    # Relationships
    triage_case = relationship("TriageCase", back_populates="routing_assignments")


class EscalationEvent(Base):
    __tablename__ = "escalation_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    triage_case_id = Column(UUID(as_uuid=True), ForeignKey("triage_cases.id"), nullable=False, index=True)
    from_user = Column(String, nullable=True)
    from_role = Column(value_enum(ResponderRole, "responderrole"), nullable=True)
    from_level = Column(Integer, nullable=True)
    to_user = Column(String, nullable=False)
    to_role = Column(value_enum(ResponderRole, "responderrole"), nullable=False)
    to_level = Column(Integer, nullable=False)
    reason = Column(value_enum(EscalationReason, "escalationreason"), nullable=False)
    notes = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Relationships
    triage_case = relationship("TriageCase", back_populates="escalation_events")
