"""
Audit log model
"""
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum
from app.core.database import Base, JSONPayload, value_enum


class AuditAction(str, enum.Enum):
    CASE_CREATED = "case_created"
    AI_TRIAGE_COMPLETED = "ai_triage_completed"
    TRIAGE_VALIDATED = "triage_validated"
    TRIAGE_OVERRIDDEN = "triage_overridden"
    CASE_ASSIGNED = "case_assigned"
    CASE_ACKNOWLEDGED = "case_acknowledged"
    ESCALATION_TRIGGERED = "escalation_triggered"
    ESCALATION_RESOLVED = "escalation_resolved"
    STATUS_CHANGED = "status_changed"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    triage_case_id = Column(UUID(as_uuid=True), ForeignKey("triage_cases.id"), nullable=True, index=True)
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id"), nullable=True, index=True)
    user_id = Column(String, nullable=True, index=True)  # null for system actions
    action = Column(value_enum(AuditAction, "auditaction"), nullable=False, index=True)
    details = Column(JSONPayload, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Relationships
    triage_case = relationship("TriageCase", back_populates="audit_logs")
