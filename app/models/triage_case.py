"""
Triage case model
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Float, Boolean
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum
from app.core.database import Base, JSONPayload, value_enum


class CaseStatus(str, enum.Enum):
    PENDING_AI = "pending-ai"
    PENDING_VALIDATION = "pending-validation"
    VALIDATED = "validated"
    ASSIGNED = "assigned"
    ACKNOWLEDGED = "acknowledged"
    IN_TREATMENT = "in-treatment"
    DISCHARGED = "discharged"


# Statuses in which validated_esi must be set
VALIDATED_STATUSES = frozenset({
    CaseStatus.VALIDATED,
    CaseStatus.ASSIGNED,
    CaseStatus.ACKNOWLEDGED,
    CaseStatus.IN_TREATMENT,
    CaseStatus.DISCHARGED,
})


class EscalationStatus(str, enum.Enum):
    NONE = "none"
    PENDING = "pending"
    LEVEL_1 = "level-1"
    LEVEL_2 = "level-2"
    LEVEL_3 = "level-3"
    RESOLVED = "resolved"


class OverrideRationale(str, enum.Enum):
    CLINICAL_JUDGMENT = "clinical-judgment"
    ADDITIONAL_FINDINGS = "additional-findings"
    PATIENT_HISTORY = "patient-history"
    VITAL_CHANGE = "vital-change"
    SYMPTOM_EVOLUTION = "symptom-evolution"
    FAMILY_CONCERN = "family-concern"
    OTHER = "other"


class TriageCase(Base):
    __tablename__ = "triage_cases"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    patient_id = Column(UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False, index=True)

    # ESI
    ai_draft_esi = Column(Integer, nullable=True)  # 1-5, null until the AI draft completes
    ai_confidence = Column(Float, nullable=True)  # 0-100
    ai_rationale = Column(JSONPayload, nullable=True)  # opaque structured rationale from the draft generator
    validated_esi = Column(Integer, nullable=True)  # 1-5, null until a nurse validates
    is_override = Column(Boolean, nullable=False, default=False)
    override_rationale = Column(value_enum(OverrideRationale, "overriderationale"), nullable=True)
    override_notes = Column(String, nullable=True)

    # Routing (projection of the latest routing assignment)
    status = Column(value_enum(CaseStatus, "casestatus"), nullable=False, default=CaseStatus.PENDING_AI, index=True)
    assigned_to = Column(String, nullable=True, index=True)
    assigned_zone = Column(String, nullable=True, index=True)
    escalation_status = Column(value_enum(EscalationStatus, "escalationstatus"), nullable=False, default=EscalationStatus.NONE, index=True)
    acknowledged_at = Column(DateTime, nullable=True)

    # Audit
    validated_at = Column(DateTime, nullable=True)
    validated_by = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    patient = relationship("Patient", back_populates="triage_cases")
    routing_assignments = relationship(
        "RoutingAssignment",
        back_populates="triage_case",
        order_by="RoutingAssignment.escalation_level",
    )
    escalation_events = relationship(
        "EscalationEvent",
        back_populates="triage_case",
        order_by="EscalationEvent.created_at",
    )
    audit_logs = relationship("AuditLog", back_populates="triage_case", order_by="AuditLog.created_at")
