"""
Triage case record service - creation, AI draft attachment and clinical status progression
"""
from sqlalchemy.orm import Session
from typing import Optional, Dict, Any, List
from datetime import datetime
import logging
import uuid

from app.core.exceptions import (
    CaseNotFoundError,
    PatientNotFoundError,
    TriageValidationError,
    InvalidCaseStateError,
)
from app.models.patient import Patient, PatientStatus
from app.models.triage_case import TriageCase, CaseStatus
from app.models.routing import RoutingAssignment, EscalationEvent
from app.models.audit import AuditAction
from app.services.audit_service import log_audit_event
from app.services.routing_policy import is_valid_esi

logger = logging.getLogger(__name__)


# Clinical progression after acknowledgment
STATUS_TRANSITIONS = {
    CaseStatus.ACKNOWLEDGED: {CaseStatus.IN_TREATMENT},
    CaseStatus.IN_TREATMENT: {CaseStatus.DISCHARGED},
}

DRAFT_STATUSES = {CaseStatus.PENDING_AI, CaseStatus.PENDING_VALIDATION}


def get_case(db: Session, case_id: uuid.UUID) -> TriageCase:
    """Load a case or raise CaseNotFoundError"""
    triage_case = db.query(TriageCase).filter(TriageCase.id == case_id).first()
    if not triage_case:
        raise CaseNotFoundError(case_id)
    return triage_case


def set_patient_status(db: Session, patient_id: uuid.UUID, status: PatientStatus):
    """Mirror the case lifecycle onto the patient row"""
    patient = db.query(Patient).filter(Patient.id == patient_id).first()
    if patient:
        patient.status = status


def create_triage_case(
    db: Session,
    patient_id: uuid.UUID,
    assigned_zone: Optional[str] = None,
    acting_user_id: Optional[str] = None,
    now: Optional[datetime] = None
) -> TriageCase:
    """Open a triage case for a patient visit"""
    now = now or datetime.utcnow()
    patient = db.query(Patient).filter(Patient.id == patient_id).first()
    if not patient:
        raise PatientNotFoundError(patient_id)

    try:
        triage_case = TriageCase(
            patient_id=patient_id,
            assigned_zone=assigned_zone,
            status=CaseStatus.PENDING_AI,
            created_at=now,
            updated_at=now
        )
        db.add(triage_case)
        patient.status = PatientStatus.IN_TRIAGE
        db.flush()

        log_audit_event(
            db,
            AuditAction.CASE_CREATED,
            triage_case_id=triage_case.id,
            patient_id=patient_id,
            user_id=acting_user_id,
            details={"assigned_zone": assigned_zone},
            created_at=now
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(triage_case)
    return triage_case


def attach_ai_draft(
    db: Session,
    case_id: uuid.UUID,
    draft_esi: int,
    confidence: Optional[float] = None,
    rationale: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None
) -> TriageCase:
    """
    Record the AI draft ESI for a case awaiting validation.

    The draft generator is external; this only stores its output.
    """
    now = now or datetime.utcnow()
    if not is_valid_esi(draft_esi):
        raise TriageValidationError(f"Draft ESI must be 1-5, got {draft_esi!r}")
    if confidence is not None and not 0 <= confidence <= 100:
        raise TriageValidationError(f"Confidence must be 0-100, got {confidence!r}")

    triage_case = get_case(db, case_id)
    if triage_case.status not in DRAFT_STATUSES:
        raise InvalidCaseStateError(
            f"Case {case_id} is already {triage_case.status.value}; draft can no longer change",
            current_status=triage_case.status.value
        )

    try:
        previous_draft = triage_case.ai_draft_esi
        triage_case.ai_draft_esi = draft_esi
        triage_case.ai_confidence = confidence
        triage_case.ai_rationale = rationale
        triage_case.status = CaseStatus.PENDING_VALIDATION
        triage_case.updated_at = now
        set_patient_status(db, triage_case.patient_id, PatientStatus.PENDING_VALIDATION)

        log_audit_event(
            db,
            AuditAction.AI_TRIAGE_COMPLETED,
            triage_case_id=triage_case.id,
            patient_id=triage_case.patient_id,
            details={
                "ai_draft_esi": draft_esi,
                "previous_draft_esi": previous_draft,
                "confidence": confidence
            },
            created_at=now
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(triage_case)
    return triage_case


def update_case_status(
    db: Session,
    case_id: uuid.UUID,
    new_status: CaseStatus,
    acting_user_id: str,
    now: Optional[datetime] = None
) -> TriageCase:
    """Advance an acknowledged case through treatment to discharge"""
    now = now or datetime.utcnow()
    triage_case = get_case(db, case_id)
    old_status = triage_case.status

    if new_status not in STATUS_TRANSITIONS.get(old_status, set()):
        raise InvalidCaseStateError(
            f"Cannot move case {case_id} from {old_status.value} to {new_status.value}",
            current_status=old_status.value
        )

    try:
        triage_case.status = new_status
        triage_case.updated_at = now
        set_patient_status(db, triage_case.patient_id, PatientStatus(new_status.value))

        log_audit_event(
            db,
            AuditAction.STATUS_CHANGED,
            triage_case_id=triage_case.id,
            patient_id=triage_case.patient_id,
            user_id=acting_user_id,
            details={"old_status": old_status.value, "new_status": new_status.value},
            created_at=now
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Case %s moved %s -> %s by %s", case_id, old_status.value, new_status.value, acting_user_id)
    db.refresh(triage_case)
    return triage_case


def get_routing_history(db: Session, case_id: uuid.UUID) -> Dict[str, List]:
    """Assignments by ladder level and escalation events by time"""
    get_case(db, case_id)
    assignments = db.query(RoutingAssignment).filter(
        RoutingAssignment.triage_case_id == case_id
    ).order_by(RoutingAssignment.escalation_level, RoutingAssignment.created_at).all()
    events = db.query(EscalationEvent).filter(
        EscalationEvent.triage_case_id == case_id
    ).order_by(EscalationEvent.created_at).all()
    return {"assignments": assignments, "escalation_events": events}
