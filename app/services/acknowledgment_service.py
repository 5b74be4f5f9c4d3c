"""
Case acknowledgment - a responder confirms receipt and the ladder stops
"""
from sqlalchemy.orm import Session
from typing import Optional, Dict, Any, List, Callable
from datetime import datetime
import logging
import uuid

from app.core.exceptions import AssignmentNotFoundError, InvalidCaseStateError
from app.models.patient import PatientStatus
from app.models.triage_case import CaseStatus, EscalationStatus
from app.models.routing import RoutingAssignment, AssignmentStatus
from app.models.audit import AuditAction
from app.services.audit_service import log_audit_event
from app.services.case_service import get_case, set_patient_status
from app.services.notification_service import EventSink, get_event_sink, dispatch

logger = logging.getLogger(__name__)


ACKNOWLEDGEABLE_STATUSES = {CaseStatus.VALIDATED, CaseStatus.ASSIGNED}

ESCALATED_STATUSES = {EscalationStatus.LEVEL_1, EscalationStatus.LEVEL_2, EscalationStatus.LEVEL_3}


def _find_assignment(
    db: Session,
    case_id: uuid.UUID,
    assignment_id: Optional[uuid.UUID]
) -> Optional[RoutingAssignment]:
    if assignment_id is not None:
        assignment = db.query(RoutingAssignment).filter(RoutingAssignment.id == assignment_id).first()
        if not assignment or assignment.triage_case_id != case_id:
            raise AssignmentNotFoundError(assignment_id, case_id)
        if assignment.status != AssignmentStatus.PENDING:
            raise InvalidCaseStateError(
                f"Assignment {assignment_id} is already {assignment.status.value}",
                current_status=assignment.status.value
            )
        return assignment

    return db.query(RoutingAssignment).filter(
        RoutingAssignment.triage_case_id == case_id,
        RoutingAssignment.status == AssignmentStatus.PENDING
    ).order_by(RoutingAssignment.created_at.desc(), RoutingAssignment.escalation_level.desc()).first()


def acknowledge_case(
    db: Session,
    case_id: uuid.UUID,
    acting_user_id: str,
    assignment_id: Optional[uuid.UUID] = None,
    sink: Optional[EventSink] = None,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Acknowledge a case and close out its active assignment.

    With no pending assignment (ESI 1 broadcast) the case is still
    acknowledged and the acknowledging user recorded.

    Returns:
        {
            "case_id": str,
            "assignment_id": str | None,
            "acknowledged_at": str,
            "response_time_ms": int | None,
            "met_target": bool
        }
    """
    now = now or datetime.utcnow()
    sink = sink or get_event_sink()

    triage_case = get_case(db, case_id)
    if triage_case.status not in ACKNOWLEDGEABLE_STATUSES:
        raise InvalidCaseStateError(
            f"Case {case_id} cannot be acknowledged while {triage_case.status.value}",
            current_status=triage_case.status.value
        )

    assignment = _find_assignment(db, case_id, assignment_id)

    response_time_ms = None
    met_target = False
    notifications: List[Callable[[], None]] = []
    was_escalated = triage_case.escalation_status in ESCALATED_STATUSES
    previous_escalation = triage_case.escalation_status

    try:
        if assignment is not None:
            response_time_ms = int((now - assignment.created_at).total_seconds() * 1000)
            # The terminal rung has no deadline and always meets target
            met_target = assignment.escalation_deadline is None or now < assignment.escalation_deadline

            # Conditional update; the sweeper may have escalated it meanwhile
            closed = db.query(RoutingAssignment).filter(
                RoutingAssignment.id == assignment.id,
                RoutingAssignment.status == AssignmentStatus.PENDING
            ).update({
                RoutingAssignment.status: AssignmentStatus.ACKNOWLEDGED,
                RoutingAssignment.acknowledged_at: now,
                RoutingAssignment.response_time_ms: response_time_ms,
            }, synchronize_session=False)
            if closed == 0:
                raise InvalidCaseStateError(
                    f"Assignment {assignment.id} was escalated before it could be acknowledged",
                    current_status=AssignmentStatus.ESCALATED.value
                )

        triage_case.status = CaseStatus.ACKNOWLEDGED
        triage_case.acknowledged_at = now
        triage_case.assigned_to = acting_user_id
        triage_case.escalation_status = EscalationStatus.RESOLVED
        triage_case.updated_at = now
        set_patient_status(db, triage_case.patient_id, PatientStatus.ACKNOWLEDGED)

        log_audit_event(
            db,
            AuditAction.CASE_ACKNOWLEDGED,
            triage_case_id=triage_case.id,
            patient_id=triage_case.patient_id,
            user_id=acting_user_id,
            details={
                "assignment_id": str(assignment.id) if assignment else None,
                "response_time_ms": response_time_ms,
                "met_target": met_target,
                "esi_level": triage_case.validated_esi,
            },
            created_at=now
        )
        if was_escalated:
            log_audit_event(
                db,
                AuditAction.ESCALATION_RESOLVED,
                triage_case_id=triage_case.id,
                patient_id=triage_case.patient_id,
                user_id=acting_user_id,
                details={
                    "escalation_status": previous_escalation.value,
                    "escalation_level": assignment.escalation_level if assignment else None,
                },
                created_at=now
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    notifications.append(lambda: sink.case_acknowledged(case_id, acting_user_id, response_time_ms, met_target))
    dispatch(notifications)

    logger.info(
        "Case %s acknowledged by %s (response %s ms, met target %s)",
        case_id, acting_user_id, response_time_ms, met_target
    )
    return {
        "case_id": str(case_id),
        "assignment_id": str(assignment.id) if assignment else None,
        "acknowledged_at": now.isoformat(),
        "response_time_ms": response_time_ms,
        "met_target": met_target,
    }
