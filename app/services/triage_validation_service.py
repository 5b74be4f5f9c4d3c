"""
Triage validation - finalize the ESI and make the initial routing decision

One call finalizes the case and routes it in the same transaction. Not safe
to retry blindly: a repeat would re-broadcast or re-assign, so callers treat
it as at-most-once per nurse action.
"""
from sqlalchemy.orm import Session
from typing import Optional, Dict, Any, List, Callable
from datetime import datetime
import logging
import uuid

from app.core.config import settings
from app.core.exceptions import TriageValidationError, InvalidCaseStateError
from app.models.patient import PatientStatus
from app.models.triage_case import TriageCase, CaseStatus, EscalationStatus, OverrideRationale
from app.models.routing import RoutingAssignment, AssignmentStatus
from app.models.staff import ResponderRole
from app.models.audit import AuditAction
from app.services.audit_service import log_audit_event
from app.services.case_service import get_case, set_patient_status
from app.services.notification_service import EventSink, get_event_sink, dispatch
from app.services.responder_directory import ResponderDirectory, SQLResponderDirectory, resolve_responder
from app.services.routing_policy import FIRST_LEVEL, deadline_for_level, is_valid_esi

logger = logging.getLogger(__name__)


ACTION_CONFIRM = "confirm"
ACTION_OVERRIDE = "override"

# Statuses from which a case may be (re)validated
VALIDATABLE_STATUSES = {CaseStatus.PENDING_AI, CaseStatus.PENDING_VALIDATION, CaseStatus.VALIDATED}


class RoutingType:
    BROADCAST = "broadcast"
    ASSIGNED = "assigned"
    QUEUED = "queued"
    ESCALATION_NEEDED = "escalation_needed"


def _parse_rationale(value) -> OverrideRationale:
    if isinstance(value, OverrideRationale):
        return value
    try:
        return OverrideRationale(str(value).strip().lower())
    except ValueError:
        raise TriageValidationError(f"Invalid override rationale: {value}")


def _has_pending_assignment(db: Session, case_id: uuid.UUID) -> bool:
    return db.query(RoutingAssignment.id).filter(
        RoutingAssignment.triage_case_id == case_id,
        RoutingAssignment.status == AssignmentStatus.PENDING
    ).first() is not None


def validate_triage(
    db: Session,
    case_id: uuid.UUID,
    action: str,
    acting_user_id: str,
    override_esi: Optional[int] = None,
    override_rationale: Optional[str] = None,
    override_notes: Optional[str] = None,
    directory: Optional[ResponderDirectory] = None,
    sink: Optional[EventSink] = None,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Confirm or override the AI draft ESI, then route the case.

    Returns:
        {
            "case_id": str,
            "validated_esi": int,
            "is_override": bool,
            "routing": {"type": "broadcast" | "assigned" | "queued" | "escalation_needed", ...}
        }
    """
    now = now or datetime.utcnow()
    directory = directory or SQLResponderDirectory(db)
    sink = sink or get_event_sink()

    if action not in (ACTION_CONFIRM, ACTION_OVERRIDE):
        raise TriageValidationError(f"Invalid action: {action}")

    triage_case = get_case(db, case_id)

    rationale = None
    if action == ACTION_OVERRIDE:
        if override_esi is None or not override_rationale:
            raise TriageValidationError("Override requires override ESI and override rationale")
        if not is_valid_esi(override_esi):
            raise TriageValidationError(f"Override ESI must be 1-5, got {override_esi!r}")
        rationale = _parse_rationale(override_rationale)
        final_esi = override_esi
    else:
        if triage_case.ai_draft_esi is None:
            raise TriageValidationError(f"Case {case_id} has no AI draft to confirm")
        final_esi = triage_case.ai_draft_esi

    if triage_case.status not in VALIDATABLE_STATUSES or _has_pending_assignment(db, case_id):
        raise InvalidCaseStateError(
            f"Case {case_id} is already {triage_case.status.value} and cannot be revalidated",
            current_status=triage_case.status.value
        )

    is_override = action == ACTION_OVERRIDE
    notifications: List[Callable[[], None]] = []

    try:
        previous_esi = triage_case.validated_esi
        triage_case.validated_esi = final_esi
        triage_case.is_override = is_override
        triage_case.override_rationale = rationale
        triage_case.override_notes = override_notes if is_override else None
        triage_case.validated_by = acting_user_id
        triage_case.validated_at = now
        triage_case.status = CaseStatus.VALIDATED
        triage_case.updated_at = now

        log_audit_event(
            db,
            AuditAction.TRIAGE_OVERRIDDEN if is_override else AuditAction.TRIAGE_VALIDATED,
            triage_case_id=triage_case.id,
            patient_id=triage_case.patient_id,
            user_id=acting_user_id,
            details={
                "ai_draft_esi": triage_case.ai_draft_esi,
                "previous_validated_esi": previous_esi,
                "validated_esi": final_esi,
                "is_override": is_override,
                "override_rationale": rationale.value if rationale else None,
            },
            created_at=now
        )

        routing = _route_case(db, triage_case, final_esi, acting_user_id, directory, sink, notifications, now)
        db.commit()
    except Exception:
        db.rollback()
        raise

    dispatch(notifications)

    return {
        "case_id": str(triage_case.id),
        "validated_esi": final_esi,
        "is_override": is_override,
        "routing": routing,
    }


def _route_case(
    db: Session,
    triage_case: TriageCase,
    esi: int,
    acting_user_id: str,
    directory: ResponderDirectory,
    sink: EventSink,
    notifications: List[Callable[[], None]],
    now: datetime
) -> Dict[str, Any]:
    """Initial routing decision by final ESI"""
    if esi == 1:
        return _broadcast_critical(db, triage_case, sink, notifications)
    if esi == 2:
        return _assign_physician(db, triage_case, acting_user_id, directory, sink, notifications, now)
    return _queue_for_track_board(db, triage_case)


def _broadcast_critical(
    db: Session,
    triage_case: TriageCase,
    sink: EventSink,
    notifications: List[Callable[[], None]]
) -> Dict[str, Any]:
    """ESI 1: resuscitation team activation, no single-responder ladder"""
    triage_case.status = CaseStatus.ASSIGNED
    triage_case.escalation_status = EscalationStatus.PENDING
    set_patient_status(db, triage_case.patient_id, PatientStatus.ASSIGNED)

    case_id = triage_case.id
    patient_id = triage_case.patient_id
    summary = triage_case.patient.summary() if triage_case.patient else {}
    notifications.append(lambda: sink.critical_case(case_id, patient_id, 1, summary))

    logger.info("ESI 1 case %s broadcast to code team", case_id)
    return {"type": RoutingType.BROADCAST, "target": "code_team"}


def _assign_physician(
    db: Session,
    triage_case: TriageCase,
    acting_user_id: str,
    directory: ResponderDirectory,
    sink: EventSink,
    notifications: List[Callable[[], None]],
    now: datetime
) -> Dict[str, Any]:
    """ESI 2: first-line physician with a timed acknowledgment deadline"""
    zone = triage_case.assigned_zone or settings.DEFAULT_ZONE
    physician, in_zone = resolve_responder(directory, ResponderRole.PHYSICIAN, zone)

    if not physician:
        # Queue-visible warning state; never dropped
        triage_case.escalation_status = EscalationStatus.PENDING
        triage_case.assigned_zone = zone
        set_patient_status(db, triage_case.patient_id, PatientStatus.VALIDATED)
        log_audit_event(
            db,
            AuditAction.STATUS_CHANGED,
            triage_case_id=triage_case.id,
            patient_id=triage_case.patient_id,
            user_id=acting_user_id,
            details={"status": CaseStatus.VALIDATED.value, "reason": "no_physician_available", "zone": zone},
            created_at=now
        )
        logger.warning("No physician available for ESI 2 case %s (zone %s)", triage_case.id, zone)
        return {"type": RoutingType.ESCALATION_NEEDED, "reason": "no_physician_available"}

    deadline = deadline_for_level(FIRST_LEVEL, now)
    assignment = RoutingAssignment(
        triage_case_id=triage_case.id,
        assigned_to=physician,
        assigned_role=ResponderRole.PHYSICIAN,
        escalation_level=FIRST_LEVEL,
        escalation_deadline=deadline,
        status=AssignmentStatus.PENDING,
        created_at=now
    )
    db.add(assignment)

    triage_case.status = CaseStatus.ASSIGNED
    triage_case.assigned_to = physician
    triage_case.assigned_zone = zone
    triage_case.escalation_status = EscalationStatus.PENDING
    set_patient_status(db, triage_case.patient_id, PatientStatus.ASSIGNED)
    db.flush()

    log_audit_event(
        db,
        AuditAction.CASE_ASSIGNED,
        triage_case_id=triage_case.id,
        patient_id=triage_case.patient_id,
        user_id=acting_user_id,
        details={
            "assignment_id": str(assignment.id),
            "assigned_to": physician,
            "assigned_role": ResponderRole.PHYSICIAN.value,
            "zone": zone,
            "in_zone": in_zone,
            "deadline": deadline.isoformat(),
        },
        created_at=now
    )

    case_id = triage_case.id
    notifications.append(lambda: sink.case_assigned(case_id, physician, 2, deadline))

    logger.info("ESI 2 case %s assigned to %s until %s", case_id, physician, deadline.isoformat())
    return {
        "type": RoutingType.ASSIGNED,
        "assignment_id": str(assignment.id),
        "assigned_to": physician,
        "deadline": deadline.isoformat(),
    }


def _queue_for_track_board(db: Session, triage_case: TriageCase) -> Dict[str, Any]:
    """ESI 3-5: passive queue, no response-time guarantee"""
    triage_case.status = CaseStatus.VALIDATED
    triage_case.escalation_status = EscalationStatus.NONE
    triage_case.assigned_to = None
    set_patient_status(db, triage_case.patient_id, PatientStatus.VALIDATED)
    return {"type": RoutingType.QUEUED, "queue": "track_board"}
