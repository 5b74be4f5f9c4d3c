"""
Escalation sweeper - advance overdue routing assignments up the ladder

Stateless poll-and-act: each run reads overdue assignments from the store and
moves each one rung up (physician -> senior physician -> charge nurse). Runs
may overlap. The conditional pending -> escalated update is the only guard:
whichever run wins it performs the escalation, every other run no-ops.
"""
from sqlalchemy import func, select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Optional, Dict, Any, List, Callable
from datetime import datetime
import logging
import uuid

from app.core.config import settings
from app.models.triage_case import TriageCase, CaseStatus, EscalationStatus
from app.models.routing import RoutingAssignment, AssignmentStatus, EscalationEvent, EscalationReason
from app.models.audit import AuditAction
from app.services.audit_service import log_audit_event
from app.services.notification_service import EventSink, get_event_sink, dispatch
from app.services.responder_directory import ResponderDirectory, SQLResponderDirectory, resolve_responder
from app.services.routing_policy import (
    TERMINAL_LEVEL,
    role_for_level,
    deadline_for_level,
    escalation_status_for_level,
)

logger = logging.getLogger(__name__)


TIMEOUT_NOTE = "Escalated due to no acknowledgment within deadline"
REPAIR_NOTE = "Recovered incomplete escalation (escalated assignment had no successor)"


class Outcome:
    ESCALATED = "escalated"
    UNRESOLVED = "unresolved"
    EXHAUSTED = "exhausted"
    SKIPPED = "skipped"


def find_overdue_assignments(db: Session, now: datetime) -> List[uuid.UUID]:
    """Pending assignments whose deadline has passed, oldest deadline first"""
    rows = db.query(RoutingAssignment.id).filter(
        RoutingAssignment.status == AssignmentStatus.PENDING,
        RoutingAssignment.escalation_deadline.isnot(None),
        RoutingAssignment.escalation_deadline < now
    ).order_by(RoutingAssignment.escalation_deadline).all()
    return [row.id for row in rows]


def find_orphaned_escalations(db: Session) -> List[uuid.UUID]:
    """
    Escalated assignments left without a successor.

    An assigned, unacknowledged case whose highest-level assignment is
    escalated and which holds no pending assignment.
    """
    pending_case_ids = select(RoutingAssignment.triage_case_id).where(
        RoutingAssignment.status == AssignmentStatus.PENDING
    )
    cases = db.query(TriageCase).filter(
        TriageCase.status == CaseStatus.ASSIGNED,
        ~TriageCase.id.in_(pending_case_ids)
    ).all()

    orphans = []
    for triage_case in cases:
        if not triage_case.routing_assignments:
            continue  # ESI 1 broadcast, no ladder
        latest = max(triage_case.routing_assignments, key=lambda a: (a.escalation_level, a.created_at))
        if latest.status == AssignmentStatus.ESCALATED and latest.escalation_level < TERMINAL_LEVEL:
            orphans.append(latest.id)
    return orphans


def find_unrouted_cases(db: Session) -> List[uuid.UUID]:
    """ESI 2 cases validated while no physician was available"""
    assigned_case_ids = select(RoutingAssignment.triage_case_id)
    rows = db.query(TriageCase.id).filter(
        TriageCase.status == CaseStatus.VALIDATED,
        TriageCase.validated_esi == 2,
        TriageCase.escalation_status == EscalationStatus.PENDING,
        ~TriageCase.id.in_(assigned_case_ids)
    ).order_by(TriageCase.validated_at).all()
    return [row.id for row in rows]


def reconcile_pending_assignments(db: Session, now: Optional[datetime] = None) -> int:
    """
    Collapse duplicate pending assignments.

    The most recent pending assignment per case is authoritative; older ones
    are conditionally marked escalated and the case routing fields are
    pointed at the kept one. Returns the number superseded.
    """
    now = now or datetime.utcnow()
    duplicated = db.query(RoutingAssignment.triage_case_id).filter(
        RoutingAssignment.status == AssignmentStatus.PENDING
    ).group_by(RoutingAssignment.triage_case_id).having(func.count(RoutingAssignment.id) > 1).all()

    superseded = 0
    for (case_id,) in duplicated:
        pending = db.query(RoutingAssignment).filter(
            RoutingAssignment.triage_case_id == case_id,
            RoutingAssignment.status == AssignmentStatus.PENDING
        ).order_by(RoutingAssignment.escalation_level.desc(), RoutingAssignment.created_at.desc()).all()
        kept = pending[0]
        stale_ids = [a.id for a in pending[1:]]
        try:
            superseded += db.query(RoutingAssignment).filter(
                RoutingAssignment.id.in_(stale_ids),
                RoutingAssignment.status == AssignmentStatus.PENDING
            ).update({RoutingAssignment.status: AssignmentStatus.ESCALATED}, synchronize_session=False)

            # Case routing fields follow the authoritative assignment
            triage_case = kept.triage_case
            triage_case.assigned_to = kept.assigned_to
            triage_case.escalation_status = escalation_status_for_level(kept.escalation_level)
            triage_case.updated_at = now
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to reconcile pending assignments for case %s", case_id)
            continue
        logger.warning("Case %s had %d pending assignments; kept %s", case_id, len(pending), kept.id)
    return superseded


def sweep_escalations(
    db: Session,
    now: Optional[datetime] = None,
    directory: Optional[ResponderDirectory] = None,
    sink: Optional[EventSink] = None
) -> Dict[str, Any]:
    """
    Advance every overdue assignment one rung.

    Each case is processed in its own transaction; a failure on one case is
    logged and the sweep moves on.

    Returns:
        {
            "processed_at": str,
            "escalations": [{"case_id", "assignment_id", "from_level", "to_level", "to_role", "to_user"}],
            "unresolved": [{"case_id", "level", "role"}],
            "exhausted": [str case_id],
            "unrouted": [str case_id],
            "reconciled": int
        }
    """
    now = now or datetime.utcnow()
    directory = directory or SQLResponderDirectory(db)
    sink = sink or get_event_sink()

    result = {
        "processed_at": now.isoformat(),
        "escalations": [],
        "unresolved": [],
        "exhausted": [],
        "unrouted": [],
        "reconciled": reconcile_pending_assignments(db, now),
    }

    overdue = find_overdue_assignments(db, now)
    orphaned = find_orphaned_escalations(db)
    logger.info("Sweep at %s: %d overdue, %d orphaned", now.isoformat(), len(overdue), len(orphaned))

    work = [(assignment_id, False) for assignment_id in overdue]
    work += [(assignment_id, True) for assignment_id in orphaned]

    for assignment_id, repair in work:
        try:
            outcome, detail = escalate_assignment(db, assignment_id, now, directory, sink, repair=repair)
        except IntegrityError:
            # Another run created the successor first
            db.rollback()
            logger.debug("Assignment %s escalated concurrently", assignment_id)
            continue
        except Exception:
            db.rollback()
            logger.exception("Failed to escalate assignment %s", assignment_id)
            continue

        if outcome == Outcome.ESCALATED:
            result["escalations"].append(detail)
        elif outcome == Outcome.UNRESOLVED:
            result["unresolved"].append(detail)
        elif outcome == Outcome.EXHAUSTED:
            result["exhausted"].append(detail["case_id"])

    for case_id in find_unrouted_cases(db):
        logger.warning("ESI 2 case %s has no responder assigned", case_id)
        result["unrouted"].append(str(case_id))

    logger.info("Processed %d escalations", len(result["escalations"]))
    return result


def escalate_assignment(
    db: Session,
    assignment_id: uuid.UUID,
    now: datetime,
    directory: ResponderDirectory,
    sink: EventSink,
    repair: bool = False
):
    """
    Move one assignment's case to the next rung.

    With repair=False the assignment must still be pending and is claimed with
    a conditional update. With repair=True the assignment is already escalated
    and only its missing successor is created.

    Returns:
        (outcome, detail dict or None)
    """
    assignment = db.query(RoutingAssignment).filter(RoutingAssignment.id == assignment_id).first()
    if not assignment:
        return Outcome.SKIPPED, None

    expected_status = AssignmentStatus.ESCALATED if repair else AssignmentStatus.PENDING
    if assignment.status != expected_status:
        return Outcome.SKIPPED, None

    triage_case = assignment.triage_case
    current_level = assignment.escalation_level
    next_level = current_level + 1

    if next_level > TERMINAL_LEVEL:
        logger.warning("Case %s is at the top of the escalation ladder; nobody left to escalate to", triage_case.id)
        return Outcome.EXHAUSTED, {"case_id": str(triage_case.id)}

    next_role = role_for_level(next_level)
    zone = triage_case.assigned_zone or settings.DEFAULT_ZONE
    target_user, _ = resolve_responder(directory, next_role, zone)
    if not target_user:
        logger.warning("No %s available for case %s; not escalated", next_role.value, triage_case.id)
        return Outcome.UNRESOLVED, {"case_id": str(triage_case.id), "level": current_level, "role": next_role.value}

    if repair:
        still_orphaned = db.query(RoutingAssignment.id).filter(
            RoutingAssignment.triage_case_id == triage_case.id,
            or_(
                RoutingAssignment.status == AssignmentStatus.PENDING,
                RoutingAssignment.escalation_level > current_level
            )
        ).first() is None
        if not still_orphaned or triage_case.status != CaseStatus.ASSIGNED:
            return Outcome.SKIPPED, None
    else:
        claimed = db.query(RoutingAssignment).filter(
            RoutingAssignment.id == assignment.id,
            RoutingAssignment.status == AssignmentStatus.PENDING
        ).update({RoutingAssignment.status: AssignmentStatus.ESCALATED}, synchronize_session=False)
        if claimed == 0:
            db.rollback()
            logger.debug("Assignment %s no longer pending; another sweep handled it", assignment.id)
            return Outcome.SKIPPED, None

    notifications: List[Callable[[], None]] = []
    try:
        successor = RoutingAssignment(
            triage_case_id=triage_case.id,
            assigned_to=target_user,
            assigned_role=next_role,
            escalation_level=next_level,
            escalation_deadline=deadline_for_level(next_level, now),
            status=AssignmentStatus.PENDING,
            created_at=now
        )
        db.add(successor)

        db.add(EscalationEvent(
            triage_case_id=triage_case.id,
            from_user=assignment.assigned_to,
            from_role=assignment.assigned_role,
            from_level=current_level,
            to_user=target_user,
            to_role=next_role,
            to_level=next_level,
            reason=EscalationReason.TIMEOUT,
            notes=REPAIR_NOTE if repair else TIMEOUT_NOTE,
            created_at=now
        ))

        triage_case.escalation_status = escalation_status_for_level(next_level)
        triage_case.assigned_to = target_user
        triage_case.updated_at = now
        db.flush()

        log_audit_event(
            db,
            AuditAction.ESCALATION_TRIGGERED,
            triage_case_id=triage_case.id,
            patient_id=triage_case.patient_id,
            details={
                "from_assignment_id": str(assignment.id),
                "to_assignment_id": str(successor.id),
                "from_user": assignment.assigned_to,
                "from_role": assignment.assigned_role.value,
                "to_user": target_user,
                "to_role": next_role.value,
                "from_level": current_level,
                "to_level": next_level,
                "reason": EscalationReason.TIMEOUT.value,
                "repair": repair,
            },
            created_at=now
        )

        case_id = triage_case.id
        patient_id = triage_case.patient_id
        esi_level = triage_case.validated_esi
        summary = triage_case.patient.summary() if triage_case.patient else {}
        successor_id = successor.id
        notifications.append(lambda: sink.escalation(
            case_id, patient_id, esi_level, next_level, target_user, next_role.value, summary
        ))
        db.commit()
    except Exception:
        db.rollback()
        raise

    dispatch(notifications)
    logger.info(
        "Case %s escalated level %d -> %d (%s %s)",
        case_id, current_level, next_level, next_role.value, target_user
    )
    return Outcome.ESCALATED, {
        "case_id": str(case_id),
        "assignment_id": str(successor_id),
        "from_level": current_level,
        "to_level": next_level,
        "to_role": next_role.value,
        "to_user": target_user,
    }
