"""
Track board - read-only queue of validated cases with wait-time targets
"""
from sqlalchemy.orm import Session, joinedload, selectinload
from typing import Optional, Dict, Any, List
from datetime import datetime, date

from app.core.config import settings
from app.models.triage_case import TriageCase, CaseStatus, EscalationStatus
from app.models.routing import AssignmentStatus
from app.services.routing_policy import wait_target_ms


BOARD_STATUSES = [
    CaseStatus.VALIDATED,
    CaseStatus.ASSIGNED,
    CaseStatus.ACKNOWLEDGED,
    CaseStatus.IN_TREATMENT,
]
DEFAULT_ESI_LEVELS = [3, 4, 5]


def _age(date_of_birth: Optional[date], today: date) -> Optional[int]:
    if not date_of_birth:
        return None
    years = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        years -= 1
    return years


def _board_row(triage_case: TriageCase, now: datetime) -> Dict[str, Any]:
    wait_ms = int((now - triage_case.created_at).total_seconds() * 1000)
    target_ms = wait_target_ms(triage_case.validated_esi)
    is_overdue = wait_ms > target_ms
    patient = triage_case.patient
    active = next(
        (a for a in triage_case.routing_assignments if a.status == AssignmentStatus.PENDING),
        None
    )

    return {
        "id": str(triage_case.id),
        "patient_id": str(triage_case.patient_id),
        "patient": {
            "mrn": patient.mrn,
            "first_name": patient.first_name,
            "last_name": patient.last_name,
            "age": _age(patient.date_of_birth, now.date()),
            "chief_complaint": patient.chief_complaint,
            "arrival_time": patient.arrival_time.isoformat() if patient.arrival_time else None,
        } if patient else None,
        "validated_esi": triage_case.validated_esi,
        "is_override": triage_case.is_override,
        "status": triage_case.status.value,
        "escalation_status": triage_case.escalation_status.value,
        "assigned_to": triage_case.assigned_to,
        "assigned_zone": triage_case.assigned_zone,
        "needs_escalation": (
            triage_case.status == CaseStatus.VALIDATED
            and triage_case.escalation_status == EscalationStatus.PENDING
            and active is None
        ),
        "active_assignment": {
            "id": str(active.id),
            "assigned_to": active.assigned_to,
            "assigned_role": active.assigned_role.value,
            "escalation_level": active.escalation_level,
            "escalation_deadline": active.escalation_deadline.isoformat() if active.escalation_deadline else None,
        } if active else None,
        "wait_time_ms": wait_ms,
        "target_ms": target_ms,
        "is_overdue": is_overdue,
        "overdue_by_ms": wait_ms - target_ms if is_overdue else 0,
        "created_at": triage_case.created_at.isoformat(),
    }


def _summary(rows: List[Dict[str, Any]], esi_levels: List[int], total: int) -> Dict[str, Any]:
    """Counts per ESI, overdue count and mean wait over the returned rows"""
    waits = [row["wait_time_ms"] for row in rows]
    return {
        "total": total,
        "by_esi": {level: sum(1 for row in rows if row["validated_esi"] == level) for level in sorted(esi_levels)},
        "overdue": sum(1 for row in rows if row["is_overdue"]),
        "avg_wait_time_ms": round(sum(waits) / len(waits)) if waits else 0,
    }


def get_track_board(
    db: Session,
    esi_levels: Optional[List[int]] = None,
    zones: Optional[List[str]] = None,
    statuses: Optional[List[CaseStatus]] = None,
    page: int = 1,
    page_size: int = 50,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Paged track board, most acute first then longest waiting"""
    now = now or datetime.utcnow()
    page = max(page, 1)
    page_size = max(1, min(page_size, settings.TRACK_BOARD_MAX_PAGE_SIZE))

    query = db.query(TriageCase).filter(
        TriageCase.validated_esi.isnot(None),
        TriageCase.status.in_(BOARD_STATUSES),
        TriageCase.validated_esi.in_(esi_levels or DEFAULT_ESI_LEVELS)
    )
    if zones:
        query = query.filter(TriageCase.assigned_zone.in_(zones))
    if statuses:
        query = query.filter(TriageCase.status.in_(statuses))

    total = query.count()
    cases = query.options(
        joinedload(TriageCase.patient),
        selectinload(TriageCase.routing_assignments),
    ).order_by(
        TriageCase.validated_esi.asc(),
        TriageCase.created_at.asc()
    ).offset((page - 1) * page_size).limit(page_size).all()

    rows = [_board_row(c, now) for c in cases]
    return {
        "total": total,
        "page": page,
        "page_size": page_size,
        "summary": _summary(rows, esi_levels or DEFAULT_ESI_LEVELS, total),
        "cases": rows,
    }
