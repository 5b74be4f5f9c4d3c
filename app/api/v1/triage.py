"""
Triage case API endpoints
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
import uuid

from app.api.deps import get_acting_user, get_sink, http_error
from app.core.database import get_db
from app.core.exceptions import TriageRoutingError
from app.models.triage_case import TriageCase, CaseStatus
from app.services.notification_service import EventSink
from app.services.audit_service import get_audit_trail
from app.services.case_service import (
    get_case,
    create_triage_case,
    attach_ai_draft,
    update_case_status,
    get_routing_history,
)
from app.services.triage_validation_service import validate_triage
from app.services.acknowledgment_service import acknowledge_case

router = APIRouter()


class CaseCreateRequest(BaseModel):
    patient_id: uuid.UUID
    assigned_zone: Optional[str] = None


class AIDraftRequest(BaseModel):
    draft_esi: int = Field(..., ge=1, le=5)
    confidence: Optional[float] = Field(None, ge=0, le=100)
    rationale: Optional[Dict[str, Any]] = None


class ValidateRequest(BaseModel):
    action: str  # confirm, override
    override_esi: Optional[int] = None
    override_rationale: Optional[str] = None
    override_notes: Optional[str] = None


class AcknowledgeRequest(BaseModel):
    assignment_id: Optional[uuid.UUID] = None


class StatusUpdateRequest(BaseModel):
    status: str  # in-treatment, discharged


def serialize_case(triage_case: TriageCase) -> Dict[str, Any]:
    return {
        "id": str(triage_case.id),
        "patient_id": str(triage_case.patient_id),
        "ai_draft_esi": triage_case.ai_draft_esi,
        "ai_confidence": triage_case.ai_confidence,
        "validated_esi": triage_case.validated_esi,
        "is_override": triage_case.is_override,
        "override_rationale": triage_case.override_rationale.value if triage_case.override_rationale else None,
        "override_notes": triage_case.override_notes,
        "status": triage_case.status.value,
        "assigned_to": triage_case.assigned_to,
        "assigned_zone": triage_case.assigned_zone,
        "escalation_status": triage_case.escalation_status.value,
        "acknowledged_at": triage_case.acknowledged_at.isoformat() if triage_case.acknowledged_at else None,
        "validated_at": triage_case.validated_at.isoformat() if triage_case.validated_at else None,
        "validated_by": triage_case.validated_by,
        "created_at": triage_case.created_at.isoformat(),
        "updated_at": triage_case.updated_at.isoformat(),
    }


@router.post("/cases")
async def create_case_endpoint(
    request: CaseCreateRequest,
    user_id: str = Depends(get_acting_user),
    db: Session = Depends(get_db)
):
    """Open a triage case for a patient"""
    try:
        triage_case = create_triage_case(db, request.patient_id, request.assigned_zone, user_id)
    except TriageRoutingError as e:
        raise http_error(e)
    return serialize_case(triage_case)


@router.get("/cases/{case_id}")
async def get_case_endpoint(
    case_id: uuid.UUID,
    user_id: str = Depends(get_acting_user),
    db: Session = Depends(get_db)
):
    """Get case details"""
    try:
        triage_case = get_case(db, case_id)
    except TriageRoutingError as e:
        raise http_error(e)
    return serialize_case(triage_case)


@router.post("/cases/{case_id}/ai-draft")
async def attach_ai_draft_endpoint(
    case_id: uuid.UUID,
    request: AIDraftRequest,
    db: Session = Depends(get_db)
):
    """
    Store the AI draft ESI for a case
    Called by the AI draft generator once analysis completes
    """
    try:
        triage_case = attach_ai_draft(db, case_id, request.draft_esi, request.confidence, request.rationale)
    except TriageRoutingError as e:
        raise http_error(e)
    return serialize_case(triage_case)


# Plain def: event sinks may block on delivery
@router.post("/cases/{case_id}/validate")
def validate_triage_endpoint(
    case_id: uuid.UUID,
    request: ValidateRequest,
    user_id: str = Depends(get_acting_user),
    sink: EventSink = Depends(get_sink),
    db: Session = Depends(get_db)
):
    """Confirm or override the draft ESI and route the case"""
    try:
        return validate_triage(
            db,
            case_id,
            request.action,
            user_id,
            override_esi=request.override_esi,
            override_rationale=request.override_rationale,
            override_notes=request.override_notes,
            sink=sink
        )
    except TriageRoutingError as e:
        raise http_error(e)


@router.post("/cases/{case_id}/acknowledge")
def acknowledge_case_endpoint(
    case_id: uuid.UUID,
    request: Optional[AcknowledgeRequest] = None,
    user_id: str = Depends(get_acting_user),
    sink: EventSink = Depends(get_sink),
    db: Session = Depends(get_db)
):
    """Responder acknowledges an assigned case"""
    assignment_id = request.assignment_id if request else None
    try:
        return acknowledge_case(db, case_id, user_id, assignment_id=assignment_id, sink=sink)
    except TriageRoutingError as e:
        raise http_error(e)


@router.post("/cases/{case_id}/status")
async def update_case_status_endpoint(
    case_id: uuid.UUID,
    request: StatusUpdateRequest,
    user_id: str = Depends(get_acting_user),
    db: Session = Depends(get_db)
):
    """Move an acknowledged case into treatment or discharge it"""
    try:
        new_status = CaseStatus(request.status.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid status: {request.status}")

    try:
        triage_case = update_case_status(db, case_id, new_status, user_id)
    except TriageRoutingError as e:
        raise http_error(e)
    return serialize_case(triage_case)


@router.get("/cases/{case_id}/audit")
async def get_case_audit(
    case_id: uuid.UUID,
    user_id: str = Depends(get_acting_user),
    db: Session = Depends(get_db)
):
    """Get audit trail for a case"""
    try:
        get_case(db, case_id)
    except TriageRoutingError as e:
        raise http_error(e)

    return {
        "case_id": str(case_id),
        "audit_logs": [
            {
                "id": str(entry.id),
                "action": entry.action.value,
                "user_id": entry.user_id,
                "details": entry.details,
                "created_at": entry.created_at.isoformat()
            }
            for entry in get_audit_trail(db, case_id)
        ]
    }


@router.get("/cases/{case_id}/routing")
async def get_case_routing(
    case_id: uuid.UUID,
    user_id: str = Depends(get_acting_user),
    db: Session = Depends(get_db)
):
    """Get routing assignments and escalation history for a case"""
    try:
        history = get_routing_history(db, case_id)
    except TriageRoutingError as e:
        raise http_error(e)

    return {
        "case_id": str(case_id),
        "assignments": [
            {
                "id": str(a.id),
                "assigned_to": a.assigned_to,
                "assigned_role": a.assigned_role.value,
                "escalation_level": a.escalation_level,
                "escalation_deadline": a.escalation_deadline.isoformat() if a.escalation_deadline else None,
                "status": a.status.value,
                "created_at": a.created_at.isoformat(),
                "acknowledged_at": a.acknowledged_at.isoformat() if a.acknowledged_at else None,
                "response_time_ms": a.response_time_ms
            }
            for a in history["assignments"]
        ],
        "escalation_events": [
            {
                "id": str(e.id),
                "from_user": e.from_user,
                "from_role": e.from_role.value if e.from_role else None,
                "to_user": e.to_user,
                "to_role": e.to_role.value,
                "from_level": e.from_level,
                "to_level": e.to_level,
                "reason": e.reason.value,
                "notes": e.notes,
                "created_at": e.created_at.isoformat()
            }
            for e in history["escalation_events"]
        ]
    }
