"""
Shared API dependencies
"""
from fastapi import Header, HTTPException
from typing import Optional

from app.core.exceptions import (
    TriageRoutingError,
    CaseNotFoundError,
    PatientNotFoundError,
    AssignmentNotFoundError,
    TriageValidationError,
    InvalidCaseStateError,
)
from app.services.notification_service import EventSink, get_event_sink


def get_acting_user(x_user_id: Optional[str] = Header(None)) -> str:
    """Acting clinician id, set by the authenticating gateway"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


def get_sink() -> EventSink:
    return get_event_sink()


def http_error(exc: TriageRoutingError) -> HTTPException:
    """Map a domain error to an HTTP error"""
    if isinstance(exc, (CaseNotFoundError, PatientNotFoundError, AssignmentNotFoundError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, TriageValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, InvalidCaseStateError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=500, detail="Internal server error")
