"""
Audit logging service
"""
from sqlalchemy.orm import Session
from typing import Optional, Dict, Any, List
from datetime import datetime
from app.models.audit import AuditLog, AuditAction
import uuid


def log_audit_event(
    db: Session,
    action: AuditAction,
    triage_case_id: Optional[uuid.UUID] = None,
    patient_id: Optional[uuid.UUID] = None,
    user_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    created_at: Optional[datetime] = None
) -> AuditLog:
    """
    Append an audit entry to the caller's transaction.

    The caller commits; an aborted operation leaves no audit entry behind.
    """
    entry = AuditLog(
        triage_case_id=triage_case_id,
        patient_id=patient_id,
        user_id=user_id,
        action=action,
        details=details or {},
        created_at=created_at or datetime.utcnow()
    )
    db.add(entry)
    return entry


def get_audit_trail(db: Session, triage_case_id: uuid.UUID) -> List[AuditLog]:
    """Audit entries for a case, oldest first"""
    return db.query(AuditLog).filter(
        AuditLog.triage_case_id == triage_case_id
    ).order_by(AuditLog.created_at, AuditLog.id).all()
