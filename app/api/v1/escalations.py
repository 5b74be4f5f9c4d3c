"""
Escalation sweep API endpoint
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional

from app.api.deps import get_sink
from app.core.database import get_db
from app.services.notification_service import EventSink
from app.services.escalation_service import sweep_escalations

router = APIRouter()


# Plain def: event sinks may block on delivery
@router.post("/sweep")
def sweep_escalations_endpoint(
    now: Optional[datetime] = None,
    sink: EventSink = Depends(get_sink),
    db: Session = Depends(get_db)
):
    """
    Advance overdue routing assignments one rung
    Called on a fixed interval by an external scheduler
    """
    return sweep_escalations(db, now=now, sink=sink)
