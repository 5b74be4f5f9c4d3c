"""
Track board API endpoint
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Optional

from app.api.deps import get_acting_user
from app.core.database import get_db
from app.models.triage_case import CaseStatus
from app.services.track_board_service import get_track_board

router = APIRouter()


def _split(value: Optional[str]):
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


@router.get("")
async def get_track_board_endpoint(
    esi_levels: Optional[str] = Query(None, description="Comma separated, default 3,4,5"),
    zones: Optional[str] = Query(None),
    statuses: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1),
    user_id: str = Depends(get_acting_user),
    db: Session = Depends(get_db)
):
    """Validated cases with wait times, most acute first"""
    try:
        levels = [int(level) for level in _split(esi_levels)] if esi_levels else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid esi_levels: {esi_levels}")

    try:
        status_filter = [CaseStatus(s) for s in _split(statuses)] if statuses else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid statuses: {statuses}")

    return get_track_board(
        db,
        esi_levels=levels,
        zones=_split(zones),
        statuses=status_filter,
        page=page,
        page_size=page_size
    )
