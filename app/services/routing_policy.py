"""
Routing policy: escalation ladder, deadlines and ESI wait targets
"""
from datetime import datetime, timedelta
from typing import Optional
from app.core.config import settings
from app.models.staff import ResponderRole
from app.models.triage_case import EscalationStatus


# Rung -> role. Level 2 is the terminal backstop and never escalates further.
ESCALATION_LADDER = {
    0: ResponderRole.PHYSICIAN,
    1: ResponderRole.SENIOR_PHYSICIAN,
    2: ResponderRole.CHARGE_NURSE,
}
FIRST_LEVEL = 0
TERMINAL_LEVEL = max(ESCALATION_LADDER)

ESCALATION_STATUS_BY_LEVEL = {
    1: EscalationStatus.LEVEL_1,
    2: EscalationStatus.LEVEL_2,
    3: EscalationStatus.LEVEL_3,
}

# Track board wait targets in milliseconds
ESI_WAIT_TARGETS_MS = {
    1: 0,
    2: 600000,  # 10 minutes
    3: 1800000,  # 30 minutes
    4: 3600000,  # 60 minutes
    5: 7200000,  # 120 minutes
}

VALID_ESI_LEVELS = range(1, 6)


def escalation_timeout() -> timedelta:
    return timedelta(seconds=settings.ESCALATION_TIMEOUT_SECONDS)


def role_for_level(level: int) -> Optional[ResponderRole]:
    """Role holding the given rung, None past the top of the ladder"""
    return ESCALATION_LADDER.get(level)


def deadline_for_level(level: int, now: datetime) -> Optional[datetime]:
    """Acknowledgment deadline for a new assignment; the terminal rung has none"""
    if level >= TERMINAL_LEVEL:
        return None
    return now + escalation_timeout()


def escalation_status_for_level(level: int) -> EscalationStatus:
    return ESCALATION_STATUS_BY_LEVEL.get(level, EscalationStatus.PENDING)


def wait_target_ms(esi_level: Optional[int]) -> int:
    return ESI_WAIT_TARGETS_MS.get(esi_level, ESI_WAIT_TARGETS_MS[3])


def is_valid_esi(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value in VALID_ESI_LEVELS
