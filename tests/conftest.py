"""
Shared fixtures: in-memory database, staff and patient factories, recording sink
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from datetime import datetime, timedelta, date
from app.core.database import Base
from app.models import Patient, StaffRole, ResponderRole, TriageCase
from app.models.triage_case import VALIDATED_STATUSES
from app.services.notification_service import EventSink
from app.services.case_service import create_triage_case, attach_ai_draft


NOW = datetime(2026, 3, 14, 9, 0, 0)


class RecordingEventSink(EventSink):
    """Keeps published events in memory"""

    def __init__(self):
        self.events = []

    def publish(self, event, payload):
        self.events.append((event, payload))

    def of_kind(self, event):
        return [payload for kind, payload in self.events if kind == event]


@pytest.fixture
def db_session():
    """Create test database session"""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def sink():
    return RecordingEventSink()


@pytest.fixture
def patient(db_session):
    """Create test patient"""
    patient = Patient(
        mrn="MRN-0001",
        first_name="Ada",
        last_name="Lovelace",
        date_of_birth=date(1980, 6, 1),
        chief_complaint="Chest pain",
        arrival_time=NOW - timedelta(minutes=5),
    )
    db_session.add(patient)
    db_session.commit()
    return patient


@pytest.fixture
def add_staff(db_session):
    """Factory for available staff; creation order decides lookup order"""
    counter = {"n": 0}

    def _add(user_id, role, zone="A", is_available=True):
        counter["n"] += 1
        staff = StaffRole(
            user_id=user_id,
            role=role,
            zone=zone,
            display_name=user_id,
            is_available=is_available,
            created_at=NOW - timedelta(days=1) + timedelta(seconds=counter["n"]),
        )
        db_session.add(staff)
        db_session.commit()
        return staff

    return _add


@pytest.fixture
def full_ladder(add_staff):
    """One available responder per rung in zone A"""
    add_staff("dr-house", ResponderRole.PHYSICIAN)
    add_staff("dr-cuddy", ResponderRole.SENIOR_PHYSICIAN)
    add_staff("rn-jackie", ResponderRole.CHARGE_NURSE)


@pytest.fixture
def make_case(db_session, patient):
    """Factory for a case awaiting validation with the given draft ESI"""

    def _make(draft_esi=3, zone="A", created_at=NOW, target_patient=None):
        owner = target_patient or patient
        triage_case = create_triage_case(db_session, owner.id, zone, "rn-triage", now=created_at)
        if draft_esi is not None:
            triage_case = attach_ai_draft(db_session, triage_case.id, draft_esi, 87.5, {"factors": ["vitals"]}, now=created_at)
        return triage_case

    return _make


@pytest.fixture
def check_case(db_session):
    """Assert case-level invariants after a handler call"""

    def _check(case_id):
        triage_case = db_session.query(TriageCase).filter(TriageCase.id == case_id).one()
        db_session.refresh(triage_case)
        assert (triage_case.validated_esi is not None) == (triage_case.status in VALIDATED_STATUSES)
        if triage_case.is_override:
            assert triage_case.override_rationale is not None
        return triage_case

    return _check
