"""
Tests for the HTTP surface
"""
import inspect
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.routing import APIRoute

from app.api.deps import get_sink
from app.core.database import Base, get_db
from app.main import app
from app.models import Patient, StaffRole, ResponderRole


@pytest.fixture
def client(sink):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sink] = lambda: sink

    seed = TestingSession()
    seed.add(Patient(first_name="Grace", last_name="Hopper", chief_complaint="Syncope"))
    seed.add(StaffRole(user_id="dr-house", role=ResponderRole.PHYSICIAN, zone="A"))
    seed.commit()
    patient_id = str(seed.query(Patient).one().id)
    seed.close()

    with TestClient(app) as test_client:
        test_client.patient_id = patient_id
        yield test_client

    app.dependency_overrides.clear()


NURSE = {"X-User-Id": "rn-1"}
DOCTOR = {"X-User-Id": "dr-house"}


def _case_awaiting_validation(client, draft_esi):
    response = client.post("/v1/triage/cases", json={"patient_id": client.patient_id, "assigned_zone": "A"}, headers=NURSE)
    assert response.status_code == 200
    case_id = response.json()["id"]
    response = client.post(f"/v1/triage/cases/{case_id}/ai-draft", json={"draft_esi": draft_esi, "confidence": 80})
    assert response.status_code == 200
    return case_id


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_validate_and_acknowledge_flow(client, sink):
    case_id = _case_awaiting_validation(client, 2)

    response = client.post(f"/v1/triage/cases/{case_id}/validate", json={"action": "confirm"}, headers=NURSE)
    assert response.status_code == 200
    routing = response.json()["routing"]
    assert routing["type"] == "assigned"
    assert routing["assigned_to"] == "dr-house"

    response = client.post(f"/v1/triage/cases/{case_id}/acknowledge", headers=DOCTOR)
    assert response.status_code == 200
    assert response.json()["assignment_id"] == routing["assignment_id"]

    response = client.get(f"/v1/triage/cases/{case_id}", headers=NURSE)
    assert response.json()["status"] == "acknowledged"

    response = client.get(f"/v1/triage/cases/{case_id}/routing", headers=NURSE)
    assert [a["status"] for a in response.json()["assignments"]] == ["acknowledged"]

    response = client.get(f"/v1/triage/cases/{case_id}/audit", headers=NURSE)
    actions = [entry["action"] for entry in response.json()["audit_logs"]]
    assert "case_assigned" in actions
    assert "case_acknowledged" in actions


def test_validate_requires_user(client):
    case_id = _case_awaiting_validation(client, 3)

    response = client.post(f"/v1/triage/cases/{case_id}/validate", json={"action": "confirm"})

    assert response.status_code == 401


def test_override_missing_rationale_is_bad_request(client):
    case_id = _case_awaiting_validation(client, 3)

    response = client.post(
        f"/v1/triage/cases/{case_id}/validate",
        json={"action": "override", "override_esi": 2},
        headers=NURSE
    )

    assert response.status_code == 400


def test_unknown_case_is_not_found(client):
    response = client.post(
        "/v1/triage/cases/00000000-0000-0000-0000-000000000000/validate",
        json={"action": "confirm"},
        headers=NURSE
    )

    assert response.status_code == 404


def test_revalidation_conflict(client):
    case_id = _case_awaiting_validation(client, 2)
    client.post(f"/v1/triage/cases/{case_id}/validate", json={"action": "confirm"}, headers=NURSE)

    response = client.post(f"/v1/triage/cases/{case_id}/validate", json={"action": "confirm"}, headers=NURSE)

    assert response.status_code == 409


def test_sweep_endpoint(client):
    case_id = _case_awaiting_validation(client, 2)
    response = client.post(f"/v1/triage/cases/{case_id}/validate", json={"action": "confirm"}, headers=NURSE)
    assert response.json()["routing"]["type"] == "assigned"

    response = client.post("/v1/escalations/sweep")

    assert response.status_code == 200
    body = response.json()
    assert body["escalations"] == []
    assert set(body) == {"processed_at", "escalations", "unresolved", "exhausted", "unrouted", "reconciled"}


def test_track_board_endpoint(client):
    case_id = _case_awaiting_validation(client, 4)
    client.post(f"/v1/triage/cases/{case_id}/validate", json={"action": "confirm"}, headers=NURSE)

    response = client.get("/v1/track-board", params={"esi_levels": "4,5"}, headers=NURSE)

    assert response.status_code == 200
    assert [row["id"] for row in response.json()["cases"]] == [case_id]

    response = client.get("/v1/track-board", params={"esi_levels": "four"}, headers=NURSE)
    assert response.status_code == 400


def test_case_reads_require_user(client):
    case_id = _case_awaiting_validation(client, 3)

    for path in (f"/v1/triage/cases/{case_id}", f"/v1/triage/cases/{case_id}/audit", f"/v1/triage/cases/{case_id}/routing"):
        assert client.get(path).status_code == 401


def test_event_emitting_routes_run_in_threadpool():
    """Routes that reach a blocking event sink must not be coroutines"""
    endpoints = {
        (route.path, tuple(sorted(route.methods))): route.endpoint
        for route in app.routes
        if isinstance(route, APIRoute)
    }

    for key in (
        ("/v1/triage/cases/{case_id}/validate", ("POST",)),
        ("/v1/triage/cases/{case_id}/acknowledge", ("POST",)),
        ("/v1/escalations/sweep", ("POST",)),
    ):
        assert not inspect.iscoroutinefunction(endpoints[key])
