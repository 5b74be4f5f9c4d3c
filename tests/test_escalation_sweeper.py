"""
Tests for the escalation sweeper
"""
from datetime import timedelta
from sqlalchemy import text
from app.models import (
    CaseStatus,
    EscalationStatus,
    RoutingAssignment,
    AssignmentStatus,
    EscalationEvent,
    EscalationReason,
    ResponderRole,
    AuditLog,
    AuditAction,
)
from app.services.escalation_service import (
    Outcome,
    sweep_escalations,
    escalate_assignment,
    find_overdue_assignments,
    reconcile_pending_assignments,
)
from app.services.notification_service import EventKind
from app.services.responder_directory import SQLResponderDirectory
from app.services.triage_validation_service import validate_triage


def _route_esi2(db_session, make_case, sink, now):
    triage_case = make_case(draft_esi=2)
    validate_triage(db_session, triage_case.id, "confirm", "rn-1", sink=sink, now=now)
    sink.events.clear()
    return triage_case


def _assignments(db_session, case_id):
    return db_session.query(RoutingAssignment).filter(
        RoutingAssignment.triage_case_id == case_id
    ).order_by(RoutingAssignment.escalation_level).all()


def _assert_ladder_invariants(assignments):
    """At most one pending assignment and no gaps in levels"""
    pending = [a for a in assignments if a.status == AssignmentStatus.PENDING]
    assert len(pending) <= 1
    assert [a.escalation_level for a in assignments] == list(range(len(assignments)))


def test_nothing_overdue_before_deadline(db_session, make_case, full_ladder, sink, now):
    triage_case = _route_esi2(db_session, make_case, sink, now)

    result = sweep_escalations(db_session, now=now + timedelta(seconds=119), sink=sink)

    assert result["escalations"] == []
    assert len(_assignments(db_session, triage_case.id)) == 1
    assert sink.events == []


def test_overdue_physician_escalates_to_senior(db_session, make_case, full_ladder, sink, now):
    """Level 0 past its deadline moves to the senior physician"""
    triage_case = _route_esi2(db_session, make_case, sink, now)
    sweep_at = now + timedelta(seconds=150)

    result = sweep_escalations(db_session, now=sweep_at, sink=sink)

    assert len(result["escalations"]) == 1
    detail = result["escalations"][0]
    assert detail["case_id"] == str(triage_case.id)
    assert detail["from_level"] == 0
    assert detail["to_level"] == 1
    assert detail["to_role"] == "senior_physician"
    assert detail["to_user"] == "dr-cuddy"

    assignments = _assignments(db_session, triage_case.id)
    assert [a.status for a in assignments] == [AssignmentStatus.ESCALATED, AssignmentStatus.PENDING]
    successor = assignments[1]
    assert successor.assigned_role == ResponderRole.SENIOR_PHYSICIAN
    assert successor.escalation_deadline == sweep_at + timedelta(seconds=120)
    _assert_ladder_invariants(assignments)

    db_session.refresh(triage_case)
    assert triage_case.escalation_status == EscalationStatus.LEVEL_1
    assert triage_case.assigned_to == "dr-cuddy"
    assert triage_case.status == CaseStatus.ASSIGNED

    event = db_session.query(EscalationEvent).filter(EscalationEvent.triage_case_id == triage_case.id).one()
    assert event.from_user == "dr-house"
    assert event.to_user == "dr-cuddy"
    assert event.from_level == 0
    assert event.to_level == 1
    assert event.reason == EscalationReason.TIMEOUT

    audit = db_session.query(AuditLog).filter(
        AuditLog.triage_case_id == triage_case.id,
        AuditLog.action == AuditAction.ESCALATION_TRIGGERED
    ).one()
    assert audit.user_id is None

    escalations = sink.of_kind(EventKind.ESCALATION)
    assert len(escalations) == 1
    assert escalations[0]["escalationLevel"] == 1
    assert escalations[0]["assignedTo"] == "dr-cuddy"
    assert escalations[0]["esiLevel"] == 2


def test_repeat_sweep_is_noop(db_session, make_case, full_ladder, sink, now):
    """Sweeping again at the same instant changes nothing"""
    triage_case = _route_esi2(db_session, make_case, sink, now)
    sweep_at = now + timedelta(seconds=150)

    sweep_escalations(db_session, now=sweep_at, sink=sink)
    second = sweep_escalations(db_session, now=sweep_at, sink=sink)

    assert second["escalations"] == []
    assert len(_assignments(db_session, triage_case.id)) == 2
    assert db_session.query(EscalationEvent).count() == 1
    assert len(sink.of_kind(EventKind.ESCALATION)) == 1


def test_senior_escalates_to_terminal_charge_nurse(db_session, make_case, full_ladder, sink, now):
    """Level 1 to level 2; the terminal rung carries no deadline"""
    triage_case = _route_esi2(db_session, make_case, sink, now)
    sweep_escalations(db_session, now=now + timedelta(seconds=150), sink=sink)

    result = sweep_escalations(db_session, now=now + timedelta(seconds=300), sink=sink)

    assert [e["to_level"] for e in result["escalations"]] == [2]
    assignments = _assignments(db_session, triage_case.id)
    assert [a.status for a in assignments] == [
        AssignmentStatus.ESCALATED,
        AssignmentStatus.ESCALATED,
        AssignmentStatus.PENDING,
    ]
    terminal = assignments[2]
    assert terminal.assigned_role == ResponderRole.CHARGE_NURSE
    assert terminal.assigned_to == "rn-jackie"
    assert terminal.escalation_deadline is None
    _assert_ladder_invariants(assignments)

    db_session.refresh(triage_case)
    assert triage_case.escalation_status == EscalationStatus.LEVEL_2


def test_terminal_rung_never_escalates(db_session, make_case, full_ladder, sink, now):
    """Once at the charge nurse, later sweeps leave the case alone"""
    triage_case = _route_esi2(db_session, make_case, sink, now)
    sweep_escalations(db_session, now=now + timedelta(seconds=150), sink=sink)
    sweep_escalations(db_session, now=now + timedelta(seconds=300), sink=sink)

    result = sweep_escalations(db_session, now=now + timedelta(hours=6), sink=sink)

    assert result["escalations"] == []
    assignments = _assignments(db_session, triage_case.id)
    assert len(assignments) == 3
    assert assignments[2].status == AssignmentStatus.PENDING


def test_overdue_terminal_assignment_reported_exhausted(db_session, make_case, full_ladder, sink, now):
    """A level 2 assignment with a deadline is reported, not escalated"""
    triage_case = _route_esi2(db_session, make_case, sink, now)
    assignment = _assignments(db_session, triage_case.id)[0]
    assignment.escalation_level = 2
    assignment.assigned_role = ResponderRole.CHARGE_NURSE
    db_session.commit()

    result = sweep_escalations(db_session, now=now + timedelta(seconds=150), sink=sink)

    assert result["escalations"] == []
    assert result["exhausted"] == [str(triage_case.id)]
    db_session.refresh(assignment)
    assert assignment.status == AssignmentStatus.PENDING


def test_no_senior_available_leaves_assignment_pending(db_session, make_case, add_staff, sink, now):
    """Unresolvable next rung is retried on a later sweep"""
    add_staff("dr-house", ResponderRole.PHYSICIAN)
    triage_case = _route_esi2(db_session, make_case, sink, now)

    result = sweep_escalations(db_session, now=now + timedelta(seconds=150), sink=sink)

    assert result["escalations"] == []
    assert result["unresolved"] == [{"case_id": str(triage_case.id), "level": 0, "role": "senior_physician"}]
    assignments = _assignments(db_session, triage_case.id)
    assert [a.status for a in assignments] == [AssignmentStatus.PENDING]

    add_staff("dr-cuddy", ResponderRole.SENIOR_PHYSICIAN, zone="B")
    retry = sweep_escalations(db_session, now=now + timedelta(seconds=180), sink=sink)

    assert [e["to_user"] for e in retry["escalations"]] == ["dr-cuddy"]


def test_escalation_falls_back_to_other_zone(db_session, make_case, add_staff, sink, now):
    add_staff("dr-house", ResponderRole.PHYSICIAN)
    add_staff("dr-remote", ResponderRole.SENIOR_PHYSICIAN, zone="D")
    triage_case = _route_esi2(db_session, make_case, sink, now)

    result = sweep_escalations(db_session, now=now + timedelta(seconds=150), sink=sink)

    assert result["escalations"][0]["to_user"] == "dr-remote"
    assert _assignments(db_session, triage_case.id)[1].assigned_to == "dr-remote"


def test_losing_claim_is_noop(db_session, make_case, full_ladder, sink, now):
    """An assignment already escalated by another run is skipped"""
    triage_case = _route_esi2(db_session, make_case, sink, now)
    sweep_at = now + timedelta(seconds=150)
    directory = SQLResponderDirectory(db_session)
    assignment_id = find_overdue_assignments(db_session, sweep_at)[0]

    first, _ = escalate_assignment(db_session, assignment_id, sweep_at, directory, sink)
    second, detail = escalate_assignment(db_session, assignment_id, sweep_at, directory, sink)

    assert first == Outcome.ESCALATED
    assert second == Outcome.SKIPPED
    assert detail is None
    assert len(_assignments(db_session, triage_case.id)) == 2


def test_acknowledged_assignment_not_escalated(db_session, make_case, full_ladder, sink, now):
    from app.services.acknowledgment_service import acknowledge_case

    triage_case = _route_esi2(db_session, make_case, sink, now)
    acknowledge_case(db_session, triage_case.id, "dr-house", sink=sink, now=now + timedelta(seconds=60))

    result = sweep_escalations(db_session, now=now + timedelta(seconds=150), sink=sink)

    assert result["escalations"] == []
    assert len(_assignments(db_session, triage_case.id)) == 1


def test_orphaned_escalation_is_repaired(db_session, make_case, full_ladder, sink, now):
    """An escalated assignment left without a successor gets one"""
    triage_case = _route_esi2(db_session, make_case, sink, now)
    assignment = _assignments(db_session, triage_case.id)[0]
    assignment.status = AssignmentStatus.ESCALATED
    db_session.commit()

    result = sweep_escalations(db_session, now=now + timedelta(seconds=150), sink=sink)

    assert [e["to_level"] for e in result["escalations"]] == [1]
    assignments = _assignments(db_session, triage_case.id)
    assert [a.status for a in assignments] == [AssignmentStatus.ESCALATED, AssignmentStatus.PENDING]
    _assert_ladder_invariants(assignments)

    again = sweep_escalations(db_session, now=now + timedelta(seconds=151), sink=sink)
    assert again["escalations"] == []


def test_unrouted_esi2_case_reported(db_session, make_case, sink, now):
    """ESI 2 validated with no physician shows up in every sweep"""
    triage_case = make_case(draft_esi=2)
    validate_triage(db_session, triage_case.id, "confirm", "rn-1", sink=sink, now=now)

    result = sweep_escalations(db_session, now=now + timedelta(minutes=5), sink=sink)

    assert result["unrouted"] == [str(triage_case.id)]


def test_reconcile_without_duplicates_is_noop(db_session, make_case, full_ladder, sink, now):
    _route_esi2(db_session, make_case, sink, now)

    assert reconcile_pending_assignments(db_session) == 0


def test_duplicate_pending_assignments_reconciled(db_session, make_case, full_ladder, sink, now):
    """The highest-level pending row wins and the case follows it"""
    db_session.execute(text("DROP INDEX uq_routing_assignments_one_pending"))
    db_session.commit()
    triage_case = _route_esi2(db_session, make_case, sink, now)
    db_session.add(RoutingAssignment(
        triage_case_id=triage_case.id,
        assigned_to="dr-cuddy",
        assigned_role=ResponderRole.SENIOR_PHYSICIAN,
        escalation_level=1,
        escalation_deadline=now + timedelta(seconds=130),
        status=AssignmentStatus.PENDING,
        created_at=now + timedelta(seconds=10)
    ))
    db_session.commit()

    result = sweep_escalations(db_session, now=now + timedelta(seconds=30), sink=sink)

    assert result["reconciled"] == 1
    assert result["escalations"] == []
    assignments = _assignments(db_session, triage_case.id)
    pending = [a for a in assignments if a.status == AssignmentStatus.PENDING]
    assert [(a.escalation_level, a.assigned_to) for a in pending] == [(1, "dr-cuddy")]
    assert assignments[0].status == AssignmentStatus.ESCALATED
    _assert_ladder_invariants(assignments)

    db_session.refresh(triage_case)
    assert triage_case.assigned_to == "dr-cuddy"
    assert triage_case.escalation_status == EscalationStatus.LEVEL_1


def test_one_case_failing_does_not_stop_sweep(db_session, make_case, full_ladder, sink, now, patient):
    """Cases are independent; a broken directory on one case is logged"""

    class FlakyDirectory(SQLResponderDirectory):
        calls = 0

        def find_available(self, role, zone):
            FlakyDirectory.calls += 1
            if FlakyDirectory.calls == 1:
                raise RuntimeError("directory timeout")
            return super().find_available(role, zone)

    first = _route_esi2(db_session, make_case, sink, now)
    second = _route_esi2(db_session, make_case, sink, now + timedelta(seconds=1))

    result = sweep_escalations(
        db_session,
        now=now + timedelta(seconds=150),
        directory=FlakyDirectory(db_session),
        sink=sink
    )

    assert [e["case_id"] for e in result["escalations"]] == [str(second.id)]
    assert len(_assignments(db_session, first.id)) == 1
