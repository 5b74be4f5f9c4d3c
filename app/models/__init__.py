"""
SQLAlchemy models
"""
from app.models.patient import Patient, PatientStatus
from app.models.staff import StaffRole, ResponderRole
from app.models.triage_case import TriageCase, CaseStatus, EscalationStatus, OverrideRationale
from app.models.routing import RoutingAssignment, AssignmentStatus, EscalationEvent, EscalationReason
from app.models.audit import AuditLog, AuditAction

__all__ = [
    "Patient",
    "PatientStatus",
    "StaffRole",
    "ResponderRole",
    "TriageCase",
    "CaseStatus",
    "EscalationStatus",
    "OverrideRationale",
    "RoutingAssignment",
    "AssignmentStatus",
    "EscalationEvent",
    "EscalationReason",
    "AuditLog",
    "AuditAction",
]
