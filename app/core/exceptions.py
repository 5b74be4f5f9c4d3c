"""
Triage routing exception hierarchy
"""
from typing import Optional


class TriageRoutingError(Exception):
    """Base exception for routing engine errors"""


class CaseNotFoundError(TriageRoutingError):
    """Triage case does not exist"""

    def __init__(self, case_id):
        self.case_id = case_id
        super().__init__(f"Triage case not found: {case_id}")


class PatientNotFoundError(TriageRoutingError):
    """Patient does not exist"""

    def __init__(self, patient_id):
        self.patient_id = patient_id
        super().__init__(f"Patient not found: {patient_id}")


class AssignmentNotFoundError(TriageRoutingError):
    """Routing assignment does not exist or belongs to another case"""

    def __init__(self, assignment_id, case_id=None):
        self.assignment_id = assignment_id
        self.case_id = case_id
        super().__init__(f"Routing assignment not found: {assignment_id}")


class TriageValidationError(TriageRoutingError):
    """Request is missing or carries invalid fields"""


class InvalidCaseStateError(TriageRoutingError):
    """Operation not allowed in the case's current state"""

    def __init__(self, message: str, current_status: Optional[str] = None):
        self.current_status = current_status
        super().__init__(message)
