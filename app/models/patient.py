"""
Patient model
"""
from sqlalchemy import Column, String, DateTime, Date
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum
from app.core.database import Base, value_enum


class PatientStatus(str, enum.Enum):
    WAITING = "waiting"
    IN_TRIAGE = "in-triage"
    PENDING_VALIDATION = "pending-validation"
    VALIDATED = "validated"
    ASSIGNED = "assigned"
    ACKNOWLEDGED = "acknowledged"
    IN_TREATMENT = "in-treatment"
    DISCHARGED = "discharged"


class Patient(Base):
    __tablename__ = "patients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    mrn = Column(String, nullable=True, unique=True, index=True)  # Medical Record Number
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    date_of_birth = Column(Date, nullable=True)
    chief_complaint = Column(String, nullable=True)
    arrival_time = Column(DateTime, nullable=False, default=datetime.utcnow)
    status = Column(value_enum(PatientStatus, "patientstatus"), nullable=False, default=PatientStatus.WAITING, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    triage_cases = relationship("TriageCase", back_populates="patient")

    def summary(self) -> dict:
        """Fields a notification needs to render without a follow-up query"""
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "chiefComplaint": self.chief_complaint,
        }
