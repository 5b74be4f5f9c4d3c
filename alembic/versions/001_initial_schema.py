"""Initial schema

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-17 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    'patientstatus': ['waiting', 'in-triage', 'pending-validation', 'validated', 'assigned', 'acknowledged', 'in-treatment', 'discharged'],
    'responderrole': ['nurse', 'physician', 'senior_physician', 'charge_nurse'],
    'casestatus': ['pending-ai', 'pending-validation', 'validated', 'assigned', 'acknowledged', 'in-treatment', 'discharged'],
    'escalationstatus': ['none', 'pending', 'level-1', 'level-2', 'level-3', 'resolved'],
    'overriderationale': ['clinical-judgment', 'additional-findings', 'patient-history', 'vital-change', 'symptom-evolution', 'family-concern', 'other'],
    'assignmentstatus': ['pending', 'acknowledged', 'escalated'],
    'escalationreason': ['timeout', 'unavailable', 'manual'],
    'auditaction': ['case_created', 'ai_triage_completed', 'triage_validated', 'triage_overridden', 'case_assigned', 'case_acknowledged', 'escalation_triggered', 'escalation_resolved', 'status_changed'],
}


def create_enum_if_not_exists(enum_name, enum_values):
    """Create PostgreSQL ENUM type if it doesn't exist"""
    enum_name_escaped = enum_name.replace('"', '""')
    values_str = ", ".join(["'" + v.replace("'", "''") + "'" for v in enum_values])
    op.execute(f"""
        DO $$ BEGIN
            IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = '{enum_name_escaped}') THEN
                CREATE TYPE "{enum_name_escaped}" AS ENUM ({values_str});
            END IF;
        END $$;
    """)


def enum_column(name):
    # Type is created up front, so the table DDL must not emit CREATE TYPE again
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    for name, values in ENUMS.items():
        create_enum_if_not_exists(name, values)

    # Patients
    op.create_table(
        'patients',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('mrn', sa.String(), nullable=True, unique=True, index=True),
        sa.Column('first_name', sa.String(), nullable=False),
        sa.Column('last_name', sa.String(), nullable=False),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('chief_complaint', sa.String(), nullable=True),
        sa.Column('arrival_time', sa.DateTime(), nullable=False),
        sa.Column('status', enum_column('patientstatus'), nullable=False, index=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    # Staff roles (responder directory)
    op.create_table(
        'staff_roles',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=False, index=True),
        sa.Column('role', enum_column('responderrole'), nullable=False, index=True),
        sa.Column('zone', sa.String(), nullable=True, index=True),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    # Triage cases
    op.create_table(
        'triage_cases',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('patient_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('patients.id'), nullable=False, index=True),
        sa.Column('ai_draft_esi', sa.Integer(), nullable=True),
        sa.Column('ai_confidence', sa.Float(), nullable=True),
        sa.Column('ai_rationale', postgresql.JSONB(), nullable=True),
        sa.Column('validated_esi', sa.Integer(), nullable=True),
        sa.Column('is_override', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('override_rationale', enum_column('overriderationale'), nullable=True),
        sa.Column('override_notes', sa.String(), nullable=True),
        sa.Column('status', enum_column('casestatus'), nullable=False, index=True),
        sa.Column('assigned_to', sa.String(), nullable=True, index=True),
        sa.Column('assigned_zone', sa.String(), nullable=True, index=True),
        sa.Column('escalation_status', enum_column('escalationstatus'), nullable=False, index=True),
        sa.Column('acknowledged_at', sa.DateTime(), nullable=True),
        sa.Column('validated_at', sa.DateTime(), nullable=True),
        sa.Column('validated_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, index=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('ai_draft_esi BETWEEN 1 AND 5', name='ck_triage_cases_ai_draft_esi'),
        sa.CheckConstraint('validated_esi BETWEEN 1 AND 5', name='ck_triage_cases_validated_esi'),
    )

    # Routing assignments
    op.create_table(
        'routing_assignments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('triage_case_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('triage_cases.id'), nullable=False, index=True),
        sa.Column('assigned_to', sa.String(), nullable=False, index=True),
        sa.Column('assigned_role', enum_column('responderrole'), nullable=False),
        sa.Column('escalation_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('escalation_deadline', sa.DateTime(), nullable=True, index=True),
        sa.Column('status', enum_column('assignmentstatus'), nullable=False, index=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, index=True),
        sa.Column('acknowledged_at', sa.DateTime(), nullable=True),
        sa.Column('response_time_ms', sa.Integer(), nullable=True),
    )
    op.create_index(
        'uq_routing_assignments_one_pending',
        'routing_assignments',
        ['triage_case_id'],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    # Escalation events
    op.create_table(
        'escalation_events',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('triage_case_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('triage_cases.id'), nullable=False, index=True),
        sa.Column('from_user', sa.String(), nullable=True),
        sa.Column('from_role', enum_column('responderrole'), nullable=True),
        sa.Column('from_level', sa.Integer(), nullable=True),
        sa.Column('to_user', sa.String(), nullable=False),
        sa.Column('to_role', enum_column('responderrole'), nullable=False),
        sa.Column('to_level', sa.Integer(), nullable=False),
        sa.Column('reason', enum_column('escalationreason'), nullable=False),
        sa.Column('notes', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, index=True),
    )

    # Audit logs (append-only)
    op.create_table(
        'audit_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('triage_case_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('triage_cases.id'), nullable=True, index=True),
        sa.Column('patient_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('patients.id'), nullable=True, index=True),
        sa.Column('user_id', sa.String(), nullable=True, index=True),
        sa.Column('action', enum_column('auditaction'), nullable=False, index=True),
        sa.Column('details', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, index=True),
    )


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('escalation_events')
    op.drop_index('uq_routing_assignments_one_pending', table_name='routing_assignments')
    op.drop_table('routing_assignments')
    op.drop_table('triage_cases')
    op.drop_table('staff_roles')
    op.drop_table('patients')
    for name in reversed(list(ENUMS)):
        op.execute(f'DROP TYPE IF EXISTS "{name}"')
