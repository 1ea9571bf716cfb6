"""create roster schema

Revision ID: 3c7e91d0b2a4
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c7e91d0b2a4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ROSTER_TABLES = ('students', 'teachers', 'sections', 'courses', 'terms')


def _roster_columns() -> list[sa.Column]:
    """Columns shared by every roster table."""
    return [
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('school_id', sa.Integer(), nullable=False),
        sa.Column('external_id', sa.String(length=64), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('deactivated_at', sa.DateTime(), nullable=True),
        sa.Column('source_last_modified', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['school_id'], ['schools.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    ]


def upgrade() -> None:
    """Create tenant, roster and orchestration tables."""
    op.create_table('districts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('external_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('time_zone', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id')
    )
    op.create_table('schools',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('district_id', sa.Integer(), nullable=False),
        sa.Column('external_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('requires_full_sync', sa.Boolean(), nullable=False),
        sa.Column('event_cursor', sa.String(length=64), nullable=True),
        sa.Column('last_full_sync_at', sa.DateTime(), nullable=True),
        sa.Column('last_incremental_sync_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['district_id'], ['districts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id')
    )

    op.create_table('students',
        *_roster_columns(),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('middle_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('sis_id', sa.String(length=64), nullable=True),
        sa.Column('student_number', sa.String(length=64), nullable=True),
        sa.Column('state_id', sa.String(length=64), nullable=True),
        sa.Column('grade', sa.String(length=20), nullable=True),
        sa.Column('graduation_year', sa.String(length=10), nullable=True),
        sa.UniqueConstraint('school_id', 'external_id', name='uq_student_school_ext')
    )
    op.create_table('teachers',
        *_roster_columns(),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('sis_id', sa.String(length=64), nullable=True),
        sa.Column('teacher_number', sa.String(length=64), nullable=True),
        sa.Column('title', sa.String(length=100), nullable=True),
        sa.UniqueConstraint('school_id', 'external_id', name='uq_teacher_school_ext')
    )
    op.create_table('sections',
        *_roster_columns(),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('sis_id', sa.String(length=64), nullable=True),
        sa.Column('section_number', sa.String(length=64), nullable=True),
        sa.Column('period', sa.String(length=50), nullable=True),
        sa.Column('subject', sa.String(length=100), nullable=True),
        sa.Column('grade', sa.String(length=20), nullable=True),
        sa.Column('course_external_id', sa.String(length=64), nullable=True),
        sa.Column('term_external_id', sa.String(length=64), nullable=True),
        sa.Column('primary_teacher_external_id', sa.String(length=64), nullable=True),
        sa.UniqueConstraint('school_id', 'external_id', name='uq_section_school_ext')
    )
    op.create_table('courses',
        *_roster_columns(),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('number', sa.String(length=64), nullable=True),
        sa.UniqueConstraint('school_id', 'external_id', name='uq_course_school_ext')
    )
    op.create_table('terms',
        *_roster_columns(),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('start_date', sa.String(length=10), nullable=True),
        sa.Column('end_date', sa.String(length=10), nullable=True),
        sa.UniqueConstraint('school_id', 'external_id', name='uq_term_school_ext')
    )
    for table in ROSTER_TABLES:
        op.create_index(f'ix_{table}_school_id', table, ['school_id'])

    op.create_table('student_sections',
        sa.Column('section_id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['section_id'], ['sections.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['student_id'], ['students.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('section_id', 'student_id')
    )
    op.create_table('teacher_sections',
        sa.Column('section_id', sa.Integer(), nullable=False),
        sa.Column('teacher_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['section_id'], ['sections.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['teacher_id'], ['teachers.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('section_id', 'teacher_id')
    )

    op.create_table('sync_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('scope', sa.String(length=100), nullable=False),
        sa.Column('parent_run_id', sa.Integer(), nullable=True),
        sa.Column('district_id', sa.Integer(), nullable=True),
        sa.Column('school_id', sa.Integer(), nullable=True),
        sa.Column('mode', sa.Enum('FULL', 'INCREMENTAL', 'RECONCILIATION', name='syncmode'), nullable=True),
        sa.Column('trigger', sa.Enum('MANUAL', 'SCHEDULED', 'CLI', name='triggersource'), nullable=False),
        sa.Column('initiated_by', sa.String(length=255), nullable=True),
        sa.Column('status', sa.Enum('RUNNING', 'SUCCEEDED', 'PARTIALLY_SUCCEEDED', 'FAILED', 'CANCELLED', 'SKIPPED', name='runstatus'), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('records_processed', sa.Integer(), nullable=False),
        sa.Column('records_failed', sa.Integer(), nullable=False),
        sa.Column('records_created', sa.Integer(), nullable=False),
        sa.Column('records_updated', sa.Integer(), nullable=False),
        sa.Column('records_deleted', sa.Integer(), nullable=False),
        sa.Column('last_cursor', sa.String(length=64), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['parent_run_id'], ['sync_runs.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['district_id'], ['districts.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['school_id'], ['schools.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sync_runs_scope_started', 'sync_runs', ['scope', 'started_at'])
    op.create_index('ix_sync_runs_school_status', 'sync_runs', ['school_id', 'status'])

    op.create_table('sync_locks',
        sa.Column('scope', sa.String(length=100), nullable=False),
        sa.Column('holder_id', sa.String(length=64), nullable=False),
        sa.Column('initiated_by', sa.String(length=255), nullable=True),
        sa.Column('hostname', sa.String(length=255), nullable=True),
        sa.Column('acquired_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('last_heartbeat', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('scope')
    )
    op.create_index('ix_sync_locks_expires_at', 'sync_locks', ['expires_at'])

    op.create_table('sync_schedules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('district_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('local_hour', sa.Integer(), nullable=False),
        sa.Column('local_minute', sa.Integer(), nullable=False),
        sa.Column('days_of_week', sa.String(length=50), nullable=False),
        sa.Column('is_enabled', sa.Boolean(), nullable=False),
        sa.Column('last_triggered_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['district_id'], ['districts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )


def downgrade() -> None:
    """Drop every table created by this revision."""
    op.drop_table('sync_schedules')
    op.drop_index('ix_sync_locks_expires_at', table_name='sync_locks')
    op.drop_table('sync_locks')
    op.drop_index('ix_sync_runs_school_status', table_name='sync_runs')
    op.drop_index('ix_sync_runs_scope_started', table_name='sync_runs')
    op.drop_table('sync_runs')
    op.drop_table('teacher_sections')
    op.drop_table('student_sections')
    for table in reversed(ROSTER_TABLES):
        op.drop_index(f'ix_{table}_school_id', table_name=table)
        op.drop_table(table)
    op.drop_table('schools')
    op.drop_table('districts')
    for enum_name in ('runstatus', 'triggersource', 'syncmode'):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
