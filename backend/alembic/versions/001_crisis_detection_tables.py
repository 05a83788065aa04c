"""Crisis detection tables

Revision ID: 001_crisis_detection
Revises:
Create Date: 2026-10-14

Creates:
- crisis_scores (append-only score timeseries)
- crisis_interventions (one open row per couple + type)
- cooling_off_periods (one active row per couple)
- safety_checks

couples, check_ins, couple_messages and conflicts belong to the platform
schema and must already exist.
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_crisis_detection'
down_revision = None
branch_labels = None
depends_on = None


SEVERITIES = ('low', 'moderate', 'high', 'critical')
INTERVENTION_TYPES = ('cooling_off', 'emergency_therapy', 'crisis_hotline', 'ai_session', 'safety_check')
INTERVENTION_ACTIONS = ('acknowledged', 'accepted', 'declined', 'ignored')
COOLING_OFF_STATUSES = ('active', 'completed', 'cancelled')
SAFETY_CHECK_TYPES = ('disengagement', 'sustained_red_zone', 'high_risk_pattern')


def _enum(values: tuple[str, ...], name: str) -> sa.Enum:
    # Stored as VARCHAR + CHECK, same on SQLite and PostgreSQL
    return sa.Enum(*values, name=name, native_enum=False, length=32)


def upgrade() -> None:
    # ==========================================================================
    # Crisis scores
    # ==========================================================================
    op.create_table(
        'crisis_scores',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('couple_id', sa.Uuid(), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('severity', _enum(SEVERITIES, 'severity'), nullable=False),
        sa.Column('red_zone_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('high_risk_messages', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('gottman_violations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('disengagement_hours', sa.Float(), nullable=False, server_default='0'),
        sa.Column('conflict_frequency', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('factors', sa.JSON(), nullable=True),
        sa.Column('calculated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.CheckConstraint('score >= 0 AND score <= 100', name='ck_crisis_scores_score_range'),
        sa.ForeignKeyConstraint(['couple_id'], ['couples.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_crisis_scores_couple_calculated', 'crisis_scores', ['couple_id', 'calculated_at'], unique=False)

    # ==========================================================================
    # Crisis interventions
    # ==========================================================================
    op.create_table(
        'crisis_interventions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('couple_id', sa.Uuid(), nullable=False),
        sa.Column('crisis_score_id', sa.Uuid(), nullable=True),
        sa.Column('intervention_type', _enum(INTERVENTION_TYPES, 'interventiontype'), nullable=False),
        sa.Column('severity', _enum(SEVERITIES, 'severity'), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('action_required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('triggered_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('action_taken', _enum(INTERVENTION_ACTIONS, 'interventionaction'), nullable=True),
        sa.Column('acknowledged_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['couple_id'], ['couples.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['crisis_score_id'], ['crisis_scores.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_crisis_interventions_couple_triggered', 'crisis_interventions', ['couple_id', 'triggered_at'], unique=False)
    # Idempotency guard: one unacknowledged intervention per couple and type
    op.create_index(
        'uq_crisis_interventions_open_type',
        'crisis_interventions',
        ['couple_id', 'intervention_type'],
        unique=True,
        sqlite_where=sa.text('acknowledged_at IS NULL'),
        postgresql_where=sa.text('acknowledged_at IS NULL'),
    )

    # ==========================================================================
    # Cooling-off periods
    # ==========================================================================
    op.create_table(
        'cooling_off_periods',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('couple_id', sa.Uuid(), nullable=False),
        sa.Column('initiated_by', sa.Uuid(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False, server_default=''),
        sa.Column('duration_hours', sa.Integer(), nullable=False, server_default='24'),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', _enum(COOLING_OFF_STATUSES, 'coolingoffstatus'), nullable=False, server_default='active'),
        sa.Column('early_ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('early_end_reason', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['couple_id'], ['couples.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_cooling_off_couple_status_ends', 'cooling_off_periods', ['couple_id', 'status', 'ends_at'], unique=False)
    op.create_index(
        'uq_cooling_off_one_active',
        'cooling_off_periods',
        ['couple_id'],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    # ==========================================================================
    # Safety checks
    # ==========================================================================
    op.create_table(
        'safety_checks',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('couple_id', sa.Uuid(), nullable=False),
        sa.Column('target_user_id', sa.Uuid(), nullable=False),
        sa.Column('check_type', _enum(SAFETY_CHECK_TYPES, 'safetychecktype'), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('response', sa.Text(), nullable=True),
        sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('requires_escalation', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['couple_id'], ['couples.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_safety_checks_target_created', 'safety_checks', ['target_user_id', 'created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_safety_checks_target_created', table_name='safety_checks')
    op.drop_table('safety_checks')

    op.drop_index('uq_cooling_off_one_active', table_name='cooling_off_periods')
    op.drop_index('ix_cooling_off_couple_status_ends', table_name='cooling_off_periods')
    op.drop_table('cooling_off_periods')

    op.drop_index('uq_crisis_interventions_open_type', table_name='crisis_interventions')
    op.drop_index('ix_crisis_interventions_couple_triggered', table_name='crisis_interventions')
    op.drop_table('crisis_interventions')

    op.drop_index('ix_crisis_scores_couple_calculated', table_name='crisis_scores')
    op.drop_table('crisis_scores')
