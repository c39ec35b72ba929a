"""Initial schema - curriculum, mastery, study sessions, jobs, audit log

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # Curriculum reference data
    op.create_table(
        'curriculum_units',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('code', sa.String(50), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'skills',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('unit_id', sa.Uuid(), sa.ForeignKey('curriculum_units.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('exam_weight', sa.Float(), nullable=False, default=0.0),
        sa.Column('min_practice_reps', sa.Integer(), nullable=False, default=3),
        sa.Column('min_timed_proofs', sa.Integer(), nullable=False, default=2),
        sa.Column('is_core', sa.Boolean(), nullable=False, default=False),
        *_timestamps(),
    )

    op.create_table(
        'outline_topics',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('unit_id', sa.Uuid(), sa.ForeignKey('curriculum_units.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('topic_number', sa.String(20), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'skill_outline_map',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('skill_id', sa.Uuid(), sa.ForeignKey('skills.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('topic_id', sa.Uuid(), sa.ForeignKey('outline_topics.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('coverage_strength', sa.Float(), nullable=False, default=1.0),
        sa.UniqueConstraint('skill_id', 'topic_id', name='uq_skill_outline_map'),
    )

    op.create_table(
        'lecture_chunks',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('unit_id', sa.Uuid(), sa.ForeignKey('curriculum_units.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('lecture_title', sa.String(500), nullable=False),
        sa.Column('chunk_index', sa.Integer(), nullable=False, default=0),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('is_approved', sa.Boolean(), nullable=False, default=False),
        *_timestamps(),
    )

    op.create_table(
        'lecture_skill_map',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('chunk_id', sa.Uuid(), sa.ForeignKey('lecture_chunks.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('skill_id', sa.Uuid(), sa.ForeignKey('skills.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('confidence', sa.Float(), nullable=False, default=1.0),
        sa.UniqueConstraint('chunk_id', 'skill_id', name='uq_lecture_skill_map'),
    )

    op.create_table(
        'authorities',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('authority_type', sa.String(30), nullable=False, default='case'),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('citation', sa.String(255), nullable=False),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('is_verified', sa.Boolean(), nullable=False, default=False),
        sa.Column('skill_ids', sa.JSON(), nullable=False),
        sa.Column('unit_ids', sa.JSON(), nullable=False),
        *_timestamps(),
    )

    # Mastery
    op.create_table(
        'mastery_states',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('skill_id', sa.Uuid(), sa.ForeignKey('skills.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('p_mastery', sa.Float(), nullable=False, default=0.0),
        sa.Column('stability', sa.Float(), nullable=False, default=1.0),
        sa.Column('attempt_count', sa.Integer(), nullable=False, default=0),
        sa.Column('correct_count', sa.Integer(), nullable=False, default=0),
        sa.Column('consecutive_wrong', sa.Integer(), nullable=False, default=0),
        sa.Column('easiness_factor', sa.Float(), nullable=False, default=2.5),
        sa.Column('interval_days', sa.Integer(), nullable=False, default=1),
        sa.Column('next_review_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_practiced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_verified', sa.Boolean(), nullable=False, default=False),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, default=1),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'skill_id', name='uq_mastery_states_user_skill'),
    )
    op.create_index('ix_mastery_states_user_review', 'mastery_states', ['user_id', 'next_review_date'])

    op.create_table(
        'attempts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('item_id', sa.String(100), nullable=False),
        sa.Column('score', sa.Float(), nullable=False),
        sa.Column('format', sa.String(30), nullable=False),
        sa.Column('mode', sa.String(30), nullable=False),
        sa.Column('elapsed_seconds', sa.Integer(), nullable=True),
        sa.Column('skill_coverage', sa.JSON(), nullable=False),
        sa.Column('error_tags', sa.JSON(), nullable=False),
        sa.Column('rubric_breakdown', sa.JSON(), nullable=False),
        sa.Column('response_text', sa.Text(), nullable=True),
        sa.Column('graded_by_fallback', sa.Boolean(), nullable=False, default=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True),
    )
    op.create_index('ix_attempts_user_time', 'attempts', ['user_id', 'created_at'])

    op.create_table(
        'skill_error_signatures',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('skill_id', sa.Uuid(), sa.ForeignKey('skills.id', ondelete='CASCADE'), nullable=False),
        sa.Column('error_tag', sa.String(100), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False, default=0),
        sa.Column('last_seen_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'skill_id', 'error_tag', name='uq_skill_error_signature'),
    )

    op.create_table(
        'gate_verifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('skill_id', sa.Uuid(), sa.ForeignKey('skills.id', ondelete='CASCADE'), nullable=False),
        sa.Column('p_mastery', sa.Float(), nullable=False),
        sa.Column('pass_count', sa.Integer(), nullable=False),
        sa.Column('hours_between_passes', sa.Float(), nullable=False),
        sa.Column('triggering_attempt_id', sa.Uuid(), sa.ForeignKey('attempts.id', ondelete='SET NULL'), nullable=True),
        sa.Column('error_tags_cleared', sa.JSON(), nullable=False),
        sa.Column('verified_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('user_id', 'skill_id', name='uq_gate_verifications_user_skill'),
    )

    # Study sessions and generated assets
    op.create_table(
        'study_sessions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('session_date', sa.Date(), nullable=False),
        sa.Column('target_skill_ids', sa.JSON(), nullable=False),
        sa.Column('estimated_minutes', sa.Integer(), nullable=False, default=30),
        sa.Column('status', sa.String(20), nullable=False, default='QUEUED'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_study_sessions_user_date', 'study_sessions', ['user_id', 'session_date'])

    op.create_table(
        'study_assets',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('session_id', sa.Uuid(), sa.ForeignKey('study_sessions.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('asset_type', sa.String(20), nullable=False),
        sa.Column('step_order', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, default='GENERATING'),
        sa.Column('content', sa.JSON(), nullable=True),
        sa.Column('grounding_refs', sa.JSON(), nullable=False),
        sa.Column('activity_types', sa.JSON(), nullable=False),
        sa.Column('generation_error', sa.Text(), nullable=True),
        sa.Column('generation_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('generation_completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('session_id', 'asset_type', name='uq_study_assets_session_type'),
    )

    op.create_table(
        'missing_authority_log',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('claim', sa.Text(), nullable=False),
        sa.Column('skill_ids', sa.JSON(), nullable=False),
        sa.Column('error_tag', sa.String(100), nullable=False),
        sa.Column('session_id', sa.Uuid(), nullable=True, index=True),
        sa.Column('asset_id', sa.Uuid(), nullable=True, index=True),
        sa.Column('detail', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'weekly_reports',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('week_start', sa.Date(), nullable=False),
        sa.Column('report', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('user_id', 'week_start', name='uq_weekly_reports_user_week'),
    )

    # Job queue
    op.create_table(
        'background_jobs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('job_type', sa.String(50), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False, default=5),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, default='PENDING'),
        sa.Column('attempts', sa.Integer(), nullable=False, default=0),
        sa.Column('scheduled_for', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('result', sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_background_jobs_claim', 'background_jobs', ['status', 'priority', 'scheduled_for'])

    # Audit log
    op.create_table(
        'event_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('event_type', sa.String(100), nullable=False, index=True),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('user_id', sa.Uuid(), nullable=True, index=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True),
    )
    op.create_index('ix_event_logs_entity', 'event_logs', ['entity_type', 'entity_id'])
    op.create_index('ix_event_logs_user_time', 'event_logs', ['user_id', 'created_at'])


def downgrade() -> None:
    op.drop_table('event_logs')
    op.drop_table('background_jobs')
    op.drop_table('weekly_reports')
    op.drop_table('missing_authority_log')
    op.drop_table('study_assets')
    op.drop_table('study_sessions')
    op.drop_table('gate_verifications')
    op.drop_table('skill_error_signatures')
    op.drop_table('attempts')
    op.drop_table('mastery_states')
    op.drop_table('authorities')
    op.drop_table('lecture_skill_map')
    op.drop_table('lecture_chunks')
    op.drop_table('skill_outline_map')
    op.drop_table('outline_topics')
    op.drop_table('skills')
    op.drop_table('curriculum_units')
