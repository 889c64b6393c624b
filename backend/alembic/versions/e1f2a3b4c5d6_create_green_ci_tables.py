"""Create Green CI tables

Revision ID: e1f2a3b4c5d6
Revises:
Create Date: 2026-10-19 12:00:00.000000

Projects, scored pipeline metrics, optimizations, agents and agent runs.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'e1f2a3b4c5d6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'projects',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('gitlab_project_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('settings', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_projects_gitlab_project_id', 'projects', ['gitlab_project_id'], unique=True)

    op.create_table(
        'agents',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='idle'),
        sa.Column('version', sa.String(20), nullable=True),
        sa.Column('last_run', sa.DateTime(), nullable=True),
        sa.Column('total_analyses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_mrs_created', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('avg_response_time', sa.Float(), nullable=False, server_default='0'),
        sa.Column('current_job_id', sa.String(32), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_agents_name', 'agents', ['name'], unique=True)

    op.create_table(
        'pipeline_metrics',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('project_id', sa.Integer(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('pipeline_id', sa.String(64), nullable=False),
        sa.Column('timestamp', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('job_count', sa.Integer(), nullable=False),
        sa.Column('energy_kwh', sa.Float(), nullable=False),
        sa.Column('co2_kg', sa.Float(), nullable=False),
        sa.Column('eco_score', sa.Integer(), nullable=False),
        sa.Column('grade', sa.String(1), nullable=False),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('eco_score >= 0 AND eco_score <= 100', name='ck_pipeline_metrics_eco_score'),
    )
    op.create_index('ix_pipeline_metrics_project_id', 'pipeline_metrics', ['project_id'])
    op.create_index('ix_pipeline_metrics_pipeline_id', 'pipeline_metrics', ['pipeline_id'])
    op.create_index('ix_pipeline_metrics_timestamp', 'pipeline_metrics', ['timestamp'])

    op.create_table(
        'optimizations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('project_id', sa.Integer(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(300), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('type', sa.String(50), nullable=False, server_default='general'),
        sa.Column('impact', sa.String(10), nullable=False, server_default='medium'),
        sa.Column('estimated_savings_kg', sa.Float(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('mr_url', sa.String(500), nullable=True),
        sa.Column('agent_id', sa.Integer(), sa.ForeignKey('agents.id', ondelete='SET NULL'), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('applied_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_optimizations_project_id', 'optimizations', ['project_id'])
    op.create_index('ix_optimizations_status', 'optimizations', ['status'])

    op.create_table(
        'agent_runs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('job_id', sa.String(32), nullable=False),
        sa.Column('agent_id', sa.Integer(), sa.ForeignKey('agents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='running'),
        sa.Column('trigger', sa.String(20), nullable=False, server_default='manual'),
        sa.Column('params', postgresql.JSONB(), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('analyses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('mrs_created', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('response_time_ms', sa.Float(), nullable=True),
        sa.Column('started_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_agent_runs_job_id', 'agent_runs', ['job_id'], unique=True)
    op.create_index('ix_agent_runs_agent_id', 'agent_runs', ['agent_id'])


def downgrade() -> None:
    op.drop_index('ix_agent_runs_agent_id', table_name='agent_runs')
    op.drop_index('ix_agent_runs_job_id', table_name='agent_runs')
    op.drop_table('agent_runs')
    op.drop_index('ix_optimizations_status', table_name='optimizations')
    op.drop_index('ix_optimizations_project_id', table_name='optimizations')
    op.drop_table('optimizations')
    op.drop_index('ix_pipeline_metrics_timestamp', table_name='pipeline_metrics')
    op.drop_index('ix_pipeline_metrics_pipeline_id', table_name='pipeline_metrics')
    op.drop_index('ix_pipeline_metrics_project_id', table_name='pipeline_metrics')
    op.drop_table('pipeline_metrics')
    op.drop_index('ix_agents_name', table_name='agents')
    op.drop_table('agents')
    op.drop_index('ix_projects_gitlab_project_id', table_name='projects')
    op.drop_table('projects')
