"""Archival lifecycle schema

Revision ID: 001_archival_lifecycle
Revises:
Create Date: 2026-10-19

Projects, memberships, story content and export requests with durable
progress columns.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_archival_lifecycle'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )

    op.create_table(
        'projects',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_projects_status_updated_at', 'projects', ['status', 'updated_at'])

    op.create_table(
        'project_roles',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('project_id', sa.Uuid, sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('role', sa.String(32), nullable=False, server_default='facilitator'),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_project_roles_project_id', 'project_roles', ['project_id'])
    op.create_index('ix_project_roles_user_id', 'project_roles', ['user_id'])

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('project_id', sa.Uuid, sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('status', sa.String(32), nullable=False, server_default='active'),
        sa.Column('current_period_end', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_subscriptions_project_id', 'subscriptions', ['project_id'])

    op.create_table(
        'invitations',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('project_id', sa.Uuid, sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('role', sa.String(32), nullable=False, server_default='facilitator'),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_invitations_project_id', 'invitations', ['project_id'])

    op.create_table(
        'chapters',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('order_index', sa.Integer, nullable=False, server_default='0'),
    )

    op.create_table(
        'stories',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('project_id', sa.Uuid, sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('chapter_id', sa.Uuid, sa.ForeignKey('chapters.id'), nullable=True),
        sa.Column('title', sa.String(255), nullable=True),
        sa.Column('transcript', sa.Text, nullable=True),
        sa.Column('audio_uri', sa.String(512), nullable=True),
        sa.Column('photo_uri', sa.String(512), nullable=True),
        sa.Column('duration', sa.Float, nullable=True),
        sa.Column('recording_device', sa.String(255), nullable=True),
        sa.Column('location', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_stories_project_id', 'stories', ['project_id'])
    op.create_index('ix_stories_chapter_id', 'stories', ['chapter_id'])
    op.create_index('ix_stories_created_at', 'stories', ['created_at'])

    op.create_table(
        'interactions',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('story_id', sa.Uuid, sa.ForeignKey('stories.id'), nullable=False),
        sa.Column('facilitator_id', sa.Uuid, sa.ForeignKey('users.id'), nullable=True),
        sa.Column('type', sa.String(32), nullable=False, server_default='comment'),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_interactions_story_id', 'interactions', ['story_id'])
    op.create_index('ix_interactions_created_at', 'interactions', ['created_at'])

    op.create_table(
        'chapter_summaries',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('project_id', sa.Uuid, sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('chapter_id', sa.Uuid, sa.ForeignKey('chapters.id'), nullable=True),
        sa.Column('summary', sa.Text, nullable=False),
        sa.Column('story_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_chapter_summaries_project_id', 'chapter_summaries', ['project_id'])
    op.create_index('ix_chapter_summaries_created_at', 'chapter_summaries', ['created_at'])

    op.create_table(
        'export_requests',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('project_id', sa.Uuid, sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('facilitator_id', sa.Uuid, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='queued'),
        sa.Column('format', sa.String(20), nullable=False, server_default='archive'),
        sa.Column('options', sa.JSON, nullable=True),
        # Artifact
        sa.Column('storage_key', sa.String(512), nullable=True),
        sa.Column('download_url', sa.String(512), nullable=True),
        sa.Column('expires_at', sa.DateTime, nullable=True),
        sa.Column('size_bytes', sa.BigInteger, nullable=True),
        # Durable progress
        sa.Column('progress', sa.Integer, nullable=False, server_default='0'),
        sa.Column('current_step', sa.String(64), nullable=True),
        sa.Column('current_step_index', sa.Integer, nullable=False, server_default='0'),
        sa.Column('total_steps', sa.Integer, nullable=False, server_default='7'),
        sa.Column('started_at', sa.DateTime, nullable=True),
        sa.Column('completed_at', sa.DateTime, nullable=True),
        sa.Column('error', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_export_requests_project_id', 'export_requests', ['project_id'])
    op.create_index('ix_export_requests_facilitator_id', 'export_requests', ['facilitator_id'])
    op.create_index('ix_export_requests_created_at', 'export_requests', ['created_at'])
    op.create_index(
        'ix_export_requests_guard',
        'export_requests',
        ['project_id', 'facilitator_id', 'status', 'created_at'],
    )


def downgrade() -> None:
    op.drop_table('export_requests')
    op.drop_table('chapter_summaries')
    op.drop_table('interactions')
    op.drop_table('stories')
    op.drop_table('chapters')
    op.drop_table('invitations')
    op.drop_table('subscriptions')
    op.drop_table('project_roles')
    op.drop_table('projects')
    op.drop_table('users')
