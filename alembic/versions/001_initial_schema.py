"""Initial schema: users, projects, members, tasks and task sub-resources.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = postgresql.ENUM('admin', 'manager', 'member', name='userrole', create_type=False)
project_status = postgresql.ENUM(
    'planning', 'active', 'on-hold', 'completed', 'cancelled', name='projectstatus', create_type=False
)
priority = postgresql.ENUM('low', 'medium', 'high', 'urgent', name='priority', create_type=False)
project_role = postgresql.ENUM('owner', 'manager', 'member', 'viewer', name='projectrole', create_type=False)
task_status = postgresql.ENUM(
    'todo', 'in-progress', 'review', 'completed', 'cancelled', name='taskstatus', create_type=False
)

ENUMS = (user_role, project_status, priority, project_role, task_status)


def _uuid():
    return postgresql.UUID(as_uuid=True)


def upgrade() -> None:
    bind = op.get_bind()
    for enum in ENUMS:
        enum.create(bind, checkfirst=True)

    op.create_table(
        'users',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('first_name', sa.String(50), nullable=False),
        sa.Column('last_name', sa.String(50), nullable=False),
        sa.Column('email', sa.String(100), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('role', user_role, nullable=False, server_default='member'),
        sa.Column('avatar', sa.String(255)),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('last_login', sa.DateTime),
        sa.Column('preferences', postgresql.JSONB),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_is_active', 'users', ['is_active'])
    op.create_index('ix_users_created_at', 'users', ['created_at'])

    op.create_table(
        'projects',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('status', project_status, nullable=False, server_default='planning'),
        sa.Column('priority', priority, nullable=False, server_default='medium'),
        sa.Column('start_date', sa.DateTime),
        sa.Column('end_date', sa.DateTime),
        sa.Column('progress', sa.Integer, nullable=False, server_default='0'),
        sa.Column('budget', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('owner_id', _uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('settings', postgresql.JSONB),
        sa.Column('metrics', postgresql.JSONB),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('progress >= 0 AND progress <= 100', name='valid_progress'),
        sa.CheckConstraint('budget >= 0', name='non_negative_budget'),
        sa.CheckConstraint(
            'start_date IS NULL OR end_date IS NULL OR end_date > start_date',
            name='valid_project_dates'
        ),
    )
    op.create_index('ix_projects_owner_id', 'projects', ['owner_id'])
    op.create_index('ix_projects_status', 'projects', ['status'])
    op.create_index('ix_projects_priority', 'projects', ['priority'])
    op.create_index('ix_projects_created_at', 'projects', ['created_at'])

    op.create_table(
        'project_members',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('project_id', _uuid(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', _uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', project_role, nullable=False, server_default='member'),
        sa.Column('joined_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('project_id', 'user_id', name='unique_project_user'),
    )
    op.create_index('ix_project_members_project_id', 'project_members', ['project_id'])
    op.create_index('ix_project_members_user_id', 'project_members', ['user_id'])
    op.create_index('ix_project_members_role', 'project_members', ['role'])

    op.create_table(
        'tasks',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('status', task_status, nullable=False, server_default='todo'),
        sa.Column('priority', priority, nullable=False, server_default='medium'),
        sa.Column('project_id', _uuid(), sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('assigned_to_id', _uuid(), sa.ForeignKey('users.id')),
        sa.Column('created_by_id', _uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('due_date', sa.DateTime),
        sa.Column('estimated_hours', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('actual_hours', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('labels', postgresql.JSONB),
        sa.Column('position', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('estimated_hours >= 0', name='non_negative_estimate'),
        sa.CheckConstraint('actual_hours >= 0', name='non_negative_actual'),
    )
    op.create_index('ix_tasks_project_id', 'tasks', ['project_id'])
    op.create_index('ix_tasks_assigned_to_id', 'tasks', ['assigned_to_id'])
    op.create_index('ix_tasks_created_by_id', 'tasks', ['created_by_id'])
    op.create_index('ix_tasks_status', 'tasks', ['status'])
    op.create_index('ix_tasks_priority', 'tasks', ['priority'])
    op.create_index('ix_tasks_due_date', 'tasks', ['due_date'])
    op.create_index('ix_tasks_created_at', 'tasks', ['created_at'])

    op.create_table(
        'task_dependencies',
        sa.Column('task_id', _uuid(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('depends_on_id', _uuid(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('task_id != depends_on_id', name='no_self_dependency'),
    )
    op.create_index('idx_task_dependencies_depends_on', 'task_dependencies', ['depends_on_id'])

    op.create_table(
        'task_comments',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('task_id', _uuid(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', _uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_task_comments_task_id', 'task_comments', ['task_id'])

    op.create_table(
        'task_time_entries',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('task_id', _uuid(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', _uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('start_time', sa.DateTime, nullable=False),
        sa.Column('end_time', sa.DateTime, nullable=False),
        sa.Column('duration', sa.Numeric(10, 4), nullable=False),
        sa.Column('description', sa.Text, nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('end_time > start_time', name='valid_time_range'),
    )
    op.create_index('ix_task_time_entries_task_id', 'task_time_entries', ['task_id'])

    op.create_table(
        'task_subtasks',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('task_id', _uuid(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=False, server_default=''),
        sa.Column('completed', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_task_subtasks_task_id', 'task_subtasks', ['task_id'])

    op.create_table(
        'task_activity',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('task_id', _uuid(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', _uuid(), sa.ForeignKey('users.id')),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('details', postgresql.JSONB),
        sa.Column('timestamp', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_task_activity_task_id', 'task_activity', ['task_id'])

    op.create_table(
        'attachments',
        sa.Column('id', _uuid(), primary_key=True),
        sa.Column('filename', sa.String(255), nullable=False),
        sa.Column('original_name', sa.String(255), nullable=False),
        sa.Column('path', sa.String(1024), nullable=False),
        sa.Column('size', sa.Integer, nullable=False),
        sa.Column('mime_type', sa.String(255), nullable=False),
        sa.Column('task_id', _uuid(), sa.ForeignKey('tasks.id', ondelete='CASCADE')),
        sa.Column('project_id', _uuid(), sa.ForeignKey('projects.id', ondelete='CASCADE')),
        sa.Column('uploaded_by_id', _uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('uploaded_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint(
            '(task_id IS NOT NULL AND project_id IS NULL) OR (task_id IS NULL AND project_id IS NOT NULL)',
            name='single_attachment_owner'
        ),
    )
    op.create_index('ix_attachments_filename', 'attachments', ['filename'], unique=True)
    op.create_index('ix_attachments_task_id', 'attachments', ['task_id'])
    op.create_index('ix_attachments_project_id', 'attachments', ['project_id'])


def downgrade() -> None:
    # Drop tables in reverse dependency order
    op.drop_table('attachments')
    op.drop_table('task_activity')
    op.drop_table('task_subtasks')
    op.drop_table('task_time_entries')
    op.drop_table('task_comments')
    op.drop_table('task_dependencies')
    op.drop_table('tasks')
    op.drop_table('project_members')
    op.drop_table('projects')
    op.drop_table('users')

    # Drop enums
    bind = op.get_bind()
    for enum in reversed(ENUMS):
        enum.drop(bind, checkfirst=True)
