"""initial_schema

Revision ID: 3f1c9a2b7d10
Revises:
Create Date: 2026-10-19 09:12:41.503118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1c9a2b7d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BUILD_STATES = ('created', 'queued', 'started', 'passed', 'failed', 'errored', 'canceled')

build_state = postgresql.ENUM(*BUILD_STATES, name='build_state', create_type=False)
owner_type = postgresql.ENUM('user', 'organization', name='ownertype', create_type=False)


def _timestamp(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), **kwargs)


def upgrade() -> None:
    build_state.create(op.get_bind(), checkfirst=True)
    owner_type.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('login', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('github_id', sa.Integer(), nullable=True),
        sa.Column('github_oauth_token', sa.String(255), nullable=True),
        sa.Column('is_syncing', sa.Boolean(), nullable=False),
        _timestamp('synced_at', nullable=True),
        _timestamp('created_at', server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_users_login', 'users', ['login'], unique=True)

    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('login', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('github_id', sa.Integer(), nullable=True),
        _timestamp('created_at', server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_organizations_login', 'organizations', ['login'], unique=True)

    op.create_table(
        'repositories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('owner_name', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('owner_type', owner_type, nullable=True),
        sa.Column('owner_id', sa.Integer(), nullable=True),
        sa.Column('github_id', sa.BigInteger(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('private', sa.Boolean(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('max_concurrent_jobs', sa.Integer(), nullable=True),
        sa.Column('last_build_id', sa.Integer(), nullable=True),
        sa.Column('last_build_number', sa.String(20), nullable=True),
        sa.Column('last_build_state', build_state, nullable=True),
        _timestamp('last_build_started_at', nullable=True),
        _timestamp('last_build_finished_at', nullable=True),
        sa.Column('last_build_duration', sa.Integer(), nullable=True),
        _timestamp('created_at', server_default=sa.func.now(), nullable=False),
        _timestamp('updated_at', server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('owner_name', 'name', name='uq_repository_owner_name_name'),
    )
    op.create_index('ix_repositories_owner_name', 'repositories', ['owner_name'])
    op.create_index('ix_repositories_active', 'repositories', ['active'])
    op.create_index(
        'ix_repositories_last_build_started_at', 'repositories', ['last_build_started_at']
    )

    op.create_table(
        'ssl_keys',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'repository_id',
            sa.Integer(),
            sa.ForeignKey('repositories.id', ondelete='CASCADE'),
            nullable=False,
            unique=True,
        ),
        sa.Column('public_key', sa.Text(), nullable=False),
        sa.Column('private_key', sa.Text(), nullable=False),
        _timestamp('created_at', server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'user_id',
            sa.Integer(),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'repository_id',
            sa.Integer(),
            sa.ForeignKey('repositories.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('admin', sa.Boolean(), nullable=False),
        sa.Column('push', sa.Boolean(), nullable=False),
        sa.Column('pull', sa.Boolean(), nullable=False),
        _timestamp('created_at', server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('user_id', 'repository_id', name='uq_permission_user_repository'),
    )
    op.create_index('ix_permissions_user_id', 'permissions', ['user_id'])
    op.create_index('ix_permissions_repository_id', 'permissions', ['repository_id'])

    op.create_table(
        'commits',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'repository_id',
            sa.Integer(),
            sa.ForeignKey('repositories.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('commit', sa.String(40), nullable=False),
        sa.Column('branch', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('compare_url', sa.String(500), nullable=True),
        sa.Column('author_name', sa.String(255), nullable=True),
        sa.Column('author_email', sa.String(255), nullable=True),
        _timestamp('committed_at', nullable=True),
        _timestamp('created_at', server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_commits_repository_id', 'commits', ['repository_id'])
    op.create_index('ix_commits_commit', 'commits', ['commit'])
    op.create_index('ix_commits_branch', 'commits', ['branch'])

    op.create_table(
        'requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'repository_id',
            sa.Integer(),
            sa.ForeignKey('repositories.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'commit_id',
            sa.Integer(),
            sa.ForeignKey('commits.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('event_type', sa.String(20), nullable=False),
        sa.Column('state', sa.String(20), nullable=False),
        sa.Column('result', sa.String(20), nullable=True),
        sa.Column('payload', postgresql.JSONB(), nullable=True),
        _timestamp('created_at', server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_requests_repository_id', 'requests', ['repository_id'])

    op.create_table(
        'builds',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'repository_id',
            sa.Integer(),
            sa.ForeignKey('repositories.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'commit_id',
            sa.Integer(),
            sa.ForeignKey('commits.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column(
            'request_id',
            sa.Integer(),
            sa.ForeignKey('requests.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('number', sa.String(20), nullable=False),
        sa.Column('event_type', sa.String(20), nullable=False),
        sa.Column('state', build_state, nullable=False),
        sa.Column('config', postgresql.JSONB(), nullable=True),
        _timestamp('started_at', nullable=True),
        _timestamp('finished_at', nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        _timestamp('created_at', server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_builds_repository_id', 'builds', ['repository_id'])
    op.create_index('ix_builds_state', 'builds', ['state'])

    op.create_table(
        'jobs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'build_id',
            sa.Integer(),
            sa.ForeignKey('builds.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'repository_id',
            sa.Integer(),
            sa.ForeignKey('repositories.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'commit_id',
            sa.Integer(),
            sa.ForeignKey('commits.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('number', sa.String(30), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('stage_number', sa.Integer(), nullable=False),
        sa.Column('allow_failure', sa.Boolean(), nullable=False),
        sa.Column('state', build_state, nullable=False),
        sa.Column('queue', sa.String(100), nullable=True),
        sa.Column('config', postgresql.JSONB(), nullable=True),
        sa.Column('worker', sa.String(255), nullable=True),
        _timestamp('queued_at', nullable=True),
        _timestamp('started_at', nullable=True),
        _timestamp('finished_at', nullable=True),
        _timestamp('created_at', server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_jobs_build_id', 'jobs', ['build_id'])
    op.create_index('ix_jobs_repository_id', 'jobs', ['repository_id'])
    op.create_index('ix_jobs_state', 'jobs', ['state'])
    # Partial index backing the enqueue selection
    op.create_index(
        'ix_jobs_waiting',
        'jobs',
        ['id'],
        postgresql_where=sa.text("queued_at IS NULL AND state IN ('created', 'queued')"),
    )


def downgrade() -> None:
    op.drop_table('jobs')
    op.drop_table('builds')
    op.drop_table('requests')
    op.drop_table('commits')
    op.drop_table('permissions')
    op.drop_table('ssl_keys')
    op.drop_table('repositories')
    op.drop_table('organizations')
    op.drop_table('users')
    owner_type.drop(op.get_bind(), checkfirst=True)
    build_state.drop(op.get_bind(), checkfirst=True)
