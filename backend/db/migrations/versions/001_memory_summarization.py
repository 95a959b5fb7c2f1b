"""Memory summarization schema

Creates the tenant, subscription, memory, lineage and scheduled job tables,
and enables Row-Level Security on every table that carries organization_id.

Revision ID: 001_memory_summarization
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import text
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector

# revision identifiers, used by Alembic.
revision: str = '001_memory_summarization'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIMENSIONS = 1536

# Tables that have organization_id column and need RLS
MULTI_TENANT_TABLES = [
    'organization_subscriptions',
    'memories',
    'memory_relationships',
    'scheduled_jobs',
]


def upgrade() -> None:
    conn = op.get_bind()
    conn.execute(text('CREATE EXTENSION IF NOT EXISTS vector'))

    op.create_table(
        'organizations',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    # Global plan catalog (not tenant data)
    op.create_table(
        'subscription_plans',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('tier', sa.String(32), nullable=True),
        sa.Column('features', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'organization_subscriptions',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('subscription_plan_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['subscription_plan_id'], ['subscription_plans.id'], )
    )
    op.create_index(
        'ix_organization_subscriptions_org_status',
        'organization_subscriptions',
        ['organization_id', 'status'],
    )

    op.create_table(
        'memories',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('content_embedding', Vector(EMBEDDING_DIMENSIONS), nullable=True),
        sa.Column('memory_type', sa.String(30), nullable=True),
        sa.Column('importance_score', sa.Float(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('summary_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE')
    )
    op.create_index('ix_memories_org_user', 'memories', ['organization_id', 'user_id'])
    op.create_index('ix_memories_org_created', 'memories', ['organization_id', 'created_at'])
    op.create_index('ix_memories_summary_id', 'memories', ['summary_id'])

    op.create_table(
        'memory_relationships',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('from_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('to_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('relationship_type', sa.String(30), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['from_id'], ['memories.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['to_id'], ['memories.id'], ondelete='CASCADE')
    )
    op.create_index('ix_memory_relationships_org_from', 'memory_relationships', ['organization_id', 'from_id'])
    op.create_index('ix_memory_relationships_org_to', 'memory_relationships', ['organization_id', 'to_id'])

    op.create_table(
        'scheduled_jobs',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('job_type', sa.String(50), nullable=False),
        sa.Column('interval_hours', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('config', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('last_run_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE')
    )
    op.create_index('ix_scheduled_jobs_type_status', 'scheduled_jobs', ['job_type', 'status'])
    op.create_index('ix_scheduled_jobs_org', 'scheduled_jobs', ['organization_id'])

    for table in MULTI_TENANT_TABLES:
        # FORCE ensures RLS applies even to table owner
        conn.execute(text(f'ALTER TABLE {table} ENABLE ROW LEVEL SECURITY'))
        conn.execute(text(f'ALTER TABLE {table} FORCE ROW LEVEL SECURITY'))
        conn.execute(text(f'DROP POLICY IF EXISTS org_isolation ON {table}'))
        # An unset session variable matches no UUID, so queries return no rows
        conn.execute(text(f'''
            CREATE POLICY org_isolation ON {table}
            FOR ALL
            USING (
                organization_id::text = COALESCE(
                    NULLIF(current_setting('app.current_org_id', true), ''),
                    '00000000-0000-0000-0000-000000000000'
                )
            )
        '''))


def downgrade() -> None:
    conn = op.get_bind()
    for table in MULTI_TENANT_TABLES:
        conn.execute(text(f'DROP POLICY IF EXISTS org_isolation ON {table}'))

    op.drop_table('scheduled_jobs')
    op.drop_table('memory_relationships')
    op.drop_table('memories')
    op.drop_table('organization_subscriptions')
    op.drop_table('subscription_plans')
    op.drop_table('organizations')
    # Don't drop the vector extension as other things might use it
