"""Initial schema: projects, rounds, investors, investments, investor_scrape_cache

Revision ID: 20261017_initial_schema
Revises:
Create Date: 2026-10-17

Rounds are deduplicated on (project_id, type, date, amount) at the application
level; idx_rounds_identity makes that lookup an index probe. idx_rounds_latest
serves the "latest round" query that anchors every gap scan.

Investments carry a hard unique constraint on (round_id, investor_id).
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '20261017_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'projects',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('logo', sa.String(), nullable=True),
        sa.Column('logo_alt_text', sa.String(), nullable=True),
        sa.Column('category', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('links', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('status', sa.String(), nullable=False, server_default='APPROVED'),
        sa.Column('meta_title', sa.String(), nullable=True),
        sa.Column('meta_image', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_projects_slug', 'projects', ['slug'], unique=True)
    op.create_index('ix_projects_name', 'projects', ['name'], unique=False)

    op.create_table(
        'rounds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('date', sa.DateTime(), nullable=False),
        sa.Column('amount', sa.String(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_rounds_project_id', 'rounds', ['project_id'], unique=False)
    op.create_index('ix_rounds_created_at', 'rounds', ['created_at'], unique=False)
    op.create_index('idx_rounds_identity', 'rounds', ['project_id', 'type', 'date', 'amount'], unique=False)
    op.create_index('idx_rounds_latest', 'rounds', ['date', 'created_at'], unique=False)

    op.create_table(
        'investors',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('logo', sa.String(), nullable=True),
        sa.Column('logo_alt_text', sa.String(), nullable=True),
        sa.Column('links', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('type', sa.String(), nullable=False, server_default='Other Investor'),
        sa.Column('status', sa.String(), nullable=False, server_default='APPROVED'),
        sa.Column('meta_title', sa.String(), nullable=True),
        sa.Column('meta_description', sa.String(), nullable=True),
        sa.Column('meta_image', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_investors_slug', 'investors', ['slug'], unique=True)

    op.create_table(
        'investments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('round_id', sa.Integer(), nullable=False),
        sa.Column('investor_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.String(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(), nullable=False, server_default='USD'),
        sa.Column('invested_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['round_id'], ['rounds.id']),
        sa.ForeignKeyConstraint(['investor_id'], ['investors.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('round_id', 'investor_id', name='uq_investments_round_investor')
    )
    op.create_index('ix_investments_round_id', 'investments', ['round_id'], unique=False)
    op.create_index('ix_investments_investor_id', 'investments', ['investor_id'], unique=False)

    # Scraped investor profiles, reused until expires_at
    op.create_table(
        'investor_scrape_cache',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('scraped_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_investor_scrape_cache_slug', 'investor_scrape_cache', ['slug'], unique=True)
    op.create_index('ix_investor_scrape_cache_expires_at', 'investor_scrape_cache', ['expires_at'], unique=False)


def downgrade():
    op.drop_index('ix_investor_scrape_cache_expires_at', table_name='investor_scrape_cache')
    op.drop_index('ix_investor_scrape_cache_slug', table_name='investor_scrape_cache')
    op.drop_table('investor_scrape_cache')
    op.drop_index('ix_investments_investor_id', table_name='investments')
    op.drop_index('ix_investments_round_id', table_name='investments')
    op.drop_table('investments')
    op.drop_index('ix_investors_slug', table_name='investors')
    op.drop_table('investors')
    op.drop_index('idx_rounds_latest', table_name='rounds')
    op.drop_index('idx_rounds_identity', table_name='rounds')
    op.drop_index('ix_rounds_created_at', table_name='rounds')
    op.drop_index('ix_rounds_project_id', table_name='rounds')
    op.drop_table('rounds')
    op.drop_index('ix_projects_name', table_name='projects')
    op.drop_index('ix_projects_slug', table_name='projects')
    op.drop_table('projects')
