"""Create refresh pipeline tables

Revision ID: 5f2a9c1d7e3b
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5f2a9c1d7e3b'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'portfolios',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('benchmark_ticker', sa.String(20), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_portfolios_owner_id'), 'portfolios', ['owner_id'], unique=False)

    op.create_table(
        'asset_tickers',
        sa.Column('ticker', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('last_fetched_at', sa.DateTime(), nullable=True),
        sa.Column('last_fetch_error', sa.Text(), nullable=True),
        sa.Column('retry_after', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('ticker'),
    )
    op.create_index(op.f('ix_asset_tickers_status'), 'asset_tickers', ['status'], unique=False)
    op.create_index(op.f('ix_asset_tickers_last_fetched_at'), 'asset_tickers', ['last_fetched_at'], unique=False)

    op.create_table(
        'portfolio_positions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('portfolio_id', sa.Integer(), nullable=False),
        sa.Column('ticker', sa.String(20), nullable=False),
        sa.Column('quantity', sa.Numeric(20, 6), nullable=False),
        sa.Column('cost_basis', sa.Numeric(20, 6), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['portfolio_id'], ['portfolios.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['ticker'], ['asset_tickers.ticker']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('portfolio_id', 'ticker'),
        sa.CheckConstraint('quantity > 0', name='ck_portfolio_positions_quantity_positive'),
    )
    op.create_index(op.f('ix_portfolio_positions_portfolio_id'), 'portfolio_positions', ['portfolio_id'], unique=False)
    op.create_index(op.f('ix_portfolio_positions_ticker'), 'portfolio_positions', ['ticker'], unique=False)

    op.create_table(
        'asset_quotes',
        sa.Column('ticker', sa.String(20), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('last_price', sa.Numeric(20, 6), nullable=False),
        sa.Column('price_source', sa.String(50), nullable=False, server_default='yahoo_finance'),
        sa.Column('last_price_at', sa.DateTime(), nullable=False),
        sa.Column('fetched_at', sa.DateTime(), nullable=False),
        sa.Column('source_metadata', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['ticker'], ['asset_tickers.ticker']),
        sa.PrimaryKeyConstraint('ticker'),
    )

    op.create_table(
        'portfolio_metrics',
        sa.Column('portfolio_id', sa.Integer(), nullable=False),
        sa.Column('total_value', sa.Numeric(20, 6), nullable=False, server_default='0'),
        sa.Column('total_cost_basis', sa.Numeric(20, 6), nullable=False, server_default='0'),
        sa.Column('unrealized_gain', sa.Numeric(20, 6), nullable=False, server_default='0'),
        sa.Column('position_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('positions_missing_quotes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('as_of', sa.DateTime(), nullable=True),
        sa.Column('stale', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('stale_reason', sa.String(50), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['portfolio_id'], ['portfolios.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('portfolio_id'),
    )
    op.create_index(op.f('ix_portfolio_metrics_stale'), 'portfolio_metrics', ['stale'], unique=False)

    op.create_table(
        'reference_tickers',
        sa.Column('ticker', sa.String(20), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('exchange', sa.String(50), nullable=False),
        sa.Column('asset_type', sa.String(20), nullable=True),
        sa.Column('is_etf', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('source', sa.String(50), nullable=False, server_default='nasdaq_directory'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_seen_at', sa.DateTime(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('ticker'),
    )
    op.create_index(op.f('ix_reference_tickers_exchange'), 'reference_tickers', ['exchange'], unique=False)
    op.create_index(op.f('ix_reference_tickers_is_active'), 'reference_tickers', ['is_active'], unique=False)
    op.create_index(op.f('ix_reference_tickers_last_seen_at'), 'reference_tickers', ['last_seen_at'], unique=False)

    op.create_table(
        'service_credentials',
        sa.Column('service', sa.String(100), nullable=False),
        sa.Column('cookie', sa.Text(), nullable=False),
        sa.Column('crumb', sa.String(255), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('service'),
    )

    op.create_table(
        'job_leases',
        sa.Column('job_name', sa.String(100), nullable=False),
        sa.Column('owner', sa.String(64), nullable=False),
        sa.Column('leased_until', sa.DateTime(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('job_name'),
    )


def downgrade() -> None:
    op.drop_table('job_leases')
    op.drop_table('service_credentials')

    op.drop_index(op.f('ix_reference_tickers_last_seen_at'), table_name='reference_tickers')
    op.drop_index(op.f('ix_reference_tickers_is_active'), table_name='reference_tickers')
    op.drop_index(op.f('ix_reference_tickers_exchange'), table_name='reference_tickers')
    op.drop_table('reference_tickers')

    op.drop_index(op.f('ix_portfolio_metrics_stale'), table_name='portfolio_metrics')
    op.drop_table('portfolio_metrics')

    op.drop_table('asset_quotes')

    op.drop_index(op.f('ix_portfolio_positions_ticker'), table_name='portfolio_positions')
    op.drop_index(op.f('ix_portfolio_positions_portfolio_id'), table_name='portfolio_positions')
    op.drop_table('portfolio_positions')

    op.drop_index(op.f('ix_asset_tickers_last_fetched_at'), table_name='asset_tickers')
    op.drop_index(op.f('ix_asset_tickers_status'), table_name='asset_tickers')
    op.drop_table('asset_tickers')

    op.drop_index(op.f('ix_portfolios_owner_id'), table_name='portfolios')
    op.drop_table('portfolios')
