"""Initial schema for accounts, ledger journal, rosters, entries and redemptions

Revision ID: 001
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create accounts table
    op.create_table('accounts',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('balance', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('balance >= 0', name='ck_accounts_balance_non_negative'),
        sa.PrimaryKeyConstraint('id')
    )

    # Create ledger_transactions table
    op.create_table('ledger_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.String(length=64), nullable=False),
        sa.Column('kind', sa.String(length=10), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=20), nullable=False),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('amount > 0', name='ck_ledger_transactions_amount_positive'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reference', name='uq_ledger_transactions_reference')
    )
    op.create_index('idx_ledger_transactions_account_created', 'ledger_transactions', ['account_id', 'created_at'])
    op.create_index('idx_ledger_transactions_kind_reason', 'ledger_transactions', ['kind', 'reason'])

    # Create rosters and roster_slots tables
    op.create_table('rosters',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.String(length=64), nullable=False),
        sa.Column('match_ref', sa.String(length=64), nullable=False),
        sa.Column('team_name', sa.String(length=100), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_rosters_account_match', 'rosters', ['account_id', 'match_ref'])

    op.create_table('roster_slots',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('roster_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('player_id', sa.String(length=64), nullable=False),
        sa.Column('player_name', sa.String(length=100), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('cost', sa.Integer(), nullable=False),
        sa.CheckConstraint('cost >= 0', name='ck_roster_slots_cost_non_negative'),
        sa.ForeignKeyConstraint(['roster_id'], ['rosters.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('roster_id', 'player_id', name='uq_roster_slots_roster_player'),
        sa.UniqueConstraint('roster_id', 'position', name='uq_roster_slots_roster_position')
    )

    # Create entries table
    op.create_table('entries',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('account_id', sa.String(length=64), nullable=False),
        sa.Column('match_ref', sa.String(length=64), nullable=False),
        sa.Column('roster_id', sa.Integer(), nullable=False),
        sa.Column('amount_charged', sa.Integer(), nullable=False),
        sa.Column('idempotency_key', sa.String(length=128), nullable=False),
        sa.Column('debit_reference', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('refunded_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['roster_id'], ['rosters.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('roster_id'),
        sa.UniqueConstraint('debit_reference')
    )

    # At most one active entry per account and match
    op.create_index('uq_entries_active_account_match', 'entries', ['account_id', 'match_ref'],
                    unique=True,
                    postgresql_where=sa.text("status = 'ACTIVE'"),
                    sqlite_where=sa.text("status = 'ACTIVE'"))
    op.create_index('idx_entries_account_created', 'entries', ['account_id', 'created_at'])
    op.create_index('idx_entries_status', 'entries', ['status'])

    # Create redemptions table
    op.create_table('redemptions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('account_id', sa.String(length=64), nullable=False),
        sa.Column('reward_id', sa.String(length=64), nullable=False),
        sa.Column('cost', sa.Integer(), nullable=False),
        sa.Column('debit_reference', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('debit_reference')
    )
    op.create_index('idx_redemptions_account_created', 'redemptions', ['account_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('idx_redemptions_account_created', table_name='redemptions')
    op.drop_table('redemptions')

    op.drop_index('idx_entries_status', table_name='entries')
    op.drop_index('idx_entries_account_created', table_name='entries')
    op.drop_index('uq_entries_active_account_match', table_name='entries')
    op.drop_table('entries')

    op.drop_table('roster_slots')
    op.drop_index('idx_rosters_account_match', table_name='rosters')
    op.drop_table('rosters')

    op.drop_index('idx_ledger_transactions_kind_reason', table_name='ledger_transactions')
    op.drop_index('idx_ledger_transactions_account_created', table_name='ledger_transactions')
    op.drop_table('ledger_transactions')

    op.drop_table('accounts')
