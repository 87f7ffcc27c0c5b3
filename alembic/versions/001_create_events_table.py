"""Create events table

Revision ID: 001
Revises: 
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


event_status = sa.Enum('WAITING', 'PROCESSING', 'PROCESSED', 'FAILED', name='eventstatus')


def upgrade() -> None:
    op.create_table('events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False, comment='Block containing the log'),
        sa.Column('block_hash', sa.String(length=66), nullable=False, comment='Hash of the block containing the log'),
        sa.Column('transaction_index', sa.Integer(), nullable=False, comment='Position of the transaction within the block'),
        sa.Column('transaction_hash', sa.String(length=66), nullable=False, comment='Transaction hash'),
        sa.Column('log_index', sa.Integer(), nullable=False, comment='Position of the log within the block'),
        sa.Column('emitter_address', sa.String(length=42), nullable=False, comment='Address of the emitting contract'),
        sa.Column('event_name', sa.String(length=100), nullable=False, comment='Decoded event name'),
        sa.Column('signature', sa.String(length=66), nullable=False, comment='Event signature topic (topic0)'),
        sa.Column('decoded_args', sa.JSON(), nullable=False, comment='Decoded event arguments'),
        sa.Column('raw_log', sa.JSON(), nullable=False, comment='Raw log as returned by the node'),
        sa.Column('topics', sa.JSON(), nullable=False, comment='Ordered log topics'),
        sa.Column('status', event_status, nullable=False, comment='Processing status'),
        sa.Column('confirmations', sa.Integer(), nullable=False, comment="Blocks mined on top of the event's block, capped at the requirement"),
        sa.Column('processing_error', sa.Text(), nullable=True, comment='Error message if processing failed'),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True, comment='When the event was processed'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='Row creation time'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='Last modification time'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('block_number', 'log_index', 'transaction_hash', name='uq_event_natural_key')
    )
    op.create_index('idx_event_canonical_order', 'events', ['block_number', 'transaction_index', 'transaction_hash', 'log_index'], unique=False)
    op.create_index('idx_event_status_confirmations', 'events', ['status', 'confirmations'], unique=False)
    op.create_index('idx_event_name', 'events', ['event_name'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_event_name', table_name='events')
    op.drop_index('idx_event_status_confirmations', table_name='events')
    op.drop_index('idx_event_canonical_order', table_name='events')
    op.drop_table('events')
    event_status.drop(op.get_bind(), checkfirst=True)
