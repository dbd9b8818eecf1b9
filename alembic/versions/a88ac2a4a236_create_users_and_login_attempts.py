"""create_users_and_login_attempts

Revision ID: a88ac2a4a236
Revises:
Create Date: 2026-01-22 19:45:08.451349

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = 'a88ac2a4a236'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table('users',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=False),
    sa.Column('password_hash', sa.String(length=255), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    op.create_table('login_attempts',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('email', sa.String(length=255), nullable=False),
    sa.Column('origin_key', sa.String(length=255), nullable=True),
    sa.Column('succeeded', sa.Boolean(), nullable=False),
    sa.Column('failure_reason', sa.String(length=32), nullable=True),
    sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_login_attempts_email_occurred_at', 'login_attempts', ['email', 'occurred_at'], unique=False)
    op.create_index('ix_login_attempts_occurred_at', 'login_attempts', ['occurred_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_login_attempts_occurred_at', table_name='login_attempts')
    op.drop_index('ix_login_attempts_email_occurred_at', table_name='login_attempts')
    op.drop_table('login_attempts')
    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_table('users')
