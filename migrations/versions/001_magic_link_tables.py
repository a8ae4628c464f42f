"""Create users and redeemed_tokens tables.

Revision ID: 001_magic_link_tables
Revises:
Create Date: 2026-10-19

- users: account resource; email is the uniquely constrained identity field
- redeemed_tokens: single-use markers keyed by token id (jti)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001_magic_link_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # pgcrypto provides gen_random_uuid() for UUID primary keys
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "users",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("email_verified", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    # Primary key insert is the single-use check-and-mark
    op.create_table(
        "redeemed_tokens",
        sa.Column("token_id", sa.String(64), primary_key=True),
        sa.Column(
            "redeemed_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_redeemed_tokens_expires_at", "redeemed_tokens", ["expires_at"]
    )


def downgrade() -> None:
    op.drop_index("idx_redeemed_tokens_expires_at", table_name="redeemed_tokens")
    op.drop_table("redeemed_tokens")
    op.drop_table("users")
    op.execute("DROP EXTENSION IF EXISTS pgcrypto")
