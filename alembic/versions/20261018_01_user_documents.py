"""Profile documents keyed by normalized username."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "20261018_01_user_documents"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "user_documents",
        sa.Column("key", sa.String(length=64), primary_key=True),
        sa.Column("auth_id", sa.String(length=128), nullable=True),
        sa.Column(
            "friends",
            postgresql.ARRAY(sa.String()),
            nullable=False,
            server_default=sa.text("'{}'"),
        ),
        sa.Column(
            "blocked",
            postgresql.ARRAY(sa.String()),
            nullable=False,
            server_default=sa.text("'{}'"),
        ),
        sa.Column(
            "data",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
        ),
    )
    op.create_index("idx_user_documents_auth_id", "user_documents", ["auth_id"])
    op.create_index(
        "idx_user_documents_friends",
        "user_documents",
        ["friends"],
        postgresql_using="gin",
    )
    op.create_index(
        "idx_user_documents_blocked",
        "user_documents",
        ["blocked"],
        postgresql_using="gin",
    )


def downgrade() -> None:
    op.drop_index("idx_user_documents_blocked", table_name="user_documents")
    op.drop_index("idx_user_documents_friends", table_name="user_documents")
    op.drop_index("idx_user_documents_auth_id", table_name="user_documents")
    op.drop_table("user_documents")
