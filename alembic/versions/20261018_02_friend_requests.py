"""Pending friend requests as indexed reference arrays on profiles."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "20261018_02_friend_requests"
down_revision = "20261018_01_user_documents"
branch_labels = None
depends_on = None

REQUEST_COLUMNS = ("incoming_requests", "outgoing_requests")


def upgrade() -> None:
    for column in REQUEST_COLUMNS:
        op.add_column(
            "user_documents",
            sa.Column(
                column,
                postgresql.ARRAY(sa.String()),
                nullable=False,
                server_default=sa.text("'{}'"),
            ),
        )
        op.create_index(
            f"idx_user_documents_{column}",
            "user_documents",
            [column],
            postgresql_using="gin",
        )


def downgrade() -> None:
    for column in reversed(REQUEST_COLUMNS):
        op.drop_index(f"idx_user_documents_{column}", table_name="user_documents")
        op.drop_column("user_documents", column)
