"""User profile document model."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    TIMESTAMP,
    Column,
    Index,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB

from outlink.database import Base

# Document fields promoted to their own columns so they can be indexed
COLUMN_FIELDS = {
    "authId": "auth_id",
    "friends": "friends",
    "blocked": "blocked",
    "incomingRequests": "incoming_requests",
    "outgoingRequests": "outgoing_requests",
}

# Array columns that only appear in the document once they hold a value
OPTIONAL_ARRAY_FIELDS = ("incomingRequests", "outgoingRequests")


class UserDocument(Base):
    """
    One user profile, keyed by its normalized username.

    ``authId`` and the reference arrays (``friends``, ``blocked`` and the
    pending friend requests) live in columns, B-tree and GIN indexed for the
    reconciliation queries; every other profile field is kept in ``data``.
    """

    __tablename__ = "user_documents"

    key = Column(String(64), primary_key=True)
    auth_id = Column(String(128))
    friends = Column(ARRAY(String), nullable=False, server_default=text("'{}'"))
    blocked = Column(ARRAY(String), nullable=False, server_default=text("'{}'"))
    incoming_requests = Column(ARRAY(String), nullable=False, server_default=text("'{}'"))
    outgoing_requests = Column(ARRAY(String), nullable=False, server_default=text("'{}'"))
    data = Column(JSONB, nullable=False, server_default=text("'{}'::jsonb"))
    created_at = Column(TIMESTAMP(timezone=True), server_default=text("NOW()"))
    updated_at = Column(TIMESTAMP(timezone=True), server_default=text("NOW()"))

    __table_args__ = (
        Index("idx_user_documents_auth_id", auth_id),
        Index("idx_user_documents_friends", friends, postgresql_using="gin"),
        Index("idx_user_documents_blocked", blocked, postgresql_using="gin"),
        Index("idx_user_documents_incoming_requests", incoming_requests, postgresql_using="gin"),
        Index("idx_user_documents_outgoing_requests", outgoing_requests, postgresql_using="gin"),
    )

    def to_document(self) -> dict[str, Any]:
        document = dict(self.data or {})
        if self.auth_id is not None:
            document["authId"] = self.auth_id
        document["friends"] = list(self.friends or [])
        document["blocked"] = list(self.blocked or [])
        for name in OPTIONAL_ARRAY_FIELDS:
            values = getattr(self, COLUMN_FIELDS[name])
            if values:
                document[name] = list(values)
        return document

    def assign(self, document: dict[str, Any]) -> None:
        """Overwrite this row with a full document."""
        self.auth_id = document.get("authId")
        self.friends = list(document.get("friends") or [])
        self.blocked = list(document.get("blocked") or [])
        self.incoming_requests = list(document.get("incomingRequests") or [])
        self.outgoing_requests = list(document.get("outgoingRequests") or [])
        self.data = {k: v for k, v in document.items() if k not in COLUMN_FIELDS}
        self.updated_at = datetime.now(timezone.utc)
