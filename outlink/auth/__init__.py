"""Authentication utilities for the Outlink identity service."""

from outlink.auth.dependencies import get_current_principal
from outlink.auth.tokens import create_identity_token, decode_identity_token

__all__ = [
    "create_identity_token",
    "decode_identity_token",
    "get_current_principal",
]
