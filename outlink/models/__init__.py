"""Database models for the Outlink identity service."""

from outlink.models.user_document import UserDocument

__all__ = ["UserDocument"]
