"""Pydantic schemas for request/response validation."""

from outlink.schemas.profiles import (
    DeleteAccountResponse,
    ProfileListResponse,
    ProfileResponse,
    PublicProfileResponse,
    UpdateProfileRequest,
    UpsertProfileResponse,
    UsernameAvailabilityResponse,
)

__all__ = [
    "DeleteAccountResponse",
    "ProfileListResponse",
    "ProfileResponse",
    "PublicProfileResponse",
    "UpdateProfileRequest",
    "UpsertProfileResponse",
    "UsernameAvailabilityResponse",
]
