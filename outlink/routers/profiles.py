"""Profiles router for the caller's profile, public profiles and usernames."""

from fastapi import APIRouter, Depends, Query, Request, status

from outlink.auth.dependencies import get_current_principal
from outlink.config import settings
from outlink.dependencies import get_profile_service
from outlink.identity.service import ProfileService
from outlink.identity.types import Principal, UpsertResult
from outlink.middleware.rate_limit import limiter
from outlink.schemas.profiles import (
    DeleteAccountResponse,
    ProfileListResponse,
    ProfileResponse,
    PublicProfileResponse,
    UpdateProfileRequest,
    UpsertProfileResponse,
    UsernameAvailabilityResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Profiles"])


def _upsert_response(result: UpsertResult) -> UpsertProfileResponse:
    return UpsertProfileResponse(
        profile=ProfileResponse.from_document(result.profile),
        created=result.plan.created,
        username_changed=result.plan.username_changed,
        written=result.written,
        warnings=result.warnings,
    )


@router.post(
    "/profiles/me",
    response_model=UpsertProfileResponse,
    status_code=status.HTTP_200_OK,
)
@limiter.limit(settings.profile_write_rate_limit)
async def ensure_profile(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    service: ProfileService = Depends(get_profile_service),
) -> UpsertProfileResponse:
    """
    Ensure the caller has a profile.

    Called after every sign-in. Creates a placeholder profile with a derived
    username on first sign-in; otherwise heals duplicates and fills missing
    defaults from the identity token.
    """
    result = await service.ensure_profile(principal)
    return _upsert_response(result)


@router.get(
    "/profiles/me",
    response_model=ProfileResponse,
    status_code=status.HTTP_200_OK,
)
async def get_my_profile(
    principal: Principal = Depends(get_current_principal),
    service: ProfileService = Depends(get_profile_service),
) -> ProfileResponse:
    """Get the caller's full profile, including friends and blocked lists."""
    document = await service.get_profile(principal.auth_id)
    return ProfileResponse.from_document(document)


@router.patch(
    "/profiles/me",
    response_model=UpsertProfileResponse,
    status_code=status.HTTP_200_OK,
)
@limiter.limit(settings.profile_write_rate_limit)
async def update_my_profile(
    request: Request,
    data: UpdateProfileRequest,
    principal: Principal = Depends(get_current_principal),
    service: ProfileService = Depends(get_profile_service),
) -> UpsertProfileResponse:
    """
    Create or update the caller's profile.

    A new ``username`` moves the profile to the new key and rewrites every
    friends/blocked reference to it. Allowed once per account.
    """
    result = await service.upsert(principal, principal.auth_id, data.to_payload())
    return _upsert_response(result)


@router.delete(
    "/profiles/me",
    response_model=DeleteAccountResponse,
    status_code=status.HTTP_200_OK,
)
async def delete_my_profile(
    principal: Principal = Depends(get_current_principal),
    service: ProfileService = Depends(get_profile_service),
) -> DeleteAccountResponse:
    """Delete the caller's profile and remove it from everyone's friends/blocked lists."""
    deleted = await service.delete_account(principal)
    return DeleteAccountResponse(deleted_keys=deleted)


@router.get(
    "/profiles",
    response_model=ProfileListResponse,
    status_code=status.HTTP_200_OK,
)
@limiter.limit(settings.username_check_rate_limit)
async def search_profiles(
    request: Request,
    q: str = Query(..., min_length=1, max_length=64, description="Username or username prefix"),
    principal: Principal = Depends(get_current_principal),
    service: ProfileService = Depends(get_profile_service),
) -> ProfileListResponse:
    """
    Search profiles by username.

    Matching ignores case and whitespace. An exact match is returned on its
    own; otherwise usernames starting with the query are listed.
    """
    documents = await service.search_profiles(q)
    return ProfileListResponse(
        items=[PublicProfileResponse.from_document(d) for d in documents]
    )


@router.get(
    "/profiles/{username}",
    response_model=PublicProfileResponse,
    status_code=status.HTTP_200_OK,
)
async def get_public_profile(
    username: str,
    principal: Principal = Depends(get_current_principal),
    service: ProfileService = Depends(get_profile_service),
) -> PublicProfileResponse:
    """
    Get a user's public profile.

    Returns public information only (no email, friends or blocked list).
    """
    document = await service.get_profile_by_username(username)
    return PublicProfileResponse.from_document(document)


@router.get(
    "/usernames/{username}/availability",
    response_model=UsernameAvailabilityResponse,
    status_code=status.HTTP_200_OK,
)
@limiter.limit(settings.username_check_rate_limit)
async def check_username(
    request: Request,
    username: str,
    principal: Principal = Depends(get_current_principal),
    service: ProfileService = Depends(get_profile_service),
) -> UsernameAvailabilityResponse:
    """Check whether a username is free (or already the caller's)."""
    key, available = await service.check_username_availability(username, principal.auth_id)
    return UsernameAvailabilityResponse(username=username, username_key=key, available=available)
