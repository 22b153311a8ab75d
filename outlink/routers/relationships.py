"""Friends, blocked-users and friend-request router."""

from fastapi import APIRouter, Depends, Request, status

from outlink.auth.dependencies import get_current_principal
from outlink.config import settings
from outlink.dependencies import get_profile_service
from outlink.identity.service import ProfileService
from outlink.identity.types import Principal
from outlink.middleware.rate_limit import limiter
from outlink.schemas.profiles import ProfileListResponse, PublicProfileResponse

router = APIRouter(prefix="/api/v1/profiles/me", tags=["Relationships"])


async def _related(service: ProfileService, auth_id: str, field_name: str) -> ProfileListResponse:
    documents = await service.list_related(auth_id, field_name)
    return ProfileListResponse(
        items=[PublicProfileResponse.from_document(d) for d in documents]
    )


# --- Friends ---


@router.get("/friends", response_model=ProfileListResponse)
async def list_friends(
    principal: Principal = Depends(get_current_principal),
    service: ProfileService = Depends(get_profile_service),
) -> ProfileListResponse:
    """List the caller's friends as public profiles."""
    return await _related(service, principal.auth_id, "friends")


@router.post("/friends/{username}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(settings.profile_write_rate_limit)
async def add_friend(
    request: Request,
    username: str,
    principal: Principal = Depends(get_current_principal),
    service: ProfileService = Depends(get_profile_service),
) -> None:
    """
    Add a friend.

    Friendship is mutual: both profiles list each other afterwards.
    Blocked users (in either direction) cannot be added.
    """
    await service.add_friend(principal, username)


@router.delete("/friends/{username}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_friend(
    username: str,
    principal: Principal = Depends(get_current_principal),
    service: ProfileService = Depends(get_profile_service),
) -> None:
    await service.remove_friend(principal, username)


# --- Blocked ---


@router.get("/blocked", response_model=ProfileListResponse)
async def list_blocked(
    principal: Principal = Depends(get_current_principal),
    service: ProfileService = Depends(get_profile_service),
) -> ProfileListResponse:
    return await _related(service, principal.auth_id, "blocked")


@router.post("/blocked/{username}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(settings.profile_write_rate_limit)
async def block_user(
    request: Request,
    username: str,
    principal: Principal = Depends(get_current_principal),
    service: ProfileService = Depends(get_profile_service),
) -> None:
    """Block a user. Any friendship between the two profiles is removed."""
    await service.block_user(principal, username)


@router.delete("/blocked/{username}", status_code=status.HTTP_204_NO_CONTENT)
async def unblock_user(
    username: str,
    principal: Principal = Depends(get_current_principal),
    service: ProfileService = Depends(get_profile_service),
) -> None:
    await service.unblock_user(principal, username)


# --- Friend requests ---


@router.get("/friend-requests", response_model=ProfileListResponse)
async def list_friend_requests(
    principal: Principal = Depends(get_current_principal),
    service: ProfileService = Depends(get_profile_service),
) -> ProfileListResponse:
    """List the senders of the caller's pending friend requests, newest first."""
    documents = await service.list_friend_requests(principal.auth_id)
    return ProfileListResponse(
        items=[PublicProfileResponse.from_document(d) for d in documents]
    )


@router.post("/friend-requests/{username}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(settings.profile_write_rate_limit)
async def send_friend_request(
    request: Request,
    username: str,
    principal: Principal = Depends(get_current_principal),
    service: ProfileService = Depends(get_profile_service),
) -> None:
    """
    Send a friend request.

    Rejected for yourself, blocked users, existing friends and requests
    already pending in either direction.
    """
    await service.send_friend_request(principal, username)


@router.post("/friend-requests/{username}/accept", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(settings.profile_write_rate_limit)
async def accept_friend_request(
    request: Request,
    username: str,
    principal: Principal = Depends(get_current_principal),
    service: ProfileService = Depends(get_profile_service),
) -> None:
    """Accept a pending request from ``username``; both profiles become friends."""
    await service.accept_friend_request(principal, username)


@router.delete("/friend-requests/{username}", status_code=status.HTTP_204_NO_CONTENT)
async def decline_friend_request(
    username: str,
    principal: Principal = Depends(get_current_principal),
    service: ProfileService = Depends(get_profile_service),
) -> None:
    await service.decline_friend_request(principal, username)
