"""Authentication dependencies for FastAPI endpoints."""

from fastapi import Header, HTTPException, status

from outlink.auth.tokens import decode_identity_token
from outlink.identity.types import Principal


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "error": {
                "code": "UNAUTHORIZED",
                "message": message,
            }
        },
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_principal(
    authorization: str | None = Header(default=None),
) -> Principal:
    """
    Validate the bearer identity token and return the authenticated account.

    Raises:
        HTTPException: 401 if the token is missing, malformed, invalid or expired
    """
    if not authorization:
        raise _unauthorized("Identity token required")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise _unauthorized("Invalid authorization header format")

    payload = decode_identity_token(token.strip())
    if payload is None:
        raise _unauthorized("Invalid or expired identity token")

    return Principal(
        auth_id=str(payload["sub"]),
        email=payload.get("email"),
        display_name=payload.get("name"),
        photo_url=payload.get("picture"),
    )
