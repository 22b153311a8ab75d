"""Identity-provider token creation and validation."""

from datetime import datetime, timedelta, timezone

from jose import jwt

from outlink.config import settings


def create_identity_token(
    auth_id: str,
    *,
    email: str | None = None,
    name: str | None = None,
    picture: str | None = None,
    expires_minutes: int | None = None,
) -> str:
    """
    Create a signed identity token.

    Used by local tooling and tests; in production the identity provider
    issues tokens with the same claims.
    """
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.identity_token_expire_minutes
    )
    payload = {
        "sub": auth_id,
        "exp": expire,
        "type": "identity",
    }
    if email:
        payload["email"] = email
    if name:
        payload["name"] = name
    if picture:
        payload["picture"] = picture
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience
    if settings.jwt_issuer:
        payload["iss"] = settings.jwt_issuer
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_identity_token(token: str) -> dict | None:
    """
    Decode and validate an identity token.

    Returns the payload if valid, None if invalid, expired or missing ``sub``.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"verify_aud": settings.jwt_audience is not None},
        )
    except jwt.JWTError:
        return None
    if not payload.get("sub"):
        return None
    return payload
