"""Per-account rate limiting using slowapi."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from outlink.auth.tokens import decode_identity_token


def account_key(request: Request) -> str:
    """Rate-limit bucket: the token's account when one is presented, else the client IP."""
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        payload = decode_identity_token(token.strip())
        if payload is not None:
            return f"account:{payload['sub']}"
    return get_remote_address(request)


limiter = Limiter(key_func=account_key)


def reset_limiter() -> None:
    """Reset the limiter storage. Used in tests to clear rate limit state."""
    limiter.reset()
