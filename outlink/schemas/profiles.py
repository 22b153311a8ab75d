"""Profile-related Pydantic schemas."""

from typing import Any

from pydantic import BaseModel, Field, field_validator

# Request field -> stored document field
PAYLOAD_FIELDS = {
    "username": "username",
    "display_name": "displayName",
    "photo_url": "photoURL",
    "bio": "bio",
    "age": "age",
    "gender": "gender",
    "location": "location",
}


class UpdateProfileRequest(BaseModel):
    """
    Request to create or update the caller's profile.

    Omitted and null fields are left unchanged.
    """

    username: str | None = Field(default=None, max_length=64)
    display_name: str | None = Field(default=None, max_length=100)
    photo_url: str | None = Field(default=None, max_length=2048)
    bio: str | None = Field(default=None, max_length=500)
    age: int | None = Field(default=None, ge=13, le=120)
    gender: str | None = Field(default=None, max_length=50)
    location: str | None = Field(default=None, max_length=200)

    @field_validator("username", "display_name", "gender", "location")
    @classmethod
    def strip_text(cls, v: str | None) -> str | None:
        """Trim surrounding whitespace; blank strings are rejected."""
        if v is None:
            return v
        stripped = v.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    def to_payload(self) -> dict[str, Any]:
        """Stored field names for every field the caller actually set."""
        return {
            PAYLOAD_FIELDS[name]: getattr(self, name)
            for name in self.model_fields_set
            if getattr(self, name) is not None
        }


class PublicProfileResponse(BaseModel):
    """Public profile; no email, friends or blocked list."""

    username: str
    display_username: str | None
    display_name: str | None
    photo_url: str | None = None
    bio: str | None = None
    age: int | None = None
    gender: str | None = None
    location: str | None = None

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "PublicProfileResponse":
        return cls(
            username=document["usernameKey"],
            display_username=document.get("displayUsername"),
            display_name=document.get("displayName"),
            photo_url=document.get("photoURL"),
            bio=document.get("bio"),
            age=document.get("age"),
            gender=document.get("gender"),
            location=document.get("location"),
        )


class ProfileResponse(PublicProfileResponse):
    """The caller's own profile."""

    auth_id: str
    email: str | None = None
    friends: list[str]
    blocked: list[str]
    incoming_requests: list[str] = []
    outgoing_requests: list[str] = []
    has_changed_username_once: bool
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "ProfileResponse":
        public = PublicProfileResponse.from_document(document)
        return cls(
            **public.model_dump(),
            auth_id=document["authId"],
            email=document.get("email"),
            friends=list(document.get("friends") or []),
            blocked=list(document.get("blocked") or []),
            incoming_requests=list(document.get("incomingRequests") or []),
            outgoing_requests=list(document.get("outgoingRequests") or []),
            has_changed_username_once=bool(document.get("hasChangedUsernameOnce")),
            created_at=document.get("createdAt"),
            updated_at=document.get("updatedAt"),
        )


class UpsertProfileResponse(BaseModel):
    """Response after creating or updating a profile."""

    profile: ProfileResponse
    created: bool
    username_changed: bool
    written: bool
    warnings: list[str]


class UsernameAvailabilityResponse(BaseModel):
    username: str
    username_key: str
    available: bool


class ProfileListResponse(BaseModel):
    items: list[PublicProfileResponse]


class DeleteAccountResponse(BaseModel):
    deleted_keys: list[str]
