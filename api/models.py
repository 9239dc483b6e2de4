"""
API request and response models for AuthKit REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models only check shape (field present, is a string, length cap).
Semantic validation -- email syntax, minimum password length -- belongs to
IdentityResolver, so the rules hold for every caller, not just HTTP.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    No str_strip_whitespace: it is model-wide and would alter passwords. The
    resolver trims name and email itself.
    """

    name: str = Field(max_length=255)
    email: str = Field(max_length=320)
    password: str = Field(max_length=255)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(max_length=320)
    password: str = Field(max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    """Public view of a user. Never includes the password hash or provider subjects."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: Optional[str]
    is_email_verified: bool
    providers: list[str]
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        """Factory Method -- the mapping lives beside the output model."""
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            is_email_verified=user.is_email_verified,
            providers=sorted(user.provider_links),
            created_at=user.created_at or "",
        )


class RegisterResponse(BaseModel):
    success: bool = True
    token: str
    user: UserOut


class LoginResponse(BaseModel):
    success: bool = True
    token: str


class OAuthLoginResponse(BaseModel):
    success: bool = True
    token: str
    user: UserOut


class UserEnvelope(BaseModel):
    success: bool = True
    data: UserOut


class ProviderInfo(BaseModel):
    name: str
    label: str


class ProviderListResponse(BaseModel):
    success: bool = True
    data: list[ProviderInfo]


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class ErrorResponse(BaseModel):
    """Uniform failure envelope for every non-2xx JSON response."""

    success: bool = False
    message: str
    errors: list[dict] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str]
