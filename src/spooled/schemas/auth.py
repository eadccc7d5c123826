"""
Credential exchange schemas.

Request/response bodies for the login and refresh endpoints.
"""

from typing import Optional

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Exchange a long-lived API key for access and refresh tokens."""

    api_key: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    """Tokens issued by /api/v1/auth/login.

    Attributes:
        access_token: Short-lived bearer token
        refresh_token: Token used to obtain new access tokens
        token_type: Usually "Bearer"
        expires_in: Access token lifetime in seconds
        refresh_expires_in: Refresh token lifetime in seconds
    """

    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_in: int = Field(default=3600, ge=0)
    refresh_expires_in: Optional[int] = Field(default=None, ge=0)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class RefreshResponse(BaseModel):
    """Access token issued by /api/v1/auth/refresh (refresh token may rotate)."""

    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_in: int = Field(default=3600, ge=0)
