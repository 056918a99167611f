"""OAuth 2.0 schemas for the Authorization Code and Client Credentials flows."""
from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator


class TokenResponse(BaseModel):
    """
    OAuth 2.0 token response.

    Returned by the token endpoint after an authorization code exchange
    or a client credentials grant. Twitch returns ``scope``
    as a JSON list rather than a space separated string.
    """

    access_token: str = Field(..., description="OAuth access token")
    token_type: str = Field(default="bearer", description="Token type")
    expires_in: Optional[int] = Field(None, description="Token lifetime in seconds")
    refresh_token: Optional[str] = Field(None, description="Refresh token for obtaining new access tokens")
    scope: List[str] = Field(default_factory=list, description="Granted scopes")

    @field_validator("scope", mode="before")
    @classmethod
    def parse_scope(cls, v: Union[None, str, List[str]]) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return v.split()
        return v


class ErrorResponse(BaseModel):
    """Error body returned by the OAuth routes."""

    error: str = Field(..., description="Error code")
    error_description: Optional[str] = Field(None, description="Human-readable error description")
