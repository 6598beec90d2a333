"""Identity and user profile domain models."""

from pydantic import BaseModel, Field, field_validator

from src.core.config import Constants


class Identity(BaseModel):
    """Authenticated identity supplied by the identity provider."""

    id: str = Field(..., min_length=1, description="Opaque user ID from the identity provider")
    display_name: str | None = Field(default=None, description="Display name, if the provider has one")
    email: str | None = Field(default=None, description="Email address, if the provider shares it")
    photo_url: str | None = Field(default=None, description="Avatar URL, if the provider shares it")

    @property
    def name(self) -> str:
        """Display name to show to other members."""
        return (self.display_name or "").strip() or Constants.ANONYMOUS_DISPLAY_NAME


class UserProfile(BaseModel):
    """User profile record written at first sign-in."""

    id: str = Field(..., description="User ID from the identity provider")
    display_name: str = Field(default="", description="Display name at first sign-in")
    email: str | None = Field(default=None, description="Email address")
    photo_url: str | None = Field(default=None, description="Avatar URL")

    @field_validator("display_name", mode="before")
    @classmethod
    def default_display_name(cls, v: str | None) -> str:
        return v or ""
