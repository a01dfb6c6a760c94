"""Domain models for appdoki.

Pydantic models representing domain entities for the service layer.
These are separate from SQLAlchemy ORM models to maintain clean separation
between domain and infrastructure layers.
"""

from pydantic import BaseModel, Field


class NewUserIdentity(BaseModel):
    """Identity fields used to create a user on first login."""

    email: str = Field(..., min_length=1, description="Email address (directory key)")
    name: str | None = Field(default=None, description="Display name")
    picture: str | None = Field(default=None, description="Avatar URL")
    external_subject: str | None = Field(
        default=None, description="Provider subject recorded at creation"
    )


class UserIdentity(BaseModel):
    """Domain model for a local user resolved from an external identity."""

    id: str
    name: str | None = None
    email: str
    picture: str | None = None
    external_subject: str | None = Field(default=None, exclude=True)

    model_config = {"from_attributes": True}
