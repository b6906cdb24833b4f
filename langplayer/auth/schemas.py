"""Authenticated principal."""

from pydantic import BaseModel


class AuthenticatedUser(BaseModel):
    """User identity taken from a verified access token."""

    id: str
    email: str | None = None
