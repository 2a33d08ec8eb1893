"""Invite-related Pydantic schemas."""

from pydantic import BaseModel


class InviteResult(BaseModel):
    """What the platform invite endpoint hands back."""

    profile_reference: str
    user_reference: str
    password_reset_url: str | None = None

    @property
    def practitioner_id(self) -> str:
        return self.profile_reference.split("/")[-1]

    @property
    def user_id(self) -> str:
        return self.user_reference.split("/")[-1]
