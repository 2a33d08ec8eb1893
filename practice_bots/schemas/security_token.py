"""Security token payload stored for the welcome notifier."""

from pydantic import BaseModel, ConfigDict, Field


class SecurityTokenPayload(BaseModel):
    """Password-setup credential carried in a Communication payload."""

    model_config = ConfigDict(populate_by_name=True)

    token_id: str = Field(alias="id", min_length=1)
    token_secret: str = Field(alias="secret", min_length=1)
    user_reference: str = Field(alias="userReference", min_length=1)
