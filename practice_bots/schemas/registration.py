"""Registration-related Pydantic schemas."""

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator


class RegistrationRequest(BaseModel):
    """
    Request schema for registering an organization and its first admin.

    Accepts the camelCase keys the front-end sends (``firstName``,
    ``organizationName`` or ``organization``) as well as snake_case.
    """

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    first_name: str = Field(alias="firstName", min_length=1, max_length=100)
    last_name: str = Field(alias="lastName", min_length=1, max_length=100)
    email: EmailStr
    organization_name: str = Field(
        validation_alias=AliasChoices("organizationName", "organization", "organization_name"),
        min_length=1,
        max_length=200,
    )
    password: str = Field(min_length=8, max_length=256)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return v.lower()


class RegistrationResult(BaseModel):
    """Response schema for a completed registration."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    organization_id: str = Field(alias="organizationId")
    practitioner_id: str = Field(alias="practitionerId")
    user_reference: str = Field(alias="userReference")
    security_tokens_stored: int = Field(default=0, alias="securityTokensStored")
