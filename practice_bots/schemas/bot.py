"""Bot dispatch schemas."""

from pydantic import BaseModel, ConfigDict, Field


class BotEvent(BaseModel):
    """
    Input delivered to a bot.

    Platform subscriptions post the written resource as ``input``; operators
    and the CLI post the same shape by hand.
    """

    model_config = ConfigDict(populate_by_name=True)

    input: dict = Field(default_factory=dict)
    resource_type: str | None = Field(default=None, alias="resourceType")

    @property
    def input_type(self) -> str | None:
        return self.resource_type or self.input.get("resourceType")


class BotRunResult(BaseModel):
    bot: str
    status: str
    result: dict = Field(default_factory=dict)
