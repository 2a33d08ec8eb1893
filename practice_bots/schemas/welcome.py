"""Welcome notifier result schema."""

from pydantic import BaseModel

from practice_bots.enums import WelcomeStatus


class WelcomeResult(BaseModel):
    status: WelcomeStatus
    detail: str | None = None
    attempts: int = 0
    message_id: str | None = None

    @property
    def sent(self) -> bool:
        return self.status == WelcomeStatus.SENT
