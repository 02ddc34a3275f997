from datetime import datetime, timezone
from typing import Optional

from pydantic import Field

from portal.schemas.base import BaseSchema
from portal.schemas.enums import NotificationLevel


class Notification(BaseSchema):
    """A toast for the browser to show."""
    level: NotificationLevel
    message: str
    kind: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
