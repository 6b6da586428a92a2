from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, Field


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _ms_to_datetime(value: object) -> object:
    if isinstance(value, int) and not isinstance(value, bool):
        return _EPOCH + timedelta(milliseconds=value)
    return value


# The service speaks milliseconds since the epoch; responses carry ISO-8601.
EpochMillis = Annotated[datetime, BeforeValidator(_ms_to_datetime)]


class PasteCreatedResponse(BaseModel):
    id: str
    url: str
    created_at: EpochMillis
    expires_at: Optional[EpochMillis] = None
    max_views: Optional[int] = None


class PasteViewResponse(BaseModel):
    content: str
    remaining_views: Optional[int] = Field(
        default=None,
        description="Views left after this one; null when unlimited",
    )
    expires_at: Optional[EpochMillis] = None


class PasteMetadataResponse(PasteViewResponse):
    created_at: Optional[EpochMillis] = None


class HealthResponse(BaseModel):
    ok: bool = True
    storage: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ErrorResponse(BaseModel):
    error: str
    field: Optional[str] = None
