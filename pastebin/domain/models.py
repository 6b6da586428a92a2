from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator


class CorruptRecordError(ValueError):
    """Raised when a stored payload cannot be parsed back into a PasteRecord."""


class PasteRecord(BaseModel):
    """
    Paste entity as persisted in the key-value store.

    Timestamps are milliseconds since the epoch. Instances are frozen: every
    change goes through ``model_copy`` so a record handed to one caller can
    never be mutated under another.
    """

    model_config = ConfigDict(strict=True, frozen=True, extra="ignore")

    content: str
    created_at: int
    expires_at: Optional[int] = None
    max_views: Optional[int] = None
    remaining_views: Optional[int] = None
    view_count: int = 0

    @model_validator(mode="after")
    def _check_view_budget(self) -> "PasteRecord":
        if (self.max_views is None) != (self.remaining_views is None):
            raise ValueError("remaining_views must be null exactly when max_views is null.")
        return self

    @property
    def exhausted(self) -> bool:
        return self.remaining_views is not None and self.remaining_views <= 0

    def is_expired(self, now_ms: int) -> bool:
        """Expiry is inclusive: a paste is gone at the exact expiry instant."""
        return self.expires_at is not None and now_ms >= self.expires_at

    def counted_view(self) -> "PasteRecord":
        """Return a copy reflecting one more counted fetch."""
        update: dict[str, int] = {"view_count": self.view_count + 1}
        if self.remaining_views is not None:
            update["remaining_views"] = self.remaining_views - 1
        return self.model_copy(update=update)

    def to_payload(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_payload(cls, payload: str | bytes) -> "PasteRecord":
        try:
            return cls.model_validate_json(payload)
        except ValidationError as exc:
            raise CorruptRecordError(str(exc)) from exc
