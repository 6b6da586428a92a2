from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional

from pastebin.clock import wall_clock_ms
from pastebin.domain.models import PasteRecord
from pastebin.ids import generate_paste_id, is_addressable
from pastebin.observability import get_correlation_id
from pastebin.repositories.paste_repository import PasteRepository, StorageError


logger = logging.getLogger(__name__)

__all__ = [
    "IdentifierExhaustedError",
    "InvalidPasteParameters",
    "PasteError",
    "PasteNotFoundError",
    "PasteService",
    "StorageError",
]


class PasteError(Exception):
    """Base class for paste-related errors."""


class InvalidPasteParameters(PasteError):
    """Raised when creating a paste with invalid parameters."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class PasteNotFoundError(PasteError):
    """
    Raised when a paste cannot be served.

    Unknown, expired, exhausted and corrupt pastes are deliberately
    indistinguishable.
    """

    def __init__(self) -> None:
        super().__init__("Paste not found")


class IdentifierExhaustedError(PasteError):
    """Raised when no free identifier was found within the attempt budget."""


MAX_CONTENT_LENGTH = 10 * 1024 * 1024  # 10 MiB
MAX_TTL_SECONDS = 365 * 24 * 60 * 60
MAX_VIEWS_LIMIT = 1_000_000
ID_ATTEMPTS = 10


def _record_to_dto(paste_id: str, record: PasteRecord) -> dict[str, Any]:
    return {
        "id": paste_id,
        "created_at": record.created_at,
        "expires_at": record.expires_at,
        "max_views": record.max_views,
    }


def _coerce_int(value: Any, field_name: str) -> int:
    """Accept ints and integral finite floats (JSON numbers); reject the rest."""
    if isinstance(value, bool):
        raise InvalidPasteParameters(field_name, f"{field_name} must be a number.")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise InvalidPasteParameters(field_name, f"{field_name} must be an integer.")
        return int(value)
    raise InvalidPasteParameters(field_name, f"{field_name} must be a number.")


def _validate_optional_range(
    value: Any, field_name: str, upper: int, upper_label: str
) -> Optional[int]:
    if value is None:
        return None
    number = _coerce_int(value, field_name)
    if number < 1:
        raise InvalidPasteParameters(field_name, f"{field_name} must be >= 1.")
    if number > upper:
        raise InvalidPasteParameters(field_name, f"{field_name} cannot exceed {upper_label}.")
    return number


@dataclass
class PasteService:
    """
    Application service coordinating the paste lifecycle.

    Validates creation parameters, evaluates expiry and view budgets lazily
    on access, and commits counted views through conditional writes so that
    concurrent fetches of one paste never spend the same view twice.
    Returns plain dict DTOs; records never escape this layer.
    """

    repository: PasteRepository
    id_factory: Callable[[], str] = generate_paste_id
    clock: Callable[[], int] = wall_clock_ms
    swap_attempts: int = 16
    id_attempts: int = ID_ATTEMPTS

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------
    def create_paste(
        self,
        content: Any,
        ttl_seconds: Any = None,
        max_views: Any = None,
        *,
        now_ms: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        Create a new paste enforcing business rules:

        - ``content`` must be a non-blank string of at most 10 MiB
        - ``ttl_seconds`` (if provided) must be an integer in [1, one year]
        - ``max_views`` (if provided) must be an integer in [1, 1,000,000]

        Nothing is written when validation fails.
        """
        try:
            ttl, views = self._validate(content, ttl_seconds, max_views)
        except InvalidPasteParameters as exc:
            logger.warning(
                "Invalid %s when creating paste",
                exc.field,
                extra={
                    "event": "paste_create_invalid_parameters",
                    "correlation_id": get_correlation_id(),
                },
            )
            raise

        now = self.clock() if now_ms is None else now_ms
        record = PasteRecord(
            content=content,
            created_at=now,
            expires_at=None if ttl is None else now + ttl * 1000,
            max_views=views,
            remaining_views=views,
            view_count=0,
        )

        for _ in range(self.id_attempts):
            paste_id = self.id_factory()
            if self.repository.exists(paste_id):
                continue
            if self.repository.save(paste_id, record, only_if_absent=True):
                logger.info(
                    "Paste created",
                    extra={
                        "event": "paste_created",
                        "paste_id": paste_id,
                        "correlation_id": get_correlation_id(),
                    },
                )
                return _record_to_dto(paste_id, record)

        logger.error(
            "Could not allocate a paste identifier",
            extra={"event": "paste_id_exhausted", "correlation_id": get_correlation_id()},
        )
        raise IdentifierExhaustedError(
            f"Could not allocate identifier after {self.id_attempts} attempts."
        )

    @staticmethod
    def _validate(
        content: Any, ttl_seconds: Any, max_views: Any
    ) -> tuple[Optional[int], Optional[int]]:
        if content is None:
            raise InvalidPasteParameters("content", "content is required")
        if not isinstance(content, str):
            raise InvalidPasteParameters("content", "content must be a string")
        if content.strip() == "":
            raise InvalidPasteParameters("content", "content cannot be empty")
        if len(content) > MAX_CONTENT_LENGTH:
            raise InvalidPasteParameters("content", "content exceeds maximum size of 10MB")

        ttl = _validate_optional_range(ttl_seconds, "ttl_seconds", MAX_TTL_SECONDS, "1 year")
        views = _validate_optional_range(max_views, "max_views", MAX_VIEWS_LIMIT, "1,000,000")
        return ttl, views

    # -------------------------------------------------------------------------
    # Retrieval
    # -------------------------------------------------------------------------
    def fetch_counted(self, paste_id: Any, *, now_ms: Optional[int] = None) -> dict[str, Any]:
        """
        Serve a paste and spend one view of its budget.

        Each round loads the record with its version, decides, and commits
        the decision with a conditional write. Losing the write to a
        concurrent fetch restarts the round against fresh state, so the
        load-decide-commit sequence is linearizable per paste.
        """
        if not is_addressable(paste_id):
            raise PasteNotFoundError()
        now = self.clock() if now_ms is None else now_ms

        for _ in range(self.swap_attempts):
            loaded = self.repository.load_versioned(paste_id)
            if loaded is None:
                raise PasteNotFoundError()
            record, version = loaded

            self._reject_unservable(paste_id, record, now)

            viewed = record.counted_view()
            terminal = viewed.exhausted
            if not self.repository.replace(paste_id, version, None if terminal else viewed):
                logger.info(
                    "Concurrent view detected; retrying",
                    extra={
                        "event": "paste_view_conflict",
                        "paste_id": paste_id,
                        "correlation_id": get_correlation_id(),
                    },
                )
                continue

            logger.info(
                "Paste view counted",
                extra={
                    "event": "paste_exhausted" if terminal else "paste_view_counted",
                    "paste_id": paste_id,
                    "correlation_id": get_correlation_id(),
                },
            )
            return {
                "content": viewed.content,
                "remaining_views": viewed.remaining_views,
                "expires_at": viewed.expires_at,
            }

        raise StorageError(
            f"Paste view could not be committed after {self.swap_attempts} attempts."
        )

    def fetch_metadata(self, paste_id: Any, *, now_ms: Optional[int] = None) -> dict[str, Any]:
        """Serve a paste without touching its view budget."""
        if not is_addressable(paste_id):
            raise PasteNotFoundError()
        now = self.clock() if now_ms is None else now_ms

        record = self.repository.load(paste_id)
        if record is None:
            raise PasteNotFoundError()

        self._reject_unservable(paste_id, record, now)

        return {
            "content": record.content,
            "remaining_views": record.remaining_views,
            "expires_at": record.expires_at,
            "created_at": record.created_at,
        }

    def _reject_unservable(self, paste_id: str, record: PasteRecord, now: int) -> None:
        """Delete and raise not-found for expired or already exhausted pastes."""
        if record.is_expired(now):
            event = "paste_expired"
        elif record.exhausted:
            event = "paste_exhausted"
        else:
            return

        self.repository.delete(paste_id)
        logger.info(
            "Paste no longer servable; deleted",
            extra={
                "event": event,
                "paste_id": paste_id,
                "correlation_id": get_correlation_id(),
            },
        )
        raise PasteNotFoundError()
