"""Normalized import models handed to the host application.

These shapes are independent from the Trakt wire format: the mapper adapts
remote rows into them and the provider returns them to the host, which owns
them from then on (including any de-duplication on ``external_id``).
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


class ImportMediaType(str, Enum):
    """Media categories understood by the host import model."""

    MOVIE = "movie"
    TV = "tv"
    TV_EPISODE = "tv_episode"


class ImportedRecord(BaseModel):
    """Fields shared by every normalized record."""

    model_config = ConfigDict(frozen=True)

    external_id: str = Field(description="Stable key, e.g. 'trakt:movie:123'")
    additional_ids: Dict[str, str] = Field(default_factory=dict)
    media_type: ImportMediaType
    title: str
    year: Optional[int] = None


class ImportedWatchEvent(ImportedRecord):
    watched_at: datetime
    progress_percent: float = Field(default=100.0, ge=0, le=100)
    history_id: Optional[int] = None
    action: Optional[str] = None


class ImportedRating(ImportedRecord):
    rating: int = Field(ge=1, le=10)
    rated_at: datetime


class ImportedWatchlistEntry(ImportedRecord):
    added_at: datetime
    rank: Optional[int] = None
    notes: Optional[str] = None


class ImportCapabilities(BaseModel):
    model_config = ConfigDict(frozen=True)

    supports_history: bool = True
    supports_ratings: bool = True
    supports_watchlist: bool = True
    requires_device_auth: bool = True


# ---------------------------------------------------------------------------
# Device authorization results
# ---------------------------------------------------------------------------


class DeviceAuthStatus(str, Enum):
    PENDING = "pending"
    SLOW_DOWN = "slow_down"
    AUTHORIZED = "authorized"
    EXPIRED = "expired"
    DENIED = "denied"
    ALREADY_USED = "already_used"

    @property
    def is_terminal(self) -> bool:
        return self not in {DeviceAuthStatus.PENDING, DeviceAuthStatus.SLOW_DOWN}


class DeviceAuthStart(BaseModel):
    """What the host shows the user, plus the opaque code it polls with.

    ``poll_code`` is the device-code grant secret and must never be displayed;
    ``user_code`` is the short code the user types at ``verification_url``.
    """

    model_config = ConfigDict(frozen=True)

    user_code: str
    verification_url: str
    expires_in: int
    interval: int
    poll_code: str


class DeviceAuthPollResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: DeviceAuthStatus
    new_settings: Mapping[str, str] = Field(default_factory=dict)
    error_message: Optional[str] = None
    retry_interval: Optional[int] = None

    @property
    def should_retry(self) -> bool:
        return not self.status.is_terminal


__all__ = [
    "DeviceAuthPollResult",
    "DeviceAuthStart",
    "DeviceAuthStatus",
    "ImportCapabilities",
    "ImportMediaType",
    "ImportedRating",
    "ImportedRecord",
    "ImportedWatchEvent",
    "ImportedWatchlistEntry",
]
