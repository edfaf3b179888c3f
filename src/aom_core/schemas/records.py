"""Pydantic models for platform cost records, visits and the attribution ledger."""
import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class Platform(str, Enum):
    """Supported advertising platforms, in merge priority order."""

    ADWORDS = "AdWords"
    BING = "Bing"
    CRITEO = "Criteo"
    FACEBOOK_ADS = "FacebookAds"

    @classmethod
    def from_name(cls, name: str) -> Optional["Platform"]:
        """Return the platform for an exact name, or None when unsupported."""
        for platform in cls:
            if platform.value == name:
                return platform
        return None


def _canonicalize(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(key): _canonicalize(value[key]) for key in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [_canonicalize(item) for item in value]
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        return round(value, 6)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def canonical_json(value: Any) -> str:
    """Serialize to JSON with sorted keys and fixed number formatting.

    Integral floats are written as integers and other floats are rounded to
    six decimals, so the same payload hashes identically whichever source
    produced it.
    """
    return json.dumps(
        _canonicalize(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
    )


def visit_unique_hash(visit_id: int) -> str:
    """Ledger key for a row backed by a real analytics visit."""
    return f"visit-{visit_id}"


def synthetic_unique_hash(day: date, channel: Optional[str], payload: dict) -> str:
    """Ledger key for a synthetic row, derived from its date, channel and payload."""
    digest = hashlib.md5(canonical_json(payload).encode("utf-8")).hexdigest()
    return f"{day.isoformat()}-{channel or ''}-{digest}"


class CostRecord(BaseModel):
    """One platform-reported spend line for a campaign/account on a date."""

    platform: Platform
    external_row_id: str = Field(
        ..., description="Stable platform row key referenced by tracked visits"
    )
    site_id: int
    metric_date: date = Field(..., description="Platform-local date of the spend")
    account_id: Optional[str] = None
    campaign_id: Optional[str] = None
    campaign: Optional[str] = None
    clicks: int = 0
    cost: float = 0.0
    conversions: int = 0
    conversion_value: float = 0.0
    platform_data: dict = Field(
        default_factory=dict, description="Free-form platform specific payload"
    )

    @property
    def is_relevant(self) -> bool:
        """Rows without clicks and cost are ignored by the merge."""
        return self.clicks > 0 or self.cost > 0

    @property
    def cpc(self) -> Optional[float]:
        if self.clicks <= 0:
            return None
        return self.cost / self.clicks

    def payload(self) -> dict:
        """Full record as a canonical dict, stored as the ledger's platform data."""
        return json.loads(canonical_json(self.model_dump(mode="json")))


class VisitRecord(BaseModel):
    """One analytics visit, enriched with any platform hint set at tracking time."""

    visit_id: Optional[int] = None
    visitor_id: str
    site_id: int
    first_action_time_utc: datetime
    referer_type: str = Field("", description="direct|search_engine|website|campaign or empty")
    campaign_name: Optional[str] = None
    campaign_data: dict = Field(default_factory=dict)
    platform: Optional[str] = Field(None, description="Platform hint attached at tracking time")
    platform_row_id: Optional[str] = Field(
        None, description="External row id of the cost record this visit came from"
    )
    conversions: int = 0
    revenue: Optional[float] = None


class AttributedVisit(BaseModel):
    """One reconciled ledger row: a real or synthetic visit with allocated cost."""

    site_id: int
    visit_id: Optional[int] = None
    visitor_id: str
    first_action_time_utc: datetime
    date_website_timezone: date
    channel: Optional[str] = None
    campaign_data: Optional[dict] = None
    platform_data: Optional[dict] = None
    cost: Optional[float] = None
    conversions: Optional[int] = None
    revenue: Optional[float] = None
    unique_hash: str

    @property
    def is_synthetic(self) -> bool:
        return self.visit_id is None
