"""Campaign persistence collaborator.

The wizard hands a finished draft plus its frozen identifier to a store exactly
once per submission. A store either returns the created CampaignRecord or
raises; the wizard never retries.

Backends:
- memory:   process-local dict (local dev, tests)
- postgres: see `campaignpilot.db.PostgresCampaignStore`
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol

from .config import normalize_store_backend, settings
from .naming import GeneratedIdentifier

if TYPE_CHECKING:
    from .wizard import CampaignDraft

logger = logging.getLogger(__name__)

CAMPAIGN_STATUSES = ("draft", "active", "paused", "completed")


class CampaignStoreError(RuntimeError):
    """Persistence failed; the message is safe to show to the user."""


@dataclass(frozen=True)
class CampaignRecord:
    id: str
    name: str
    platform_id: str
    user_id: str
    status: str
    generated_id: str
    budget: Optional[float] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    objective: str = ""
    target_audience: str = ""
    notes: str = ""
    taxonomy_data: Dict[str, str] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def _opt_date(value: Any, key: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as e:
        raise ValueError(f"{key} must be an ISO date (YYYY-MM-DD). Got: {value!r}") from e


def _opt_float(value: Any, key: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{key} must be a number. Got: {value!r}") from e


@dataclass(frozen=True)
class CampaignFilters:
    """Optional narrowing for campaign listings.

    Date bounds follow the campaign window: `start_date >= start_from` and
    `end_date <= end_to`. Campaigns without the compared field never match a bound.
    """

    platform_id: Optional[str] = None
    status: Optional[str] = None
    start_from: Optional[date] = None
    end_to: Optional[date] = None
    min_budget: Optional[float] = None
    max_budget: Optional[float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "platform_id", (self.platform_id or "").strip() or None)
        status = (self.status or "").strip().lower() or None
        if status is not None and status not in CAMPAIGN_STATUSES:
            raise ValueError(f"Unsupported status {self.status!r}. Allowed: {list(CAMPAIGN_STATUSES)}")
        object.__setattr__(self, "status", status)
        object.__setattr__(self, "start_from", _opt_date(self.start_from, "start_from"))
        object.__setattr__(self, "end_to", _opt_date(self.end_to, "end_to"))
        object.__setattr__(self, "min_budget", _opt_float(self.min_budget, "min_budget"))
        object.__setattr__(self, "max_budget", _opt_float(self.max_budget, "max_budget"))

    def matches(self, r: CampaignRecord) -> bool:
        if self.platform_id and r.platform_id != self.platform_id:
            return False
        if self.status and r.status != self.status:
            return False
        if self.start_from and (r.start_date is None or r.start_date < self.start_from):
            return False
        if self.end_to and (r.end_date is None or r.end_date > self.end_to):
            return False
        if self.min_budget is not None and (r.budget is None or r.budget < self.min_budget):
            return False
        if self.max_budget is not None and (r.budget is None or r.budget > self.max_budget):
            return False
        return True


class CampaignStore(Protocol):
    def create_campaign(
        self, draft: "CampaignDraft", generated: GeneratedIdentifier, user_id: str
    ) -> CampaignRecord: ...


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def campaign_row(draft: "CampaignDraft", generated: GeneratedIdentifier, user_id: str) -> Dict[str, Any]:
    """Flatten a submitted draft into the column set shared by all backends."""

    if not user_id:
        raise CampaignStoreError("user_id is required")
    if not draft.platform_id:
        raise CampaignStoreError("platform is required")

    return {
        "name": draft.name,
        "platform_id": draft.platform_id,
        "user_id": user_id,
        "status": "draft",
        "budget": draft.budget,
        "start_date": draft.start_date,
        "end_date": draft.end_date,
        "objective": draft.objective,
        "target_audience": draft.target_audience,
        "notes": draft.notes,
        "generated_id": generated.generated_id,
        # Exporters consume this as a flat str -> str mapping.
        "taxonomy_data": {str(k): str(v) for k, v in draft.taxonomy_data.items()},
    }


class InMemoryCampaignStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, CampaignRecord] = {}

    def create_campaign(
        self, draft: "CampaignDraft", generated: GeneratedIdentifier, user_id: str
    ) -> CampaignRecord:
        row = campaign_row(draft, generated, user_id)
        ts = now_utc()
        record = CampaignRecord(id=str(uuid.uuid4()), created_at=ts, updated_at=ts, **row)
        with self._lock:
            self._records[record.id] = record
        logger.info("Campaign created", extra={"campaign_id": record.id, "user_id": user_id})
        return record

    def list_campaigns(
        self, user_id: str, filters: Optional[CampaignFilters] = None, *, limit: int = 100
    ) -> List[CampaignRecord]:
        f = filters or CampaignFilters()
        with self._lock:
            rows = [r for r in self._records.values() if r.user_id == user_id and f.matches(r)]
        return sorted(rows, key=lambda r: r.created_at or now_utc(), reverse=True)[: int(limit)]

    def get_campaign(self, campaign_id: str, user_id: str) -> Optional[CampaignRecord]:
        with self._lock:
            r = self._records.get(campaign_id)
        return r if r and r.user_id == user_id else None


_memory_store: Optional[InMemoryCampaignStore] = None


def get_store() -> Any:
    global _memory_store
    backend = normalize_store_backend(settings.store_backend)
    if backend == "postgres":
        from .db import PostgresCampaignStore

        return PostgresCampaignStore()

    if _memory_store is None:
        _memory_store = InMemoryCampaignStore()
    return _memory_store
