"""Pytest configuration.

CampaignPilot is run app-first (uvicorn against the repo checkout). For tests we
add the repo root to sys.path so `import campaignpilot` works without an
editable install.

Shared fakes for the catalog and store collaborators live here too.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, List, Optional

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


from campaignpilot.catalog import Platform, TaxonomyCategory, TaxonomyValue  # noqa: E402
from campaignpilot.store import CampaignStoreError, InMemoryCampaignStore  # noqa: E402


GOOGLE = Platform(
    id="google_ads",
    name="Google Ads",
    naming_convention="lowercase with hyphens",
    max_campaign_name_length=30,
    forbidden_characters="!?",
)

# No naming convention: the name is used as typed and only validated.
MANUAL = Platform(
    id="manual_ads",
    name="Manual Ads",
    max_campaign_name_length=12,
    forbidden_characters="!",
)

OBJECTIVE = TaxonomyCategory(id="objective", name="Objective", is_required=True, sort_order=0)
FUNNEL = TaxonomyCategory(id="funnel", name="Funnel Stage", is_required=False, sort_order=1)

VALUES = [
    TaxonomyValue(id="objective:Awareness", category_id="objective", value="Awareness"),
    TaxonomyValue(id="objective:Conversions", category_id="objective", value="Conversions", sort_order=1),
    TaxonomyValue(id="funnel:Top", category_id="funnel", value="Top"),
]


class FakeCatalog:
    """In-memory catalog; `fail` names the reads that raise."""

    def __init__(
        self,
        platforms: Optional[List[Platform]] = None,
        categories: Optional[List[TaxonomyCategory]] = None,
        values: Optional[List[TaxonomyValue]] = None,
        fail: tuple = (),
    ):
        self.platforms = [GOOGLE, MANUAL] if platforms is None else platforms
        self.categories = [OBJECTIVE, FUNNEL] if categories is None else categories
        self.values = list(VALUES) if values is None else values
        self.fail = fail
        self.calls: List[str] = []

    def _read(self, name: str, rows: List[Any]) -> List[Any]:
        self.calls.append(name)
        if name in self.fail:
            raise RuntimeError(f"{name} backend unavailable")
        return list(rows)

    def list_platforms(self) -> List[Platform]:
        return self._read("platforms", self.platforms)

    def list_categories(self) -> List[TaxonomyCategory]:
        return self._read("categories", self.categories)

    def list_values(self) -> List[TaxonomyValue]:
        return self._read("values", self.values)


class RecordingStore(InMemoryCampaignStore):
    """Memory store that records calls and can be told to fail."""

    def __init__(self, fail: bool = False):
        super().__init__()
        self.fail = fail
        self.calls: List[Any] = []

    def create_campaign(self, draft, generated, user_id):
        self.calls.append((draft, generated, user_id))
        if self.fail:
            raise CampaignStoreError("database unavailable")
        return super().create_campaign(draft, generated, user_id)


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()
