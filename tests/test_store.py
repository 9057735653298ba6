from __future__ import annotations

from datetime import date

import psycopg2
import pytest

from campaignpilot import db
from campaignpilot.naming import NamingRule, generate_identifier
from campaignpilot.store import CampaignFilters, CampaignStoreError, InMemoryCampaignStore, campaign_row
from campaignpilot.wizard import CampaignDraft


DRAFT = CampaignDraft(
    name="Q4 Launch",
    platform_id="google_ads",
    objective="Awareness",
    budget=1500.0,
    taxonomy_data={"Objective": "Awareness"},
)
GENERATED = generate_identifier("Q4 Launch", NamingRule(case_transform="lowercase", separator="hyphen"))


def test_campaign_row_freezes_identifier_and_status() -> None:
    row = campaign_row(DRAFT, GENERATED, "u-1")
    assert row["generated_id"] == "q4-launch"
    assert row["status"] == "draft"
    assert row["taxonomy_data"] == {"Objective": "Awareness"}


@pytest.mark.parametrize(
    "draft,user_id",
    [
        (DRAFT, ""),
        (CampaignDraft(name="Q4 Launch"), "u-1"),
    ],
)
def test_campaign_row_requires_user_and_platform(draft, user_id) -> None:
    with pytest.raises(CampaignStoreError):
        campaign_row(draft, GENERATED, user_id)


def test_memory_store_scopes_by_user() -> None:
    store = InMemoryCampaignStore()
    mine = store.create_campaign(DRAFT, GENERATED, "u-1")
    store.create_campaign(DRAFT, GENERATED, "u-2")

    assert [r.id for r in store.list_campaigns("u-1")] == [mine.id]
    assert store.get_campaign(mine.id, "u-1") == mine
    assert store.get_campaign(mine.id, "u-2") is None
    assert mine.created_at is not None


def test_row_to_record_normalizes_db_types() -> None:
    from decimal import Decimal
    from uuid import uuid4

    cid = uuid4()
    rec = db._row_to_record(
        {
            "id": cid,
            "name": "Q4 Launch",
            "platform_id": "google_ads",
            "user_id": "u-1",
            "status": "draft",
            "generated_id": "q4-launch",
            "budget": Decimal("12.50"),
            "taxonomy_data": {"Objective": "Awareness"},
        }
    )
    assert rec.id == str(cid)
    assert rec.budget == 12.5


def test_postgres_store_wraps_driver_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def _down(**kwargs):
        raise psycopg2.OperationalError("could not connect to server\nIs the server running?")

    monkeypatch.setattr(db, "get_conn", _down)

    with pytest.raises(CampaignStoreError) as exc:
        db.PostgresCampaignStore().create_campaign(DRAFT, GENERATED, "u-1")
    assert str(exc.value) == "Failed to create campaign: could not connect to server"


def test_migrations_are_ordered_and_unique() -> None:
    versions = [v for v, _, _ in db._migrations()]
    assert versions == sorted(versions)
    assert len(versions) == len(set(versions))


def test_memory_store_filters() -> None:
    store = InMemoryCampaignStore()
    cheap = store.create_campaign(DRAFT, GENERATED, "u-1")
    pricey = store.create_campaign(
        CampaignDraft(name="Spring", platform_id="meta_ads", budget=9000.0, start_date=date(2026, 4, 1)),
        GENERATED,
        "u-1",
    )

    def ids(**kwargs):
        return [r.id for r in store.list_campaigns("u-1", CampaignFilters(**kwargs))]

    assert ids(platform_id="meta_ads") == [pricey.id]
    assert ids(min_budget=2000) == [pricey.id]
    assert ids(max_budget="2000") == [cheap.id]
    # No start date on the first draft: it never matches a date bound.
    assert ids(start_from="2026-01-01") == [pricey.id]
    assert len(store.list_campaigns("u-1", limit=1)) == 1


@pytest.mark.parametrize(
    "kwargs",
    [{"status": "archived"}, {"start_from": "soon"}, {"max_budget": "many"}],
)
def test_campaign_filters_reject_bad_values(kwargs) -> None:
    with pytest.raises(ValueError):
        CampaignFilters(**kwargs)


def test_filter_clauses_build_parameterized_sql() -> None:
    clauses, params = db._filter_clauses(CampaignFilters(platform_id="google_ads", status="Draft", min_budget=10))
    assert clauses == ["platform_id = %s", "status = %s", "budget >= %s"]
    assert params == ["google_ads", "draft", 10.0]
