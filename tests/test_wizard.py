from __future__ import annotations

import asyncio
from datetime import date

import pytest

from campaignpilot.store import CampaignRecord, CampaignStoreError, campaign_row
from campaignpilot.wizard import (
    INCOMPLETE_STEP_MESSAGE,
    LAST_STEP,
    STEP_IDS,
    SUBMITTING_MESSAGE,
    CampaignDraft,
    CampaignWizard,
    CatalogLoadError,
    WizardBusyError,
    load_reference_data,
)

from conftest import FakeCatalog, RecordingStore


def _opened(catalog, store, **kwargs) -> CampaignWizard:
    w = CampaignWizard(catalog, store, user_id="u-1", **kwargs)
    asyncio.run(w.open())
    return w


def _to_review(w: CampaignWizard, *, platform_id: str = "google_ads", name: str = "Q4 Launch") -> None:
    assert w.select_platform(platform_id).ok
    assert w.next().ok
    assert w.update_basic_info(name=name, objective="Awareness").ok
    assert w.next().ok
    assert w.set_taxonomy_value("Objective", "Awareness").ok
    assert w.next().ok
    assert w.current_step == LAST_STEP


def _active(w: CampaignWizard):
    return [s.id for s in w.steps if s.is_active]


def test_open_starts_at_first_step(catalog, store) -> None:
    w = _opened(catalog, store)

    assert w.is_open
    assert not w.is_loading
    assert w.current_step == 0
    assert _active(w) == ["platform"]
    assert not any(s.is_completed for s in w.steps)
    assert w.draft == CampaignDraft()
    assert w.generated_identifier is None
    assert [p.id for p in w.reference_data.platforms] == ["google_ads", "manual_ads"]


def test_previous_on_first_step_is_a_no_op(catalog, store) -> None:
    w = _opened(catalog, store)
    before = w.snapshot()

    result = w.previous()

    assert not result.ok
    assert w.snapshot() == before


def test_next_without_platform_stays_put(catalog, store) -> None:
    w = _opened(catalog, store)

    result = w.next()

    assert not result.ok
    assert result.message == INCOMPLETE_STEP_MESSAGE
    assert w.current_step == 0
    assert not w.steps[0].is_completed
    assert _active(w) == ["platform"]


def test_select_unknown_platform_is_rejected(catalog, store) -> None:
    w = _opened(catalog, store)
    assert not w.select_platform("nope").ok
    assert w.draft.platform_id == ""


def test_basic_step_requires_name_and_objective(catalog, store) -> None:
    w = _opened(catalog, store)
    w.select_platform("google_ads")
    w.next()

    w.update_basic_info(name="Q4 Launch")
    assert not w.next().ok
    w.update_basic_info(objective="Awareness")
    assert w.next().ok
    assert w.current_step_id == "taxonomy"


def test_taxonomy_step_requires_required_categories(catalog, store) -> None:
    w = _opened(catalog, store)
    w.select_platform("google_ads")
    w.next()
    w.update_basic_info(name="Q4 Launch", objective="Awareness")
    w.next()

    assert w.missing_required_categories() == ["Objective"]
    assert not w.next().ok

    w.set_taxonomy_value("Funnel Stage", "Top")
    assert not w.next().ok

    w.set_taxonomy_value("Objective", "Awareness")
    assert w.missing_required_categories() == []
    assert w.next().ok


def test_happy_path_submits_once_and_closes(catalog, store) -> None:
    w = _opened(catalog, store)
    _to_review(w)

    assert [s.is_completed for s in w.steps] == [True, True, True, False]
    assert _active(w) == ["review"]
    assert w.generated_identifier is not None
    assert w.generated_identifier.generated_id == "q4-launch"
    assert w.can_submit()

    result = asyncio.run(w.submit())

    assert result.ok
    assert result.record is not None
    assert result.record.generated_id == "q4-launch"
    assert result.record.taxonomy_data == {"Objective": "Awareness"}
    assert result.record.status == "draft"
    assert result.record.user_id == "u-1"
    assert len(store.calls) == 1

    assert not w.is_open
    assert w.draft == CampaignDraft()
    assert _active(w) == []
    assert store.list_campaigns("u-1") == [result.record]


def test_next_on_last_step_is_rejected(catalog, store) -> None:
    w = _opened(catalog, store)
    _to_review(w)

    assert not w.next().ok
    assert w.current_step == LAST_STEP


def test_edit_on_review_recomputes_identifier(catalog, store) -> None:
    w = _opened(catalog, store)
    _to_review(w)

    w.update_basic_info(name="Q1 Kickoff Event")
    assert w.generated_identifier.generated_id == "q1-kickoff-event"

    w.select_platform("manual_ads")
    assert w.generated_identifier.generated_id == "Q1 Kickoff Event"
    assert w.generated_identifier.platform == "Manual Ads"


def test_forbidden_character_flips_review_gate(catalog, store) -> None:
    w = _opened(catalog, store)
    _to_review(w, platform_id="manual_ads", name="Q4 Launch")
    assert w.can_submit()

    w.update_basic_info(name="Q4 Launch!")

    assert not w.generated_identifier.validation.is_valid
    assert not w.can_submit()
    result = asyncio.run(w.submit())
    assert not result.ok
    assert not result.store_error
    assert result.message == INCOMPLETE_STEP_MESSAGE
    assert store.calls == []

    w.update_basic_info(name="Q4 Launch")
    assert w.can_submit()


def test_name_over_limit_blocks_review_for_unconverted_platform(catalog, store) -> None:
    w = _opened(catalog, store)
    _to_review(w, platform_id="manual_ads", name="Q4 Launch")

    w.update_basic_info(name="Q4 Launch Extended")

    assert w.generated_identifier.validation.errors == [
        "Campaign ID exceeds maximum length of 12 characters"
    ]
    assert not w.can_submit()


def test_gate_uses_live_draft_not_completion_flags(catalog, store) -> None:
    w = _opened(catalog, store)
    _to_review(w)
    w.previous()
    w.previous()
    assert w.current_step_id == "basic"
    assert w.steps[1].is_completed

    w.update_basic_info(name="")

    assert not w.next().ok
    assert w.generated_identifier is None


def test_failed_submit_preserves_state(catalog) -> None:
    store = RecordingStore(fail=True)
    w = _opened(catalog, store)
    _to_review(w)
    before = w.snapshot()

    result = asyncio.run(w.submit())

    assert not result.ok
    assert result.store_error
    assert result.message == "database unavailable"
    assert w.snapshot() == before
    assert not w.is_submitting

    store.fail = False
    retry = asyncio.run(w.submit())
    assert retry.ok
    assert len(store.calls) == 2


def test_submit_off_review_step_is_rejected(catalog, store) -> None:
    w = _opened(catalog, store)
    w.select_platform("google_ads")

    result = asyncio.run(w.submit())

    assert not result.ok
    assert not result.store_error
    assert store.calls == []


def test_cancel_never_calls_store(catalog, store) -> None:
    w = _opened(catalog, store)
    _to_review(w)

    assert w.cancel().ok

    assert store.calls == []
    assert not w.is_open
    assert w.draft == CampaignDraft()
    assert w.next().message == "Wizard is closed"


def test_reset_returns_to_initial_state(catalog, store) -> None:
    w = _opened(catalog, store)
    _to_review(w)

    w.reset()

    assert w.is_open
    assert w.current_step == 0
    assert _active(w) == ["platform"]
    assert w.draft == CampaignDraft()
    assert w.generated_identifier is None


def test_update_basic_info_coerces_and_rejects(catalog, store) -> None:
    w = _opened(catalog, store)

    w.update_basic_info(budget="12.5", start_date="2026-01-02", notes=None)
    assert w.draft.budget == 12.5
    assert w.draft.start_date == date(2026, 1, 2)
    assert w.draft.notes == ""

    with pytest.raises(ValueError):
        w.update_basic_info(budget=-1)
    with pytest.raises(ValueError):
        w.update_basic_info(end_date="next tuesday")
    with pytest.raises(ValueError):
        w.update_basic_info(colour="red")


def test_taxonomy_values_set_clear_and_validate_category(catalog, store) -> None:
    w = _opened(catalog, store)

    assert not w.set_taxonomy_value("Channel", "Search").ok
    assert w.set_taxonomy_value("Objective", "Awareness").ok
    assert w.draft.taxonomy_data == {"Objective": "Awareness"}

    assert w.set_taxonomy_value("Objective", "  ").ok
    assert w.draft.taxonomy_data == {}

    w.set_taxonomy_value("Funnel Stage", "Top")
    w.clear_taxonomy_value("Funnel Stage")
    assert w.draft.taxonomy_data == {}


def test_degraded_load_still_opens(store) -> None:
    catalog = FakeCatalog(fail=("categories",))
    w = _opened(catalog, store, catalog_failure_policy="degrade")

    assert w.is_open
    assert w.reference_data.categories == ()
    assert "categories" in w.reference_data.load_errors
    assert w.missing_required_categories() == []
    # Without loaded categories any category name is accepted.
    assert w.set_taxonomy_value("Channel", "Search").ok


def test_blocking_load_failure_closes_wizard(store) -> None:
    catalog = FakeCatalog(fail=("platforms",))
    w = CampaignWizard(catalog, store, user_id="u-1", catalog_failure_policy="block")

    with pytest.raises(CatalogLoadError):
        asyncio.run(w.open())
    assert not w.is_open


def test_load_reference_data_reads_all_three(catalog) -> None:
    data = asyncio.run(load_reference_data(catalog, catalog))
    assert sorted(catalog.calls) == ["categories", "platforms", "values"]
    assert len(data.values) == 3
    assert data.load_errors == {}


class _SlowCatalog(FakeCatalog):
    def __init__(self, release: asyncio.Event):
        super().__init__()
        self.release = release

    async def list_platforms(self):
        await self.release.wait()
        return list(self.platforms)

    async def list_categories(self):
        return list(self.categories)

    async def list_values(self):
        return list(self.values)


def test_stale_load_is_discarded_after_reset(store) -> None:
    async def scenario():
        release = asyncio.Event()
        w = CampaignWizard(_SlowCatalog(release), store, user_id="u-1")
        task = asyncio.create_task(w.open())
        await asyncio.sleep(0)

        assert w.is_loading
        assert w.select_platform("google_ads").message == "Platforms are still loading"

        w.reset()
        release.set()
        await task
        return w

    w = asyncio.run(scenario())

    assert not w.is_loading
    assert w.reference_data.platforms == ()
    assert not w.select_platform("google_ads").ok


class _SlowStore(RecordingStore):
    def __init__(self, release: asyncio.Event):
        super().__init__()
        self.release = release

    async def create_campaign(self, draft, generated, user_id):
        self.calls.append((draft, generated, user_id))
        await self.release.wait()
        return CampaignRecord(id="c-1", **campaign_row(draft, generated, user_id))


def test_transitions_rejected_while_submitting(catalog) -> None:
    async def scenario():
        release = asyncio.Event()
        store = _SlowStore(release)
        w = CampaignWizard(catalog, store, user_id="u-1")
        await w.open()
        _to_review(w)

        first = asyncio.create_task(w.submit())
        await asyncio.sleep(0)
        assert w.is_submitting

        second = await w.submit()
        back = w.previous()
        edit = w.update_basic_info(name="Other")
        cancel = w.cancel()

        release.set()
        return await first, second, back, edit, cancel, store

    first, second, back, edit, cancel, store = asyncio.run(scenario())

    assert first.ok
    assert first.record.id == "c-1"
    assert not second.ok
    assert not back.ok
    assert not edit.ok
    assert not cancel.ok
    assert len(store.calls) == 1


def test_lifecycle_rejected_while_submitting(catalog) -> None:
    async def scenario():
        release = asyncio.Event()
        w = CampaignWizard(catalog, _SlowStore(release), user_id="u-1")
        await w.open()
        _to_review(w)

        first = asyncio.create_task(w.submit())
        await asyncio.sleep(0)

        with pytest.raises(WizardBusyError):
            await w.open()
        reset = w.reset()
        close = w.close()
        during = (w.is_open, w.current_step_id, w.draft.name)

        release.set()
        return await first, reset, close, during, w

    first, reset, close, during, w = asyncio.run(scenario())

    assert reset.message == SUBMITTING_MESSAGE
    assert not close.ok
    assert during == (True, "review", "Q4 Launch")
    assert first.ok
    assert not w.is_open


class _SlowFailingStore(_SlowStore):
    async def create_campaign(self, draft, generated, user_id):
        self.calls.append((draft, generated, user_id))
        await self.release.wait()
        raise CampaignStoreError("database unavailable")


def test_reset_during_failed_submit_keeps_draft(catalog) -> None:
    async def scenario():
        release = asyncio.Event()
        w = CampaignWizard(catalog, _SlowFailingStore(release), user_id="u-1")
        await w.open()
        _to_review(w)
        before = w.snapshot()

        first = asyncio.create_task(w.submit())
        await asyncio.sleep(0)
        rejected = w.reset()

        release.set()
        return await first, rejected, before, w

    result, rejected, before, w = asyncio.run(scenario())

    assert not rejected.ok
    assert result.store_error
    assert w.snapshot() == before
    assert w.is_open


def test_snapshot_shape(catalog, store) -> None:
    w = _opened(catalog, store)
    _to_review(w)
    snap = w.snapshot()

    assert snap["current_step_id"] == STEP_IDS[LAST_STEP]
    assert snap["generated_identifier"]["generated_id"] == "q4-launch"
    assert snap["platform"]["rules"] == ["lowercase", "hyphen separated", "max 30 chars", "no '!?'"]
    assert snap["can_submit"] is True
    assert snap["can_advance"] is False
