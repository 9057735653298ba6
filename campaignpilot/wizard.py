"""Campaign creation wizard.

A fixed, ordered sequence of gated steps:

    platform -> basic -> taxonomy -> review

Each step owns a predicate over the accumulated draft. `next()` only moves on
when the active step's predicate holds against the *live* draft; completion
flags are display state and never used as a gate. The review step's predicate
is the validity of the generated identifier, which is recomputed synchronously
whenever the name, the platform or the taxonomy map changes.

The wizard owns all mutable state. The naming engine is called as a pure
function and never sees the wizard.

Only two operations are asynchronous: `open()` (reference data load) and
`submit()` (persistence). Blocking collaborators run in a worker thread via
asyncio.to_thread. While either is outstanding, transitions that depend on it
are rejected rather than queued.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from .catalog import (
    Platform,
    PlatformCatalog,
    ReferenceData,
    TaxonomyCatalog,
)
from .config import normalize_catalog_failure_policy, settings
from .naming import GeneratedIdentifier, generate_identifier
from .store import CampaignRecord, CampaignStore

logger = logging.getLogger(__name__)

STEP_DEFINITIONS: Tuple[Tuple[str, str, str], ...] = (
    ("platform", "Platform", "Select advertising platform"),
    ("basic", "Basic Info", "Campaign name and details"),
    ("taxonomy", "Taxonomy", "Categorize your campaign"),
    ("review", "Review", "Review and generate ID"),
)
STEP_IDS: Tuple[str, ...] = tuple(s[0] for s in STEP_DEFINITIONS)
LAST_STEP = len(STEP_IDS) - 1

INCOMPLETE_STEP_MESSAGE = "Please complete all required fields"
SUBMITTING_MESSAGE = "A submission is in progress"

BASIC_FIELDS: Tuple[str, ...] = (
    "name",
    "objective",
    "budget",
    "start_date",
    "end_date",
    "target_audience",
    "notes",
)


class CatalogLoadError(RuntimeError):
    """Reference data could not be loaded and the policy is `block`."""


class WizardBusyError(RuntimeError):
    """The wizard cannot be reopened while a submission is outstanding."""


# -----------------------------
# Value objects
# -----------------------------


@dataclass(frozen=True)
class WizardStep:
    id: str
    title: str
    description: str
    is_completed: bool = False
    is_active: bool = False


@dataclass(frozen=True)
class CampaignDraft:
    name: str = ""
    platform_id: str = ""
    budget: Optional[float] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    objective: str = ""
    target_audience: str = ""
    notes: str = ""
    # category name -> selected value
    taxonomy_data: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TransitionResult:
    ok: bool
    message: Optional[str] = None


@dataclass(frozen=True)
class SubmitResult:
    ok: bool
    record: Optional[CampaignRecord] = None
    message: Optional[str] = None
    # True when the store was called and failed (as opposed to a rejected submit)
    store_error: bool = False


def initial_steps() -> Tuple[WizardStep, ...]:
    return tuple(
        WizardStep(id=sid, title=title, description=desc, is_active=(i == 0))
        for i, (sid, title, desc) in enumerate(STEP_DEFINITIONS)
    )


def _with_active(steps: Tuple[WizardStep, ...], index: Optional[int]) -> Tuple[WizardStep, ...]:
    return tuple(dataclasses.replace(s, is_active=(i == index)) for i, s in enumerate(steps))


def _with_completed(steps: Tuple[WizardStep, ...], index: int) -> Tuple[WizardStep, ...]:
    return tuple(dataclasses.replace(s, is_completed=True) if i == index else s for i, s in enumerate(steps))


# -----------------------------
# Field coercion (basic info)
# -----------------------------


def _coerce_text(value: Any) -> str:
    return "" if value is None else str(value)


def _coerce_budget(value: Any) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise ValueError("budget must be a number.")
    try:
        budget = float(value)
    except Exception as e:
        raise ValueError(f"budget must be a number. Got: {value!r}") from e
    if budget < 0:
        raise ValueError("budget must be >= 0.")
    return budget


def _coerce_date(value: Any, field_name: str) -> Optional[date]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as e:
        raise ValueError(f"{field_name} must be an ISO date (YYYY-MM-DD). Got: {value!r}") from e


_COERCERS: Dict[str, Callable[[Any], Any]] = {
    "name": _coerce_text,
    "objective": _coerce_text,
    "target_audience": _coerce_text,
    "notes": _coerce_text,
    "budget": _coerce_budget,
    "start_date": lambda v: _coerce_date(v, "start_date"),
    "end_date": lambda v: _coerce_date(v, "end_date"),
}


# -----------------------------
# Collaborator calls
# -----------------------------


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    """Await a collaborator call whether it is sync (threaded) or async."""

    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    result = await asyncio.to_thread(fn, *args)
    if inspect.isawaitable(result):
        return await result
    return result


async def load_reference_data(
    platforms: PlatformCatalog,
    taxonomy: TaxonomyCatalog,
    *,
    policy: str = "degrade",
) -> ReferenceData:
    """Load platforms, categories and values concurrently.

    With policy=degrade a failed read becomes an empty list (recorded in
    `load_errors`); with policy=block the first failure raises CatalogLoadError.
    """

    policy = normalize_catalog_failure_policy(policy)
    load_errors: Dict[str, str] = {}

    async def _read(name: str, fn: Callable[[], Any]) -> List[Any]:
        try:
            return list(await _call(fn) or [])
        except Exception as e:
            if policy == "block":
                raise CatalogLoadError(f"Failed to load {name}: {e}") from e
            logger.warning(
                "Reference data load failed; continuing with an empty list",
                extra={"error": f"{name}: {e}"},
            )
            load_errors[name] = str(e)
            return []

    p, c, v = await asyncio.gather(
        _read("platforms", platforms.list_platforms),
        _read("categories", taxonomy.list_categories),
        _read("values", taxonomy.list_values),
    )
    return ReferenceData(platforms=tuple(p), categories=tuple(c), values=tuple(v), load_errors=load_errors)


# -----------------------------
# Wizard
# -----------------------------


class CampaignWizard:
    def __init__(
        self,
        catalog: PlatformCatalog,
        store: CampaignStore,
        *,
        user_id: str,
        taxonomy_catalog: Optional[TaxonomyCatalog] = None,
        catalog_failure_policy: Optional[str] = None,
        session_id: Optional[str] = None,
    ):
        self._platform_catalog = catalog
        self._taxonomy_catalog: TaxonomyCatalog = taxonomy_catalog or catalog  # type: ignore[assignment]
        self._store = store
        self.user_id = user_id
        self.session_id = session_id
        self._policy = normalize_catalog_failure_policy(
            catalog_failure_policy if catalog_failure_policy is not None else settings.catalog_failure_policy
        )

        self._reference = ReferenceData()
        self._is_open = True
        self._loading = False
        self._submitting = False
        # Bumped on every reset; in-flight loads compare against it to detect staleness.
        self._epoch = 0
        self._set_initial_state()

    # -----------------
    # Introspection
    # -----------------

    @property
    def current_step(self) -> int:
        return self._current

    @property
    def current_step_id(self) -> str:
        return STEP_IDS[self._current]

    @property
    def steps(self) -> Tuple[WizardStep, ...]:
        return self._steps

    @property
    def draft(self) -> CampaignDraft:
        return self._draft

    @property
    def generated_identifier(self) -> Optional[GeneratedIdentifier]:
        return self._generated

    @property
    def selected_platform(self) -> Optional[Platform]:
        return self._platform

    @property
    def reference_data(self) -> ReferenceData:
        return self._reference

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def is_submitting(self) -> bool:
        return self._submitting

    def can_advance(self) -> bool:
        return self._is_open and not self._submitting and self._current < LAST_STEP and self._gate(self._current)

    def can_submit(self) -> bool:
        return self._is_open and not self._submitting and self._current == LAST_STEP and self._gate(LAST_STEP)

    def missing_required_categories(self) -> List[str]:
        return [
            c.name
            for c in self._reference.required_categories()
            if not (self._draft.taxonomy_data.get(c.name) or "").strip()
        ]

    # -----------------
    # Lifecycle
    # -----------------

    async def open(self) -> ReferenceData:
        """(Re)open the wizard in its initial state and load reference data.

        Raises WizardBusyError while a submission is outstanding.
        """

        if self._submitting:
            raise WizardBusyError(SUBMITTING_MESSAGE)
        self._restart()
        self._loading = True
        epoch = self._epoch
        self._log("Wizard opened")

        try:
            data = await load_reference_data(self._platform_catalog, self._taxonomy_catalog, policy=self._policy)
        except CatalogLoadError:
            if epoch == self._epoch:
                self._loading = False
                self.close()
            raise

        if epoch != self._epoch:
            self._log("Discarding reference data from a superseded load")
            return data

        self._reference = data
        self._loading = False
        return data

    def reset(self) -> TransitionResult:
        """Return to the initial state; rejected while a submission is outstanding."""

        if self._submitting:
            return TransitionResult(ok=False, message=SUBMITTING_MESSAGE)
        self._restart()
        return TransitionResult(ok=True)

    def close(self) -> TransitionResult:
        if self._submitting:
            return TransitionResult(ok=False, message=SUBMITTING_MESSAGE)
        self._is_open = False
        self._current = 0
        self._steps = _with_active(initial_steps(), None)
        self._draft = CampaignDraft()
        self._platform = None
        self._generated = None
        return TransitionResult(ok=True)

    def cancel(self) -> TransitionResult:
        """Discard the draft without persisting anything."""

        if self._submitting:
            return TransitionResult(ok=False, message=SUBMITTING_MESSAGE)
        self._log("Wizard cancelled")
        self._restart()
        self.close()
        return TransitionResult(ok=True)

    # -----------------
    # Draft updates
    # -----------------

    def select_platform(self, platform_id: str) -> TransitionResult:
        blocked = self._blocked()
        if blocked:
            return blocked
        if self._loading:
            return TransitionResult(ok=False, message="Platforms are still loading")

        platform = self._reference.platform_by_id(platform_id)
        if platform is None:
            return TransitionResult(ok=False, message=f"Unknown platform: {platform_id}")

        self._platform = platform
        self._draft = dataclasses.replace(self._draft, platform_id=platform.id)
        self._recompute()
        self._log("Platform selected", platform_id=platform.id)
        return TransitionResult(ok=True)

    def update_basic_info(self, **fields: Any) -> TransitionResult:
        """Update any of BASIC_FIELDS. Malformed values raise ValueError."""

        unknown = sorted(set(fields) - set(BASIC_FIELDS))
        if unknown:
            raise ValueError(f"Unknown campaign fields: {unknown}. Allowed: {list(BASIC_FIELDS)}")

        blocked = self._blocked()
        if blocked:
            return blocked

        changes = {k: _COERCERS[k](v) for k, v in fields.items()}
        self._draft = dataclasses.replace(self._draft, **changes)
        if "name" in changes:
            self._recompute()
        return TransitionResult(ok=True)

    def set_taxonomy_value(self, category_name: str, value: Optional[str]) -> TransitionResult:
        blocked = self._blocked()
        if blocked:
            return blocked

        category_name = (category_name or "").strip()
        if not category_name:
            return TransitionResult(ok=False, message="Taxonomy category is required")

        # Without loaded categories the user may type any category by hand.
        known = {c.name for c in self._reference.categories}
        if known and category_name not in known:
            return TransitionResult(ok=False, message=f"Unknown taxonomy category: {category_name}")

        data = dict(self._draft.taxonomy_data)
        v = (value or "").strip()
        if v:
            data[category_name] = v
        else:
            data.pop(category_name, None)

        self._draft = dataclasses.replace(self._draft, taxonomy_data=data)
        self._recompute()
        return TransitionResult(ok=True)

    def clear_taxonomy_value(self, category_name: str) -> TransitionResult:
        return self.set_taxonomy_value(category_name, None)

    # -----------------
    # Navigation
    # -----------------

    def next(self) -> TransitionResult:  # noqa: A003
        blocked = self._blocked()
        if blocked:
            return blocked

        index = self._current
        if index >= LAST_STEP:
            return TransitionResult(ok=False, message="Already on the last step")

        if not self._gate(index):
            self._log("Step incomplete; staying put", step=STEP_IDS[index])
            return TransitionResult(ok=False, message=INCOMPLETE_STEP_MESSAGE)

        self._steps = _with_active(_with_completed(self._steps, index), index + 1)
        self._current = index + 1
        self._log("Advanced", step=STEP_IDS[self._current])
        return TransitionResult(ok=True)

    def previous(self) -> TransitionResult:
        blocked = self._blocked()
        if blocked:
            return blocked

        if self._current == 0:
            return TransitionResult(ok=False, message="Already on the first step")

        self._current -= 1
        self._steps = _with_active(self._steps, self._current)
        return TransitionResult(ok=True)

    async def submit(self) -> SubmitResult:
        """Persist the draft with its frozen identifier.

        On failure nothing changes: same step, same draft, same completion flags.
        """

        if not self._is_open:
            return SubmitResult(ok=False, message="Wizard is closed")
        if self._submitting:
            return SubmitResult(ok=False, message="A submission is already in progress")
        if self._current != LAST_STEP:
            return SubmitResult(ok=False, message="Submit is only available on the review step")
        if not self._gate(LAST_STEP) or self._generated is None:
            return SubmitResult(ok=False, message=INCOMPLETE_STEP_MESSAGE)

        draft, generated = self._draft, self._generated
        self._submitting = True
        try:
            record: CampaignRecord = await _call(self._store.create_campaign, draft, generated, self.user_id)
        except Exception as e:
            logger.warning(
                "Campaign submission failed",
                extra={"session_id": self.session_id, "user_id": self.user_id, "error": str(e)},
            )
            return SubmitResult(ok=False, message=str(e) or "Failed to create campaign", store_error=True)
        finally:
            self._submitting = False

        self._log("Campaign submitted", campaign_id=record.id, platform_id=draft.platform_id)
        self._restart()
        self.close()
        return SubmitResult(ok=True, record=record)

    # -----------------
    # Serialization
    # -----------------

    def snapshot(self) -> Dict[str, Any]:
        """Plain-dict view of the wizard for the HTTP layer."""

        d = self._draft
        platform = self._platform
        return {
            "session_id": self.session_id,
            "is_open": self._is_open,
            "is_loading": self._loading,
            "is_submitting": self._submitting,
            "current_step": self._current,
            "current_step_id": STEP_IDS[self._current],
            "steps": [dataclasses.asdict(s) for s in self._steps],
            "draft": {
                "name": d.name,
                "platform_id": d.platform_id,
                "budget": d.budget,
                "start_date": d.start_date.isoformat() if d.start_date else None,
                "end_date": d.end_date.isoformat() if d.end_date else None,
                "objective": d.objective,
                "target_audience": d.target_audience,
                "notes": d.notes,
                "taxonomy_data": dict(d.taxonomy_data),
            },
            "platform": (
                {
                    "id": platform.id,
                    "name": platform.name,
                    "naming_convention": platform.naming_convention,
                    "rules": platform.naming_rule().describe(),
                }
                if platform
                else None
            ),
            "generated_identifier": dataclasses.asdict(self._generated) if self._generated else None,
            "missing_required_categories": self.missing_required_categories(),
            "can_advance": self.can_advance(),
            "can_submit": self.can_submit(),
            "load_errors": dict(self._reference.load_errors),
        }

    # -----------------
    # Internals
    # -----------------

    def _restart(self) -> None:
        # Bumping the epoch invalidates in-flight loads.
        self._epoch += 1
        self._loading = False
        self._is_open = True
        self._set_initial_state()

    def _set_initial_state(self) -> None:
        self._current = 0
        self._steps = initial_steps()
        self._draft = CampaignDraft()
        self._platform: Optional[Platform] = None
        self._generated: Optional[GeneratedIdentifier] = None

    def _blocked(self) -> Optional[TransitionResult]:
        if not self._is_open:
            return TransitionResult(ok=False, message="Wizard is closed")
        if self._submitting:
            return TransitionResult(ok=False, message=SUBMITTING_MESSAGE)
        return None

    def _recompute(self) -> None:
        platform = self._platform
        if platform is None or not self._draft.name:
            self._generated = None
            return
        self._generated = generate_identifier(
            self._draft.name,
            platform.naming_rule(),
            platform=platform.name,
            transform=platform.transforms_names,
        )

    def _gate(self, index: int) -> bool:
        step_id = STEP_IDS[index]
        d = self._draft
        if step_id == "platform":
            return bool(d.platform_id) and self._platform is not None
        if step_id == "basic":
            return bool(d.name.strip()) and bool(d.objective.strip())
        if step_id == "taxonomy":
            return not self.missing_required_categories()
        if step_id == "review":
            return self._generated is not None and self._generated.validation.is_valid
        return False

    def _log(self, message: str, **extra: Any) -> None:
        logger.info(message, extra={"session_id": self.session_id, **extra})
