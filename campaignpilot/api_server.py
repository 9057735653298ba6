from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from . import __version__
from .catalog import Platform, ReferenceCatalog, get_catalog
from .config import (
    normalize_catalog_backend,
    normalize_catalog_failure_policy,
    normalize_store_backend,
    settings,
)
from .logging_setup import setup_logging, wizard_session_var
from .middleware import request_context_middleware
from .naming import generate_identifier, validate_identifier
from .sessions import WizardSessions
from .store import CampaignFilters, get_store
from .wizard import CampaignWizard, CatalogLoadError, TransitionResult, load_reference_data

setup_logging(log_level=settings.log_level, log_format=settings.log_format)

logger = logging.getLogger(__name__)

app = FastAPI(title="CampaignPilot", version=__version__)
app.middleware("http")(request_context_middleware)


def configure(*, catalog: Optional[ReferenceCatalog] = None, store: Any = None) -> None:
    """Wire collaborators + a fresh session registry.

    Called once at import with the configured backends; tests call it again
    with fakes.
    """

    app.state.catalog = catalog if catalog is not None else get_catalog()
    app.state.store = store if store is not None else get_store()

    def _factory(session_id: str, user_id: str) -> CampaignWizard:
        return CampaignWizard(
            app.state.catalog,
            app.state.store,
            user_id=user_id,
            catalog_failure_policy=settings.catalog_failure_policy,
            session_id=session_id,
        )

    app.state.sessions = WizardSessions(
        _factory,
        ttl_seconds=settings.wizard_session_ttl_seconds,
        max_sessions=settings.wizard_max_sessions,
    )


configure()


@app.on_event("startup")
def _startup() -> None:
    uses_postgres = (
        normalize_catalog_backend(settings.catalog_backend) == "postgres"
        or normalize_store_backend(settings.store_backend) == "postgres"
    )
    if uses_postgres and settings.migrate_on_startup:
        from .db import init_db

        init_db()


# -----------------------------
# Helpers
# -----------------------------


def _user_id(request: Request) -> str:
    return (request.headers.get("X-User-Id") or "").strip() or settings.local_user_id


def _sessions() -> WizardSessions:
    return app.state.sessions


def _get_wizard(request: Request, session_id: str) -> CampaignWizard:
    wizard = _sessions().get(session_id, _user_id(request))
    if wizard is None:
        raise HTTPException(status_code=404, detail="wizard session not found")
    wizard_session_var.set(session_id)
    return wizard


def _transition(wizard: CampaignWizard, result: TransitionResult) -> Dict[str, Any]:
    if not result.ok:
        raise HTTPException(status_code=409, detail=result.message or "transition rejected")
    return wizard.snapshot()


def _platforms() -> List[Platform]:
    try:
        return list(app.state.catalog.list_platforms())
    except Exception as e:
        logger.warning("Platform catalog read failed", extra={"error": str(e)})
        raise HTTPException(status_code=503, detail=f"platform catalog unavailable: {e}") from e


def _find_platform(platform_id: str) -> Platform:
    if not platform_id:
        raise HTTPException(status_code=400, detail="platform_id is required")
    for p in _platforms():
        if p.id == platform_id:
            return p
    raise HTTPException(status_code=404, detail=f"platform not found: {platform_id}")


def _record_dict(record: Any) -> Dict[str, Any]:
    return dataclasses.asdict(record)


# -----------------------------
# Health
# -----------------------------


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True, "version": __version__}


# Common default used by Makefile + CI
@app.get("/health")
def health() -> Dict[str, Any]:
    return healthz()


@app.get("/readyz")
def readyz() -> Dict[str, Any]:
    db_detail = "unused"
    db_ok = True
    uses_postgres = (
        normalize_catalog_backend(settings.catalog_backend) == "postgres"
        or normalize_store_backend(settings.store_backend) == "postgres"
    )
    if uses_postgres:
        from .db import db_ping

        db_ok = db_ping()
        db_detail = "ok" if db_ok else "error"

    catalog_ok = True
    catalog_detail = "ok"
    try:
        app.state.catalog.list_platforms()
    except Exception as e:
        catalog_ok = False
        catalog_detail = f"error:{e}"

    return {
        "ok": bool(db_ok and catalog_ok),
        "db": db_detail,
        "catalog": catalog_detail,
        "version": __version__,
    }


# -----------------------------
# Meta
# -----------------------------


@app.get("/api/meta")
def meta() -> Dict[str, Any]:
    """Return build + runtime metadata for the UI and troubleshooting."""

    return {
        "ok": True,
        "version": __version__,
        "runtime": {
            "app_env": settings.app_env,
            "catalog_backend": normalize_catalog_backend(settings.catalog_backend),
            "catalog_path": settings.catalog_path,
            "store_backend": normalize_store_backend(settings.store_backend),
            "catalog_failure_policy": normalize_catalog_failure_policy(settings.catalog_failure_policy),
            "wizard_session_ttl_seconds": settings.wizard_session_ttl_seconds,
            "wizard_max_sessions": settings.wizard_max_sessions,
            "open_wizard_sessions": len(_sessions()),
        },
    }


# -----------------------------
# Reference data
# -----------------------------


@app.get("/api/platforms")
async def list_platforms() -> Dict[str, Any]:
    """Active platforms with their naming rules.

    A failed catalog read degrades to an empty list plus `load_errors`, the same
    way the wizard loads reference data.
    """

    data = await load_reference_data(app.state.catalog, app.state.catalog, policy="degrade")
    items = []
    for p in data.platforms:
        d = dataclasses.asdict(p)
        d["rules"] = p.naming_rule().describe()
        items.append(d)
    return {"items": items, "load_errors": dict(data.load_errors)}


@app.get("/api/taxonomy")
async def list_taxonomy() -> Dict[str, Any]:
    data = await load_reference_data(app.state.catalog, app.state.catalog, policy="degrade")
    items = []
    for c in data.categories:
        d = dataclasses.asdict(c)
        d["values"] = [dataclasses.asdict(v) for v in data.values_for(c)]
        items.append(d)
    return {"items": items, "load_errors": dict(data.load_errors)}


# -----------------------------
# Naming
# -----------------------------


@app.post("/api/naming/preview")
def naming_preview(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """Derive + validate an identifier without opening a wizard."""

    name = str(payload.get("name") or "")
    if not name.strip():
        raise HTTPException(status_code=400, detail="name is required")

    platform = _find_platform(str(payload.get("platform_id") or "").strip())
    generated = generate_identifier(
        name, platform.naming_rule(), platform=platform.name, transform=platform.transforms_names
    )
    return {"ok": True, "generated_identifier": dataclasses.asdict(generated)}


@app.post("/api/naming/validate")
def naming_validate(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """Validate an externally supplied identifier (no derivation)."""

    identifier = payload.get("identifier")
    if identifier is None:
        raise HTTPException(status_code=400, detail="identifier is required")

    platform = _find_platform(str(payload.get("platform_id") or "").strip())
    result = validate_identifier(str(identifier), platform.naming_rule())
    return {"ok": True, "platform": platform.name, "validation": dataclasses.asdict(result)}


# -----------------------------
# Wizard sessions
# -----------------------------


@app.post("/api/wizard", status_code=201)
async def wizard_open(request: Request) -> Dict[str, Any]:
    wizard = _sessions().create(_user_id(request))
    wizard_session_var.set(wizard.session_id)
    try:
        await wizard.open()
    except CatalogLoadError as e:
        logger.warning("Wizard could not open", extra={"session_id": wizard.session_id, "error": str(e)})
        _sessions().discard(wizard.session_id or "")
        raise HTTPException(status_code=503, detail=str(e))
    return wizard.snapshot()


@app.get("/api/wizard/{session_id}")
async def wizard_get(request: Request, session_id: str) -> Dict[str, Any]:
    return _get_wizard(request, session_id).snapshot()


@app.post("/api/wizard/{session_id}/platform")
async def wizard_platform(request: Request, session_id: str, payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    wizard = _get_wizard(request, session_id)
    platform_id = str(payload.get("platform_id") or "").strip()
    if not platform_id:
        raise HTTPException(status_code=400, detail="platform_id is required")
    return _transition(wizard, wizard.select_platform(platform_id))


@app.post("/api/wizard/{session_id}/basic")
async def wizard_basic(request: Request, session_id: str, payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    wizard = _get_wizard(request, session_id)
    try:
        result = wizard.update_basic_info(**payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return _transition(wizard, result)


@app.post("/api/wizard/{session_id}/taxonomy")
async def wizard_taxonomy(request: Request, session_id: str, payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    wizard = _get_wizard(request, session_id)
    category = str(payload.get("category") or "").strip()
    if not category:
        raise HTTPException(status_code=400, detail="category is required")
    value = payload.get("value")
    return _transition(wizard, wizard.set_taxonomy_value(category, None if value is None else str(value)))


@app.post("/api/wizard/{session_id}/next")
async def wizard_next(request: Request, session_id: str) -> Dict[str, Any]:
    wizard = _get_wizard(request, session_id)
    return _transition(wizard, wizard.next())


@app.post("/api/wizard/{session_id}/previous")
async def wizard_previous(request: Request, session_id: str) -> Dict[str, Any]:
    wizard = _get_wizard(request, session_id)
    return _transition(wizard, wizard.previous())


@app.post("/api/wizard/{session_id}/reset")
async def wizard_reset(request: Request, session_id: str) -> Dict[str, Any]:
    wizard = _get_wizard(request, session_id)
    return _transition(wizard, wizard.reset())


@app.post("/api/wizard/{session_id}/submit")
async def wizard_submit(request: Request, session_id: str) -> JSONResponse:
    wizard = _get_wizard(request, session_id)
    result = await wizard.submit()
    if result.ok and result.record is not None:
        _sessions().discard(session_id)
        return JSONResponse(
            status_code=201,
            content={"ok": True, "campaign": jsonable_encoder(_record_dict(result.record))},
        )

    if result.store_error:
        return JSONResponse(
            status_code=502,
            content={"ok": False, "detail": result.message, "wizard": jsonable_encoder(wizard.snapshot())},
        )
    raise HTTPException(status_code=409, detail=result.message or "submit rejected")


@app.delete("/api/wizard/{session_id}")
async def wizard_cancel(request: Request, session_id: str) -> Dict[str, Any]:
    wizard = _get_wizard(request, session_id)
    result = wizard.cancel()
    if not result.ok:
        raise HTTPException(status_code=409, detail=result.message)
    _sessions().discard(session_id)
    return {"ok": True, "cancelled": True}


# -----------------------------
# Campaigns
# -----------------------------


@app.get("/api/campaigns")
def list_campaigns(
    request: Request,
    platform_id: Optional[str] = None,
    status: Optional[str] = None,
    start_from: Optional[str] = None,
    end_to: Optional[str] = None,
    min_budget: Optional[str] = None,
    max_budget: Optional[str] = None,
    limit: int = 100,
) -> Dict[str, Any]:
    store = app.state.store
    if not hasattr(store, "list_campaigns"):
        raise HTTPException(status_code=404, detail="campaign listing not supported by this store")
    try:
        filters = CampaignFilters(
            platform_id=platform_id,
            status=status,
            start_from=start_from,
            end_to=end_to,
            min_budget=min_budget,
            max_budget=max_budget,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    rows = store.list_campaigns(_user_id(request), filters, limit=max(1, min(int(limit), 500)))
    return {"items": [jsonable_encoder(_record_dict(r)) for r in rows]}


@app.get("/api/campaigns/{campaign_id}")
def get_campaign(request: Request, campaign_id: str) -> Dict[str, Any]:
    store = app.state.store
    record = store.get_campaign(campaign_id, _user_id(request)) if hasattr(store, "get_campaign") else None
    if record is None:
        raise HTTPException(status_code=404, detail=f"campaign not found: {campaign_id}")
    return {"campaign": jsonable_encoder(_record_dict(record))}
