"""Reference data: advertising platforms and the campaign taxonomy.

The wizard only needs three reads (platforms, taxonomy categories, taxonomy
values). This module defines the record types, the collaborator protocols and a
YAML-backed implementation used for local development and demos. The Postgres
implementation lives in `campaignpilot.db`.

Catalog YAML shape:

    platforms:
      - id: google_ads
        name: Google Ads
        code: GOOGLE
        naming_convention: lowercase with hyphens
        max_campaign_name_length: 255
        forbidden_characters: "<>"
    taxonomy:
      - id: objective
        name: Objective
        is_required: true
        values:
          - Awareness
          - {id: conv, value: Conversions}
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple

import yaml

from .config import normalize_catalog_backend, settings
from .naming import NamingRule


@dataclass(frozen=True)
class Platform:
    id: str
    name: str
    code: str = ""
    description: str = ""
    is_active: bool = True
    naming_convention: Optional[str] = None
    max_campaign_name_length: Optional[int] = None
    allowed_characters: Optional[str] = None
    forbidden_characters: Optional[str] = None

    def naming_rule(self) -> NamingRule:
        return NamingRule.from_convention(
            self.naming_convention,
            max_length=self.max_campaign_name_length,
            allowed_characters=self.allowed_characters,
            forbidden_characters=self.forbidden_characters,
        )

    @property
    def transforms_names(self) -> bool:
        """Names are only rewritten when the platform declares a naming convention.

        Without one, the name is stored as typed and the limits below are
        enforced by validation alone.
        """

        return bool((self.naming_convention or "").strip())


@dataclass(frozen=True)
class TaxonomyCategory:
    id: str
    name: str
    description: str = ""
    is_required: bool = False
    sort_order: int = 0


@dataclass(frozen=True)
class TaxonomyValue:
    id: str
    category_id: str
    value: str
    description: str = ""
    is_active: bool = True
    sort_order: int = 0


class PlatformCatalog(Protocol):
    def list_platforms(self) -> List[Platform]: ...


class TaxonomyCatalog(Protocol):
    def list_categories(self) -> List[TaxonomyCategory]: ...

    def list_values(self) -> List[TaxonomyValue]: ...


class ReferenceCatalog(PlatformCatalog, TaxonomyCatalog, Protocol):
    """Both reads in one object (what the YAML + Postgres catalogs provide)."""


@dataclass(frozen=True)
class ReferenceData:
    """Reference data loaded for one wizard session."""

    platforms: Tuple[Platform, ...] = ()
    categories: Tuple[TaxonomyCategory, ...] = ()
    values: Tuple[TaxonomyValue, ...] = ()
    # collaborator name -> error message, for reads that failed and degraded
    load_errors: Dict[str, str] = field(default_factory=dict)

    def platform_by_id(self, platform_id: str) -> Optional[Platform]:
        for p in self.platforms:
            if p.id == platform_id:
                return p
        return None

    def required_categories(self) -> List[TaxonomyCategory]:
        return [c for c in self.categories if c.is_required]

    def values_for(self, category: TaxonomyCategory) -> List[TaxonomyValue]:
        return [v for v in self.values if v.category_id == category.id]


# -----------------------------
# Validation (YAML / dict input)
# -----------------------------


def _req_str(d: Dict[str, Any], key: str, where: str) -> str:
    v = d.get(key)
    if v is None or not str(v).strip():
        raise ValueError(f"{where} must include a non-empty {key!r} field.")
    return str(v).strip()


def _opt_str(d: Dict[str, Any], key: str) -> Optional[str]:
    v = d.get(key)
    if v is None:
        return None
    # Character sets are significant as-is; don't strip them.
    s = str(v)
    return s if s else None


def _opt_bool(d: Dict[str, Any], key: str, default: bool, where: str) -> bool:
    if key not in d or d[key] is None:
        return default
    if not isinstance(d[key], bool):
        raise ValueError(f"{where} field {key!r} must be boolean.")
    return d[key]


def _opt_int(d: Dict[str, Any], key: str, where: str) -> Optional[int]:
    v = d.get(key)
    if v is None:
        return None
    if isinstance(v, bool):
        raise ValueError(f"{where} field {key!r} must be an integer.")
    try:
        return int(v)
    except Exception as e:
        raise ValueError(f"{where} field {key!r} must be an integer.") from e


def _default(v: Optional[int], fallback: int) -> int:
    return fallback if v is None else v


def _parse_platform(raw: Any, idx: int) -> Platform:
    where = f"platforms[{idx}]"
    if not isinstance(raw, dict):
        raise ValueError(f"{where} must be an object/dict.")

    max_len = _opt_int(raw, "max_campaign_name_length", where)
    if max_len is not None and max_len < 0:
        raise ValueError(f"{where} field 'max_campaign_name_length' must be >= 0.")

    platform = Platform(
        id=_req_str(raw, "id", where),
        name=_req_str(raw, "name", where),
        code=str(raw.get("code") or ""),
        description=str(raw.get("description") or ""),
        is_active=_opt_bool(raw, "is_active", True, where),
        naming_convention=_opt_str(raw, "naming_convention"),
        max_campaign_name_length=max_len,
        allowed_characters=_opt_str(raw, "allowed_characters"),
        forbidden_characters=_opt_str(raw, "forbidden_characters"),
    )
    return platform


def _parse_category(raw: Any, idx: int) -> Tuple[TaxonomyCategory, List[TaxonomyValue]]:
    where = f"taxonomy[{idx}]"
    if not isinstance(raw, dict):
        raise ValueError(f"{where} must be an object/dict.")

    category = TaxonomyCategory(
        id=_req_str(raw, "id", where),
        name=_req_str(raw, "name", where),
        description=str(raw.get("description") or ""),
        is_required=_opt_bool(raw, "is_required", False, where),
        sort_order=_default(_opt_int(raw, "sort_order", where), idx),
    )

    values_raw = raw.get("values") or []
    if not isinstance(values_raw, list):
        raise ValueError(f"{where} field 'values' must be a list.")

    values: List[TaxonomyValue] = []
    seen: set = set()
    for vidx, v in enumerate(values_raw):
        vwhere = f"{where}.values[{vidx}]"
        if isinstance(v, (str, int, float)) and not isinstance(v, bool):
            v = {"value": str(v)}
        if not isinstance(v, dict):
            raise ValueError(f"{vwhere} must be a string or an object/dict.")
        value = _req_str(v, "value", vwhere)
        if value in seen:
            raise ValueError(f"{vwhere} duplicates value {value!r} in category {category.name!r}.")
        seen.add(value)
        values.append(
            TaxonomyValue(
                id=str(v.get("id") or f"{category.id}:{value}"),
                category_id=category.id,
                value=value,
                description=str(v.get("description") or ""),
                is_active=_opt_bool(v, "is_active", True, vwhere),
                sort_order=_default(_opt_int(v, "sort_order", vwhere), vidx),
            )
        )

    return category, values


def validate_catalog_dict(d: Any) -> ReferenceData:
    """Validate a parsed catalog document and return *all* rows (active or not)."""

    if not isinstance(d, dict):
        raise ValueError("Catalog YAML must parse to an object/dict.")

    platforms_raw = d.get("platforms") or []
    if not isinstance(platforms_raw, list):
        raise ValueError("'platforms' must be a list.")
    taxonomy_raw = d.get("taxonomy") or []
    if not isinstance(taxonomy_raw, list):
        raise ValueError("'taxonomy' must be a list.")

    platforms = [_parse_platform(p, i) for i, p in enumerate(platforms_raw)]
    ids = [p.id for p in platforms]
    dupes = sorted({i for i in ids if ids.count(i) > 1})
    if dupes:
        raise ValueError(f"Duplicate platform ids: {dupes}")

    categories: List[TaxonomyCategory] = []
    values: List[TaxonomyValue] = []
    for i, raw in enumerate(taxonomy_raw):
        c, vs = _parse_category(raw, i)
        categories.append(c)
        values.extend(vs)

    # Category names key the campaign taxonomy map, so they must be unique too.
    for attr in ("id", "name"):
        keys = [getattr(c, attr) for c in categories]
        dupes = sorted({k for k in keys if keys.count(k) > 1})
        if dupes:
            raise ValueError(f"Duplicate taxonomy category {attr}s: {dupes}")

    return ReferenceData(platforms=tuple(platforms), categories=tuple(categories), values=tuple(values))


def parse_catalog_yaml(raw_yaml: str) -> ReferenceData:
    """Parse and validate a catalog YAML string."""

    if not (raw_yaml or "").strip():
        raise ValueError("Catalog YAML is empty.")

    return validate_catalog_dict(yaml.safe_load(raw_yaml))


class YamlCatalog:
    """Platform + taxonomy catalog backed by a single YAML file.

    The file is re-read on every call so edits show up on the next wizard open.
    """

    def __init__(self, path: str):
        self.path = path

    def _load(self) -> ReferenceData:
        if not os.path.exists(self.path):
            raise FileNotFoundError(f"Catalog not found at {self.path}")
        with open(self.path, "r", encoding="utf-8") as f:
            return parse_catalog_yaml(f.read())

    def list_platforms(self) -> List[Platform]:
        return sorted((p for p in self._load().platforms if p.is_active), key=lambda p: p.name)

    def list_categories(self) -> List[TaxonomyCategory]:
        return sorted(self._load().categories, key=lambda c: c.sort_order)

    def list_values(self) -> List[TaxonomyValue]:
        return sorted((v for v in self._load().values if v.is_active), key=lambda v: v.sort_order)


def get_catalog() -> ReferenceCatalog:
    backend = normalize_catalog_backend(settings.catalog_backend)
    if backend == "postgres":
        # Lazy import keeps psycopg2 optional for YAML-only setups.
        from .db import PostgresCatalog

        return PostgresCatalog()
    return YamlCatalog(settings.catalog_path)
