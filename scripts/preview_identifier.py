#!/usr/bin/env python3
"""Preview the campaign identifier a platform would get for a name.

Reads platforms from the configured catalog (CATALOG_BACKEND / CATALOG_PATH)
unless --catalog points at a YAML file.

Examples:
  python scripts/preview_identifier.py "Summer Sale!!" --platform google_ads
  python scripts/preview_identifier.py "Q4 Launch" --all --catalog data/catalog.yaml
  python scripts/preview_identifier.py "q4.launch" --platform linkedin_ads --validate-only
"""

from __future__ import annotations

import argparse
import dataclasses
import json

from campaignpilot.catalog import YamlCatalog, get_catalog
from campaignpilot.naming import generate_identifier, validate_identifier


def main() -> int:
    parser = argparse.ArgumentParser(description="Derive + validate a campaign identifier for one or all platforms.")
    parser.add_argument("name", help="Campaign name (or identifier with --validate-only).")
    parser.add_argument("--platform", default="", help="Platform id from the catalog.")
    parser.add_argument("--all", action="store_true", help="Preview for every active platform.")
    parser.add_argument("--catalog", default="", help="Path to a catalog YAML file (overrides CATALOG_BACKEND).")
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Validate the argument as-is instead of deriving an identifier from it.",
    )

    args = parser.parse_args()

    catalog = YamlCatalog(args.catalog) if args.catalog else get_catalog()
    platforms = catalog.list_platforms()
    if not args.all:
        platforms = [p for p in platforms if p.id == args.platform]
        if not platforms:
            parser.error(f"unknown platform {args.platform!r} (use --all or one of the catalog ids)")

    results = []
    for p in platforms:
        rule = p.naming_rule()
        if args.validate_only:
            out = {"identifier": args.name, "validation": dataclasses.asdict(validate_identifier(args.name, rule))}
        else:
            generated = generate_identifier(args.name, rule, platform=p.name, transform=p.transforms_names)
            out = dataclasses.asdict(generated)
        out["platform_id"] = p.id
        out["rules"] = rule.describe()
        results.append(out)

    print(json.dumps({"ok": True, "results": results}, indent=2, sort_keys=True))

    return 0 if all((r.get("validation") or {}).get("is_valid") for r in results) else 1


if __name__ == "__main__":
    raise SystemExit(main())
