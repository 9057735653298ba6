#!/usr/bin/env python3
"""Load a catalog YAML file into Postgres.

Applies migrations first, then upserts platforms, taxonomy categories and
values. Rows missing from the file are left untouched (deactivate them with
`is_active: false` instead of deleting).
"""

from __future__ import annotations

import argparse
import json

from campaignpilot.catalog import parse_catalog_yaml
from campaignpilot.config import settings
from campaignpilot.db import init_db, upsert_reference_data


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed advertising platforms + taxonomy from a catalog YAML file.")
    parser.add_argument(
        "path",
        nargs="?",
        default=settings.catalog_path,
        help="Catalog YAML path (default: CATALOG_PATH).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate the file and print counts without touching the database.",
    )

    args = parser.parse_args()

    with open(args.path, "r", encoding="utf-8") as f:
        data = parse_catalog_yaml(f.read())

    counts = {"platforms": len(data.platforms), "categories": len(data.categories), "values": len(data.values)}
    if not args.dry_run:
        init_db()
        counts = upsert_reference_data(data)

    print(json.dumps({"ok": True, "path": args.path, "dry_run": args.dry_run, "upserted": counts}, indent=2))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
