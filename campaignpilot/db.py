import contextlib
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple

import psycopg2
import psycopg2.extras

from .catalog import Platform, ReferenceData, TaxonomyCategory, TaxonomyValue
from .config import settings
from .naming import GeneratedIdentifier
from .store import CampaignFilters, CampaignRecord, CampaignStoreError, campaign_row, now_utc

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def get_conn(*, connect_timeout: int = 5):
    """Open a new DB connection.

    We intentionally keep this simple (one connection per operation).
    For higher throughput, consider adding a small connection pool.
    """

    conn = psycopg2.connect(settings.database_url, connect_timeout=connect_timeout)
    try:
        yield conn
    finally:
        conn.close()


# -----------------------------
# Migrations (minimal, dependency-free)
# -----------------------------


def _migrations() -> List[Tuple[int, str, str]]:
    """Ordered SQL migrations.

    Migrations are code (no Alembic): version tracking, idempotent upgrades and
    deterministic startup behavior.

    NOTE: Use PostgreSQL syntax.
    """

    return [
        (
            1,
            "init_reference_tables",
            """
            CREATE TABLE IF NOT EXISTS advertising_platforms (
              id TEXT PRIMARY KEY,
              name TEXT NOT NULL,
              code TEXT NOT NULL DEFAULT '',
              description TEXT NOT NULL DEFAULT '',
              is_active BOOLEAN NOT NULL DEFAULT TRUE,
              naming_convention TEXT,
              max_campaign_name_length INTEGER,
              allowed_characters TEXT,
              forbidden_characters TEXT,
              created_at TIMESTAMPTZ NOT NULL,
              updated_at TIMESTAMPTZ NOT NULL
            );

            CREATE TABLE IF NOT EXISTS taxonomy_categories (
              id TEXT PRIMARY KEY,
              name TEXT NOT NULL UNIQUE,
              description TEXT NOT NULL DEFAULT '',
              is_required BOOLEAN NOT NULL DEFAULT FALSE,
              sort_order INTEGER NOT NULL DEFAULT 0,
              created_at TIMESTAMPTZ NOT NULL,
              updated_at TIMESTAMPTZ NOT NULL
            );

            CREATE TABLE IF NOT EXISTS taxonomy_values (
              id TEXT PRIMARY KEY,
              category_id TEXT NOT NULL REFERENCES taxonomy_categories(id) ON DELETE CASCADE,
              value TEXT NOT NULL,
              description TEXT NOT NULL DEFAULT '',
              is_active BOOLEAN NOT NULL DEFAULT TRUE,
              sort_order INTEGER NOT NULL DEFAULT 0,
              created_at TIMESTAMPTZ NOT NULL,
              updated_at TIMESTAMPTZ NOT NULL,
              UNIQUE (category_id, value)
            );

            CREATE INDEX IF NOT EXISTS idx_taxonomy_values_category
              ON taxonomy_values(category_id, sort_order);
            """,
        ),
        (
            2,
            "init_campaigns",
            """
            CREATE TABLE IF NOT EXISTS campaigns (
              id UUID PRIMARY KEY,
              name TEXT NOT NULL,
              platform_id TEXT NOT NULL REFERENCES advertising_platforms(id),
              user_id TEXT NOT NULL,
              status TEXT NOT NULL DEFAULT 'draft'
                CHECK (status IN ('draft', 'active', 'paused', 'completed')),
              budget NUMERIC(14, 2),
              start_date DATE,
              end_date DATE,
              objective TEXT NOT NULL DEFAULT '',
              target_audience TEXT NOT NULL DEFAULT '',
              notes TEXT NOT NULL DEFAULT '',
              generated_id TEXT NOT NULL,
              taxonomy_data JSONB NOT NULL DEFAULT '{}'::jsonb,
              created_at TIMESTAMPTZ NOT NULL,
              updated_at TIMESTAMPTZ NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_campaigns_user_created_at
              ON campaigns(user_id, created_at DESC);
            """,
        ),
    ]


def migrate_db() -> None:
    """Apply any pending migrations.

    Safe to run concurrently across multiple app instances:
    we take a PostgreSQL advisory lock.
    """

    # Arbitrary stable lock ID for this repo.
    lock_id = 61402217

    with get_conn(connect_timeout=10) as conn:
        conn.autocommit = True
        with conn.cursor() as cur:
            # Ensure migrations table exists before trying to lock.
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                  version INTEGER PRIMARY KEY,
                  name TEXT NOT NULL,
                  applied_at TIMESTAMPTZ NOT NULL
                );
                """
            )
            cur.execute("SELECT pg_advisory_lock(%s);", (lock_id,))

        try:
            with conn.cursor() as cur:
                cur.execute("SELECT version FROM schema_migrations;")
                applied = {int(r[0]) for r in cur.fetchall()}

                for version, name, sql in _migrations():
                    if version in applied:
                        continue
                    logger.info("Applying DB migration %s (%s)", version, name)
                    cur.execute(sql)
                    cur.execute(
                        "INSERT INTO schema_migrations(version, name, applied_at) VALUES (%s, %s, %s);",
                        (version, name, now_utc()),
                    )

        finally:
            with conn.cursor() as cur:
                cur.execute("SELECT pg_advisory_unlock(%s);", (lock_id,))


def init_db() -> None:
    """Initialize database schema.

    In local dev (Docker Compose), Postgres and/or DNS can be briefly unavailable
    while the stack is coming up. Retry to avoid flaky startup failures.
    """

    max_wait_seconds = 30.0
    deadline = time.monotonic() + max_wait_seconds
    attempt = 0

    while True:
        attempt += 1
        try:
            migrate_db()
            return
        except psycopg2.OperationalError as exc:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise
            sleep_seconds = min(0.25 * (2 ** (attempt - 1)), 3.0, remaining)
            logger.warning("Database not ready yet (attempt %s): %s", attempt, exc)
            time.sleep(sleep_seconds)


def db_ping() -> bool:
    try:
        with get_conn(connect_timeout=3) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except Exception:
        return False


# -----------------------------
# Reference data
# -----------------------------


class PostgresCatalog:
    """Platform + taxonomy reads (active rows only, in display order)."""

    def list_platforms(self) -> List[Platform]:
        with get_conn() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT id, name, code, description, is_active, naming_convention,
                           max_campaign_name_length, allowed_characters, forbidden_characters
                    FROM advertising_platforms
                    WHERE is_active
                    ORDER BY name ASC
                    """
                )
                return [Platform(**dict(r)) for r in cur.fetchall()]

    def list_categories(self) -> List[TaxonomyCategory]:
        with get_conn() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT id, name, description, is_required, sort_order
                    FROM taxonomy_categories
                    ORDER BY sort_order ASC
                    """
                )
                return [TaxonomyCategory(**dict(r)) for r in cur.fetchall()]

    def list_values(self) -> List[TaxonomyValue]:
        with get_conn() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT id, category_id, value, description, is_active, sort_order
                    FROM taxonomy_values
                    WHERE is_active
                    ORDER BY sort_order ASC
                    """
                )
                return [TaxonomyValue(**dict(r)) for r in cur.fetchall()]


def upsert_reference_data(data: ReferenceData) -> Dict[str, int]:
    """Insert or update platforms, categories and values (used by the seed script)."""

    ts = now_utc()
    with get_conn() as conn:
        with conn:
            with conn.cursor() as cur:
                for p in data.platforms:
                    cur.execute(
                        """
                        INSERT INTO advertising_platforms
                          (id, name, code, description, is_active, naming_convention,
                           max_campaign_name_length, allowed_characters, forbidden_characters,
                           created_at, updated_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        ON CONFLICT (id) DO UPDATE SET
                          name=EXCLUDED.name,
                          code=EXCLUDED.code,
                          description=EXCLUDED.description,
                          is_active=EXCLUDED.is_active,
                          naming_convention=EXCLUDED.naming_convention,
                          max_campaign_name_length=EXCLUDED.max_campaign_name_length,
                          allowed_characters=EXCLUDED.allowed_characters,
                          forbidden_characters=EXCLUDED.forbidden_characters,
                          updated_at=EXCLUDED.updated_at
                        """,
                        (
                            p.id,
                            p.name,
                            p.code,
                            p.description,
                            p.is_active,
                            p.naming_convention,
                            p.max_campaign_name_length,
                            p.allowed_characters,
                            p.forbidden_characters,
                            ts,
                            ts,
                        ),
                    )

                for c in data.categories:
                    cur.execute(
                        """
                        INSERT INTO taxonomy_categories
                          (id, name, description, is_required, sort_order, created_at, updated_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s)
                        ON CONFLICT (id) DO UPDATE SET
                          name=EXCLUDED.name,
                          description=EXCLUDED.description,
                          is_required=EXCLUDED.is_required,
                          sort_order=EXCLUDED.sort_order,
                          updated_at=EXCLUDED.updated_at
                        """,
                        (c.id, c.name, c.description, c.is_required, c.sort_order, ts, ts),
                    )

                for v in data.values:
                    cur.execute(
                        """
                        INSERT INTO taxonomy_values
                          (id, category_id, value, description, is_active, sort_order, created_at, updated_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                        ON CONFLICT (id) DO UPDATE SET
                          value=EXCLUDED.value,
                          description=EXCLUDED.description,
                          is_active=EXCLUDED.is_active,
                          sort_order=EXCLUDED.sort_order,
                          updated_at=EXCLUDED.updated_at
                        """,
                        (v.id, v.category_id, v.value, v.description, v.is_active, v.sort_order, ts, ts),
                    )

    return {"platforms": len(data.platforms), "categories": len(data.categories), "values": len(data.values)}


# -----------------------------
# Campaigns
# -----------------------------


def _row_to_record(row: Dict[str, Any]) -> CampaignRecord:
    r = dict(row)
    r["id"] = str(r["id"])
    if r.get("budget") is not None:
        r["budget"] = float(r["budget"])
    r["taxonomy_data"] = {str(k): str(v) for k, v in (r.get("taxonomy_data") or {}).items()}
    return CampaignRecord(**r)


_CAMPAIGN_COLUMNS = (
    "id, name, platform_id, user_id, status, budget, start_date, end_date, objective, "
    "target_audience, notes, generated_id, taxonomy_data, created_at, updated_at"
)


def _filter_clauses(filters: CampaignFilters) -> Tuple[List[str], List[Any]]:
    """WHERE fragments (AND-ed) + params for a CampaignFilters."""

    clauses: List[str] = []
    params: List[Any] = []
    for column, op, value in (
        ("platform_id", "=", filters.platform_id),
        ("status", "=", filters.status),
        ("start_date", ">=", filters.start_from),
        ("end_date", "<=", filters.end_to),
        ("budget", ">=", filters.min_budget),
        ("budget", "<=", filters.max_budget),
    ):
        if value is not None:
            clauses.append(f"{column} {op} %s")
            params.append(value)
    return clauses, params


class PostgresCampaignStore:
    def create_campaign(self, draft: Any, generated: GeneratedIdentifier, user_id: str) -> CampaignRecord:
        row = campaign_row(draft, generated, user_id)
        campaign_id = str(uuid.uuid4())
        ts = now_utc()
        try:
            with get_conn() as conn:
                conn.autocommit = True
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                    cur.execute(
                        f"""
                        INSERT INTO campaigns ({_CAMPAIGN_COLUMNS})
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING {_CAMPAIGN_COLUMNS}
                        """,
                        (
                            campaign_id,
                            row["name"],
                            row["platform_id"],
                            row["user_id"],
                            row["status"],
                            row["budget"],
                            row["start_date"],
                            row["end_date"],
                            row["objective"],
                            row["target_audience"],
                            row["notes"],
                            row["generated_id"],
                            psycopg2.extras.Json(row["taxonomy_data"]),
                            ts,
                            ts,
                        ),
                    )
                    created = cur.fetchone()
        except psycopg2.Error as e:
            first_line = (str(e).strip().splitlines() or ["database error"])[0]
            raise CampaignStoreError(f"Failed to create campaign: {first_line}") from e

        if not created:
            raise CampaignStoreError("Failed to create campaign: no row returned")

        logger.info("Campaign created", extra={"campaign_id": campaign_id, "user_id": user_id})
        return _row_to_record(created)

    def list_campaigns(
        self, user_id: str, filters: Optional[CampaignFilters] = None, *, limit: int = 100
    ) -> List[CampaignRecord]:
        clauses, params = _filter_clauses(filters or CampaignFilters())
        where = " AND ".join(["user_id=%s", *clauses])
        with get_conn() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT {_CAMPAIGN_COLUMNS}
                    FROM campaigns
                    WHERE {where}
                    ORDER BY created_at DESC
                    LIMIT %s
                    """,
                    (user_id, *params, int(limit)),
                )
                return [_row_to_record(r) for r in cur.fetchall()]

    def get_campaign(self, campaign_id: str, user_id: str) -> Optional[CampaignRecord]:
        try:
            uuid.UUID(str(campaign_id))
        except ValueError:
            return None
        with get_conn() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(
                    f"SELECT {_CAMPAIGN_COLUMNS} FROM campaigns WHERE id=%s AND user_id=%s",
                    (campaign_id, user_id),
                )
                row = cur.fetchone()
                return _row_to_record(row) if row else None
