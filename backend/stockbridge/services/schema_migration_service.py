"""
Schema Migration Service - applies database/migrations/NNN_*.sql in order.

- schema_migrations table records applied versions (file stem, e.g. 001_initial)
- on startup: detect and apply missing migrations (PostgreSQL only)
"""
import logging
import re
from pathlib import Path
from typing import List, Optional, Set, Tuple

import psycopg2
from psycopg2.extensions import ISOLATION_LEVEL_AUTOCOMMIT

from stockbridge.config import settings

logger = logging.getLogger(__name__)

_MIGRATIONS_DIR_CANDIDATES = [
    Path(__file__).resolve().parent.parent.parent.parent / "database" / "migrations",  # repo root database/migrations
    Path.cwd() / "database" / "migrations",
]


def _get_migrations_dir() -> Path:
    """First existing database/migrations dir"""
    for d in _MIGRATIONS_DIR_CANDIDATES:
        if d.is_dir():
            return d
    fallback = _MIGRATIONS_DIR_CANDIDATES[0]
    logger.warning(
        "Migrations dir not found (tried %s). Tables may be missing.",
        [str(p) for p in _MIGRATIONS_DIR_CANDIDATES],
    )
    return fallback


def _ensure_schema_migrations(conn) -> None:
    conn.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)
    cur = conn.cursor()
    cur.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version VARCHAR(255) PRIMARY KEY,
            applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    cur.close()


def _get_applied_versions(conn) -> Set[str]:
    cur = conn.cursor()
    cur.execute("SELECT version FROM schema_migrations")
    applied = {r[0] for r in cur.fetchall()}
    cur.close()
    return applied


def discover_migration_files(migrations_dir: Optional[Path] = None) -> List[Tuple[str, Path]]:
    """Ordered (version, path) pairs. Only files named NNN_*.sql count."""
    migrations_dir = migrations_dir or _get_migrations_dir()
    if not migrations_dir.is_dir():
        return []
    out = []
    for p in sorted(migrations_dir.iterdir()):
        if p.suffix.lower() != ".sql":
            continue
        if re.match(r"^\d{3}_", p.stem):
            out.append((p.stem, p))
    return out


def run_migrations_for_url(database_url: str, migrations_dir: Optional[Path] = None) -> List[str]:
    """
    Apply every missing migration to the database.
    Returns the versions applied by this run.
    """
    applied_this_run: List[str] = []
    conn = psycopg2.connect(database_url)
    try:
        _ensure_schema_migrations(conn)
        applied = _get_applied_versions(conn)
        files = discover_migration_files(migrations_dir)
        if not files:
            logger.warning("No migration files found in %s", migrations_dir or _get_migrations_dir())
        for version, path in files:
            if version in applied:
                continue
            logger.info("Applying migration %s", version)
            sql = path.read_text(encoding="utf-8", errors="replace")
            conn.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)
            cur = conn.cursor()
            try:
                cur.execute(sql)
            except psycopg2.Error as e:
                cur.close()
                raise RuntimeError(f"Migration {version} failed: {e}") from e
            cur.execute(
                "INSERT INTO schema_migrations (version, applied_at) VALUES (%s, NOW()) ON CONFLICT (version) DO NOTHING",
                (version,),
            )
            cur.close()
            applied.add(version)
            applied_this_run.append(version)
            logger.info("Applied migration %s", version)
    finally:
        conn.close()
    return applied_this_run


def run_startup_migrations() -> List[str]:
    """Startup hook: no-op unless enabled and the database is PostgreSQL"""
    url = settings.database_connection_string
    if not settings.RUN_MIGRATIONS_ON_STARTUP:
        logger.info("RUN_MIGRATIONS_ON_STARTUP is off; skipping schema migrations")
        return []
    if not url.startswith("postgres"):
        logger.info("Schema migrations only run against PostgreSQL; skipping for %s", url.split(":", 1)[0])
        return []
    applied = run_migrations_for_url(url)
    if applied:
        logger.info("Schema migrations applied: %s", ", ".join(applied))
    else:
        logger.info("Schema is up to date")
    return applied
