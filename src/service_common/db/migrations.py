"""Checksum-tracked SQL migrations shared by the startup hook and ``bin/migrate.py``."""
from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Protocol

import asyncpg  # type: ignore[import-untyped]
import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)

_SCHEMA_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version text PRIMARY KEY,
    checksum text NOT NULL,
    applied_at timestamptz NOT NULL DEFAULT now()
);
"""


class SettingsProtocol(Protocol):
    database_url: Any


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path
    sql: str

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.sql.encode("utf-8")).hexdigest()


def load_migrations(directory: Path) -> list[Migration]:
    """Read ``*.sql`` files from *directory*, sorted by file name."""
    if not directory.exists():
        raise FileNotFoundError(f"Migrations directory does not exist: {directory}")
    seen: set[str] = set()
    migrations: list[Migration] = []
    for path in sorted(directory.glob("*.sql")):
        if path.stem in seen:
            raise ValueError(f"Duplicate migration version detected: {path.stem}")
        seen.add(path.stem)
        migrations.append(Migration(path.stem, path, path.read_text(encoding="utf-8")))
    return migrations


async def pending_migrations(
    conn: asyncpg.Connection, migrations: Iterable[Migration]
) -> list[Migration]:
    """Return migrations not yet recorded; a changed checksum is a hard error."""
    await conn.execute(_SCHEMA_TABLE_SQL)
    rows = await conn.fetch("SELECT version, checksum FROM schema_migrations")
    applied = {row["version"]: row["checksum"] for row in rows}
    pending: list[Migration] = []
    for migration in migrations:
        recorded = applied.get(migration.version)
        if recorded is None:
            pending.append(migration)
        elif recorded != migration.checksum:
            raise RuntimeError(
                f"Checksum mismatch for {migration.version}: "
                f"{recorded} (db) != {migration.checksum} (file)"
            )
    return pending


async def apply_migrations(conn: asyncpg.Connection, migrations: Iterable[Migration]) -> list[str]:
    """Apply pending migrations, each in its own transaction. Returns applied versions."""
    applied: list[str] = []
    for migration in await pending_migrations(conn, migrations):
        async with conn.transaction():
            await conn.execute(migration.sql)
            await conn.execute(
                "INSERT INTO schema_migrations (version, checksum) VALUES ($1, $2)",
                migration.version,
                migration.checksum,
            )
        logger.info("migration applied", version=migration.version)
        applied.append(migration.version)
    return applied


def create_migration_runner(
    settings: SettingsProtocol,
    possible_paths: Iterable[Path],
    *,
    max_retries: int = 5,
    retry_delay_seconds: float = 2.0,
) -> Callable[[web.Application], Awaitable[None]]:
    """Create an aiohttp startup hook that applies SQL migrations."""
    candidates = list(possible_paths)

    async def apply_migrations_on_startup(_app: web.Application) -> None:
        directory = next((path for path in candidates if path.exists()), None)
        if directory is None:
            logger.warning("migrations directory not found", tried=[str(p) for p in candidates])
            return
        migrations = load_migrations(directory)
        if not migrations:
            logger.warning("no migrations found", directory=str(directory))
            return

        conn = None
        for attempt in range(1, max_retries + 1):
            try:
                conn = await asyncpg.connect(str(settings.database_url))
                break
            except (OSError, asyncpg.PostgresError) as exc:
                logger.warning(
                    "database connection failed",
                    attempt=attempt,
                    max_retries=max_retries,
                    error=str(exc),
                )
                if attempt == max_retries:
                    raise
                await asyncio.sleep(retry_delay_seconds)
        assert conn is not None

        try:
            applied = await apply_migrations(conn, migrations)
            logger.info("migrations up to date", applied=len(applied))
        finally:
            await conn.close()

    return apply_migrations_on_startup
