from pathlib import Path
import logging
from typing import List
from .db import Database

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


async def run_migrations(db: Database, migrations_dir: Path = MIGRATIONS_DIR) -> List[str]:
    """
    Apply pending SQL migrations in filename order.

    Returns the names applied during this call.
    """
    await _ensure_migrations_table(db)

    if not migrations_dir.exists():
        logger.warning(f"Migrations directory {migrations_dir} not found; skipping migrations")
        return []

    migration_files = sorted(p for p in migrations_dir.glob("*.sql"))
    if not migration_files:
        logger.info("No migrations found")
        return []

    applied = set(await _get_applied_migrations(db))
    newly_applied: List[str] = []

    for path in migration_files:
        name = path.name
        if name in applied:
            continue

        logger.info(f"Applying migration {name}")
        async with db.transaction() as conn:
            await conn.execute(path.read_text())
            await conn.execute(
                "INSERT INTO schema_migrations (name) VALUES ($1)",
                name
            )
        newly_applied.append(name)

    return newly_applied


async def _ensure_migrations_table(db: Database) -> None:
    await db.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            name TEXT PRIMARY KEY,
            applied_at TIMESTAMPTZ DEFAULT NOW()
        )
        """
    )


async def _get_applied_migrations(db: Database) -> List[str]:
    rows = await db.fetch("SELECT name FROM schema_migrations ORDER BY applied_at ASC")
    return [row["name"] for row in rows]
