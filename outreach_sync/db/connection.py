"""
asyncpg pool lifecycle and development migrations for the sync tables.
"""

import logging
from pathlib import Path
from typing import Optional

import asyncpg

from ..core.config import get_settings

logger = logging.getLogger(__name__)

# Process-wide pool, created by init_db() and closed by close_db()
_pool: Optional[asyncpg.Pool] = None

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


async def init_db() -> asyncpg.Pool:
    """
    Create the shared asyncpg pool (idempotent).

    Called from the FastAPI lifespan before the sync engine starts.

    Returns:
        The shared pool.
    """
    global _pool

    if _pool is not None:
        return _pool

    settings = get_settings()

    logger.info(f"Connecting to database (pool size {settings.database_pool_size})...")

    try:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=2,
            max_size=settings.database_pool_size,
            max_inactive_connection_lifetime=300,
        )
        logger.info("✅ Database pool ready")

        # Development databases are migrated on startup
        if settings.environment == "development":
            await run_migrations(_pool)

    except Exception as e:
        logger.error(f"Failed to connect to database: {e}")
        raise

    return _pool


async def run_migrations(pool: asyncpg.Pool, migrations_dir: Path = MIGRATIONS_DIR) -> list[str]:
    """
    Apply pending SQL migrations in filename order.

    Each file runs in its own transaction and is recorded in _migrations.
    Production databases are migrated as a deploy step.

    Returns:
        Names of the migrations applied by this call.
    """
    if not migrations_dir.exists():
        return []

    applied_now = []
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS _migrations (
                name VARCHAR(255) PRIMARY KEY,
                applied_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)

        applied = await conn.fetch("SELECT name FROM _migrations")
        applied_names = {row["name"] for row in applied}

        for migration_file in sorted(migrations_dir.glob("*.sql")):
            if migration_file.name in applied_names:
                continue

            logger.info(f"📦 Applying migration {migration_file.name}")
            try:
                async with conn.transaction():
                    await conn.execute(migration_file.read_text())
                    await conn.execute(
                        "INSERT INTO _migrations (name) VALUES ($1)",
                        migration_file.name
                    )
            except Exception as e:
                logger.error(f"Failed to apply migration {migration_file.name}: {e}")
                raise
            applied_now.append(migration_file.name)

    return applied_now


async def get_db_pool() -> asyncpg.Pool:
    """
    Return the pool created by init_db().

    Raises:
        RuntimeError: If pool is not initialized.
    """
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_db() first.")

    return _pool


async def close_db() -> None:
    """
    Close the shared pool.

    Called from the FastAPI lifespan after the sync engine has stopped.
    """
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")
