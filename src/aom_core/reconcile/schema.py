"""SQLite schema definitions for the attribution ledger.

Database: data/aom.db (WAL mode)
Tables: aom_visits, aom_platform_costs
"""
import logging
import sqlite3
from pathlib import Path


logger = logging.getLogger(__name__)


SCHEMA_VERSION = 1


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Open a connection in autocommit mode with WAL enabled.

    Callers manage transactions explicitly with BEGIN/COMMIT so a window
    replace or an import is committed as a single unit. The connection may
    be handed to worker threads (asyncio.to_thread), but only one thread
    uses it at a time.
    """
    conn = sqlite3.connect(
        str(db_path), isolation_level=None, timeout=30.0, check_same_thread=False
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=30000")
    return conn


def init_database(db_path: str | Path) -> None:
    """Initialize the ledger database with schema.

    Creates tables and indexes if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = connect(db_path)

    try:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        current_version = cursor.fetchone()[0] or 0

        if current_version < SCHEMA_VERSION:
            conn.execute("BEGIN IMMEDIATE")
            try:
                apply_schema(conn)
                conn.execute(
                    "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
                    (SCHEMA_VERSION,),
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
            logger.info("Database schema initialized (version %s)", SCHEMA_VERSION)
        else:
            logger.debug("Database schema up to date (version %s)", current_version)

    finally:
        conn.close()


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply database schema.

    Args:
        conn: SQLite connection (in transaction)
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS aom_visits (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            idsite INTEGER NOT NULL,
            piwik_idvisit INTEGER,
            piwik_idvisitor TEXT NOT NULL,
            first_action_time_utc TEXT NOT NULL,
            date_website_timezone TEXT NOT NULL,
            channel TEXT,
            campaign_data TEXT,
            platform_data TEXT,
            cost REAL,
            conversions INTEGER,
            revenue REAL,
            unique_hash TEXT NOT NULL,
            ts_created TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    # Real visits hash their visit id, synthetic rows hash their raw data
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS index_aom_unique_visits
        ON aom_visits(unique_hash)
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS index_aom_visits_site_date
        ON aom_visits(idsite, date_website_timezone)
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS index_aom_visits
        ON aom_visits(idsite, channel, date_website_timezone)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS aom_platform_costs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            platform TEXT NOT NULL,
            external_row_id TEXT NOT NULL,
            idsite INTEGER NOT NULL,
            date TEXT NOT NULL,
            account_id TEXT,
            campaign_id TEXT,
            campaign TEXT,
            clicks INTEGER NOT NULL DEFAULT 0,
            cost REAL NOT NULL DEFAULT 0,
            conversions INTEGER NOT NULL DEFAULT 0,
            conversion_value REAL NOT NULL DEFAULT 0,
            platform_data TEXT,
            ts_imported TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(platform, external_row_id)
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS index_aom_platform_costs_window
        ON aom_platform_costs(platform, idsite, date)
        """
    )
