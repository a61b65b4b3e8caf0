"""
SQLite database initialization and schema management for Answer Visibility.

This module provides database setup with schema versioning and migration support.
All timestamps are stored in ISO 8601 format with 'Z' suffix (UTC).

The database tracks:
- organizations / projects: tenants, tiers, budgets and monthly usage
- brands / competitors / prompts: what is tracked and how often
- prompt_runs / citations / scores: one row per execution and its outputs
- alert_rules / alert_events: visibility-change triggers and their firings
- job_queue: scheduled work with optimistic row locks
- audit_logs: budget skips and on-demand runs

Example usage:
    >>> from answer_visibility.storage.db import init_db_if_needed
    >>> init_db_if_needed("./visibility.db")
    # Creates database with the current schema if needed
    # Or applies migrations if schema is outdated

Security:
    - ALL queries use parameterized statements to prevent SQL injection
    - NO API keys are ever stored in the database
"""

import logging
import sqlite3
from pathlib import Path

from answer_visibility.exceptions import DatabaseInitError, DatabaseMigrationError
from answer_visibility.utils.time import utc_timestamp

logger = logging.getLogger(__name__)

# Current schema version - increment when migrations are added
CURRENT_SCHEMA_VERSION = 2


def connect(db_path: str) -> sqlite3.Connection:
    """
    Open a connection with row access by column name and foreign keys on.

    Raises:
        DatabaseInitError: If the file cannot be created or opened
    """
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        conn = sqlite3.connect(db_path)
    except sqlite3.Error as e:
        raise DatabaseInitError(f"Cannot open database {db_path}: {e}") from e

    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db_if_needed(db_path: str) -> None:
    """
    Initialize SQLite database with schema versioning.

    Creates the database file if it doesn't exist, initializes the schema_version
    table, checks the current schema version, and applies any needed migrations.

    This function is idempotent - safe to call multiple times.

    Args:
        db_path: Filesystem path to SQLite database file.

    Raises:
        DatabaseInitError: If the database cannot be opened
        DatabaseMigrationError: If a migration fails or the schema is newer
            than this software supports
    """
    conn = connect(db_path)
    try:
        ensure_schema(conn)
    finally:
        conn.close()


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Create schema_version if missing and migrate to CURRENT_SCHEMA_VERSION."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
    """)
    conn.commit()

    current_version = get_schema_version(conn)

    if current_version < CURRENT_SCHEMA_VERSION:
        logger.info(
            f"Database schema upgrade needed: "
            f"v{current_version} -> v{CURRENT_SCHEMA_VERSION}"
        )
        apply_migrations(conn, current_version, CURRENT_SCHEMA_VERSION)
        logger.info(f"Database schema upgraded to v{CURRENT_SCHEMA_VERSION}")
    elif current_version == CURRENT_SCHEMA_VERSION:
        logger.debug(f"Database schema is current (v{CURRENT_SCHEMA_VERSION})")
    else:
        raise DatabaseMigrationError(
            f"Database schema version {current_version} is newer than "
            f"expected {CURRENT_SCHEMA_VERSION}. Update your software or "
            f"use a different database file."
        )


def get_schema_version(conn: sqlite3.Connection) -> int:
    """
    Get current schema version from database.

    Returns 0 if no version has been recorded (fresh database).
    """
    cursor = conn.execute("SELECT MAX(version) FROM schema_version")
    result = cursor.fetchone()[0]
    return result if result is not None else 0


def apply_migrations(
    conn: sqlite3.Connection, from_version: int, to_version: int
) -> None:
    """
    Apply schema migrations from one version to another.

    Each migration runs in its own transaction. If migration to version N
    fails, the database remains at version N-1.

    Raises:
        DatabaseMigrationError: If any migration SQL fails, or if
            from_version > to_version (downgrades not supported)
    """
    if from_version > to_version:
        raise DatabaseMigrationError(
            f"Cannot downgrade schema from v{from_version} to v{to_version}. "
            f"Downgrades are not supported. Use a database backup instead."
        )

    migrations = {
        1: _migrate_to_v1,
        2: _migrate_to_v2,
    }

    for target_version in range(from_version + 1, to_version + 1):
        logger.info(f"Applying migration to schema version {target_version}")

        migration = migrations.get(target_version)
        if migration is None:
            raise DatabaseMigrationError(
                f"No migration defined for version {target_version}"
            )

        try:
            conn.execute("BEGIN")
            migration(conn)

            timestamp = utc_timestamp()
            conn.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (target_version, timestamp),
            )
            conn.commit()
            logger.info(
                f"Successfully migrated to schema version {target_version} "
                f"at {timestamp}"
            )
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(
                f"Migration to version {target_version} failed: {e}", exc_info=True
            )
            raise DatabaseMigrationError(
                f"Failed to migrate database to version {target_version}: {e}"
            ) from e


def _migrate_to_v1(conn: sqlite3.Connection) -> None:
    """
    Create the tenant, tracking and run tables.

    Schema design principles:
    - TEXT primary keys hold UUID4 strings
    - TEXT timestamps use ISO 8601 with 'Z' suffix
    - JSON columns (synonyms, parsed_mentions, metadata) are TEXT holding JSON
    - Booleans are INTEGER 0/1
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS organizations (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            slug TEXT NOT NULL UNIQUE,
            subscription_tier TEXT NOT NULL DEFAULT 'free',
            created_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS projects (
            id TEXT PRIMARY KEY,
            organization_id TEXT NOT NULL
                REFERENCES organizations(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            monthly_budget_soft REAL,
            monthly_budget_hard REAL,
            current_month_usage REAL DEFAULT 0,
            created_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS brands (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            domain TEXT,
            synonyms_json TEXT NOT NULL DEFAULT '[]',
            created_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS competitors (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            domain TEXT,
            synonyms_json TEXT NOT NULL DEFAULT '[]',
            created_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS prompts (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            template TEXT NOT NULL,
            locale TEXT NOT NULL DEFAULT 'en',
            is_active INTEGER NOT NULL DEFAULT 1,
            schedule_enabled INTEGER NOT NULL DEFAULT 0,
            schedule_cadence TEXT NOT NULL DEFAULT 'weekly'
                CHECK (schedule_cadence IN ('daily', 'weekly')),
            last_run_at TEXT,
            next_run_at TEXT,
            created_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS prompt_runs (
            id TEXT PRIMARY KEY,
            prompt_id TEXT NOT NULL REFERENCES prompts(id) ON DELETE CASCADE,
            provider TEXT NOT NULL,
            model TEXT,
            status TEXT NOT NULL DEFAULT 'started'
                CHECK (status IN ('started', 'completed', 'failed')),
            raw_response TEXT,
            parsed_mentions_json TEXT,
            response_metadata_json TEXT,
            cost REAL,
            executed_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS citations (
            id TEXT PRIMARY KEY,
            prompt_run_id TEXT NOT NULL
                REFERENCES prompt_runs(id) ON DELETE CASCADE,
            url TEXT,
            title TEXT,
            snippet TEXT,
            position INTEGER,
            domain TEXT,
            created_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS scores (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            prompt_run_id TEXT REFERENCES prompt_runs(id) ON DELETE CASCADE,
            entity_type TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            provider TEXT NOT NULL,
            score REAL NOT NULL,
            mention_count INTEGER DEFAULT 0,
            sentiment_score REAL,
            citation_score REAL,
            calculated_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_prompts_due
        ON prompts(is_active, schedule_enabled, next_run_at)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_prompt_runs_prompt
        ON prompt_runs(prompt_id, executed_at)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_citations_run
        ON citations(prompt_run_id)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_scores_project
        ON scores(project_id, calculated_at)
    """)

    logger.debug("Created schema v1 tables and indexes")


def _migrate_to_v2(conn: sqlite3.Connection) -> None:
    """
    Add alerting, the job queue and the audit log.

    job_queue carries project_id / organization_id so running-job counts for
    concurrency ceilings need no joins. locked_at / locked_by form the
    optimistic lock claimed with a conditional UPDATE.
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS alert_rules (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            type TEXT NOT NULL,
            threshold REAL,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS alert_events (
            id TEXT PRIMARY KEY,
            alert_rule_id TEXT NOT NULL
                REFERENCES alert_rules(id) ON DELETE CASCADE,
            prompt_run_id TEXT REFERENCES prompt_runs(id) ON DELETE SET NULL,
            message TEXT NOT NULL,
            metadata_json TEXT,
            acknowledged INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS job_queue (
            id TEXT PRIMARY KEY,
            type TEXT NOT NULL,
            payload_json TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'running', 'completed', 'failed')),
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 5,
            error TEXT,
            scheduled_for TEXT NOT NULL,
            started_at TEXT,
            completed_at TEXT,
            project_id TEXT REFERENCES projects(id) ON DELETE CASCADE,
            organization_id TEXT REFERENCES organizations(id) ON DELETE CASCADE,
            locked_at TEXT,
            locked_by TEXT,
            created_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS audit_logs (
            id TEXT PRIMARY KEY,
            project_id TEXT REFERENCES projects(id) ON DELETE CASCADE,
            entity_type TEXT NOT NULL,
            entity_id TEXT,
            action TEXT NOT NULL
                CHECK (action IN ('create', 'update', 'delete', 'budget_change')),
            previous_value_json TEXT,
            new_value_json TEXT,
            metadata_json TEXT,
            created_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_job_queue_pending
        ON job_queue(status, scheduled_for, locked_at)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_job_queue_project_status
        ON job_queue(project_id, status)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_job_queue_org_status
        ON job_queue(organization_id, status)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_alert_rules_project
        ON alert_rules(project_id)
    """)

    logger.debug("Created schema v2 tables and indexes")
