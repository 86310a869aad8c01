"""SQLite schema management (code-first approach)."""

import logging

from choretally.core.db_client import DBClient


logger = logging.getLogger(__name__)


# Central list of all collections in the schema
COLLECTIONS = [
    "task_completions",
    "task_period_results",
    "weekly_statistics",
    "weekly_statistics_tasks",
    "monthly_statistics",
    "monthly_statistics_tasks",
]


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS task_completions (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    household_id TEXT NOT NULL,
    completed_at TEXT NOT NULL,
    due_date TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'approved' CHECK (status IN ('approved', 'pending'))
);
CREATE INDEX IF NOT EXISTS idx_completions_task ON task_completions (task_id);
CREATE INDEX IF NOT EXISTS idx_completions_task_user ON task_completions (task_id, user_id);
CREATE INDEX IF NOT EXISTS idx_completions_due_date ON task_completions (due_date);
CREATE INDEX IF NOT EXISTS idx_completions_household_status ON task_completions (household_id, status);

CREATE TABLE IF NOT EXISTS task_period_results (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL,
    period_start TEXT NOT NULL,
    period_end TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('completed', 'failed', 'skipped')),
    completions_count INTEGER NOT NULL DEFAULT 0,
    target_count INTEGER NOT NULL DEFAULT 0,
    finalized_at TEXT NOT NULL,
    finalized_by TEXT NOT NULL DEFAULT 'system',
    notes TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_period_results_task_period ON task_period_results (task_id, period_start);
CREATE INDEX IF NOT EXISTS idx_period_results_task ON task_period_results (task_id);
CREATE INDEX IF NOT EXISTS idx_period_results_status ON task_period_results (status);

CREATE TABLE IF NOT EXISTS weekly_statistics (
    id TEXT PRIMARY KEY,
    household_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    week_start TEXT NOT NULL,
    week_end TEXT NOT NULL,
    total_expected INTEGER NOT NULL DEFAULT 0,
    total_completed INTEGER NOT NULL DEFAULT 0,
    completion_rate REAL NOT NULL DEFAULT 0,
    calculated_at TEXT NOT NULL,
    UNIQUE (household_id, user_id, week_start)
);
CREATE INDEX IF NOT EXISTS idx_weekly_statistics_household ON weekly_statistics (household_id, week_start);

CREATE TABLE IF NOT EXISTS weekly_statistics_tasks (
    id TEXT PRIMARY KEY,
    weekly_statistics_id TEXT NOT NULL REFERENCES weekly_statistics (id) ON DELETE CASCADE,
    task_id TEXT NOT NULL,
    task_title TEXT NOT NULL,
    expected INTEGER NOT NULL DEFAULT 0,
    completed INTEGER NOT NULL DEFAULT 0,
    completion_rate REAL NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_weekly_statistics_tasks_parent ON weekly_statistics_tasks (weekly_statistics_id);

CREATE TABLE IF NOT EXISTS monthly_statistics (
    id TEXT PRIMARY KEY,
    household_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    month TEXT NOT NULL,
    total_expected INTEGER NOT NULL DEFAULT 0,
    total_completed INTEGER NOT NULL DEFAULT 0,
    completion_rate REAL NOT NULL DEFAULT 0,
    calculated_at TEXT NOT NULL,
    UNIQUE (household_id, user_id, month)
);
CREATE INDEX IF NOT EXISTS idx_monthly_statistics_household ON monthly_statistics (household_id, month);

CREATE TABLE IF NOT EXISTS monthly_statistics_tasks (
    id TEXT PRIMARY KEY,
    monthly_statistics_id TEXT NOT NULL REFERENCES monthly_statistics (id) ON DELETE CASCADE,
    task_id TEXT NOT NULL,
    task_title TEXT NOT NULL,
    expected INTEGER NOT NULL DEFAULT 0,
    completed INTEGER NOT NULL DEFAULT 0,
    completion_rate REAL NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_monthly_statistics_tasks_parent ON monthly_statistics_tasks (monthly_statistics_id);
"""


async def init_db(db: DBClient) -> None:
    """Create all tables and indexes if they do not exist yet.

    Safe to call on every startup.
    """
    await db.executescript(_SCHEMA_SQL)
    logger.info("Database schema initialized", extra={"collections": COLLECTIONS, "db_path": db.db_path})
