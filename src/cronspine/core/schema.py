"""Scheduler tables.

::

    cs_jobs ──1:1──► cs_triggers          (ON DELETE CASCADE)
    cs_execution_logs                     (no FK: history outlives deleted jobs)

Instants are fixed-width UTC ISO 8601 strings (see ``core.timestamps``).
"""

from __future__ import annotations

from cronspine.core.connection import SqliteConnection

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS cs_jobs (
    job_group    TEXT NOT NULL,
    job_name     TEXT NOT NULL,
    description  TEXT NOT NULL DEFAULT '',
    job_type     TEXT NOT NULL DEFAULT 'http',
    job_data     TEXT NOT NULL DEFAULT '{}',
    durable      INTEGER NOT NULL DEFAULT 1,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL,
    PRIMARY KEY (job_group, job_name)
);

CREATE TABLE IF NOT EXISTS cs_triggers (
    trigger_group       TEXT NOT NULL,
    trigger_name        TEXT NOT NULL,
    job_group           TEXT NOT NULL,
    job_name            TEXT NOT NULL,
    cron_expression     TEXT NOT NULL,
    start_time          TEXT,
    end_time            TEXT,
    state               TEXT NOT NULL DEFAULT 'NORMAL',
    previous_fire_time  TEXT,
    next_fire_time      TEXT,
    version             INTEGER NOT NULL DEFAULT 1,
    updated_at          TEXT NOT NULL,
    PRIMARY KEY (trigger_group, trigger_name),
    UNIQUE (job_group, job_name),
    FOREIGN KEY (job_group, job_name)
        REFERENCES cs_jobs (job_group, job_name) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_cs_triggers_next_fire
    ON cs_triggers (state, next_fire_time);

CREATE TABLE IF NOT EXISTS cs_execution_logs (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    job_group      TEXT NOT NULL,
    job_name       TEXT NOT NULL,
    trigger_group  TEXT NOT NULL,
    trigger_name   TEXT NOT NULL,
    fire_time      TEXT NOT NULL,
    end_time       TEXT NOT NULL,
    duration_ms    INTEGER NOT NULL,
    status         TEXT NOT NULL,
    message        TEXT
);

CREATE INDEX IF NOT EXISTS idx_cs_execution_logs_job
    ON cs_execution_logs (job_group, job_name, fire_time DESC);

CREATE INDEX IF NOT EXISTS idx_cs_execution_logs_fire_time
    ON cs_execution_logs (fire_time);
"""

TABLES = ("cs_jobs", "cs_triggers", "cs_execution_logs")


def create_tables(conn: SqliteConnection) -> None:
    """Create all scheduler tables and indexes (idempotent)."""
    conn.executescript(SCHEMA_SQL)
