"""SQLAlchemy Core schema for queued jobs."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    func,
)
from sqlalchemy.dialects.mysql import JSON as MYSQL_JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.sqlite import JSON as SQLITE_JSON

metadata = MetaData()

_json = (
    JSON().with_variant(JSONB, "postgresql")
    .with_variant(MYSQL_JSON, "mysql")
    .with_variant(SQLITE_JSON, "sqlite")
)

QueueJobs = Table(
    "queue_jobs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("prefix", Text, nullable=False),
    Column("kind", Text, nullable=False),
    Column("data", _json, nullable=False),
    Column("state", Text, nullable=False, server_default="inactive"),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.current_timestamp()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.current_timestamp()),
    Column("started_at", DateTime(timezone=True)),
    Column("finished_at", DateTime(timezone=True)),
    Column("result", _json),
    Column("error", Text),
    CheckConstraint(
        "state IN ('inactive','active','complete','failed')",
        name="queue_job_state_chk",
    ),
)

Index("idx_queue_jobs_prefix_state", QueueJobs.c.prefix, QueueJobs.c.state)

Index(
    "idx_queue_jobs_claim",
    QueueJobs.c.prefix,
    QueueJobs.c.kind,
    QueueJobs.c.state,
    QueueJobs.c.id,
)

__all__ = ["QueueJobs", "metadata"]
