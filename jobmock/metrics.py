"""Prometheus instrumentation for stubbing, draining and job processing."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

stub_registrations = Counter(
    "jobmock_stub_registrations_total",
    "Count of stubs registered, including restubs of an already installed kind.",
)

bridge_installs = Counter(
    "jobmock_bridge_installs_total",
    "Count of bridging process handlers installed with the queue.",
)

noop_deliveries = Counter(
    "jobmock_noop_deliveries_total",
    "Jobs delivered to a kind with no current stub and completed without work.",
)

jobs_removed = Counter(
    "jobmock_jobs_removed_total",
    "Jobs removed by clean().",
)

removal_failures = Counter(
    "jobmock_removal_failures_total",
    "Individual job removals that failed during clean().",
)

drain_latency = Histogram(
    "jobmock_drain_latency_seconds",
    "Duration of clean() runs, successful or not.",
)

jobs_processed = Counter(
    "jobmock_jobs_processed_total",
    "Jobs that reached a terminal state, by state.",
    ["state"],
)
