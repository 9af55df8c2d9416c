"""
Seed a development database with one storage system, two pipelines and a
month of usage history.

Usage:
  python -m tools.seed_demo_data
  python -m tools.seed_demo_data --days 60 --total-gb 500000 --reset

Inserts go through the regular triggers, so a running live feed will relay
them as storage_change / pipeline_change notifications.
"""

from __future__ import annotations

import argparse
from datetime import UTC, datetime, timedelta
from typing import Any

from apps.backend.db import db_conn, execute_conn, fetch_one_dict_conn

DEMO_SYSTEM = "primary-array"
DEMO_PIPELINES = (
    ("pipeline-a", 1200.0, "Raw telemetry ingestion"),
    ("pipeline-b", 800.0, "Nightly analytics exports"),
    ("compaction", -300.0, "Rolls up and expires raw telemetry"),
)


def build_history(*, days: int, start_used_gb: float, daily_growth_gb: float, now: datetime) -> list[tuple[datetime, float]]:
    """Linear usage history, one sample per day, oldest first; the last sample is at ``now``."""
    samples: list[tuple[datetime, float]] = []
    for offset in range(days - 1, -1, -1):
        recorded_at = now - timedelta(days=offset)
        used = start_used_gb + (days - 1 - offset) * daily_growth_gb
        samples.append((recorded_at, round(used, 3)))
    return samples


def seed(conn: Any, *, days: int, total_gb: float, used_gb: float, reset: bool) -> int:
    """Insert demo rows on ``conn`` and commit. Returns the storage system id."""
    if reset:
        execute_conn(conn, "DELETE FROM storage_usage_history")
        execute_conn(conn, "DELETE FROM pipelines")
        execute_conn(conn, "DELETE FROM storage_systems")

    row = fetch_one_dict_conn(
        conn,
        """
        INSERT INTO storage_systems (name, total_capacity_gb, used_capacity_gb)
        VALUES (%s, %s, %s)
        ON CONFLICT (name) DO UPDATE
          SET total_capacity_gb = EXCLUDED.total_capacity_gb,
              used_capacity_gb = EXCLUDED.used_capacity_gb,
              updated_at = now()
        RETURNING id
        """,
        (DEMO_SYSTEM, total_gb, used_gb),
    )
    if row is None:
        raise RuntimeError("storage system upsert returned no id")
    system_id = int(row["id"])

    for name, rate, description in DEMO_PIPELINES:
        execute_conn(
            conn,
            """
            INSERT INTO pipelines (name, status, impact_rate_gb_per_day, description, storage_system_id)
            VALUES (%s, 'active', %s, %s, %s)
            ON CONFLICT (name) DO UPDATE
              SET impact_rate_gb_per_day = EXCLUDED.impact_rate_gb_per_day,
                  description = EXCLUDED.description,
                  storage_system_id = EXCLUDED.storage_system_id,
                  updated_at = now()
            """,
            (name, rate, description, system_id),
        )

    growth = sum(rate for _, rate, _ in DEMO_PIPELINES)
    start_used = max(0.0, used_gb - (days - 1) * growth)
    for recorded_at, used in build_history(
        days=days, start_used_gb=start_used, daily_growth_gb=growth, now=datetime.now(UTC)
    ):
        execute_conn(
            conn,
            """
            INSERT INTO storage_usage_history (storage_system_id, recorded_at, used_capacity_gb)
            VALUES (%s, %s, %s)
            """,
            (system_id, recorded_at, used),
        )
    conn.commit()
    return system_id


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Seed demo capacity data.")
    parser.add_argument("--days", type=int, default=30, help="Days of usage history (default 30).")
    parser.add_argument("--total-gb", type=float, default=500_000.0, help="System capacity in GB.")
    parser.add_argument("--used-gb", type=float, default=420_000.0, help="Current used capacity in GB.")
    parser.add_argument("--reset", action="store_true", help="Delete existing rows first.")
    args = parser.parse_args(argv)

    if args.days < 1:
        parser.error("--days must be >= 1")

    with db_conn() as conn:
        system_id = seed(conn, days=args.days, total_gb=args.total_gb, used_gb=args.used_gb, reset=args.reset)
    print(f"Seeded storage system {DEMO_SYSTEM} (id={system_id}) with {args.days} days of history")


if __name__ == "__main__":
    main()
