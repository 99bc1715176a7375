"""
DuckDB Export Script for Events

Usage:
    python scripts/export_events.py <path-to-duckdb> [--days N]

Replaces the `events` table in the target file with the stored events,
optionally limited to the last N days.
"""

import sys
from pathlib import Path

# Add parent directory to path to import app modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from visitor_analytics.core.clock import SystemClock, seconds_to_ns
from visitor_analytics.core.database import sync_engine
from visitor_analytics.services.export import export_events


def main():
    args = sys.argv[1:]
    if len(args) not in (1, 3) or (len(args) == 3 and args[1] != "--days"):
        print("Usage: python scripts/export_events.py <path-to-duckdb> [--days N]")
        sys.exit(1)

    since_ns = None
    if len(args) == 3:
        try:
            days = int(args[2])
        except ValueError:
            print(f"Error: --days expects an integer, got {args[2]!r}")
            sys.exit(1)
        since_ns = SystemClock().now_ns() - seconds_to_ns(days * 86400)

    print(f"Exporting events to: {args[0]}")
    rows = export_events(sync_engine, args[0], since_ns=since_ns)

    print("\n" + "=" * 50)
    print("Export completed!")
    print(f"Total exported: {rows}")
    print("=" * 50)


if __name__ == "__main__":
    main()
