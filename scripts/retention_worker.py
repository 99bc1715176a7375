"""
Retention Worker - Purges expired events and idle visitors

Usage:
    python scripts/retention_worker.py [--once]
"""
import signal
import sys
import threading
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from visitor_analytics.core.config import settings
from visitor_analytics.core.database import init_db
from visitor_analytics.services.engine import get_visitor_engine

logger = structlog.get_logger()


def main():
    """Main worker loop"""
    init_db()
    engine = get_visitor_engine()

    if "--once" in sys.argv[1:]:
        result = engine.retention.sweep()
        print(f"Deleted {result['events']} events, {result['visitors']} visitors")
        return

    stop = threading.Event()

    def request_stop(signum, frame):
        logger.info("worker_stop_requested", signal=signum)
        stop.set()

    signal.signal(signal.SIGINT, request_stop)
    signal.signal(signal.SIGTERM, request_stop)

    print("Retention worker started. Press Ctrl+C to stop.")
    sweeps = engine.retention.run(stop, settings.retention_sweep_interval_seconds)
    print(f"\nWorker stopped after {sweeps} sweeps.")


if __name__ == "__main__":
    main()
