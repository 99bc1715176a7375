import threading

import duckdb

from conftest import CHROME_UA
from visitor_analytics.services.export import export_events
from visitor_analytics.services.identity import resolve_identity
from visitor_analytics.services.timeseries import PRESETS

DAY = 86400


def test_sweep_purges_expired_events_and_visitors(engine, clock, ingest):
    ingest(address="198.51.100.1")
    clock.advance(91 * DAY)
    ingest(address="198.51.100.2")

    assert engine.retention.sweep() == {"events": 1, "visitors": 1}

    assert engine.ledger.get(resolve_identity("198.51.100.1", CHROME_UA)) is None
    assert engine.ledger.get(resolve_identity("198.51.100.2", CHROME_UA)) is not None
    assert len(engine.store.recent(0, 10)) == 1


def test_sweep_within_retention_keeps_everything(engine, clock, ingest):
    ingest()
    clock.advance(89 * DAY)

    assert engine.retention.sweep() == {"events": 0, "visitors": 0}


def test_sweep_invalidates_cached_stats(engine, clock, ingest):
    ingest(address="198.51.100.1")
    clock.advance(91 * DAY - 60)
    ingest(address="198.51.100.2")
    clock.advance(60)

    assert engine.analytics.get_stats(PRESETS["30d"]).total_events == 1

    ingest(address="198.51.100.3")
    engine.retention.sweep()
    assert engine.analytics.get_stats(PRESETS["30d"]).total_events == 2


def test_run_stops_when_signalled(engine):
    stop = threading.Event()
    timer = threading.Timer(0.05, stop.set)
    timer.start()

    sweeps = engine.retention.run(stop, interval_seconds=0.01)
    timer.join()

    assert sweeps >= 1


def test_run_does_nothing_when_already_stopped(engine):
    stop = threading.Event()
    stop.set()
    assert engine.retention.run(stop, interval_seconds=60) == 0


def test_export_to_duckdb(engine, db_engine, clock, ingest, tmp_path):
    ingest({"event_type": "pageview", "page": "/a"})
    clock.advance(10)
    since_ns = clock.now_ns()
    ingest({"event_type": "click", "page": "/b"})

    target = tmp_path / "exports" / "events.duckdb"
    assert export_events(db_engine, target) == 2
    # The table is replaced, not appended to
    assert export_events(db_engine, target, since_ns=since_ns) == 1

    con = duckdb.connect(str(target))
    try:
        rows = con.execute("SELECT page, visitor_class FROM events").fetchall()
    finally:
        con.close()
    assert rows == [("/b", "new")]


def test_export_without_events(db_engine, tmp_path):
    target = tmp_path / "empty.duckdb"

    assert export_events(db_engine, target) == 0
    assert not target.exists()
