"""Unit tests for the attribution ledger (aom_visits)."""
import threading
from datetime import date

import pytest

from aom_core.reconcile.ledger import AttributionStore
from aom_core.reconcile.matching import reconcile_window
from aom_core.reconcile.schema import connect
from aom_core.schemas.records import Platform


@pytest.fixture
def window_rows(make_visit, make_cost, window_day, midnight_utc):
    """Rows of a window with matched, synthetic and catch-all visits."""
    visits = [
        make_visit(1, platform="AdWords", platform_row_id="7", conversions=1, revenue=20.0),
        make_visit(2, platform="AdWords", platform_row_id="7"),
        make_visit(3, referer_type="direct"),
    ]
    costs = {Platform.ADWORDS: [make_cost("7", cost=9.0, clicks=2), make_cost("8", cost=5.5, clicks=2)]}
    return reconcile_window(1, window_day, visits, costs, list(Platform), midnight_utc).rows


def _hashes(store, day):
    return sorted(row["unique_hash"] for row in store.fetch_window(1, day))


def test_replace_window_inserts_rows(db_conn, window_rows, window_day):
    store = AttributionStore(db_conn)

    stats = store.replace_window(1, window_day, window_rows)

    assert stats.deleted == 0
    assert stats.inserted == 4
    assert stats.conflicts == 0
    assert store.count_rows(1, window_day) == 4
    assert store.stored_cost(1, window_day, "AdWords") == pytest.approx(14.5)
    assert store.stored_cost(1, window_day, "direct") == 0.0

    rows = {row["unique_hash"]: row for row in store.fetch_window(1, window_day)}
    assert rows["visit-1"]["revenue"] == 20.0
    assert rows["visit-1"]["platform_data"]["external_row_id"] == "7"
    assert rows["visit-3"]["cost"] is None
    assert rows["visit-3"]["platform_data"] is None


def test_reprocessing_same_window_is_idempotent(db_conn, window_rows, window_day):
    """Test re-running a window leaves row count and hash set unchanged."""
    store = AttributionStore(db_conn)

    store.replace_window(1, window_day, window_rows)
    first = _hashes(store, window_day)

    stats = store.replace_window(1, window_day, window_rows)
    second = _hashes(store, window_day)

    assert stats.deleted == 4
    assert stats.inserted == 4
    assert first == second


def test_replace_window_keeps_other_windows(db_conn, window_rows, window_day):
    store = AttributionStore(db_conn)
    store.replace_window(1, window_day, window_rows)

    store.replace_window(1, date(2024, 3, 11), [])

    assert store.count_rows(1, window_day) == 4


def test_replace_window_rolls_back_on_foreign_row(db_conn, window_rows, window_day):
    """Test a failed replace leaves the previous window untouched."""
    store = AttributionStore(db_conn)
    store.replace_window(1, window_day, window_rows)

    foreign = window_rows[0].model_copy(update={"site_id": 2})
    with pytest.raises(ValueError):
        store.replace_window(1, window_day, [*window_rows[1:], foreign])

    assert store.count_rows(1, window_day) == 4


def test_duplicate_hash_counted_as_conflict(db_conn, window_rows, window_day):
    store = AttributionStore(db_conn)

    stats = store.replace_window(1, window_day, [*window_rows, window_rows[0]])

    assert stats.inserted == 4
    assert stats.conflicts == 1
    assert store.count_rows(1, window_day) == 4


def test_concurrent_replace_has_no_duplicates(db_path, window_rows, window_day):
    """Test two runs replacing the same window converge to one run's rows."""
    errors: list[Exception] = []
    barrier = threading.Barrier(2)

    def worker():
        conn = connect(db_path)
        try:
            store = AttributionStore(conn)
            barrier.wait()
            for _ in range(5):
                store.replace_window(1, window_day, window_rows)
        except Exception as exc:
            errors.append(exc)
        finally:
            conn.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []

    conn = connect(db_path)
    try:
        store = AttributionStore(conn)
        hashes = _hashes(store, window_day)
        assert len(hashes) == len(set(hashes)) == len(window_rows)
    finally:
        conn.close()
