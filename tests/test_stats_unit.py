"""
Brief: Unit tests for dnstally.stats counting, windows, rates and formatting.

Inputs:
  - None

Outputs:
  - None
"""

import json
import math
import random
import threading
from collections import Counter

import pytest

from dnstally.stats import (
    QueryCounter,
    TallyRow,
    TallySnapshot,
    elapsed_minutes,
    format_report_json,
    format_report_text,
    rate_per_minute,
)


class FakeClock:
    """Brief: Manually advanced monotonic clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _rows(snap):
    return [(r.key, r.total, r.interval) for r in snap.rows]


def test_single_query_reported_once():
    c = QueryCounter()
    c.increment("example.com.")
    assert _rows(c.snapshot(rollover=True)) == [("example.com.", 1, 1)]


def test_two_windows_keep_totals_and_reset_intervals():
    clock = FakeClock()
    c = QueryCounter(clock=clock)
    c.increment("a.com.")
    c.increment("a.com.")
    c.increment("b.com.")
    clock.advance(60)
    first = c.snapshot(rollover=True)
    assert _rows(first) == [("a.com.", 2, 2), ("b.com.", 1, 1)]

    c.increment("a.com.")
    clock.advance(60)
    second = c.snapshot(rollover=True)
    assert _rows(second) == [("a.com.", 3, 1), ("b.com.", 1, 0)]
    assert second.lifetime_seconds == 120
    assert second.interval_seconds == 60


def test_rollover_zeroes_intervals_only():
    clock = FakeClock()
    c = QueryCounter(clock=clock)
    for _ in range(3):
        c.increment("k")
    clock.advance(5)
    c.rollover()
    assert c.last_rollover == clock.now
    assert _rows(c.snapshot()) == [("k", 3, 0)]
    assert len(c) == 1


def test_snapshot_without_rollover_keeps_window():
    clock = FakeClock()
    c = QueryCounter(clock=clock)
    c.increment("k")
    clock.advance(10)
    c.snapshot()
    clock.advance(10)
    snap = c.snapshot()
    assert snap.interval_seconds == 20
    assert _rows(snap) == [("k", 1, 1)]


def test_totals_match_classified_counts_across_rollovers():
    rng = random.Random(7)
    keys = [f"host{i}.example." for i in range(6)]
    c = QueryCounter()
    expected = Counter()
    window = Counter()
    for step in range(500):
        key = rng.choice(keys)
        c.increment(key)
        expected[key] += 1
        window[key] += 1
        if step % 97 == 96:
            snap = c.snapshot(rollover=True)
            assert {r.key: r.interval for r in snap.rows if r.interval} == dict(window)
            window.clear()
    final = c.snapshot()
    assert {r.key: r.total for r in final.rows} == dict(expected)


def test_snapshot_ordering_with_deterministic_ties():
    c = QueryCounter()
    for key, n in (("zeta.", 2), ("alpha.", 2), ("mid.", 5), ("beta.", 1), ("aa.", 2)):
        for _ in range(n):
            c.increment(key)
    rows = c.snapshot().rows
    assert [r.key for r in rows] == ["mid.", "aa.", "alpha.", "zeta.", "beta."]
    totals = [r.total for r in rows]
    assert totals == sorted(totals, reverse=True)


def test_concurrent_increments_are_not_lost():
    c = QueryCounter()

    def worker():
        for _ in range(2000):
            c.increment("shared.")

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert _rows(c.snapshot()) == [("shared.", 8000, 8000)]


def test_rates_never_divide_by_zero():
    assert elapsed_minutes(0) > 0
    assert elapsed_minutes(-3) == elapsed_minutes(0)
    assert elapsed_minutes(120) == 2.0
    r = rate_per_minute(5, 0.0)
    assert math.isfinite(r) and not math.isnan(r)
    assert rate_per_minute(5, 0.0) == pytest.approx(300.0)

    clock = FakeClock()
    c = QueryCounter(clock=clock)
    c.increment("k")
    snap = c.snapshot(rollover=True)
    row = snap.rows[0]
    assert snap.lifetime_seconds == 0
    assert math.isfinite(snap.lifetime_rate(row))
    assert math.isfinite(snap.interval_rate(row))


def test_rate_formulas():
    snap = TallySnapshot(
        created_at=0.0,
        lifetime_seconds=300.0,
        interval_seconds=60.0,
        rows=[TallyRow("a.", 10, 4)],
    )
    row = snap.rows[0]
    assert snap.lifetime_rate(row) == 2.0
    assert snap.interval_rate(row) == 4.0


def _snap():
    return TallySnapshot(
        created_at=1_700_000_000.0,
        lifetime_seconds=120.0,
        interval_seconds=60.0,
        rows=[TallyRow("a.com.", 3, 1), TallyRow("b.com.", 1, 0)],
    )


def test_format_text_interval_report_tabular():
    text = format_report_text(_snap())
    lines = text.splitlines()
    assert lines[0] == "Queries for the last 1.0 minutes (2 keys)"
    assert lines[1].split() == ["key", "total", "interval", "rate/min", "interval/min"]
    assert lines[2].split() == ["a.com.", "3", "1", "1.50", "1.00"]
    assert lines[3].split() == ["b.com.", "1", "0", "0.50", "0.00"]
    # Columns line up
    assert len({len(line) for line in lines[1:]}) == 1


def test_format_text_final_report_and_options():
    text = format_report_text(_snap(), final=True, key_label="hostname")
    lines = text.splitlines()
    assert lines[0] == "Totals for run (2.0 minutes, 2 keys)"
    assert lines[1].split() == ["hostname", "total", "rate/min"]
    assert lines[2].split() == ["a.com.", "3", "1.50"]

    no_rates = format_report_text(_snap(), interval_rates=False, top=1)
    rows = no_rates.splitlines()[2:]
    assert len(rows) == 1
    assert rows[0].split() == ["a.com.", "3", "1", "1.50"]


def test_format_text_fixed_width():
    lines = format_report_text(_snap(), width=60, final=True).splitlines()
    for line in lines[1:]:
        assert len(line) == 60
    assert lines[2].startswith("a.com. ")
    assert lines[2].endswith("3      1.50")

    long_key = TallySnapshot(0.0, 60.0, 60.0, [TallyRow("x" * 80, 1, 1)])
    line = format_report_text(long_key, width=20, final=True).splitlines()[2]
    assert line.startswith("x" * 80 + " " * 10)


def test_format_report_json_single_line():
    js = format_report_json(_snap())
    assert "\n" not in js
    data = json.loads(js)
    assert data["report"] == "interval"
    assert data["keys"] == 2
    assert data["rows"][0] == {
        "key": "a.com.",
        "total": 3,
        "rate": 1.5,
        "interval": 1,
        "interval_rate": 1.0,
    }
    assert data["interval_seconds"] == 60.0
    assert set(data["meta"]) == {"timestamp", "hostname", "version", "uptime"}

    final = json.loads(format_report_json(_snap(), final=True, top=1))
    assert final["report"] == "final"
    assert final["rows"] == [{"key": "a.com.", "total": 3, "rate": 1.5}]
    assert "interval_seconds" not in final
