"""
Thread-safe query counting and periodic reporting for dnstally.

This module provides the aggregation table (one lifetime counter and one
interval counter per key), point-in-time snapshots ranked by count, per-minute
rate computation, report rendering, and the background reporter thread that
emits a report on every tick and a final report on shutdown.

Entries are created on first sight and never removed, so memory grows with the
number of distinct keys seen during the run. Evicting keys would change the
reported totals, so no eviction is performed.
"""

from __future__ import annotations

import importlib.metadata as importlib_metadata
import json
import logging
import socket
import sys
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, TextIO, Tuple

logger = logging.getLogger(__name__)


try:
    DNSTALLY_VERSION = importlib_metadata.version("dnstally")
except importlib_metadata.PackageNotFoundError:  # pragma: no cover - source checkout
    DNSTALLY_VERSION = "unknown"


_PROCESS_START_TIME = time.time()

# Shortest window used as a rate denominator, in seconds.
MIN_ELAPSED_SECONDS = 1.0

REPORT_FORMATS = ("text", "json")


def get_process_uptime_seconds() -> float:
    """Return process uptime in seconds since this module was imported.

    Inputs:
      - None.

    Outputs:
      - float seconds, always >= 0.0.
    """

    return max(0.0, time.time() - _PROCESS_START_TIME)


def elapsed_minutes(seconds: float) -> float:
    """Convert an elapsed time to a rate denominator in minutes.

    Inputs:
        seconds: Elapsed wall time in seconds (may be 0 or negative on clock skew)

    Outputs:
        Minutes, never less than MIN_ELAPSED_SECONDS / 60

    Example:
        >>> elapsed_minutes(120)
        2.0
        >>> elapsed_minutes(0) > 0
        True
    """
    return max(float(seconds), MIN_ELAPSED_SECONDS) / 60.0


def rate_per_minute(count: int, seconds: float) -> float:
    """Return ``count`` per minute over ``seconds`` of elapsed time."""
    return count / elapsed_minutes(seconds)


@dataclass
class CounterPair:
    """Lifetime total and current-interval count for one key."""

    total: int = 0
    interval: int = 0


@dataclass(frozen=True)
class TallyRow:
    """One ranked snapshot entry."""

    key: str
    total: int
    interval: int


@dataclass
class TallySnapshot:
    """
    Point-in-time copy of the aggregation table.

    Inputs (constructor):
        created_at: Wall-clock time the snapshot was taken (epoch seconds)
        lifetime_seconds: Time since the counter was created
        interval_seconds: Time since the last rollover
        rows: Entries ordered by total descending, then key ascending

    The snapshot is built under the counter lock and rendered outside it.
    """

    created_at: float
    lifetime_seconds: float
    interval_seconds: float
    rows: List[TallyRow] = field(default_factory=list)

    def lifetime_rate(self, row: TallyRow) -> float:
        return rate_per_minute(row.total, self.lifetime_seconds)

    def interval_rate(self, row: TallyRow) -> float:
        return rate_per_minute(row.interval, self.interval_seconds)


class QueryCounter:
    """
    Aggregation table mapping a key to its CounterPair.

    Inputs (constructor):
        clock: Monotonic time source used for window bookkeeping
        wall_clock: Wall time source stamped on snapshots

    Outputs:
        QueryCounter instance for counting keys and taking snapshots

    All public methods hold a single lock. snapshot(rollover=True) copies the
    table, zeroes interval counts and restarts the interval window inside one
    critical section, so each tick report covers exactly one window.

    Example:
        >>> counter = QueryCounter()
        >>> counter.increment("example.com.")
        >>> counter.increment("example.com.")
        >>> counter.snapshot().rows[0]
        TallyRow(key='example.com.', total=2, interval=2)
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._lock = threading.Lock()
        self._counts: Dict[str, CounterPair] = {}
        self._clock = clock
        self._wall_clock = wall_clock
        self.started_at = clock()
        self.last_rollover = self.started_at

    def __len__(self) -> int:
        with self._lock:
            return len(self._counts)

    def increment(self, key: str) -> None:
        """Count one classified frame under ``key``."""
        with self._lock:
            pair = self._counts.get(key)
            if pair is None:
                self._counts[key] = CounterPair(total=1, interval=1)
            else:
                pair.total += 1
                pair.interval += 1

    def rollover(self) -> None:
        """Zero every interval count and restart the interval window."""
        with self._lock:
            self._rollover_locked(self._clock())

    def _rollover_locked(self, now: float) -> None:
        for pair in self._counts.values():
            pair.interval = 0
        self.last_rollover = now

    def snapshot(self, rollover: bool = False) -> TallySnapshot:
        """Copy the table into a ranked TallySnapshot.

        Inputs:
            rollover: When True, roll the interval over after copying, in the
                same critical section.

        Outputs:
            TallySnapshot whose rows are sorted by total descending with ties
            broken by key ascending.
        """
        with self._lock:
            now = self._clock()
            rows = [
                TallyRow(key, pair.total, pair.interval)
                for key, pair in self._counts.items()
            ]
            lifetime_seconds = max(0.0, now - self.started_at)
            interval_seconds = max(0.0, now - self.last_rollover)
            created_at = self._wall_clock()
            if rollover:
                self._rollover_locked(now)

        rows.sort(key=lambda r: (-r.total, r.key))
        return TallySnapshot(
            created_at=created_at,
            lifetime_seconds=lifetime_seconds,
            interval_seconds=interval_seconds,
            rows=rows,
        )


def _report_columns(final: bool, interval_rates: bool) -> Tuple[str, ...]:
    if final:
        return ("total", "rate/min")
    if interval_rates:
        return ("total", "interval", "rate/min", "interval/min")
    return ("total", "interval", "rate/min")


def _row_fields(
    snapshot: TallySnapshot, row: TallyRow, final: bool, interval_rates: bool
) -> List[str]:
    fields = [str(row.total)]
    if not final:
        fields.append(str(row.interval))
    fields.append(f"{snapshot.lifetime_rate(row):.2f}")
    if not final and interval_rates:
        fields.append(f"{snapshot.interval_rate(row):.2f}")
    return fields


def _pad_line(key: str, tail: str, width: int) -> str:
    # Overlong keys keep a fixed gap instead of a negative pad.
    spaces = width - len(key) - len(tail)
    if spaces < 0:
        spaces = 10
    return f"{key}{' ' * spaces}{tail}"


def format_report_text(
    snapshot: TallySnapshot,
    *,
    final: bool = False,
    width: Optional[int] = None,
    interval_rates: bool = True,
    top: Optional[int] = None,
    key_label: str = "key",
) -> str:
    """Render a snapshot as a ranked plain-text table.

    Inputs:
        snapshot: TallySnapshot to render
        final: Render the end-of-run totals form (total and lifetime rate only)
        width: Fixed line width; None aligns columns to the widest key
        interval_rates: Include the interval rate column on tick reports
        top: Render at most this many rows
        key_label: Heading of the key column

    Outputs:
        Multi-line string without a trailing newline.

    Example:
        >>> snap = TallySnapshot(0.0, 60.0, 60.0, [TallyRow("a.com.", 2, 2)])
        >>> print(format_report_text(snap, interval_rates=False))
        Queries for the last 1.0 minutes (1 keys)
        key     total  interval  rate/min
        a.com.      2         2      2.00
    """
    if final:
        header = (
            f"Totals for run ({snapshot.lifetime_seconds / 60.0:.1f} minutes, "
            f"{len(snapshot.rows)} keys)"
        )
    else:
        header = (
            f"Queries for the last {snapshot.interval_seconds / 60.0:.1f} minutes "
            f"({len(snapshot.rows)} keys)"
        )

    rows = snapshot.rows[:top] if top else snapshot.rows
    columns = _report_columns(final, interval_rates)
    table = [_row_fields(snapshot, row, final, interval_rates) for row in rows]

    col_widths = [len(name) for name in columns]
    for fields in table:
        for i, value in enumerate(fields):
            col_widths[i] = max(col_widths[i], len(value))

    def _tail(values) -> str:
        return "  ".join(v.rjust(col_widths[i]) for i, v in enumerate(values))

    lines = [header]
    if width:
        lines.append(_pad_line(key_label, _tail(columns), width))
        for row, fields in zip(rows, table):
            lines.append(_pad_line(row.key, _tail(fields), width))
    else:
        key_width = max([len(key_label)] + [len(row.key) for row in rows])
        lines.append(f"{key_label.ljust(key_width)}  {_tail(columns)}")
        for row, fields in zip(rows, table):
            lines.append(f"{row.key.ljust(key_width)}  {_tail(fields)}")
    return "\n".join(lines)


def format_report_json(
    snapshot: TallySnapshot,
    *,
    final: bool = False,
    interval_rates: bool = True,
    top: Optional[int] = None,
) -> str:
    """Render a snapshot as a single-line JSON document.

    Inputs:
        snapshot: TallySnapshot to serialize
        final: Emit the end-of-run form (no interval figures)
        interval_rates: Include interval_rate per row on tick reports
        top: Emit at most this many rows

    Outputs:
        JSON string (single line, no trailing newline) with a "meta" object
        holding timestamp, hostname, version and process uptime.
    """
    ts = datetime.fromtimestamp(snapshot.created_at, tz=timezone.utc).isoformat()

    try:
        hostname = socket.gethostname()
    except OSError:  # pragma: no cover - environment specific
        hostname = "unknown-host"

    rows_out: List[Dict[str, Any]] = []
    for row in snapshot.rows[:top] if top else snapshot.rows:
        entry: Dict[str, Any] = {
            "key": row.key,
            "total": row.total,
            "rate": round(snapshot.lifetime_rate(row), 4),
        }
        if not final:
            entry["interval"] = row.interval
            if interval_rates:
                entry["interval_rate"] = round(snapshot.interval_rate(row), 4)
        rows_out.append(entry)

    output: Dict[str, Any] = {
        "ts": ts,
        "report": "final" if final else "interval",
        "lifetime_seconds": round(snapshot.lifetime_seconds, 3),
        "keys": len(snapshot.rows),
        "rows": rows_out,
        "meta": {
            "timestamp": ts,
            "hostname": hostname,
            "version": DNSTALLY_VERSION,
            "uptime": get_process_uptime_seconds(),
        },
    }
    if not final:
        output["interval_seconds"] = round(snapshot.interval_seconds, 3)

    return json.dumps(output, separators=(",", ":"))


class StatsReporter(threading.Thread):
    """
    Background daemon thread emitting a report on every tick.

    Inputs (constructor):
        counter: QueryCounter to snapshot
        interval_seconds: Seconds between reports (default 60)
        stream: Text stream reports are written to (default: sys.stdout at
            write time)
        fmt: "text" or "json"
        width: Fixed line width for text reports
        interval_rates: Include interval rates on tick reports
        top: Render at most this many rows per report
        key_label: Heading of the key column in text reports
        logger_name: Logger name to use (default "dnstally.stats")

    Outputs:
        StatsReporter thread instance (call start() to begin)

    Each tick takes snapshot(rollover=True), renders it and writes it with a
    flush. The counter lock is held only while copying; rendering and writing
    happen outside it. All writes share one output lock so reports never
    interleave. emit_final() writes the end-of-run report once.

    Example:
        >>> counter = QueryCounter()
        >>> reporter = StatsReporter(counter, interval_seconds=60)
        >>> reporter.start()
        >>> # ... on shutdown:
        >>> reporter.stop()
        >>> reporter.emit_final()
        True
    """

    def __init__(
        self,
        counter: QueryCounter,
        interval_seconds: float = 60,
        stream: Optional[TextIO] = None,
        fmt: str = "text",
        width: Optional[int] = None,
        interval_rates: bool = True,
        top: Optional[int] = None,
        key_label: str = "key",
        logger_name: str = "dnstally.stats",
    ) -> None:
        super().__init__(daemon=True, name="StatsReporter")
        if fmt not in REPORT_FORMATS:
            raise ValueError(f"unknown report format {fmt!r}")
        self.counter = counter
        self.interval_seconds = max(1, interval_seconds)
        self.stream = stream
        self.fmt = fmt
        self.width = width
        self.interval_rates = interval_rates
        self.top = top
        self.key_label = key_label
        self.logger = logging.getLogger(logger_name)

        self._stop_event = threading.Event()
        self._output_lock = threading.Lock()
        self._final_lock = threading.Lock()
        self._final_emitted = False

    def render(self, snapshot: TallySnapshot, final: bool = False) -> str:
        if self.fmt == "json":
            return format_report_json(
                snapshot, final=final, interval_rates=self.interval_rates, top=self.top
            )
        return format_report_text(
            snapshot,
            final=final,
            width=self.width,
            interval_rates=self.interval_rates,
            top=self.top,
            key_label=self.key_label,
        )

    def _write(self, text: str) -> None:
        stream = self.stream if self.stream is not None else sys.stdout
        with self._output_lock:
            stream.write(text + "\n")
            stream.flush()

    def tick(self) -> TallySnapshot:
        """Report the window just completed and start a new one."""
        snapshot = self.counter.snapshot(rollover=True)
        self._write(self.render(snapshot, final=False))
        self.logger.debug(
            "Reported %d keys for %.1fs window",
            len(snapshot.rows),
            snapshot.interval_seconds,
        )
        return snapshot

    def emit_now(self) -> TallySnapshot:
        """Report the current window without rolling it over."""
        snapshot = self.counter.snapshot(rollover=False)
        self._write(self.render(snapshot, final=False))
        return snapshot

    def emit_final(self) -> bool:
        """Write the totals-for-run report.

        Outputs:
            True when the report was written by this call; False when a final
            report had already been emitted.
        """
        with self._final_lock:
            if self._final_emitted:
                return False
            self._final_emitted = True
        snapshot = self.counter.snapshot(rollover=False)
        self._write(self.render(snapshot, final=True))
        return True

    def run(self) -> None:
        """
        Reporter main loop (called by start()).

        Waits interval_seconds between ticks and exits when stop() is called.
        """
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.tick()
            except Exception as e:  # pragma: no cover
                self.logger.error("StatsReporter error: %s", e, exc_info=True)

    def stop(self, timeout: float = 5.0) -> None:
        """Signal the reporter to stop and wait for any in-flight tick."""
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout=timeout)
