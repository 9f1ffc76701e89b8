from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
import time
from typing import List

import yaml

from .capture import CaptureError, PacketCapture
from .classifier import build_classifier
from .config.config_parser import build_monitor_config, parse_config_file
from .config.logging_config import init_logging
from .frames import Frame
from .stats import QueryCounter, StatsReporter

# How often the main loop checks for shutdown, report requests and a dead
# sniffer thread.
POLL_SECONDS = 0.5


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dnstally",
        description=(
            "Count DNS A-record queries seen on an interface and report them "
            "periodically"
        ),
    )
    parser.add_argument("--config", default=None, help="Path to YAML config (optional)")
    parser.add_argument(
        "-i",
        "--iface",
        dest="interface",
        default=None,
        help="Network interface to capture on (default: eth0)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=None,
        help="Verbose (debug) logging",
    )
    parser.add_argument(
        "-t",
        "--interval",
        type=int,
        default=None,
        help="Seconds between interval reports (default: 60)",
    )
    parser.add_argument(
        "-H",
        "--hostname",
        default=None,
        help=(
            "Count query sources for this hostname instead of hostname counts; "
            "compared verbatim, so include the trailing dot (example.com.)"
        ),
    )
    parser.add_argument(
        "-w",
        "--width",
        type=int,
        default=None,
        help="Fixed line width for text reports (default: align to the widest key)",
    )
    parser.add_argument(
        "--format",
        choices=("text", "json"),
        default=None,
        help="Report format (default: text)",
    )
    parser.add_argument(
        "--top",
        type=int,
        default=None,
        help="Render at most this many rows per report",
    )
    parser.add_argument(
        "--no-interval-rates",
        dest="interval_rates",
        action="store_false",
        default=None,
        help="Omit the per-interval rate column from interval reports",
    )
    return parser


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for dnstally.

    Parses flags and the optional YAML config, starts the capture and the
    reporter, then waits for a termination signal. On SIGINT, SIGTERM or
    SIGHUP the capture is stopped, the reporter is stopped (any in-flight
    report completes first), a totals-for-run report is written once, and 0
    is returned. SIGUSR1 writes an on-demand report without ending the
    current interval.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code: 0 after a normal shutdown, 1 on configuration or
        capture setup failure, or when the capture stops unexpectedly.

    Example use:
        CLI:
            sudo dnstally -i eth0 -t 30
            sudo dnstally -i eth0 -H example.com.
    """
    args = build_arg_parser().parse_args(argv)

    file_cfg = {}
    if args.config:
        try:
            file_cfg = parse_config_file(args.config)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            print(str(exc), file=sys.stderr)
            return 1

    try:
        config = build_monitor_config(
            file_cfg,
            {
                "interface": args.interface,
                "interval": args.interval,
                "hostname": args.hostname,
                "width": args.width,
                "format": args.format,
                "top": args.top,
                "interval_rates": args.interval_rates,
                "verbose": args.verbose,
            },
        )
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    init_logging(config.logging)
    logger = logging.getLogger("dnstally.main")
    if args.config:
        logger.info("Loaded config from %s", args.config)

    classifier = build_classifier(config.target_hostname)
    counter = QueryCounter()
    reporter = StatsReporter(
        counter,
        interval_seconds=config.interval_seconds,
        fmt=config.report_format,
        width=config.width,
        interval_rates=config.interval_rates,
        top=config.top,
        key_label=config.mode,
    )

    def _on_frame(frame: Frame) -> None:
        key, ok = classifier.classify(frame)
        if ok:
            counter.increment(key)

    capture = PacketCapture(config.interface, _on_frame)

    # shutdown_event is set once by the first termination signal; later
    # signals are ignored so the final report is written exactly once.
    # The main thread must only call is_set() on it: a handler calling set()
    # while wait() holds the Event lock deadlocks.
    shutdown_event = threading.Event()
    report_requested = False
    exit_code = 0

    def _request_shutdown(reason: str) -> None:
        if shutdown_event.is_set():
            logger.debug("Ignoring %s, shutdown already in progress", reason)
            return
        shutdown_event.set()
        logger.info("Received %s, shutting down", reason)

    def _sigint_handler(_signum, _frame):
        _request_shutdown("SIGINT")

    def _sigterm_handler(_signum, _frame):
        _request_shutdown("SIGTERM")

    def _sighup_handler(_signum, _frame):
        _request_shutdown("SIGHUP")

    def _sigusr1_handler(_signum, _frame):
        # Plain flag, coalesced; the main loop writes the report.
        nonlocal report_requested
        report_requested = True

    for sig_name, handler in (
        ("SIGINT", _sigint_handler),
        ("SIGTERM", _sigterm_handler),
        ("SIGHUP", _sighup_handler),
        ("SIGUSR1", _sigusr1_handler),
    ):
        signum = getattr(signal, sig_name, None)
        if signum is None:
            logger.warning("Could not install %s handler on this platform", sig_name)
            continue
        try:
            signal.signal(signum, handler)
            logger.debug("Installed %s handler", sig_name)
        except (OSError, ValueError):
            logger.warning("Could not install %s handler on this platform", sig_name)

    try:
        capture.start()
    except CaptureError as exc:
        logger.error("Capture setup failed: %s", exc)
        return 1

    if config.target_hostname and not config.target_hostname.endswith("."):
        logger.warning(
            "Target hostname %r has no trailing dot; decoded query names always "
            "end in '.', so nothing will match (did you mean %r?)",
            config.target_hostname,
            config.target_hostname + ".",
        )

    logger.info(
        "Counting A-record queries by %s on %s, reporting every %ds%s",
        config.mode,
        config.interface,
        config.interval_seconds,
        f" (target {config.target_hostname})" if config.target_hostname else "",
    )
    reporter.start()

    try:
        while not shutdown_event.is_set():
            if report_requested:
                report_requested = False
                reporter.emit_now()

            if not capture.is_running:
                logger.error("Capture stopped unexpectedly")
                exit_code = 1
                break

            time.sleep(POLL_SECONDS)
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down")
    finally:
        capture.stop()
        reporter.stop()
        if reporter.is_alive():
            # The totals report must come after any in-flight tick.
            logger.warning("Waiting for in-flight report before final totals")
            reporter.join()
        try:
            reporter.emit_final()
        except OSError as exc:
            logger.error("Failed to write final report: %s", exc)
            exit_code = 1
        logger.info("Shutdown complete")

    return exit_code


def console_main() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    console_main()  # pragma: no cover
