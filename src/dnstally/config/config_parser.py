"""Brief: Load dnstally configuration from YAML and command-line overrides.

Inputs:
  - YAML config file path (optional) and parsed command-line flags.

Outputs:
  - MonitorConfig describing capture, classification mode, reporting and
    logging settings.

Flags given on the command line always win over values from the file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import yaml

from .config_schema import validate_config

DEFAULT_INTERFACE = "eth0"
DEFAULT_INTERVAL_SECONDS = 60


@dataclass(frozen=True)
class MonitorConfig:
    """Resolved runtime settings."""

    interface: str = DEFAULT_INTERFACE
    interval_seconds: int = DEFAULT_INTERVAL_SECONDS
    target_hostname: Optional[str] = None
    width: Optional[int] = None
    report_format: str = "text"
    top: Optional[int] = None
    interval_rates: bool = True
    verbose: bool = False
    logging: Dict[str, Any] = field(default_factory=dict)

    @property
    def mode(self) -> str:
        return "source" if self.target_hostname else "hostname"


def parse_config_file(config_path: str) -> Dict[str, Any]:
    """Brief: Read and schema-validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML configuration file.

    Outputs:
      - dict: Parsed configuration mapping (empty for an empty file).

    Raises:
      - ValueError: When the root is not a mapping or schema validation fails.
      - OSError: When the file cannot be read.
      - yaml.YAMLError: When the file is not valid YAML.
    """

    with open(config_path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}

    if not isinstance(cfg, dict):
        raise ValueError("Configuration root must be a mapping")

    validate_config(cfg, config_path=config_path)
    return cfg


def _positive_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a positive integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a positive integer, got {value!r}") from None
    if number < 1:
        raise ValueError(f"{name} must be a positive integer, got {value!r}")
    return number


def _optional_positive_int(name: str, value: Any) -> Optional[int]:
    if value is None:
        return None
    return _positive_int(name, value)


def build_monitor_config(
    cfg: Optional[Mapping[str, Any]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> MonitorConfig:
    """Brief: Merge file configuration and flag overrides into a MonitorConfig.

    Inputs:
      - cfg: Parsed YAML mapping (may be None or empty).
      - overrides: Flag values keyed by option name (``interface``,
        ``interval``, ``hostname``, ``width``, ``format``, ``top``,
        ``interval_rates``, ``verbose``); a value of None means "not given".

    Outputs:
      - MonitorConfig.

    Raises:
      - ValueError: When interval, width or top is not a positive integer, or
        the report format is unknown.

    Example:
      >>> build_monitor_config({"report": {"interval_seconds": 30}}, {"hostname": "x.com."}).mode
      'source'
    """

    cfg = cfg or {}
    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

    capture_cfg = cfg.get("capture") or {}
    report_cfg = cfg.get("report") or {}
    logging_cfg = dict(cfg.get("logging") or {})

    interface = str(
        overrides.get("interface", capture_cfg.get("interface", DEFAULT_INTERFACE))
    )
    interval_seconds = _positive_int(
        "interval",
        overrides.get(
            "interval", report_cfg.get("interval_seconds", DEFAULT_INTERVAL_SECONDS)
        ),
    )
    width = _optional_positive_int("width", overrides.get("width", report_cfg.get("width")))
    top = _optional_positive_int("top", overrides.get("top", report_cfg.get("top")))

    report_format = str(overrides.get("format", report_cfg.get("format", "text"))).lower()
    if report_format not in ("text", "json"):
        raise ValueError(f"report format must be 'text' or 'json', got {report_format!r}")

    interval_rates = bool(
        overrides.get("interval_rates", report_cfg.get("interval_rates", True))
    )

    target = overrides.get("hostname", cfg.get("target_hostname"))
    target_hostname = str(target) if target else None

    verbose = bool(overrides.get("verbose", False))
    if verbose:
        logging_cfg["level"] = "debug"

    return MonitorConfig(
        interface=interface,
        interval_seconds=interval_seconds,
        target_hostname=target_hostname,
        width=width,
        report_format=report_format,
        top=top,
        interval_rates=interval_rates,
        verbose=verbose,
        logging=logging_cfg,
    )
