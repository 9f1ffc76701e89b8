"""JSON Schema-based validation for dnstally YAML configuration.

The schema document ships inside the package as ``assets/config-schema.json``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft202012Validator, ValidationError
from jsonschema.exceptions import SchemaError

logger = logging.getLogger(__name__)


def get_default_schema_path() -> Path:
    """Brief: Resolve the packaged JSON Schema path.

    Inputs:
      - None.

    Outputs:
      - Path to ``dnstally/assets/config-schema.json``.
    """

    return Path(__file__).resolve().parents[1] / "assets" / "config-schema.json"


def _load_schema(schema_path: Optional[Path] = None) -> Dict[str, Any]:
    path = schema_path or get_default_schema_path()
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _format_errors(errors: List[ValidationError], *, config_path: Optional[str]) -> str:
    """Brief: Format jsonschema validation errors into a human-readable string.

    Inputs:
      - errors: List of jsonschema.ValidationError instances.
      - config_path: Optional path to the YAML config being validated.

    Outputs:
      - String suitable for display on stderr.
    """

    lines: List[str] = [f"Invalid configuration in {config_path or '<config dict>'}:"]
    for err in errors:
        instance_path = "/".join(str(p) for p in err.path) or "<root>"
        schema_path = "/".join(str(p) for p in err.schema_path)
        lines.append(f"- {instance_path}: {err.message} (schema: {schema_path})")
    return "\n".join(lines)


def validate_config(
    cfg: Dict[str, Any],
    *,
    schema_path: Optional[Path] = None,
    config_path: Optional[str] = None,
) -> None:
    """Brief: Validate a parsed YAML configuration mapping against JSON Schema.

    Inputs:
      - cfg: Dict loaded from YAML (top-level configuration mapping).
      - schema_path: Optional explicit schema path; defaults to the packaged
        schema.
      - config_path: Optional path of the YAML file, used in error messages.

    Outputs:
      - None on success.

    Raises:
      - ValueError: when validation fails; the message lists every error with
        its instance path.

    Example:
      >>> validate_config({"report": {"interval_seconds": 30}})
    """
    effective_schema_path = schema_path or get_default_schema_path()

    # A missing or unreadable schema only logs a warning.
    if not effective_schema_path.is_file():
        logger.warning(
            "Configuration schema file %s not found; skipping JSON Schema validation",
            effective_schema_path,
        )
        return None

    try:
        schema = _load_schema(effective_schema_path)
        Draft202012Validator.check_schema(schema)
        validator = Draft202012Validator(schema)
    except (OSError, json.JSONDecodeError, SchemaError) as exc:
        logger.warning(
            "Failed to load or parse configuration schema at %s: %s; "
            "skipping JSON Schema validation",
            effective_schema_path,
            exc,
        )
        return None

    errors = sorted(validator.iter_errors(cfg), key=lambda e: [str(p) for p in e.path])
    if errors:
        raise ValueError(_format_errors(errors, config_path=config_path))

    return None
