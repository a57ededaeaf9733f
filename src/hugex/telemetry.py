"""Structured telemetry events and secret masking helpers."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

__all__ = ["TELEMETRY_LOGGER", "configure_logging", "emit_event", "mask_secrets"]

TELEMETRY_LOGGER = logging.getLogger("hugex.telemetry")
MASK = "***"
UNSET = "(not set)"


def _serialise_event_value(value: Any) -> Any:
    """Convert telemetry payload values into JSON-friendly representations."""
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, (list, tuple, set)):
        return [_serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _serialise_event_value(child) for key, child in value.items()}
    return str(value)


def emit_event(event: str, **fields: Any) -> None:
    """Log a structured JSON telemetry event."""
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = _serialise_event_value(value)
    try:
        message = json.dumps(payload, separators=(",", ":"), ensure_ascii=True)
    except (TypeError, ValueError):
        fallback = {key: str(value) for key, value in payload.items()}
        message = json.dumps(fallback, separators=(",", ":"), ensure_ascii=True)
    TELEMETRY_LOGGER.info(message)


def mask_secrets(secrets: Mapping[str, str | None], *, show_unset: bool = False) -> dict[str, str]:
    """Replace secret values with a fixed mask, keeping only the key names.

    With ``show_unset`` empty values are reported as ``(not set)`` so a log
    reader can tell a missing secret from a configured one.
    """
    masked: dict[str, str] = {}
    for key, value in secrets.items():
        if show_unset and not value:
            masked[str(key)] = UNSET
        else:
            masked[str(key)] = MASK
    return masked


def configure_logging(level: str | int = "INFO") -> None:
    """Configure root logging for command-line use."""
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO
    else:
        resolved = level
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
