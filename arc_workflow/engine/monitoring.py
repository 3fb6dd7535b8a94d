"""
Structured workflow event logging.

log_event('request.transition', {...}) writes one WORKFLOW_EVENT line to the
'arc_workflow.events' logger. Keys that look like credentials are redacted;
contact details stay visible since they are needed to trace deliveries.
"""

import json
import logging
import re
from typing import Any

_SECRET_KEY_RE = re.compile(r"(?i)(token|secret|password|passwd|api_?key|authorization|bearer)")

logger = logging.getLogger("arc_workflow.events")


def _sanitize(obj: Any) -> Any:
    if isinstance(obj, dict):
        out: dict[str, Any] = {}
        for k, v in obj.items():
            if _SECRET_KEY_RE.search(str(k)):
                out[k] = "***REDACTED***"
            else:
                out[k] = _sanitize(v)
        return out
    if isinstance(obj, (list, tuple)):
        return [_sanitize(x) for x in obj]
    return obj


def log_event(event: str, payload: dict[str, Any] | None = None, level: int = logging.INFO) -> None:
    """Log a workflow event with its payload."""
    record = {"event": event, **(payload or {})}
    logger.log(level, "WORKFLOW_EVENT %s", json.dumps(_sanitize(record), default=str))


def configure_logging(level: str = "WARNING") -> None:
    """Root logger setup for the CLI and server entry points."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
