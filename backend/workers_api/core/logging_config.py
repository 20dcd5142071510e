"""
Structured JSON logging for the workers control API.
One JSON object per line with level, message and, when available, trace_id,
duration_ms, endpoint and the entity touched by a state transition.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from workers_api.core.config import settings


def _extra(trace_id: str | None = None, duration_ms: float | None = None, endpoint: str | None = None, **kwargs: Any) -> dict[str, Any]:
    out: dict[str, Any] = {k: v for k, v in kwargs.items() if v is not None}
    if trace_id is not None:
        out["trace_id"] = trace_id
    if duration_ms is not None:
        out["duration_ms"] = round(duration_ms, 2)
    if endpoint is not None:
        out["endpoint"] = endpoint
    return out


def structured_log(
    level: str,
    message: str,
    *,
    trace_id: str | None = None,
    duration_ms: float | None = None,
    endpoint: str | None = None,
    **kwargs: Any,
) -> None:
    payload = {"level": level, "message": message, **_extra(trace_id=trace_id, duration_ms=duration_ms, endpoint=endpoint, **kwargs)}
    line = json.dumps(payload, ensure_ascii=False, default=str)
    if settings.app_env == "dev":
        logging.getLogger("workers_api").log(
            getattr(logging, level.upper(), logging.INFO),
            "%s %s", level, message, extra={"payload": payload},
        )
    print(line, flush=True)


def log_request(request_path: str, method: str, trace_id: str, duration_ms: float, status_code: int) -> None:
    structured_log(
        "info",
        "request",
        trace_id=trace_id,
        duration_ms=duration_ms,
        endpoint=f"{method} {request_path}",
        path=request_path,
        method=method,
        status_code=status_code,
    )


def log_transition(entity: str, entity_id: str, from_state: str | None, to_state: str, **kwargs: Any) -> None:
    structured_log(
        "info",
        "state_transition",
        entity=entity,
        entity_id=entity_id,
        from_state=from_state,
        to_state=to_state,
        **kwargs,
    )
