"""Structured logging helper for ledger and job lifecycle events."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger("billing")


def log_billing_event(*, message: str, user_id: Optional[Any] = None, job_id: Optional[Any] = None,
                      actor: Optional[str] = None, extra: Optional[Dict[str, Any]] = None) -> None:
    payload: Dict[str, Any] = {"message": message}
    if user_id is not None:
        payload["user_id"] = str(user_id)
    if job_id is not None:
        payload["job_id"] = str(job_id)
    if actor:
        payload["actor"] = actor
    if extra:
        payload.update(extra)
    logger.info(payload)
