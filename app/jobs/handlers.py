"""
Job handler registration.

Apps register a callable per job type; the runner looks it up when it
executes a leased job. Handlers receive the payload and the Job row and
return a JSON-serializable result (or None). Raising marks the attempt as
failed.

Usage:
    from jobs.handlers import register_handler

    @register_handler("payout.execute")
    def execute_payout(payload: dict, job) -> dict:
        ...

Note:
    Handler modules are imported from their app's AppConfig.ready(), so
    registration happens once per process.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

JobHandler = Callable[[dict, Any], Any]

JOB_HANDLERS: dict[str, JobHandler] = {}


def register_handler(job_type: str) -> Callable[[JobHandler], JobHandler]:
    def decorator(func: JobHandler) -> JobHandler:
        if job_type in JOB_HANDLERS and JOB_HANDLERS[job_type] is not func:
            logger.warning(
                f"Replacing handler for job type {job_type}",
                extra={"job_type": job_type},
            )
        JOB_HANDLERS[job_type] = func
        return func

    return decorator


def get_handler(job_type: str) -> JobHandler | None:
    return JOB_HANDLERS.get(job_type)


__all__ = ["JOB_HANDLERS", "JobHandler", "get_handler", "register_handler"]
