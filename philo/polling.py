import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from .errors import RunFailed, RunTimeout


logger = logging.getLogger("uvicorn.error")


class RunStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PollDecision(str, Enum):
    WAIT = "wait"
    DONE = "done"
    FAIL = "fail"
    TIMEOUT = "timeout"


_STATUS_MAP = {
    "queued": RunStatus.PENDING,
    "in_progress": RunStatus.PENDING,
    "cancelling": RunStatus.PENDING,
    "completed": RunStatus.COMPLETED,
    "failed": RunStatus.FAILED,
    # No function tools are registered, so nobody can submit tool outputs.
    "requires_action": RunStatus.FAILED,
    "incomplete": RunStatus.FAILED,
    "cancelled": RunStatus.CANCELLED,
    "expired": RunStatus.EXPIRED,
}


def classify_status(raw: Optional[str]) -> RunStatus:
    """Map a remote run status onto RunStatus; unknown values count as pending."""
    return _STATUS_MAP.get(str(raw or "").strip().lower(), RunStatus.PENDING)


def evaluate(status: RunStatus, attempt: int, max_attempts: int) -> PollDecision:
    """Decide what to do after the ``attempt``-th poll (1-based) observed ``status``."""
    if status is RunStatus.COMPLETED:
        return PollDecision.DONE
    if status in (RunStatus.FAILED, RunStatus.CANCELLED, RunStatus.EXPIRED):
        return PollDecision.FAIL
    if attempt >= max_attempts:
        return PollDecision.TIMEOUT
    return PollDecision.WAIT


def failure_reason(run: Dict[str, Any]) -> str:
    status = run.get("status") or "failed"
    last_error = run.get("last_error") or {}
    message = last_error.get("message") if isinstance(last_error, dict) else None
    if not message:
        details = run.get("incomplete_details") or {}
        message = details.get("reason") if isinstance(details, dict) else None
    if message:
        return f"Run {status}: {message}"
    return f"Run {status}"


async def poll_run(
    fetch: Callable[[], Awaitable[Dict[str, Any]]],
    *,
    interval_s: float = 1.0,
    max_attempts: int = 60,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Dict[str, Any]:
    """Fetch the run until it completes; raise RunFailed or RunTimeout otherwise."""
    attempt = 0
    run: Dict[str, Any] = {}
    while True:
        attempt += 1
        run = await fetch()
        status = classify_status(run.get("status"))
        decision = evaluate(status, attempt, max_attempts)
        if decision is PollDecision.DONE:
            logger.info("Run %s completed after %d poll(s)", run.get("id"), attempt)
            return run
        if decision is PollDecision.FAIL:
            raise RunFailed(failure_reason(run), status=status.value, run_id=run.get("id"))
        if decision is PollDecision.TIMEOUT:
            raise RunTimeout(
                f"Run did not complete within {max_attempts} attempts",
                run_id=run.get("id"),
                attempts=attempt,
            )
        await sleep(interval_s)
