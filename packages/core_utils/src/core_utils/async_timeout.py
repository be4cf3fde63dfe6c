import asyncio, logging
import core_metrics
from typing import Awaitable, Optional, TypeVar

from core_config.constants import timeout_for_stage

T = TypeVar("T")


async def run_with_stage_timeout(
    stage: str,
    task: Awaitable[T],
    logger: logging.Logger,
    *,
    timeout_s: Optional[float] = None,
) -> T:
    """Executes *task* under the per-stage budget; raises ``asyncio.TimeoutError`` on expiry.

    *timeout_s* overrides the stage default; a budget of ``0`` waits forever.
    """
    budget = timeout_for_stage(stage) if timeout_s is None else timeout_s
    if not budget or budget <= 0:
        return await task
    try:
        return await asyncio.wait_for(task, budget)
    except asyncio.TimeoutError:
        logger.warning("stage_timeout", extra={"stage": stage, "timeout_s": budget})
        core_metrics.counter("stage_timeouts_total", 1, stage=stage)
        raise
