# sync/dispatcher.py

import asyncio
import functools
import inspect
from typing import Any, Callable, Dict, List, Optional

from hubspot_client.exceptions import error_detail
from utils.logger import get_logger
from .models import OutcomeStatus, PendingUpdate, UpdateOutcome

logger = get_logger("dispatcher")

# apply_update(identifier, properties); either a plain blocking function or a coroutine function.
UpdateCallable = Callable[[str, Dict[str, Any]], Any]


def _is_async(apply_update: UpdateCallable) -> bool:
    # Callable objects with an async __call__ count too.
    return inspect.iscoroutinefunction(apply_update) or inspect.iscoroutinefunction(getattr(apply_update, "__call__", None))


async def _call_update(apply_update: UpdateCallable, update: PendingUpdate, timeout: Optional[float]):
    if _is_async(apply_update):
        call = apply_update(update.identifier, update.properties)
        if timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout=timeout)

    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(None, functools.partial(apply_update, update.identifier, update.properties))
    if timeout is None:
        return await future
    try:
        return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
    except asyncio.TimeoutError:
        # A thread cannot be cancelled: keep the worker slot until it returns
        # and report what the call actually did.
        logger.warning(f"⏱️ Update for {update.identifier} still running after {timeout}s; waiting for it to finish")
        return await future


async def apply_wave(
    wave: List[PendingUpdate],
    concurrency_limit: int,
    apply_update: UpdateCallable,
    dry_run: bool = False,
    timeout: Optional[float] = None,
) -> List[UpdateOutcome]:
    """
    Applies one wave of updates with at most `concurrency_limit` in flight.

    A failing update, or a coroutine update that times out, becomes an
    ERROR outcome; it never stops the rest of the wave. In dry-run mode nothing is called and every item
    comes back as DRY_RUN. Outcomes are in completion order.

    The timeout cancels coroutine updaters. A blocking updater cannot be
    cancelled, so its worker waits for it and records its real result;
    bound such calls at the HTTP layer (update_record request_timeout).
    """
    if dry_run:
        return [UpdateOutcome(identifier=u.identifier, properties=u.properties, status=OutcomeStatus.DRY_RUN) for u in wave]

    outcomes: List[UpdateOutcome] = []
    next_index = 0

    async def worker():
        nonlocal next_index
        while next_index < len(wave):
            update = wave[next_index]
            next_index += 1
            try:
                await _call_update(apply_update, update, timeout)
            except asyncio.TimeoutError:
                logger.error(f"⏱️ Update for {update.identifier} timed out after {timeout}s")
                outcomes.append(UpdateOutcome(
                    identifier=update.identifier, properties=update.properties,
                    status=OutcomeStatus.ERROR, error=f"Timed out after {timeout}s",
                ))
            except Exception as e:
                detail = error_detail(e)
                logger.error(f"❌ Update for {update.identifier} failed: {detail}")
                outcomes.append(UpdateOutcome(
                    identifier=update.identifier, properties=update.properties,
                    status=OutcomeStatus.ERROR, error=detail,
                ))
            else:
                outcomes.append(UpdateOutcome(
                    identifier=update.identifier, properties=update.properties, status=OutcomeStatus.UPDATED,
                ))

    workers = [asyncio.create_task(worker()) for _ in range(max(1, min(concurrency_limit, len(wave))))]
    await asyncio.gather(*workers)
    return outcomes
