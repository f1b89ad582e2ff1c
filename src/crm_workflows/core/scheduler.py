"""
Continuation scheduler: resumes suspended executions once they are due
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from ..models.execution import Continuation, utcnow
from ..storage.repository import ContinuationStore, ExecutionStore
from .coordinator import ExecutionCoordinator


logger = logging.getLogger(__name__)


class ContinuationScheduler:
    """
    Polls for due continuations and hands them back to the coordinator.

    Every continuation is claimed with a conditional update before it is
    resumed, so concurrent ticks (in this process or another one sharing the
    database) resume it once. A claim that is not released within
    ``lease_seconds`` is treated as abandoned and can be claimed again.
    """

    def __init__(
        self,
        coordinator: ExecutionCoordinator,
        continuation_store: ContinuationStore,
        execution_store: ExecutionStore,
        interval: float = 60.0,
        lease_seconds: float = 300.0,
        batch_size: int = 100,
        clock: Callable[[], datetime] = utcnow
    ):
        self.coordinator = coordinator
        self.continuation_store = continuation_store
        self.execution_store = execution_store
        self.interval = interval
        self.lease_seconds = lease_seconds
        self.batch_size = batch_size
        self.clock = clock

        self._scheduler_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._stats = {
            "ticks": 0,
            "resumed": 0,
            "skipped": 0,
            "errors": 0,
            "last_tick_at": None,
        }

    async def start(self):
        """Run ``tick`` every ``interval`` seconds in the background"""
        if self._scheduler_task:
            return

        self._stop_event.clear()
        self._scheduler_task = asyncio.create_task(self._scheduler_loop())
        logger.info(f"Continuation scheduler started (interval {self.interval}s)")

    async def stop(self):
        if not self._scheduler_task:
            return

        self._stop_event.set()
        await self._scheduler_task
        self._scheduler_task = None
        logger.info("Continuation scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler_task is not None

    async def _scheduler_loop(self):
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def tick(self, now: datetime = None) -> int:
        """Resume every due continuation this caller manages to claim; returns how many"""
        now = now or self.clock()
        lease_cutoff = now - timedelta(seconds=self.lease_seconds)

        due = await self.continuation_store.list_due(now, lease_cutoff, self.batch_size)
        self._stats["ticks"] += 1
        self._stats["last_tick_at"] = now.isoformat()

        resumed = 0
        for continuation in due:
            if await self._process(continuation, now, lease_cutoff):
                resumed += 1

        if due:
            logger.info(f"Scheduler tick: {len(due)} due, {resumed} resumed")
        return resumed

    async def _process(self, continuation: Continuation, now: datetime, lease_cutoff: datetime) -> bool:
        claimed = await self.continuation_store.claim(continuation.id, now, lease_cutoff)
        if not claimed:
            logger.debug(f"Continuation {continuation.id} claimed elsewhere")
            return False

        execution = await self.execution_store.get(continuation.execution_id)
        if execution is None or execution.is_terminal_state():
            state = execution.status.value if execution else "missing"
            logger.info(
                f"Dropping continuation {continuation.id}: execution "
                f"{continuation.execution_id} is {state}"
            )
            await self.continuation_store.delete(continuation.id)
            self._stats["skipped"] += 1
            return False

        try:
            await self.coordinator.resume(
                continuation.execution_id,
                continuation.next_node_id,
                continuation.context
            )
        except Exception as e:
            # The claim stays in place and expires after the lease
            logger.error(
                f"Resuming execution {continuation.execution_id} from continuation "
                f"{continuation.id} failed: {e}",
                exc_info=True
            )
            self._stats["errors"] += 1
            return False

        await self.continuation_store.delete(continuation.id)
        self._stats["resumed"] += 1
        return True

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "running": self.is_running,
            "interval": self.interval,
            "lease_seconds": self.lease_seconds,
            "batch_size": self.batch_size,
        }
