"""Per-city cache, single-flight refresh and live-update fan-out.

Each city key owns a :class:`CityState`. Refreshes are single-flight: the
first caller starts a collection cycle as a task and everyone arriving
while it runs awaits that same task. Cities with live subscribers are
polled on a fixed interval; polling starts with the first subscriber and
stops when the last one leaves.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..schemas.weather import CityInfo, CitySnapshot
from .city import CityResolver
from .collector import Collector

logger = logging.getLogger(__name__)

# Bound on queued snapshots per subscriber; a slow client loses the oldest.
SUBSCRIBER_QUEUE_SIZE = 8


@dataclass
class CityState:
    """Cache entry for one city key. Mutated only by :class:`Coordinator`."""

    key: str
    city: Optional[CityInfo] = None
    snapshot: Optional[CitySnapshot] = None
    updated_at: float = 0.0
    refresh_task: Optional[asyncio.Task] = None
    subscribers: set[asyncio.Queue] = field(default_factory=set)
    poll_task: Optional[asyncio.Task] = None

    @property
    def polling(self) -> bool:
        return self.poll_task is not None and not self.poll_task.done()


class Coordinator:
    """Owns every :class:`CityState` and all refresh/subscribe traffic."""

    def __init__(
        self,
        resolver: CityResolver,
        collector: Collector,
        stale_after_sec: float = 25.0,
        update_interval_sec: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.resolver = resolver
        self.collector = collector
        self.stale_after_sec = stale_after_sec
        self.update_interval_sec = update_interval_sec
        self._clock = clock
        self._states: dict[str, CityState] = {}

    def state_for(self, key: str) -> CityState:
        state = self._states.get(key)
        if state is None:
            state = self._states[key] = CityState(key=key)
        return state

    def is_fresh(self, state: CityState) -> bool:
        return state.snapshot is not None and self._clock() - state.updated_at < self.stale_after_sec

    async def get_snapshot(self, raw_city: Optional[str], force: bool = False) -> CitySnapshot:
        """Cached snapshot when fresh, otherwise the result of a (shared) refresh."""
        state = self.state_for(self.resolver.key_for(raw_city))
        if not force and self.is_fresh(state):
            logger.debug("Cache hit for %s", state.key)
            return state.snapshot
        return await self.refresh(state, raw_city)

    async def refresh(self, state: CityState, raw_city: Optional[str] = None) -> CitySnapshot:
        task = state.refresh_task
        if task is None or task.done():
            task = state.refresh_task = asyncio.create_task(self._run_cycle(state, raw_city))
        else:
            logger.debug("Joining in-flight refresh for %s", state.key)
        # A disconnecting caller must not cancel the cycle other callers share.
        return await asyncio.shield(task)

    async def _run_cycle(self, state: CityState, raw_city: Optional[str]) -> CitySnapshot:
        try:
            state.city = await self.resolver.resolve(raw_city)
            snapshot = await self.collector.collect(state.city)
            state.snapshot = snapshot
            state.updated_at = self._clock()
            self._broadcast(state, snapshot)
            return snapshot
        finally:
            state.refresh_task = None

    def _broadcast(self, state: CityState, snapshot: CitySnapshot) -> None:
        # Called from a single task per cycle and cycles never overlap per
        # city, so each queue sees snapshots in production order.
        for queue in list(state.subscribers):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(snapshot)

    # --- Live updates ---

    def subscribe(self, raw_city: Optional[str]) -> tuple[CityState, asyncio.Queue]:
        state = self.state_for(self.resolver.key_for(raw_city))
        queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        state.subscribers.add(queue)
        logger.info("Subscriber joined %s. Total: %d", state.key, len(state.subscribers))
        if len(state.subscribers) == 1:
            self._start_polling(state, raw_city)
        return state, queue

    def unsubscribe(self, state: CityState, queue: asyncio.Queue) -> None:
        state.subscribers.discard(queue)
        logger.info("Subscriber left %s. Total: %d", state.key, len(state.subscribers))
        if not state.subscribers:
            self._stop_polling(state)

    async def prime_subscriber(self, state: CityState, raw_city: Optional[str]) -> Optional[CitySnapshot]:
        """First event for a new subscriber.

        Returns the cached snapshot when there is one. Otherwise forces a
        refresh, whose result reaches the subscriber through its queue like
        any other broadcast, and returns None.
        """
        if state.snapshot is not None:
            return state.snapshot
        await self.refresh(state, raw_city)
        return None

    def _start_polling(self, state: CityState, raw_city: Optional[str]) -> None:
        if state.polling:
            return
        logger.info("Polling %s every %ss", state.key, self.update_interval_sec)
        state.poll_task = asyncio.create_task(self._poll_loop(state, raw_city))

    def _stop_polling(self, state: CityState) -> None:
        if state.poll_task is not None:
            state.poll_task.cancel()
            state.poll_task = None
            logger.info("Stopped polling %s", state.key)

    async def _poll_loop(self, state: CityState, raw_city: Optional[str]) -> None:
        while True:
            await asyncio.sleep(self.update_interval_sec)
            try:
                await self.refresh(state, raw_city)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # Keep polling; the next tick may succeed.
                logger.error("Polling refresh failed for %s: %s", state.key, exc, exc_info=True)

    async def shutdown(self) -> None:
        tasks = []
        for state in self._states.values():
            for task in (state.poll_task, state.refresh_task):
                if task is not None and not task.done():
                    task.cancel()
                    tasks.append(task)
            state.poll_task = None
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Coordinator stopped (%d cities)", len(self._states))
