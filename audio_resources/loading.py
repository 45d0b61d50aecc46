"""
Load Coordinator - deduplicated, priority-tiered clip loading.

Every load goes through ``load_by_key``:
- a key already in the loaded set resolves True immediately,
- a key with a load in flight joins that task,
- otherwise a new task binds a pooled handle and waits for the loader.

Failures resolve False and never raise. At startup the coordinator drains
the IMMEDIATE, CRITICAL, IMPORTANT and BACKGROUND tiers in order, with
device-adaptive delays, a per-item stagger for the background tier, and a
semaphore bounding concurrent loader calls.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .catalog import MediaCatalog, PriorityTable
from .handles import PlaybackHandle
from .models import AssetKey, DeviceSettings, HandleOwner, LoadState, PriorityTier
from .pool import PlaybackPool

logger = logging.getLogger(__name__)

Loader = Callable[[str], Awaitable[Any]]
LoadListener = Callable[[AssetKey, PlaybackHandle, PriorityTier], None]


class LoadCoordinator:
    """
    Resolves AssetKeys to cached, ready-to-play handles.

    Attributes:
        load_timeout: Optional per-load timeout in seconds (None = wait forever)
        critical_requested: Whether the critical tier has been requested
        loader_calls: Number of times the underlying loader was invoked
    """

    def __init__(
        self,
        catalog: MediaCatalog,
        priorities: PriorityTable,
        pool: PlaybackPool,
        loader: Loader,
        settings: DeviceSettings,
        load_timeout: Optional[float] = None,
    ):
        self.catalog = catalog
        self.priorities = priorities
        self.pool = pool
        self.settings = settings
        self.load_timeout = load_timeout
        self._loader = loader

        self._loaded: Set[AssetKey] = set()
        self._failed: Set[AssetKey] = set()
        self._in_flight: Dict[AssetKey, asyncio.Task] = {}
        self._handles: Dict[AssetKey, PlaybackHandle] = {}
        self._listeners: List[LoadListener] = []

        self._throttle: Optional[asyncio.Semaphore] = None
        self._generation = 0
        self._priority_task: Optional[asyncio.Task] = None
        self._aux_tasks: Set[asyncio.Task] = set()

        self.critical_requested = False
        self.loader_calls = 0

    # ------------------------------------------------------------------
    # State queries
    # ------------------------------------------------------------------

    def state(self, key: AssetKey) -> LoadState:
        if key in self._loaded:
            return LoadState.LOADED
        if key in self._in_flight:
            return LoadState.LOADING
        if key in self._failed:
            return LoadState.FAILED
        return LoadState.UNLOADED

    def is_loaded(self, key: AssetKey) -> bool:
        return key in self._loaded

    def in_flight(self, key: AssetKey) -> Optional[asyncio.Task]:
        return self._in_flight.get(key)

    def handle_for(self, key: AssetKey) -> Optional[PlaybackHandle]:
        return self._handles.get(key)

    def sound_for(self, key: AssetKey):
        handle = self._handles.get(key)
        return handle.sound if handle is not None else None

    @property
    def loaded_keys(self) -> Set[AssetKey]:
        return set(self._loaded)

    @property
    def loaded_count(self) -> int:
        return len(self._loaded)

    def add_listener(self, listener: LoadListener) -> None:
        """Call ``listener(key, handle, tier)`` after every successful load."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_by_key(self, key: AssetKey) -> bool:
        """
        Load a clip, sharing any load already in flight for the same key.

        Returns:
            True once the clip is cached, False if it failed or is unknown
        """
        if key in self._loaded:
            return True

        task = self._in_flight.get(key) or self._start(key)
        if task is None:
            return False
        # Shield: one waiter giving up must not cancel the load for the others
        return await asyncio.shield(task)

    def schedule(self, key: AssetKey) -> Optional[asyncio.Task]:
        """Fire-and-forget variant of load_by_key."""
        if key in self._loaded:
            return None
        return self._in_flight.get(key) or self._start(key)

    def _start(self, key: AssetKey) -> Optional[asyncio.Task]:
        if key not in self.catalog:
            logger.warning(f"Sound not found: {key}")
            return None
        task = asyncio.ensure_future(self._load(key, self._generation))
        self._in_flight[key] = task
        return task

    def _get_throttle(self) -> asyncio.Semaphore:
        if self._throttle is None:
            self._throttle = asyncio.Semaphore(self.settings.max_concurrent_loads)
        return self._throttle

    async def _load(self, key: AssetKey, generation: int) -> bool:
        locator = self.catalog.locator(key)
        handle = self.pool.acquire(preferred_source=locator)
        try:
            if handle.source == locator and handle.is_bound:
                sound = handle.sound
                logger.debug(f"Reusing bound source for {key}")
            else:
                async with self._get_throttle():
                    self.loader_calls += 1
                    if self.load_timeout:
                        sound = await asyncio.wait_for(self._loader(locator), self.load_timeout)
                    else:
                        sound = await self._loader(locator)

            if generation != self._generation:
                logger.debug(f"Discarding {key}: loaded after a reset")
                handle.bind(locator, sound)
                self.pool.release(handle)
                return False

            handle.bind(locator, sound)
            handle.owner = HandleOwner.CACHED
            self._handles[key] = handle
            self._loaded.add(key)
            self._failed.discard(key)
            logger.debug(f"Loaded {key} ({len(self._loaded)} loaded)")
            self._notify(key, handle)
            return True

        except asyncio.CancelledError:
            self.pool.release(handle, clear_source=True)
            raise

        except asyncio.TimeoutError:
            logger.error(f"Timed out loading sound {locator} after {self.load_timeout}s")
            self._mark_failed(key, handle, generation)
            return False

        except Exception as e:
            logger.error(f"Error loading sound {locator}: {e}")
            self._mark_failed(key, handle, generation)
            return False

        finally:
            if self._in_flight.get(key) is asyncio.current_task():
                del self._in_flight[key]

    def _mark_failed(self, key: AssetKey, handle: PlaybackHandle, generation: int) -> None:
        self.pool.release(handle, clear_source=True)
        if generation == self._generation:
            self._failed.add(key)

    def _notify(self, key: AssetKey, handle: PlaybackHandle) -> None:
        tier = self.priorities.tier_of(key)
        for listener in self._listeners:
            try:
                listener(key, handle, tier)
            except Exception as e:
                logger.error(f"Load listener failed for {key}: {e}")

    # ------------------------------------------------------------------
    # Priority tiers
    # ------------------------------------------------------------------

    def tier_keys(self, tier: PriorityTier) -> List[AssetKey]:
        """Keys a tier warmup would load, after device-adaptive trimming."""
        keys = self.priorities.keys_in(tier)
        if tier is not PriorityTier.BACKGROUND:
            return keys

        limit = self.settings.variant_preload_count
        keys = [key for key in keys if key.index is None or key.index < limit]
        if self.settings.background_limit is not None:
            keys = keys[:self.settings.background_limit]
        return keys

    async def load_tier(self, tier: PriorityTier) -> int:
        """
        Load every key of a tier concurrently.

        Returns:
            Number of keys loaded (including ones that already were)
        """
        keys = self.tier_keys(tier)
        if not keys:
            return 0
        results = await asyncio.gather(*(self.load_by_key(key) for key in keys))
        loaded = sum(1 for ok in results if ok)
        logger.info(f"🔊 {tier.name.title()} tier: {loaded}/{len(keys)} sounds ready")
        return loaded

    async def load_group(self, category: str, name: str, limit: Optional[int] = None) -> int:
        """Warm the first ``limit`` variants of a group (all for single clips)."""
        if not self.catalog.has(category, name):
            logger.warning(f"Sound not found: {category}.{name}")
            return 0
        if limit is None:
            limit = self.settings.variant_preload_count
        count = min(limit, self.catalog.variant_count(category, name))
        keys = [self.catalog.key_for(category, name, i) for i in range(count)]
        results = await asyncio.gather(*(self.load_by_key(key) for key in keys))
        return sum(1 for ok in results if ok)

    async def preload_critical(self) -> bool:
        """
        Load the critical tier once, then queue the first variant of each
        important group as a follow-up.

        Returns:
            False if critical loading was already requested
        """
        if self.critical_requested:
            return False
        self.critical_requested = True

        await self.load_tier(PriorityTier.CRITICAL)
        self._spawn(self._load_followups())
        return True

    async def _load_followups(self) -> None:
        await asyncio.sleep(self.settings.followup_delay)
        for key in self.priorities.keys_in(PriorityTier.IMPORTANT):
            if key.index in (None, 0):
                self.schedule(key)

    def start_priority_loading(self) -> asyncio.Task:
        """Start draining all tiers in the background (idempotent)."""
        if self._priority_task is None or self._priority_task.done():
            self._priority_task = asyncio.ensure_future(self._drain_tiers())
        return self._priority_task

    async def _drain_tiers(self) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        settings = self.settings

        await self.load_tier(PriorityTier.IMMEDIATE)

        await self._sleep_until(started + settings.critical_delay)
        await self.preload_critical()

        await self._sleep_until(started + settings.important_delay)
        await self.load_tier(PriorityTier.IMPORTANT)

        await self._sleep_until(started + settings.background_delay)
        await self._load_background()

    async def _load_background(self) -> None:
        keys = self.tier_keys(PriorityTier.BACKGROUND)
        tasks = []
        for index, key in enumerate(keys):
            if index:
                await asyncio.sleep(self.settings.background_stagger)
            task = self.schedule(key)
            if task is not None:
                tasks.append(task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"🔊 Background tier: {len(keys)} sounds scheduled")

    @staticmethod
    async def _sleep_until(deadline: float) -> None:
        delay = deadline - asyncio.get_running_loop().time()
        if delay > 0:
            await asyncio.sleep(delay)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._aux_tasks.add(task)
        task.add_done_callback(self._aux_tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """
        Forget every load. Loads still running finish into a stale
        generation and are discarded.
        """
        self._generation += 1
        if self._priority_task is not None and not self._priority_task.done():
            self._priority_task.cancel()
        self._priority_task = None
        for task in list(self._aux_tasks):
            task.cancel()

        for handle in self._handles.values():
            handle.clear_callbacks()
            handle.stop()
        self._handles.clear()
        self._loaded.clear()
        self._failed.clear()
        self._in_flight.clear()
        self.critical_requested = False

    def shutdown(self) -> None:
        for task in list(self._in_flight.values()):
            task.cancel()
        self.reset()
