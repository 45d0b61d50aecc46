"""
Audio Manager - composition root of the audio resource system.

Wires the catalog, pool, load coordinator, context gate, caches and
scheduler into one object the game holds a reference to. ``initialize``
builds it from configuration and degrades to NullAudioManager when the
mixer cannot be opened, so the game keeps running without sound.
"""

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional, Set, Union

from .backend import ClipLoader, MixerBackend
from .caches import CriticalCache, InstantCache
from .catalog import MediaCatalog, PriorityTable
from .config import (
    AUDIT_INTERVAL,
    DEFAULT_CATALOG,
    DEFAULT_PRIORITIES,
    INITIAL_POOL_SIZE,
    POOL_MAX_SIZE,
    device_settings,
    load_device_profile,
    load_settings,
)
from .gate import ContextGate
from .loading import Loader, LoadCoordinator
from .models import AssetKey, ContextState, DeviceProfile, LoadState, PriorityTier
from .pool import PlaybackPool
from .scheduler import PlaybackScheduler
from .shuffle import ShuffleSelector

logger = logging.getLogger(__name__)

KeyLike = Union[AssetKey, str]


def _as_key(key: KeyLike) -> Optional[AssetKey]:
    if isinstance(key, AssetKey):
        return key
    try:
        return AssetKey.parse(key)
    except ValueError:
        logger.warning(f"Invalid sound key: {key!r}")
        return None


class AudioResourceManager:
    """
    Facade over the audio subsystems.

    One instance per process, created by ``initialize`` (or a test) and
    passed by reference.

    Args:
        catalog: Every playable clip
        priorities: Tier assignment built against ``catalog``
        loader: Async callable turning a locator into a sound
        platform: Gate primitives (MixerBackend in production)
        device_profile: Device capabilities used to tune loading
        pool_max_size: Cap on pooled handles
        load_timeout: Optional per-load timeout in seconds
        rng: Random source for the shuffle bags
    """

    def __init__(
        self,
        catalog: MediaCatalog,
        priorities: PriorityTable,
        loader: Loader,
        platform,
        device_profile: Optional[DeviceProfile] = None,
        pool_max_size: int = POOL_MAX_SIZE,
        load_timeout: Optional[float] = None,
        rng=None,
    ):
        self.catalog = catalog
        self.priorities = priorities
        self.platform = platform
        self.profile = device_profile or DeviceProfile()
        self.settings = device_settings(self.profile)

        self.pool = PlaybackPool(pool_max_size)
        self.pool.prime(INITIAL_POOL_SIZE)
        self.shuffle = ShuffleSelector(rng)
        self.gate = ContextGate(platform)
        self.critical = CriticalCache()
        self.instant = InstantCache()

        self.loader = LoadCoordinator(
            catalog, priorities, self.pool, loader, self.settings, load_timeout
        )
        self.loader.add_listener(self.critical.on_loaded)
        self.loader.add_listener(self.instant.on_loaded)

        self.scheduler = PlaybackScheduler(
            catalog, priorities, self.pool, self.loader, self.gate,
            self.shuffle, self.critical, self.instant,
        )
        self.gate.on_resumed(self._on_gate_running)

        self._audit_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    # ==================================================================
    # Startup
    # ==================================================================

    def start(self) -> None:
        """Begin tiered preloading and the playback monitor."""
        self.loader.start_priority_loading()
        self.scheduler.start_monitor()
        counts = self.priorities.counts()
        logger.info(
            f"✅ Audio manager started: {len(self.catalog.keys())} clips "
            f"({counts[PriorityTier.IMMEDIATE]} immediate, {counts[PriorityTier.CRITICAL]} critical)"
        )

    def _on_gate_running(self) -> None:
        if not self.loader.critical_requested:
            self._spawn(self.loader.preload_critical())

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def unlock(self) -> bool:
        """Unlock playback after the first user gesture."""
        return await self.gate.unlock()

    # ==================================================================
    # Playback
    # ==================================================================

    async def play(self, category: str, name: str, volume: Optional[float] = None):
        return await self.scheduler.play(category, name, volume)

    async def play_if_ready(self, category: str, name: str, volume: Optional[float] = None):
        return await self.scheduler.play_if_ready(category, name, volume)

    def play_random(self, category: str, subcategory: str, group_key: Optional[str] = None,
                    volume: Optional[float] = None):
        return self.scheduler.play_random(category, subcategory, group_key, volume)

    async def play_sequence(self, steps, speed: Optional[float] = None, finale=None, on_step=None):
        return await self.scheduler.play_sequence(steps, speed, finale, on_step)

    def play_after(self, base_delay: float, category: str, name: str,
                   volume: Optional[float] = None) -> str:
        return self.scheduler.play_after(base_delay, category, name, volume)

    def cancel_sequence(self, sequence_id: str) -> bool:
        return self.scheduler.cancel_sequence(sequence_id)

    def add_step_listener(self, listener) -> None:
        self.scheduler.add_step_listener(listener)

    def fade_to(self, handle, target: float, duration: float, on_complete=None) -> str:
        return self.scheduler.fade_to(handle, target, duration, on_complete)

    def cancel_fade(self, fade_id: str) -> bool:
        return self.scheduler.cancel_fade(fade_id)

    async def start_music(self, volume: Optional[float] = None):
        return await self.scheduler.start_music(volume)

    def stop_music(self) -> None:
        self.scheduler.stop_music()

    async def start_swell(self, category: str = "trump", name: str = "trumpGrabbing1", **kwargs):
        return await self.scheduler.start_swell(category, name, **kwargs)

    def stop_swell(self) -> None:
        self.scheduler.stop_swell()

    # ==================================================================
    # Preloading
    # ==================================================================

    async def preload_tier(self, tier: PriorityTier) -> int:
        return await self.loader.load_tier(tier)

    async def preload_key(self, key: KeyLike) -> bool:
        key = _as_key(key)
        if key is None:
            return False
        return await self.loader.load_by_key(key)

    async def preload_group(self, category: str, name: str, limit: Optional[int] = None) -> int:
        """Warm a group ahead of use (e.g. one country's protest clips)."""
        return await self.loader.load_group(category, name, limit)

    def load_state(self, key: KeyLike) -> LoadState:
        key = _as_key(key)
        if key is None:
            return LoadState.UNLOADED
        return self.loader.state(key)

    # ==================================================================
    # Controls
    # ==================================================================

    @property
    def volume(self) -> float:
        return self.scheduler.volume

    @property
    def muted(self) -> bool:
        return self.scheduler.muted

    @property
    def speed(self) -> float:
        return self.scheduler.speed

    @property
    def context_state(self) -> ContextState:
        return self.gate.state

    def set_volume(self, volume: float) -> None:
        self.scheduler.set_volume(volume)

    def toggle_mute(self) -> bool:
        return self.scheduler.toggle_mute()

    def set_speed(self, multiplier) -> float:
        return self.scheduler.set_speed(multiplier)

    def stop_all(self, except_music: bool = False) -> None:
        self.scheduler.stop_all(except_music)

    async def pause_all(self) -> None:
        await self.scheduler.pause_all()

    async def resume_all(self) -> bool:
        return await self.scheduler.resume_all()

    # ==================================================================
    # Lifecycle
    # ==================================================================

    def full_reset(self) -> None:
        """
        Forget everything loaded or cached; keep the gate state.

        Nothing is re-warmed here; see prepare_for_restart.
        """
        self.scheduler.stop_all()
        for task in list(self._tasks):
            task.cancel()
        self.loader.reset()
        self.critical.clear()
        self.instant.clear()
        self.shuffle.reset()
        self.pool.clear()
        self.pool.prime(INITIAL_POOL_SIZE)
        logger.info("🔄 Audio state reset")

    async def prepare_for_restart(self) -> int:
        """Reset, then re-warm the immediate and critical tiers."""
        self.full_reset()
        loaded = await self.loader.load_tier(PriorityTier.IMMEDIATE)
        await self.loader.preload_critical()
        return loaded + len(self.critical)

    def shutdown(self) -> None:
        self.stop_audit()
        self.scheduler.stop_all()
        self.scheduler.stop_monitor()
        for task in list(self._tasks):
            task.cancel()
        self.loader.shutdown()
        self.pool.clear()
        if hasattr(self.platform, "close"):
            self.platform.close()
        logger.info("🔇 Audio manager shut down")

    # ==================================================================
    # Diagnostics
    # ==================================================================

    def stats(self) -> Dict[str, Any]:
        pool_stats = self.pool.stats()
        return {
            **pool_stats,
            "loaded": self.loader.loaded_count,
            "loader_calls": self.loader.loader_calls,
            "critical_cached": len(self.critical),
            "instant_rings": len(self.instant),
            "sequences": len(self.scheduler.active_sequences),
            "context": self.gate.state.value,
            "muted": self.scheduler.muted,
        }

    def start_audit(self, interval: float = AUDIT_INTERVAL) -> asyncio.Task:
        """Log pool and cache stats every ``interval`` seconds (leak hunting)."""
        if self._audit_task is None or self._audit_task.done():
            self._audit_task = asyncio.ensure_future(self._audit(interval))
        return self._audit_task

    async def _audit(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            stats = self.stats()
            logger.info(
                f"📊 Audio pool: {stats['pool_size']} pooled, {stats['playing']} playing, "
                f"{stats['allocated']} allocated, {stats['dropped']} dropped, "
                f"{stats['loaded']} loaded"
            )

    def stop_audit(self) -> None:
        if self._audit_task is not None:
            self._audit_task.cancel()
            self._audit_task = None


class NullAudioManager:
    """
    Stand-in used when no audio device is available.

    Every play returns None and every control is a no-op.
    """

    volume = 0.0
    muted = True
    speed = 1.0
    context_state = ContextState.LOCKED

    def start(self) -> None:
        pass

    async def unlock(self) -> bool:
        return False

    async def play(self, category, name, volume=None):
        return None

    async def play_if_ready(self, category, name, volume=None):
        return None

    def play_random(self, category, subcategory, group_key=None, volume=None):
        return None

    async def play_sequence(self, steps, speed=None, finale=None, on_step=None):
        return None

    def play_after(self, base_delay, category, name, volume=None):
        return None

    def cancel_sequence(self, sequence_id) -> bool:
        return False

    def add_step_listener(self, listener) -> None:
        pass

    def fade_to(self, handle, target, duration, on_complete=None):
        return None

    def cancel_fade(self, fade_id) -> bool:
        return False

    async def start_music(self, volume=None):
        return None

    def stop_music(self) -> None:
        pass

    async def start_swell(self, category="trump", name="trumpGrabbing1", **kwargs):
        return None

    def stop_swell(self) -> None:
        pass

    async def preload_tier(self, tier) -> int:
        return 0

    async def preload_key(self, key) -> bool:
        return False

    async def preload_group(self, category, name, limit=None) -> int:
        return 0

    def load_state(self, key) -> LoadState:
        return LoadState.UNLOADED

    def set_volume(self, volume) -> None:
        pass

    def toggle_mute(self) -> bool:
        return True

    def set_speed(self, multiplier) -> float:
        return 1.0

    def stop_all(self, except_music=False) -> None:
        pass

    async def pause_all(self) -> None:
        pass

    async def resume_all(self) -> bool:
        return False

    def full_reset(self) -> None:
        pass

    async def prepare_for_restart(self) -> int:
        return 0

    def shutdown(self) -> None:
        pass

    def stats(self) -> Dict[str, Any]:
        return {"context": self.context_state.value, "loaded": 0}

    def start_audit(self, interval=AUDIT_INTERVAL):
        return None

    def stop_audit(self) -> None:
        pass


async def initialize(
    catalog: Union[MediaCatalog, Mapping, None] = None,
    priority_lists: Optional[Mapping] = None,
    device_profile: Optional[DeviceProfile] = None,
    sound_path: Optional[str] = None,
    load_timeout: Optional[float] = None,
    pool_max_size: Optional[int] = None,
    loader: Optional[Loader] = None,
    backend: Optional[MixerBackend] = None,
):
    """
    Build, start and return the audio manager.

    Unset arguments come from the environment (see config.load_settings /
    load_device_profile) or the bundled defaults.

    Returns:
        AudioResourceManager, or NullAudioManager if the mixer cannot open

    Raises:
        CatalogError: if the catalog data is malformed
    """
    settings = load_settings()
    profile = device_profile or load_device_profile()

    if not isinstance(catalog, MediaCatalog):
        catalog = MediaCatalog(DEFAULT_CATALOG if catalog is None else catalog)
    priorities = PriorityTable(
        catalog, DEFAULT_PRIORITIES if priority_lists is None else priority_lists
    )

    backend = backend or MixerBackend(ios=profile.ios)
    if not backend.open():
        logger.error("❌ Audio device unavailable - continuing without sound")
        return NullAudioManager()

    manager = AudioResourceManager(
        catalog,
        priorities,
        loader or ClipLoader(sound_path or settings["sound_path"]),
        backend,
        device_profile=profile,
        pool_max_size=pool_max_size or settings["pool_max_size"],
        load_timeout=load_timeout if load_timeout is not None else settings["load_timeout"],
    )
    manager.start()
    return manager
