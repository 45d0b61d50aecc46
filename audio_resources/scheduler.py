"""
Playback Scheduler - turns play requests into sound.

Routes:
- Fast path: IMMEDIATE groups play from an InstantCache ring without
  touching the gate or the loader. Never awaits.
- Normal path: gate check, shuffle pick, then cached handle, in-flight
  load, fresh load (high tiers) or direct playback (background tier).
- Direct playback: a pooled handle that starts now, or as soon as the
  shared load resolves, and goes back to the pool when it ends.

Also owns timed sequences, fades, the swell loop, background music and
the playback monitor that detects finished channels.
"""

import asyncio
import itertools
import logging
import math
from typing import Callable, Dict, List, Optional, Sequence

from .caches import CriticalCache, InstantCache
from .catalog import MediaCatalog, PriorityTable
from .config import (
    DEFAULT_VOLUME,
    FADE_STOP_THRESHOLD,
    FADE_TICK,
    MUSIC_VOLUME_SCALE,
    PLAYBACK_POLL_INTERVAL,
    SWELL_INITIAL_VOLUME,
    SWELL_INTERVAL,
    SWELL_MAX_VOLUME,
    SWELL_STEP,
)
from .errors import PlaybackRejected
from .gate import ContextGate
from .handles import PlaybackHandle, clamp_volume
from .loading import LoadCoordinator
from .models import ActiveSequence, AssetKey, HandleOwner, PriorityTier, SequenceStep
from .pool import PlaybackPool
from .shuffle import ShuffleSelector

logger = logging.getLogger(__name__)

StepListener = Callable[[str, int, SequenceStep], None]

MUSIC_KEY = AssetKey("music", "background")


def sanitize_speed(speed) -> float:
    """Positive finite speeds pass through; anything else becomes 1.0."""
    try:
        speed = float(speed)
    except (TypeError, ValueError):
        return 1.0
    if not math.isfinite(speed) or speed <= 0:
        return 1.0
    return speed


def compute_step_delays(durations: Sequence[float], speed) -> List[float]:
    """
    Start offsets of each step: the sum of the previous durations / speed.

    Example:
        compute_step_delays([1, 2], 2) == [0.0, 0.5]
    """
    speed = sanitize_speed(speed)
    delays = []
    elapsed = 0.0
    for duration in durations:
        delays.append(max(0.0, elapsed / speed))
        elapsed += duration
    return delays


class PlaybackScheduler:
    """
    Plays clips through the pool, the caches and the load coordinator.

    Attributes:
        volume: Master volume in [0, 1]
        muted: Applied to every playing handle and every future play
        speed: Game speed multiplier; sequence delays are divided by it
        music: Handle of the background music loop, if playing
        swell: Handle of the swell loop, if playing
    """

    def __init__(
        self,
        catalog: MediaCatalog,
        priorities: PriorityTable,
        pool: PlaybackPool,
        loader: LoadCoordinator,
        gate: ContextGate,
        shuffle: ShuffleSelector,
        critical: CriticalCache,
        instant: InstantCache,
    ):
        self.catalog = catalog
        self.priorities = priorities
        self.pool = pool
        self.loader = loader
        self.gate = gate
        self.shuffle = shuffle
        self.critical = critical
        self.instant = instant

        self.volume = DEFAULT_VOLUME
        self.muted = False
        self.speed = 1.0

        self.music: Optional[PlaybackHandle] = None
        self.swell: Optional[PlaybackHandle] = None
        self._swell_level = SWELL_INITIAL_VOLUME
        self._swell_task: Optional[asyncio.Task] = None

        self._sequences: Dict[str, ActiveSequence] = {}
        self._fades: Dict[str, asyncio.Task] = {}
        self._deferred: Dict[int, asyncio.Task] = {}
        self._step_listeners: List[StepListener] = []
        self._sequence_ids = itertools.count(1)
        self._fade_ids = itertools.count(1)
        self._monitor_task: Optional[asyncio.Task] = None

    # ==================================================================
    # Public play routes
    # ==================================================================

    async def play(self, category: str, name: str, volume: Optional[float] = None):
        """
        Play one clip (a random variant for groups).

        Returns:
            The PlaybackHandle, or None if the clip is unknown, the gate is
            closed or the load failed
        """
        if self.catalog.find(category, name) is None:
            return None

        if self.is_fast_path(category, name):
            return self.play_fast(category, name, volume)

        if not await self.gate.ensure_running():
            logger.debug(f"Gate not running, skipping {category}.{name}")
            return None

        key = self.pick(category, name)
        handle = self._cached_handle(key)
        if handle is not None:
            return self._play_cached(key, handle, volume)

        if self.loader.in_flight(key) is not None or self.priorities.tier_of(key).is_high:
            if await self.loader.load_by_key(key):
                return self._play_loaded(key, volume)
            return None

        return self.play_direct(key, volume)

    async def play_if_ready(self, category: str, name: str, volume: Optional[float] = None):
        """
        The normal path, but only while the gate is already RUNNING.

        Never unlocks or resumes the gate, and does not bypass it for the
        fast path.
        """
        if not self.gate.is_running:
            logger.debug(f"Gate {self.gate.state.value}, skipping {category}.{name}")
            return None
        return await self.play(category, name, volume)

    def play_random(
        self,
        category: str,
        subcategory: str,
        group_key: Optional[str] = None,
        volume: Optional[float] = None,
    ):
        """
        Synchronous play of a random variant.

        ``group_key`` selects a nested group (``peopleSayNo`` + ``mexicoSaysNo``).
        Outside the fast path this only plays while the gate is RUNNING.
        """
        name = f"{subcategory}.{group_key}" if group_key else subcategory
        if self.catalog.find(category, name) is None:
            return None

        if self.is_fast_path(category, name):
            return self.play_fast(category, name, volume)

        if not self.gate.is_running:
            logger.debug(f"Gate not running, skipping {category}.{name}")
            return None

        key = self.pick(category, name)
        handle = self._cached_handle(key)
        if handle is not None:
            return self._play_cached(key, handle, volume)
        return self.play_direct(key, volume)

    # ==================================================================
    # Fast path
    # ==================================================================

    def is_fast_path(self, category: str, name: str) -> bool:
        return self.priorities.group_tier(category, name) is PriorityTier.IMMEDIATE

    def play_fast(self, category: str, name: str, volume: Optional[float] = None):
        """Fire the next ring handle of an IMMEDIATE group. Never awaits."""
        key = self.pick(category, name)
        handle = self.instant.next(key)
        if handle is None:
            # Rings still warming: shuffle among the variants already filled
            ready = self.instant.ready_keys(category, name)
            if ready:
                pick = self.shuffle.next((category, name, "ready"), len(ready))
                handle = self.instant.next(ready[pick])

        if handle is None:
            return self.play_direct(self.catalog.key_for(category, name, 0), volume)

        try:
            self._start(handle, self._volume_for(volume))
        except PlaybackRejected as e:
            logger.debug(f"Fast path dropped {key}: {e}")
            return None
        return handle

    # ==================================================================
    # Cached and direct playback
    # ==================================================================

    def pick(self, category: str, name: str) -> AssetKey:
        """Resolve a group to one variant with the shuffle bag."""
        if not self.catalog.is_group(category, name):
            return AssetKey(category, name)
        count = self.catalog.variant_count(category, name)
        index = self.shuffle.next((category, name), count)
        return AssetKey(category, name, index)

    def _cached_handle(self, key: AssetKey) -> Optional[PlaybackHandle]:
        return self.critical.get(key) or self.loader.handle_for(key)

    def _play_loaded(self, key: AssetKey, volume: Optional[float]):
        handle = self._cached_handle(key)
        if handle is None:
            return self.play_direct(key, volume)
        return self._play_cached(key, handle, volume)

    def _play_cached(self, key: AssetKey, handle: PlaybackHandle, volume: Optional[float]):
        try:
            self._start(handle, self._volume_for(volume))
        except PlaybackRejected as e:
            logger.warning(f"Cached handle for {key} rejected ({e}), playing direct")
            return self.play_direct(key, volume)
        return handle

    def play_direct(self, key: AssetKey, volume: Optional[float] = None):
        """
        Play a key on a pooled handle.

        If the sound is not loaded yet the handle is returned at once and
        starts when the shared load resolves.
        """
        locator = self.catalog.locator(key)
        handle = self.pool.acquire(preferred_source=locator)
        handle.volume = self._volume_for(volume)

        sound = handle.sound if handle.source == locator else None
        sound = sound or self.loader.sound_for(key)
        if sound is not None:
            handle.bind(locator, sound)
            try:
                self._start(handle, handle.volume)
            except PlaybackRejected as e:
                logger.warning(f"Playback rejected for {key}: {e}")
                self.pool.release(handle, clear_source=True)
                return None
            return handle

        self.pool.mark_playing(handle)
        self.loader.schedule(key)
        task = asyncio.ensure_future(self._start_when_loaded(key, locator, handle))
        self._deferred[handle.handle_id] = task
        task.add_done_callback(lambda _t, hid=handle.handle_id: self._deferred.pop(hid, None))
        return handle

    async def _start_when_loaded(self, key: AssetKey, locator: str, handle: PlaybackHandle) -> None:
        loaded = await self.loader.load_by_key(key)
        if not self.pool.is_playing(handle):
            return

        sound = self.loader.sound_for(key)
        if not loaded or sound is None:
            logger.debug(f"Direct playback of {key} abandoned: load failed")
            self.pool.release(handle, clear_source=True)
            return

        handle.bind(locator, sound)
        try:
            self._start(handle, handle.volume)
        except PlaybackRejected as e:
            logger.warning(f"Playback rejected for {key}: {e}")
            self.pool.release(handle, clear_source=True)

    def _start(self, handle: PlaybackHandle, volume: float) -> None:
        """Arm callbacks and start a handle. Raises PlaybackRejected."""
        handle.clear_callbacks()
        handle.volume = clamp_volume(volume)
        handle.muted = self.muted
        handle.play()
        handle.on_ended(self._finish)
        handle.on_error(self._on_handle_error)
        self.pool.mark_playing(handle)

    def _finish(self, handle: PlaybackHandle) -> None:
        if handle is self.music:
            self.music = None
        if handle is self.swell:
            self._stop_swell_ramp()
            self.swell = None
            self._swell_level = SWELL_INITIAL_VOLUME
        if handle.owner in (HandleOwner.POOLED, HandleOwner.AD_HOC):
            self.pool.release(handle)
        else:
            self.pool.discard_playing(handle)

    def _on_handle_error(self, handle: PlaybackHandle, error: Exception) -> None:
        logger.warning(f"Playback error on {handle!r}: {error}")
        self._finish(handle)

    def _stop_handle(self, handle: PlaybackHandle) -> None:
        handle.clear_callbacks()
        handle.stop()
        self._finish(handle)

    def _volume_for(self, volume: Optional[float]) -> float:
        return clamp_volume(self.volume if volume is None else volume)

    # ==================================================================
    # Sequences
    # ==================================================================

    def add_step_listener(self, listener: StepListener) -> None:
        """Call ``listener(sequence_id, index, step)`` before each step plays."""
        self._step_listeners.append(listener)

    async def play_sequence(
        self,
        steps: Sequence[SequenceStep],
        speed: Optional[float] = None,
        finale: Optional[SequenceStep] = None,
        on_step: Optional[StepListener] = None,
    ) -> Optional[str]:
        """
        Schedule a timed multi-clip beat.

        Step ``i`` starts after the durations of the previous steps divided
        by ``speed`` (the live game speed when None). The finale, if any,
        starts after all durations.

        Returns:
            Sequence id for cancel_sequence, or None if nothing was scheduled
        """
        if not steps:
            return None
        if not await self.gate.ensure_running():
            logger.debug("Gate not running, skipping sequence")
            return None

        speed = sanitize_speed(self.speed if speed is None else speed)
        steps = list(steps)
        delays = compute_step_delays([step.duration for step in steps], speed)
        if finale is not None:
            delays.append(sum(step.duration for step in steps) / speed)
            steps.append(finale)

        return self._launch(steps, delays, speed, on_step)

    def play_after(
        self,
        base_delay: float,
        category: str,
        name: str,
        volume: Optional[float] = None,
    ) -> str:
        """Play one clip after ``base_delay`` scaled by the live speed."""
        step = SequenceStep(category, name, volume=volume)
        delay = max(0.0, base_delay / self.speed)
        return self._launch([step], [delay], self.speed, None)

    def _launch(self, steps, delays, speed, on_step) -> str:
        sequence_id = f"seq-{next(self._sequence_ids)}"
        sequence = ActiveSequence(sequence_id, steps, speed, delays)
        for index, (step, delay) in enumerate(zip(steps, delays)):
            task = asyncio.ensure_future(self._run_step(sequence_id, index, step, delay, on_step))
            task.add_done_callback(lambda _t, sid=sequence_id: self._forget_sequence(sid))
            sequence.tasks.append(task)
        self._sequences[sequence_id] = sequence
        logger.debug(f"Sequence {sequence_id}: {len(steps)} steps, delays={delays}")
        return sequence_id

    def _forget_sequence(self, sequence_id: str) -> None:
        sequence = self._sequences.get(sequence_id)
        if sequence is not None and sequence.done:
            del self._sequences[sequence_id]

    async def _run_step(self, sequence_id, index, step, delay, on_step) -> None:
        if delay > 0:
            await asyncio.sleep(delay)

        listeners = list(self._step_listeners)
        if on_step is not None:
            listeners.append(on_step)
        for listener in listeners:
            try:
                listener(sequence_id, index, step)
            except Exception as e:
                logger.error(f"Step listener failed for {sequence_id}[{index}]: {e}")

        self.play_step(step)

    def play_step(self, step: SequenceStep):
        name = f"{step.name}.{step.group_key}" if step.group_key else step.name
        if self.catalog.find(step.category, name) is None:
            return None
        if self.is_fast_path(step.category, name):
            return self.play_fast(step.category, name, step.volume)
        return self.play_direct(self.pick(step.category, name), step.volume)

    def cancel_sequence(self, sequence_id: str) -> bool:
        sequence = self._sequences.pop(sequence_id, None)
        if sequence is None:
            return False
        for task in sequence.tasks:
            task.cancel()
        return True

    @property
    def active_sequences(self) -> List[str]:
        return list(self._sequences)

    # ==================================================================
    # Fades
    # ==================================================================

    def fade_to(
        self,
        handle: PlaybackHandle,
        target: float,
        duration: float,
        on_complete: Optional[Callable[[], None]] = None,
    ) -> str:
        """
        Linearly ramp a handle's volume to ``target`` over ``duration`` seconds.

        Fading to (near) silence stops the handle at the end.
        ``on_complete`` runs once unless the fade is cancelled.
        """
        fade_id = f"fade-{next(self._fade_ids)}"
        task = asyncio.ensure_future(
            self._run_fade(fade_id, handle, clamp_volume(target), duration, on_complete)
        )
        self._fades[fade_id] = task
        return fade_id

    async def _run_fade(self, fade_id, handle, target, duration, on_complete) -> None:
        try:
            start = handle.volume
            ticks = max(1, math.ceil(duration / FADE_TICK))
            for tick in range(1, ticks + 1):
                await asyncio.sleep(FADE_TICK)
                if not handle.is_active:
                    break
                handle.set_volume(start + (target - start) * tick / ticks)

            if handle.is_active and target <= FADE_STOP_THRESHOLD:
                self._stop_handle(handle)
                handle.reset_position()
        finally:
            self._fades.pop(fade_id, None)

        if on_complete is not None:
            try:
                on_complete()
            except Exception as e:
                logger.error(f"Fade callback failed for {fade_id}: {e}")

    def cancel_fade(self, fade_id: str) -> bool:
        task = self._fades.pop(fade_id, None)
        if task is None:
            return False
        task.cancel()
        return True

    # ==================================================================
    # Loops: background music and swell
    # ==================================================================

    async def _loop_handle(self, key: AssetKey) -> Optional[PlaybackHandle]:
        if not await self.loader.load_by_key(key):
            return None
        sound = self.loader.sound_for(key)
        if sound is None:
            return None
        locator = self.catalog.locator(key)
        handle = self.pool.acquire(preferred_source=locator)
        handle.bind(locator, sound)
        handle.loop = True
        return handle

    async def start_music(self, volume: Optional[float] = None):
        """Loop ``music.background`` at half the given (or master) volume."""
        if self.music is not None and self.music.is_active:
            return self.music
        if MUSIC_KEY not in self.catalog:
            logger.warning(f"Sound not found: {MUSIC_KEY}")
            return None
        if not await self.gate.ensure_running():
            return None

        handle = await self._loop_handle(MUSIC_KEY)
        if handle is None:
            return None
        try:
            self._start(handle, self._volume_for(volume) * MUSIC_VOLUME_SCALE)
        except PlaybackRejected as e:
            logger.warning(f"Background music rejected: {e}")
            self.pool.release(handle)
            return None
        self.music = handle
        logger.info("🎵 Background music started")
        return handle

    def stop_music(self) -> None:
        if self.music is None:
            return
        self._stop_handle(self.music)
        self.music = None
        logger.info("🎵 Background music stopped")

    async def start_swell(
        self,
        category: str = "trump",
        name: str = "trumpGrabbing1",
        initial_volume: float = SWELL_INITIAL_VOLUME,
    ):
        """
        Loop a clip whose volume rises by SWELL_STEP every SWELL_INTERVAL.

        Returns:
            The looping handle, or None
        """
        self.stop_swell()
        if self.catalog.find(category, name) is None:
            return None
        if not await self.gate.ensure_running():
            return None

        handle = await self._loop_handle(self.pick(category, name))
        if handle is None:
            return None

        self._swell_level = clamp_volume(initial_volume)
        try:
            self._start(handle, self._swell_level * self.volume)
        except PlaybackRejected as e:
            logger.warning(f"Swell loop rejected: {e}")
            self.pool.release(handle)
            return None

        self.swell = handle
        if not self.muted:
            self._start_swell_ramp()
        return handle

    def stop_swell(self) -> None:
        self._stop_swell_ramp()
        if self.swell is not None:
            self._stop_handle(self.swell)
            self.swell = None
        self._swell_level = SWELL_INITIAL_VOLUME

    def _start_swell_ramp(self) -> None:
        if self.swell is None:
            return
        if self._swell_task is None or self._swell_task.done():
            self._swell_task = asyncio.ensure_future(self._ramp_swell())

    def _stop_swell_ramp(self) -> None:
        if self._swell_task is not None:
            self._swell_task.cancel()
            self._swell_task = None

    async def _ramp_swell(self) -> None:
        while self.swell is not None and self._swell_level < SWELL_MAX_VOLUME:
            await asyncio.sleep(SWELL_INTERVAL)
            if self.swell is None:
                break
            self._swell_level = min(SWELL_MAX_VOLUME, self._swell_level + SWELL_STEP)
            self.swell.set_volume(self._swell_level * self.volume)

    @property
    def swell_level(self) -> float:
        return self._swell_level

    # ==================================================================
    # Volume, mute, speed
    # ==================================================================

    def set_volume(self, volume: float) -> None:
        self.volume = clamp_volume(volume)
        for handle in self.pool.playing:
            if handle is self.music:
                handle.set_volume(self.volume * MUSIC_VOLUME_SCALE)
            elif handle is self.swell:
                handle.set_volume(self._swell_level * self.volume)
            else:
                handle.set_volume(self.volume)

    def toggle_mute(self) -> bool:
        """Flip mute on everything playing and on future plays. Returns the new state."""
        self.muted = not self.muted
        for handle in self.pool.playing:
            handle.set_muted(self.muted)

        if self.muted:
            self._stop_swell_ramp()
        else:
            self._start_swell_ramp()
        logger.info("🔇 Audio muted" if self.muted else "🔊 Audio unmuted")
        return self.muted

    def set_speed(self, multiplier) -> float:
        self.speed = sanitize_speed(multiplier)
        return self.speed

    # ==================================================================
    # Lifecycle
    # ==================================================================

    def stop_all(self, except_music: bool = False) -> None:
        """Stop every playing handle, the swell, fades and sequences."""
        for fade_id in list(self._fades):
            self.cancel_fade(fade_id)
        for sequence_id in list(self._sequences):
            self.cancel_sequence(sequence_id)
        for task in list(self._deferred.values()):
            task.cancel()
        self._deferred.clear()

        self.stop_swell()
        for handle in self.pool.playing:
            if except_music and handle is self.music:
                continue
            self._stop_handle(handle)
        if not except_music:
            self.music = None

    async def pause_all(self) -> None:
        self._stop_swell_ramp()
        for handle in self.pool.playing:
            handle.pause()
        await self.gate.suspend()

    async def resume_all(self) -> bool:
        if not await self.gate.ensure_running():
            return False
        for handle in self.pool.playing:
            if handle.paused:
                handle.resume()
        if not self.muted:
            self._start_swell_ramp()
        return True

    # ==================================================================
    # Playback monitor
    # ==================================================================

    def poll_playing(self) -> int:
        """Fire ended callbacks of finished handles. Returns how many ended."""
        finished = 0
        for handle in self.pool.playing:
            if handle.poll():
                finished += 1
        return finished

    def start_monitor(self, interval: float = PLAYBACK_POLL_INTERVAL) -> asyncio.Task:
        if self._monitor_task is None or self._monitor_task.done():
            self._monitor_task = asyncio.ensure_future(self._monitor(interval))
        return self._monitor_task

    async def _monitor(self, interval: float) -> None:
        while True:
            self.poll_playing()
            await asyncio.sleep(interval)

    def stop_monitor(self) -> None:
        if self._monitor_task is not None:
            self._monitor_task.cancel()
            self._monitor_task = None
