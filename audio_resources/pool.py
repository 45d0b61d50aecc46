"""Bounded pool of reusable playback handles."""

import logging
from typing import Dict, List, Optional

from .config import POOL_MAX_SIZE
from .handles import PlaybackHandle
from .models import HandleOwner

logger = logging.getLogger(__name__)


class PlaybackPool:
    """
    Recycles PlaybackHandle objects so playback never allocates unboundedly.

    Invariant: a handle sitting in the pool has no callbacks and is not in
    the playing set.

    Attributes:
        max_size: Handles beyond this are dropped on release
    """

    def __init__(self, max_size: int = POOL_MAX_SIZE):
        self.max_size = max_size
        self._pool: List[PlaybackHandle] = []
        self._playing: List[PlaybackHandle] = []
        self._allocated = 0
        self._dropped = 0

    def prime(self, count: int) -> int:
        """Pre-allocate up to ``count`` empty handles. Returns how many were added."""
        added = 0
        while added < count and len(self._pool) < self.max_size:
            self._pool.append(self._allocate(HandleOwner.POOLED))
            added += 1
        logger.debug(f"Pool primed with {added} handles. Size now: {len(self._pool)}")
        return added

    def _allocate(self, owner: HandleOwner) -> PlaybackHandle:
        self._allocated += 1
        return PlaybackHandle(owner)

    def acquire(
        self,
        preferred_source: Optional[str] = None,
        clear_source: bool = False
    ) -> PlaybackHandle:
        """
        Take a handle, preferring one already bound to ``preferred_source``.

        Volatile state (position, volume, loop, mute, rate) is reset. The
        bound source is kept unless ``clear_source`` is set, since rebinding
        the same source means reloading it.
        """
        handle = None

        if preferred_source is not None:
            for i, candidate in enumerate(self._pool):
                if candidate.source == preferred_source:
                    handle = self._pool.pop(i)
                    logger.debug(
                        f"Reused handle with matching source. Remaining: {len(self._pool)}"
                    )
                    break

        if handle is None:
            if self._pool:
                handle = self._pool.pop()
                logger.debug(f"Reused handle from pool. Remaining: {len(self._pool)}")
            else:
                # Pool exhausted: hand out an unpooled handle instead of failing
                handle = self._allocate(HandleOwner.AD_HOC)
                logger.debug("Created new handle - pool was empty!")

        handle.reset()
        if clear_source:
            handle.clear_source()
        return handle

    def release(self, handle: Optional[PlaybackHandle], clear_source: bool = False) -> bool:
        """
        Return a handle after use.

        Returns:
            True if the handle went back into the pool, False if dropped
        """
        if handle is None:
            return False

        self.discard_playing(handle)
        handle.clear_callbacks()
        handle.reset()

        if clear_source or handle.error is not None:
            handle.clear_source()
            handle.error = None

        if any(pooled is handle for pooled in self._pool):
            return True

        if len(self._pool) < self.max_size:
            handle.owner = HandleOwner.POOLED
            self._pool.append(handle)
            logger.debug(f"Returned handle to pool. Size now: {len(self._pool)}")
            return True

        self._dropped += 1
        logger.debug(f"Pool full ({len(self._pool)}), not returning handle")
        return False

    # ------------------------------------------------------------------
    # Currently playing set
    # ------------------------------------------------------------------

    def mark_playing(self, handle: PlaybackHandle) -> None:
        if not any(playing is handle for playing in self._playing):
            self._playing.append(handle)

    def discard_playing(self, handle: PlaybackHandle) -> None:
        self._playing = [playing for playing in self._playing if playing is not handle]

    def is_playing(self, handle: PlaybackHandle) -> bool:
        return any(playing is handle for playing in self._playing)

    @property
    def playing(self) -> List[PlaybackHandle]:
        return list(self._playing)

    @property
    def size(self) -> int:
        return len(self._pool)

    def clear(self) -> None:
        """Drop every pooled handle and forget the playing set."""
        for handle in self._playing:
            handle.clear_callbacks()
            handle.stop()
        self._playing.clear()
        self._pool.clear()

    def stats(self) -> Dict[str, int]:
        """Counters for leak diagnosis."""
        return {
            "pool_size": len(self._pool),
            "playing": len(self._playing),
            "allocated": self._allocated,
            "dropped": self._dropped,
        }
