"""
Playback caches fed by the load coordinator.

- CriticalCache keeps a direct reference to the cached handle of every
  IMMEDIATE/CRITICAL clip, so the normal path finds them without a lookup
  through the coordinator.
- InstantCache keeps a small ring of pre-bound handles per IMMEDIATE
  variant. Rings are round-robined so rapid repeats overlap instead of
  restarting one channel.
"""

import logging
from typing import Dict, List, Optional

from .config import INSTANT_RING_SIZE
from .handles import PlaybackHandle
from .models import AssetKey, HandleOwner, PriorityTier

logger = logging.getLogger(__name__)


class CriticalCache:
    """Direct key -> handle references for the high-urgency tiers."""

    TIERS = (PriorityTier.IMMEDIATE, PriorityTier.CRITICAL)

    def __init__(self):
        self._handles: Dict[AssetKey, PlaybackHandle] = {}

    def on_loaded(self, key: AssetKey, handle: PlaybackHandle, tier: PriorityTier) -> None:
        if tier in self.TIERS:
            self._handles[key] = handle
            logger.debug(f"Critical cache: {key} ({len(self._handles)} cached)")

    def get(self, key: AssetKey) -> Optional[PlaybackHandle]:
        return self._handles.get(key)

    def clear(self) -> None:
        self._handles.clear()

    def __contains__(self, key: AssetKey) -> bool:
        return key in self._handles

    def __len__(self) -> int:
        return len(self._handles)


class InstantCache:
    """
    Rings of pre-bound handles for the fast path.

    Attributes:
        ring_size: Handles per variant
    """

    def __init__(self, ring_size: int = INSTANT_RING_SIZE):
        self.ring_size = ring_size
        self._rings: Dict[AssetKey, List[PlaybackHandle]] = {}
        self._cursors: Dict[AssetKey, int] = {}

    def on_loaded(self, key: AssetKey, handle: PlaybackHandle, tier: PriorityTier) -> None:
        if tier is PriorityTier.IMMEDIATE:
            self.fill(key, handle.source, handle.sound)

    def fill(self, key: AssetKey, source: str, sound) -> None:
        """Bind ``ring_size`` handles to one loaded sound."""
        ring = []
        for _ in range(self.ring_size):
            handle = PlaybackHandle(HandleOwner.INSTANT)
            handle.bind(source, sound)
            ring.append(handle)
        self._rings[key] = ring
        self._cursors[key] = 0
        logger.debug(f"Instant ring ready: {key} x{self.ring_size}")

    def next(self, key: AssetKey) -> Optional[PlaybackHandle]:
        """Next handle of the ring for ``key``, or None if not filled yet."""
        ring = self._rings.get(key)
        if not ring:
            return None
        cursor = self._cursors[key]
        self._cursors[key] = (cursor + 1) % len(ring)
        return ring[cursor]

    def has(self, key: AssetKey) -> bool:
        return key in self._rings

    def ready_keys(self, category: str, name: str) -> List[AssetKey]:
        """Filled variants of one group."""
        return [
            key for key in self._rings
            if key.category == category and key.name == name
        ]

    def clear(self) -> None:
        for ring in self._rings.values():
            for handle in ring:
                handle.clear_callbacks()
                handle.stop()
        self._rings.clear()
        self._cursors.clear()

    def __len__(self) -> int:
        return len(self._rings)
