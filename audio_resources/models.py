"""Keys, states and small data structures shared across the audio core."""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional


@dataclass(frozen=True)
class AssetKey:
    """
    Stable identity of one playable clip.

    Attributes:
        category: Top-level catalog section (``ui``, ``defense``, ...)
        name: Entry name inside the category; nested groups use dots
        index: Variant index for variant groups, None for single clips
    """
    category: str
    name: str
    index: Optional[int] = None

    @property
    def group(self) -> "AssetKey":
        """The key without its variant index."""
        if self.index is None:
            return self
        return AssetKey(self.category, self.name)

    @classmethod
    def parse(cls, text: str) -> "AssetKey":
        """
        Parse ``category.name`` or ``category.name.index``.

        A trailing all-digit segment is read as the variant index, so
        ``defense.peopleSayNo.mexicoSaysNo.3`` keeps the dotted name.
        """
        parts = text.split(".")
        if len(parts) < 2 or not all(parts):
            raise ValueError(f"Invalid asset key: {text!r}")
        index = None
        if len(parts) > 2 and parts[-1].isdigit():
            index = int(parts.pop())
        return cls(parts[0], ".".join(parts[1:]), index)

    def __str__(self) -> str:
        if self.index is None:
            return f"{self.category}.{self.name}"
        return f"{self.category}.{self.name}.{self.index}"


class PriorityTier(Enum):
    """Load urgency classes, drained in declaration order."""
    IMMEDIATE = auto()
    CRITICAL = auto()
    IMPORTANT = auto()
    BACKGROUND = auto()

    @property
    def is_high(self) -> bool:
        """High tiers are awaited on a cache miss instead of played direct."""
        return self is not PriorityTier.BACKGROUND


class LoadState(Enum):
    """Per-key load lifecycle."""
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


class ContextState(Enum):
    """Playback permission lifecycle of the platform mixer."""
    LOCKED = "locked"
    UNLOCKING = "unlocking"
    RUNNING = "running"
    SUSPENDED = "suspended"


class HandleOwner(Enum):
    """Who a playback handle goes back to when it is done."""
    POOLED = auto()     # Borrowed from the pool, returned on end/error
    CACHED = auto()     # Held by the load cache, replayed in place
    INSTANT = auto()    # Member of a fast-path ring
    AD_HOC = auto()     # Allocated when the pool was empty


@dataclass(frozen=True)
class DeviceProfile:
    """
    Capabilities reported by the host's device detection.

    Detection itself happens outside this package; see
    ``config.load_device_profile`` for the environment-driven default.
    """
    mobile: bool = False
    low_memory: bool = False
    slow_connection: bool = False
    ios: bool = False


@dataclass(frozen=True)
class DeviceSettings:
    """Loading parameters derived from a DeviceProfile."""
    critical_delay: float
    followup_delay: float
    important_delay: float
    background_delay: float
    background_stagger: float
    variant_preload_count: int
    max_concurrent_loads: int
    background_limit: Optional[int] = None


@dataclass
class SequenceStep:
    """
    One clip in a timed multi-clip beat.

    Attributes:
        category: Catalog category of the clip
        name: Entry name (single clip or variant group)
        duration: Base seconds this step occupies before the next one starts
        group_key: Optional sub-group suffix (e.g. a country) for shuffle picks
        volume: Optional volume override
        label: Free-form tag passed to step listeners
    """
    category: str
    name: str
    duration: float = 0.0
    group_key: Optional[str] = None
    volume: Optional[float] = None
    label: Optional[str] = None


@dataclass
class ActiveSequence:
    """A scheduled sequence and the tasks driving its steps."""
    sequence_id: str
    steps: list
    speed: float
    delays: list = field(default_factory=list)
    tasks: list = field(default_factory=list)

    @property
    def done(self) -> bool:
        return all(task.done() for task in self.tasks)
