"""Exception types for the audio resource manager.

Most of these never reach callers: the loader raises LoadFailure and the
coordinator turns it into ``False``; the backend raises GateFailure and the
gate turns it into ``False``. Only CatalogError escapes, and only while a
catalog is being built.
"""


class AudioError(Exception):
    """Base class for all audio resource errors."""


class CatalogError(AudioError):
    """Catalog data is malformed (empty group, non-string locator, ...)."""


class AssetNotFoundError(AudioError, KeyError):
    """Requested category/name is not in the catalog."""

    def __init__(self, category: str, name: str, index=None):
        self.category = category
        self.name = name
        self.index = index
        label = f"{category}.{name}" if index is None else f"{category}.{name}.{index}"
        super().__init__(f"Sound not found: {label}")

    def __str__(self) -> str:
        return self.args[0]


class LoadFailure(AudioError):
    """A locator could not be resolved to a playable sound."""

    def __init__(self, locator: str, reason: str = ""):
        self.locator = locator
        self.reason = reason
        message = f"Failed to load {locator}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class GateFailure(AudioError):
    """The platform refused to unlock or resume playback."""


class PlaybackRejected(AudioError):
    """The mixer refused to start a sound (no free channel, device gone)."""
