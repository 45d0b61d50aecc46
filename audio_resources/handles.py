"""Playback handles: one bound pygame Sound plus the channel playing it."""

import itertools
import logging
from typing import Callable, List, Optional

import pygame

from .config import DEFAULT_VOLUME
from .errors import PlaybackRejected
from .models import HandleOwner

logger = logging.getLogger(__name__)

_handle_ids = itertools.count(1)


def clamp_volume(volume: float) -> float:
    return max(0.0, min(1.0, float(volume)))


class PlaybackHandle:
    """
    A reusable playback resource.

    pygame cannot seek inside a Sound, so "resetting the position" means
    stopping the channel; the next ``play()`` starts from the top. Playback
    rate is tracked for callers but not applied (the mixer has no
    resampling).

    Ended/error callbacks are one-shot: they are dropped after firing.
    Completion is detected by ``poll()``, which the scheduler's playback
    monitor calls on every playing handle.

    pygame hands a freed channel to the next ``Sound.play()``, so the handle
    only treats ``channel`` as its own while the channel still holds its
    sound. A ``pygame.error`` from a channel it owns goes through ``fail()``.
    """

    def __init__(self, owner: HandleOwner = HandleOwner.POOLED):
        self.handle_id = next(_handle_ids)
        self.owner = owner
        self.source: Optional[str] = None
        self.sound: Optional[pygame.mixer.Sound] = None
        self.channel: Optional[pygame.mixer.Channel] = None

        self.volume: float = DEFAULT_VOLUME
        self.loop = False
        self.muted = False
        self.rate = 1.0
        self.paused = False
        self.error: Optional[Exception] = None

        self._started = False
        self._ended_callbacks: List[Callable[["PlaybackHandle"], None]] = []
        self._error_callbacks: List[Callable[["PlaybackHandle", Exception], None]] = []

    def __repr__(self) -> str:
        return f"<PlaybackHandle #{self.handle_id} {self.owner.name} src={self.source!r}>"

    # ------------------------------------------------------------------
    # Source binding
    # ------------------------------------------------------------------

    def bind(self, source: str, sound) -> None:
        """Attach a loaded sound; keeps playback stopped."""
        if self.source != source or self.sound is not sound:
            self.stop()
        self.source = source
        self.sound = sound
        self.error = None

    def clear_source(self) -> None:
        self.stop()
        self.source = None
        self.sound = None

    @property
    def is_bound(self) -> bool:
        return self.sound is not None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    @property
    def effective_volume(self) -> float:
        return 0.0 if self.muted else self.volume

    def _owns_channel(self) -> bool:
        """True while ``channel`` is still playing this handle's sound."""
        return self.channel is not None and self.channel.get_sound() is self.sound

    @property
    def is_playing(self) -> bool:
        if not self._started or self.paused:
            return False
        try:
            return self._owns_channel() and bool(self.channel.get_busy())
        except pygame.error:
            return False

    @property
    def is_active(self) -> bool:
        """Started and not yet finished (paused counts as active)."""
        return self._started

    def play(self) -> None:
        """
        Start (or restart) playback.

        Raises:
            PlaybackRejected: if no sound is bound or the mixer refuses
        """
        if self.sound is None:
            raise PlaybackRejected(f"{self!r} has no sound bound")

        self.stop()
        try:
            channel = self.sound.play(loops=-1 if self.loop else 0)
        except pygame.error as e:
            self.error = e
            raise PlaybackRejected(str(e)) from e

        if channel is None:
            raise PlaybackRejected("No free mixer channel")

        self.channel = channel
        try:
            channel.set_volume(self.effective_volume)
        except pygame.error as e:
            self.error = e
            self.stop()
            raise PlaybackRejected(str(e)) from e
        self.error = None
        self._started = True
        self.paused = False

    def stop(self) -> None:
        """Stop playback; a channel already taken by another sound is left alone."""
        if self.channel is not None:
            try:
                if self._owns_channel():
                    self.channel.stop()
            except pygame.error as e:
                logger.debug(f"Channel stop failed for {self!r}: {e}")
        self.channel = None
        self._started = False
        self.paused = False

    def reset_position(self) -> None:
        self.stop()

    def pause(self) -> None:
        if not self._started or self.paused:
            return
        try:
            if self._owns_channel():
                self.channel.pause()
                self.paused = True
        except pygame.error as e:
            self.fail(e)

    def resume(self) -> None:
        if not self.paused:
            return
        try:
            if self._owns_channel():
                self.channel.unpause()
        except pygame.error as e:
            self.fail(e)
            return
        self.paused = False

    # ------------------------------------------------------------------
    # Volume / mute
    # ------------------------------------------------------------------

    def set_volume(self, volume: float) -> None:
        self.volume = clamp_volume(volume)
        self._apply_volume()

    def set_muted(self, muted: bool) -> None:
        self.muted = muted
        self._apply_volume()

    def _apply_volume(self) -> None:
        try:
            if self._owns_channel():
                self.channel.set_volume(self.effective_volume)
        except pygame.error as e:
            self.fail(e)

    def reset(self) -> None:
        """Stop and restore volatile state. Keeps the bound source."""
        self.stop()
        self.volume = DEFAULT_VOLUME
        self.loop = False
        self.muted = False
        self.rate = 1.0

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def on_ended(self, callback: Callable[["PlaybackHandle"], None]) -> None:
        self._ended_callbacks.append(callback)

    def on_error(self, callback: Callable[["PlaybackHandle", Exception], None]) -> None:
        self._error_callbacks.append(callback)

    def clear_callbacks(self) -> None:
        self._ended_callbacks.clear()
        self._error_callbacks.clear()

    @property
    def has_callbacks(self) -> bool:
        return bool(self._ended_callbacks or self._error_callbacks)

    def poll(self) -> bool:
        """
        Detect natural completion.

        Returns:
            True if the handle finished since the last poll
        """
        if not self._started or self.paused or self.channel is None:
            return False
        try:
            if self._owns_channel() and self.channel.get_busy():
                return False
        except pygame.error as e:
            logger.warning(f"Mixer error on {self!r}: {e}")
            self.fail(e)
            return True

        self.channel = None
        self._started = False
        callbacks = list(self._ended_callbacks)
        self._ended_callbacks.clear()
        self._error_callbacks.clear()
        for callback in callbacks:
            try:
                callback(self)
            except Exception as e:
                logger.error(f"Ended callback failed for {self!r}: {e}")
        return True

    def fail(self, error: Exception) -> None:
        """Record an error and notify error listeners once."""
        self.error = error
        self.stop()
        callbacks = list(self._error_callbacks)
        self._ended_callbacks.clear()
        self._error_callbacks.clear()
        for callback in callbacks:
            try:
                callback(self, error)
            except Exception as e:
                logger.error(f"Error callback failed for {self!r}: {e}")
