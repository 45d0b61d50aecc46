"""
Mixer Backend - pygame.mixer lifecycle and asynchronous clip loading.

The backend is the only module that talks to the platform:
- MixerBackend opens/closes the mixer and implements the unlock, suspend
  and resume primitives the ContextGate drives.
- ClipLoader turns a locator into a ready ``pygame.mixer.Sound``. Decoding
  runs in the default executor so the event loop never blocks on disk.
"""

import asyncio
import logging
import os
import platform
from pathlib import Path
from typing import Optional

import pygame

from .config import (
    DEFAULT_SOUND_PATH,
    MIXER_CHANNELS,
    MIXER_FALLBACK_CHANNELS,
    MIXER_SETTINGS,
    UNLOCK_PROBE_SECONDS,
    UNLOCK_PROBE_VOLUME,
)
from .errors import GateFailure, LoadFailure
from .resources import resource_path

logger = logging.getLogger(__name__)


class MixerBackend:
    """
    Owns the pygame mixer.

    Attributes:
        opened: Whether pygame.mixer was successfully initialized
        ios: Use the silent-probe unlock as a second strategy
    """

    def __init__(self, ios: bool = False):
        self.opened = False
        self.ios = ios
        self._probe: Optional[pygame.mixer.Sound] = None

    def open(self) -> bool:
        """
        Initialize pygame.mixer with platform-tuned settings.

        Falls back to default settings on failure. Never raises.

        Returns:
            True if the mixer is usable
        """
        system = platform.system()
        frequency, buffer_size = MIXER_SETTINGS.get(system, MIXER_SETTINGS["Linux"])

        try:
            if system == "Windows":
                # DirectSound avoids WASAPI exclusive-mode conflicts
                os.environ.setdefault("SDL_AUDIODRIVER", "directsound")

            pygame.mixer.pre_init(
                frequency=frequency,
                size=-16,
                channels=2,
                buffer=buffer_size
            )
            pygame.mixer.init()
            pygame.mixer.set_num_channels(MIXER_CHANNELS)

            self.opened = True
            logger.info(
                f"🔊 Audio mixer initialized: {system}, "
                f"freq={frequency}Hz, buffer={buffer_size}"
            )

        except Exception as e:
            logger.warning(f"Primary audio init failed: {e}. Trying fallback...")
            self._fallback_open()

        return self.opened

    def _fallback_open(self) -> None:
        try:
            pygame.mixer.quit()
            pygame.mixer.init()
            pygame.mixer.set_num_channels(MIXER_FALLBACK_CHANNELS)
            self.opened = True
            logger.info("🔊 Audio initialized with fallback settings")
        except Exception as e:
            logger.error(f"Fallback audio init failed: {e}")
            self.opened = False

    def close(self) -> None:
        if not self.opened:
            return
        try:
            pygame.mixer.quit()
        except Exception as e:
            logger.warning(f"Error closing mixer: {e}")
        self.opened = False
        self._probe = None

    # ------------------------------------------------------------------
    # Gate primitives
    # ------------------------------------------------------------------

    async def unlock(self) -> bool:
        """
        First-gesture unlock.

        Resumes the mixer; on iOS profiles also plays a near-silent probe
        to confirm output actually starts.

        Raises:
            GateFailure: if the mixer is not open or refuses both strategies
        """
        if not self.opened:
            raise GateFailure("Mixer is not open")

        resumed = await self.resume()
        if not self.ios:
            return resumed

        probed = await self._play_silent_probe()
        return resumed or probed

    async def _play_silent_probe(self) -> bool:
        try:
            if self._probe is None:
                # 100 ms of 16-bit stereo silence at 44.1 kHz
                self._probe = pygame.mixer.Sound(buffer=bytes(44100 * 4 // 10))
            self._probe.set_volume(UNLOCK_PROBE_VOLUME)
            channel = self._probe.play()
            if channel is None:
                return False
            await asyncio.sleep(UNLOCK_PROBE_SECONDS)
            channel.stop()
            return True
        except pygame.error as e:
            logger.warning(f"Silent unlock probe failed: {e}")
            return False

    async def resume(self) -> bool:
        if not self.opened:
            raise GateFailure("Mixer is not open")
        try:
            pygame.mixer.unpause()
        except pygame.error as e:
            raise GateFailure(f"Could not resume mixer: {e}") from e
        return True

    async def suspend(self) -> None:
        if not self.opened:
            return
        try:
            pygame.mixer.pause()
        except pygame.error as e:
            logger.warning(f"Could not suspend mixer: {e}")


class ClipLoader:
    """
    Resolves locators to ready-to-play sounds.

    Locators are file names relative to ``sound_path``; absolute paths are
    used as-is. Remote (``http``) and ``data:`` locators are not supported
    by this loader and fail like any other unreachable source.
    """

    def __init__(self, sound_path: str = DEFAULT_SOUND_PATH):
        self.sound_path = Path(resource_path(sound_path))

    def resolve_path(self, locator: str) -> str:
        if not locator:
            return ""
        if locator.startswith(("http:", "https:", "data:")) or os.path.isabs(locator):
            return locator
        return str(self.sound_path / locator)

    async def load(self, locator: str) -> pygame.mixer.Sound:
        """
        Decode a clip without blocking the event loop.

        Raises:
            LoadFailure: if the locator is unreachable or undecodable
        """
        path = self.resolve_path(locator)
        if not path:
            raise LoadFailure(locator, "empty locator")
        if path.startswith(("http:", "https:", "data:")):
            raise LoadFailure(locator, "unsupported scheme")
        if not Path(path).exists():
            raise LoadFailure(locator, "file not found")

        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, pygame.mixer.Sound, path)
        except pygame.error as e:
            raise LoadFailure(locator, str(e)) from e

    async def __call__(self, locator: str) -> pygame.mixer.Sound:
        return await self.load(locator)
