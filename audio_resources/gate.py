"""
Context Gate - playback permission state machine.

    LOCKED --unlock()--> UNLOCKING --ok--> RUNNING <--resume()/suspend()--> SUSPENDED
    UNLOCKING --failed--> LOCKED

Only unlock, suspend and resume change state. ``ensure_running`` is the
cheap check every normal play goes through.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from .errors import GateFailure
from .models import ContextState

logger = logging.getLogger(__name__)


class ContextGate:
    """
    Tracks whether the platform mixer may produce sound.

    Args:
        platform: Object with async ``unlock()``, ``resume()`` and
            ``suspend()`` (MixerBackend in production). ``unlock`` and
            ``resume`` return a bool or raise GateFailure.
    """

    def __init__(self, platform):
        self.platform = platform
        self.state = ContextState.LOCKED
        self._pending: Optional[asyncio.Task] = None
        self._running_hooks: List[Callable[[], None]] = []

    @property
    def is_running(self) -> bool:
        return self.state is ContextState.RUNNING

    def on_resumed(self, hook: Callable[[], None]) -> None:
        """Register a hook called on every transition into RUNNING."""
        self._running_hooks.append(hook)

    async def unlock(self) -> bool:
        """
        Unlock playback after a user gesture.

        Concurrent callers share one pending unlock.

        Returns:
            True if the gate is RUNNING afterwards
        """
        if self.state is ContextState.RUNNING:
            return True
        if self.state is ContextState.SUSPENDED:
            return await self.resume()

        if self._pending is None:
            self.state = ContextState.UNLOCKING
            self._pending = asyncio.ensure_future(self._unlock())
        return await asyncio.shield(self._pending)

    async def _unlock(self) -> bool:
        try:
            unlocked = bool(await self.platform.unlock())
        except GateFailure as e:
            logger.warning(f"Audio unlock failed: {e}")
            unlocked = False
        except Exception as e:
            logger.error(f"Unexpected error unlocking audio: {e}")
            unlocked = False
        finally:
            self._pending = None

        if not unlocked:
            self.state = ContextState.LOCKED
            return False

        self.state = ContextState.RUNNING
        logger.info("🔓 Audio unlocked")
        self._fire_running_hooks()
        return True

    async def ensure_running(self) -> bool:
        """
        Make sure playback is allowed, without ever raising.

        Returns:
            True if RUNNING; False while LOCKED or if the platform refuses
        """
        if self.state is ContextState.RUNNING:
            return True
        if self.state is ContextState.SUSPENDED:
            return await self.resume()
        if self.state is ContextState.UNLOCKING and self._pending is not None:
            return await asyncio.shield(self._pending)
        return False

    async def resume(self) -> bool:
        if self.state is ContextState.RUNNING:
            return True
        if self.state is not ContextState.SUSPENDED:
            return False

        try:
            resumed = bool(await self.platform.resume())
        except GateFailure as e:
            logger.warning(f"Audio resume failed: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error resuming audio: {e}")
            return False

        if resumed and self.state is ContextState.SUSPENDED:
            self.state = ContextState.RUNNING
            logger.info("▶️ Audio resumed")
            self._fire_running_hooks()
        return self.state is ContextState.RUNNING

    async def suspend(self) -> None:
        if self.state is not ContextState.RUNNING:
            return
        try:
            await self.platform.suspend()
        except GateFailure as e:
            logger.warning(f"Audio suspend failed: {e}")
            return
        except Exception as e:
            logger.error(f"Unexpected error suspending audio: {e}")
            return
        self.state = ContextState.SUSPENDED
        logger.info("⏸️ Audio suspended")

    def _fire_running_hooks(self) -> None:
        for hook in self._running_hooks:
            try:
                hook()
            except Exception as e:
                logger.error(f"Gate hook failed: {e}")
