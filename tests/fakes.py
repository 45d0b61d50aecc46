"""
Shared fakes for the audio tests.

pygame is never driven for real: sounds and channels are MagicMocks, the
loader is an async callable that records its calls, and the platform is a
MagicMock with AsyncMock gate primitives.
"""

import asyncio
import os
import sys
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from audio_resources.catalog import MediaCatalog, PriorityTable
from audio_resources.errors import LoadFailure
from audio_resources.models import DeviceSettings


TEST_CATALOG = {
    "ui": {
        "click": "click.mp3",
        "gameStart": "gameStart.mp3",
        "stopHim": "stop-him.mp3",
        "faster": "faster.mp3",
    },
    "defense": {
        "slap": ["slap1.mp3", "slap2.mp3", "slap3.mp3", "slap4.mp3"],
        "peopleSayNo": {
            "mexicoSaysNo": ["protestMex1.mp3", "protestMex2.mp3", "protestMex3.mp3"],
        },
    },
    "trump": {
        "trumpYa": ["ya.mp3", "great.mp3"],
        "trumpGrabbing1": ["trumpGrabbing1.mp3"],
    },
    "music": {
        "background": "background-music.mp3",
    },
}

TEST_PRIORITIES = {
    "immediate": ["defense.slap"],
    "critical": ["ui.click", "ui.gameStart", "music.background"],
    "important": ["trump.trumpYa.0", "ui.stopHim"],
}

# Zero delays so priority draining finishes within a few loop iterations
FAST_SETTINGS = DeviceSettings(
    critical_delay=0.0,
    followup_delay=0.0,
    important_delay=0.0,
    background_delay=0.0,
    background_stagger=0.0,
    variant_preload_count=4,
    max_concurrent_loads=6,
)


def make_sound(busy: bool = True) -> MagicMock:
    """A pygame Sound stand-in whose play() returns a busy channel."""
    sound = MagicMock(name="Sound")
    channel = MagicMock(name="Channel")
    channel.get_busy.return_value = busy
    channel.get_sound.return_value = sound
    sound.play.return_value = channel
    return sound


class FakeLoader:
    """
    Async loader recording every locator it is asked for.

    Set ``hold`` to an asyncio.Event to keep loads pending until it is set.
    """

    def __init__(self, fail=None):
        self.calls = []
        self.fail = set(fail or ())
        self.hold: Optional[asyncio.Event] = None

    async def __call__(self, locator: str):
        self.calls.append(locator)
        if self.hold is not None:
            await self.hold.wait()
        else:
            await asyncio.sleep(0)
        if locator in self.fail:
            raise LoadFailure(locator, "unreachable")
        return make_sound()


def make_platform(unlock: bool = True, resume: bool = True) -> MagicMock:
    platform = MagicMock(name="Platform")
    platform.unlock = AsyncMock(return_value=unlock)
    platform.resume = AsyncMock(return_value=resume)
    platform.suspend = AsyncMock(return_value=None)
    return platform


def make_catalog():
    catalog = MediaCatalog(TEST_CATALOG)
    return catalog, PriorityTable(catalog, TEST_PRIORITIES)


async def settle(rounds: int = 10) -> None:
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_manager(loader=None, platform=None, **kwargs):
    """AudioResourceManager over the test catalog, with zero loading delays."""
    from audio_resources.audio_manager import AudioResourceManager

    catalog, priorities = make_catalog()
    manager = AudioResourceManager(
        catalog, priorities, loader or FakeLoader(), platform or make_platform(), **kwargs
    )
    manager.loader.settings = FAST_SETTINGS
    return manager
