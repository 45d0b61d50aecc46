"""Configuration constants for the audio resource manager."""

import os
from typing import Optional

from dotenv import load_dotenv

from .models import DeviceProfile, DeviceSettings

# Sound directory (relative to project root, resolved with resource_path)
DEFAULT_SOUND_PATH = os.path.join("assets", "sounds")

# Volumes
DEFAULT_VOLUME = 1.0
MUSIC_VOLUME_SCALE = 0.5     # Background music plays at half the master volume
UNLOCK_PROBE_VOLUME = 0.01
UNLOCK_PROBE_SECONDS = 0.1

# Mixer settings per platform: (frequency, buffer size)
MIXER_SETTINGS = {
    "Windows": (44100, 1024),
    "Darwin": (44100, 512),
    "Linux": (44100, 768),
}
MIXER_CHANNELS = 32
MIXER_FALLBACK_CHANNELS = 16

# Handle pool
POOL_MAX_SIZE = 20
INITIAL_POOL_SIZE = 8
INSTANT_RING_SIZE = 3        # Pre-bound handles per fast-path variant

# Priority loading (seconds)
CRITICAL_DELAY = 0.1
FOLLOWUP_DELAY = 0.5
IMPORTANT_DELAY = 0.8
IMPORTANT_DELAY_MOBILE = 2.0
BACKGROUND_DELAY = 3.0
BACKGROUND_DELAY_MOBILE = 5.0
BACKGROUND_STAGGER = 0.1
SLOW_CONNECTION_BACKGROUND_LIMIT = 5
VARIANT_PRELOAD_COUNT = 4
VARIANT_PRELOAD_COUNT_LOW_MEMORY = 2
MAX_CONCURRENT_LOADS = 6
MAX_CONCURRENT_LOADS_MOBILE = 3

# Playback timing (seconds)
PLAYBACK_POLL_INTERVAL = 0.05
FADE_TICK = 0.05
FADE_STOP_THRESHOLD = 0.02
AUDIT_INTERVAL = 3.0

# Swell loop (volume ramps up while the loop plays)
SWELL_INITIAL_VOLUME = 0.2
SWELL_MAX_VOLUME = 1.0
SWELL_STEP = 0.05
SWELL_INTERVAL = 0.3

# Base durations of the narrative beats, before game-speed scaling
SEQUENCE_DURATIONS = {
    "smash": 0.5,
    "smash_pause": 0.1,
    "partial_annex": 1.6,
    "full_annex": 3.5,
    "ya": 1.0,
    "victory": 1.0,
    "sob_to_protest": 0.8,
    "protest": 0.5,
    "grab_warning": 0.5,
    "catchphrase": 2.0,
}

# Catalog: category -> name -> file | [variant files]
DEFAULT_CATALOG = {
    "ui": {
        "click": "click.mp3",
        "gameStart": "gameStart.mp3",
        "gameOver": "gameOver.mp3",
        "win": "resistanceWins.mp3",
        "lose": "resistanceLoses.mp3",
        "grabWarning": "grabWarning.mp3",
        "growProtestors": "growProtestors.mp3",
        "stopHim": "stop-him.mp3",
        "smackThatHand": "smack-that-hand.mp3",
        "faster": "faster.mp3",
        "readySetGo": "ready-set-go.mp3",
    },
    "trump": {
        "trumpGrabbing1": ["trumpGrabbing1.mp3"],
        "partialAnnexCry": ["partialAnnex1.mp3", "partialAnnex2.mp3", "partialAnnex3.mp3"],
        "fullAnnexCry": ["fullAnnex1.mp3", "fullAnnex2.mp3", "fullAnnex3.mp3"],
        "trumpVictorySounds": ["victory1.mp3", "victory2.mp3", "victory3.mp3"],
        "trumpSob": ["trumpSob1.mp3", "trumpSob2.mp3"],
        "trumpYa": ["ya.mp3", "great.mp3", "mmhmn.mp3"],
        "beenVeryNiceToYou": "been-very-nice-to-you.mp3",
        "trumpSmash": ["smash.mp3", "smash1.mp3"],
    },
    "defense": {
        "slap": ["slap1.mp3", "slap2.mp3", "slap3.mp3", "slap4.mp3"],
        "peopleSayNo": {
            "eastCanadaSaysNo": [f"protestEastCan{i}.mp3" for i in range(1, 8)],
            "westCanadaSaysNo": [f"protestWestCan{i}.mp3" for i in range(1, 8)],
            "mexicoSaysNo": [f"protestMex{i}.mp3" for i in range(1, 8)],
            "greenlandSaysNo": [f"protestGreen{i}.mp3" for i in range(1, 8)],
        },
    },
    "resistance": {
        "canada": ["canadaResist1.mp3", "canadaResist2.mp3", "canadaResist3.mp3"],
        "mexico": ["mexicoResist1.mp3", "mexicoResist2.mp3", "mexicoResist3.mp3"],
        "greenland": ["greenlandResist1.mp3", "greenlandResist2.mp3", "greenlandResist3.mp3"],
    },
    "catchphrase": {
        "canada": [f"trumpShoutsAtCanada{i}.mp3" for i in range(1, 5)],
        "mexico": [f"trumpShoutsAtMexico{i}.mp3" for i in range(1, 4)],
        "greenland": [f"trumpShoutsAtGreenland{i}.mp3" for i in range(1, 5)],
        "generic": [f"trumpShoutsAtAnyone{i}.mp3" for i in range(1, 4)],
    },
    "particles": {
        "freedom": ["freedomSpark1.mp3", "freedomSpark2.mp3", "freedomSpark3.mp3"],
    },
    "music": {
        "background": "background-music.mp3",
    },
}

# Priority lists: "category.name" covers a whole group, "category.name.i" one variant
DEFAULT_PRIORITIES = {
    "immediate": ["defense.slap", "trump.trumpSmash"],
    "critical": ["ui.click", "ui.gameStart", "ui.grabWarning", "trump.trumpGrabbing1", "music.background"],
    "important": [
        "trump.partialAnnexCry.0",
        "trump.fullAnnexCry.0",
        "trump.trumpSob.0",
        "trump.trumpYa.0",
        "ui.stopHim",
        "ui.smackThatHand",
        "trump.beenVeryNiceToYou",
    ],
}


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def load_device_profile() -> DeviceProfile:
    """
    Build a DeviceProfile from the environment (and a .env file if present).

    Recognised variables: AUDIO_MOBILE, AUDIO_LOW_MEMORY,
    AUDIO_SLOW_CONNECTION, AUDIO_IOS.
    """
    load_dotenv()
    return DeviceProfile(
        mobile=_env_flag("AUDIO_MOBILE"),
        low_memory=_env_flag("AUDIO_LOW_MEMORY"),
        slow_connection=_env_flag("AUDIO_SLOW_CONNECTION"),
        ios=_env_flag("AUDIO_IOS"),
    )


def load_settings() -> dict:
    """
    Read runtime overrides from the environment.

    Returns:
        Dict with ``sound_path``, ``load_timeout`` and ``pool_max_size``
    """
    load_dotenv()
    pool_max = _env_float("AUDIO_POOL_MAX_SIZE")
    return {
        "sound_path": os.getenv("AUDIO_SOUND_PATH", DEFAULT_SOUND_PATH),
        "load_timeout": _env_float("AUDIO_LOAD_TIMEOUT"),
        "pool_max_size": int(pool_max) if pool_max else POOL_MAX_SIZE,
    }


def device_settings(profile: DeviceProfile) -> DeviceSettings:
    """Derive staggering and preload parameters from a device profile."""
    stagger = BACKGROUND_STAGGER
    if profile.mobile:
        stagger *= 2
    if profile.slow_connection:
        stagger *= 3

    return DeviceSettings(
        critical_delay=CRITICAL_DELAY,
        followup_delay=FOLLOWUP_DELAY,
        important_delay=IMPORTANT_DELAY_MOBILE if profile.mobile else IMPORTANT_DELAY,
        background_delay=BACKGROUND_DELAY_MOBILE if profile.mobile else BACKGROUND_DELAY,
        background_stagger=stagger,
        variant_preload_count=(
            VARIANT_PRELOAD_COUNT_LOW_MEMORY if profile.low_memory else VARIANT_PRELOAD_COUNT
        ),
        max_concurrent_loads=(
            MAX_CONCURRENT_LOADS_MOBILE if profile.mobile else MAX_CONCURRENT_LOADS
        ),
        background_limit=SLOW_CONNECTION_BACKGROUND_LIMIT if profile.slow_connection else None,
    )
