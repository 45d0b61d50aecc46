#!/usr/bin/env python3
"""
Audio Resource Manager - demo runner.

Usage:
    python main.py                     # Default catalog from assets/sounds
    python main.py catalog.json        # Custom catalog
    python main.py --audit             # Log pool stats every few seconds
"""

import asyncio
import logging
import os
import sys
import traceback

from audio_resources.audio_manager import NullAudioManager, initialize
from audio_resources.catalog import load_catalog
from audio_resources.config import SEQUENCE_DURATIONS
from audio_resources.errors import CatalogError
from audio_resources.models import SequenceStep
from audio_resources.resources import is_frozen

# Configure logging - write to file if frozen (windowed executable)
if is_frozen():
    log_file = os.path.join(os.path.dirname(sys.executable), 'audio_resources.log')
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler()
        ]
    )
else:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

logger = logging.getLogger(__name__)


def smash_sequence(country: str):
    """The partial-annex beat: smash, the annex cry, then a protest."""
    return [
        SequenceStep("trump", "trumpSmash",
                     SEQUENCE_DURATIONS["smash"] + SEQUENCE_DURATIONS["smash_pause"]),
        SequenceStep("trump", "partialAnnexCry", SEQUENCE_DURATIONS["partial_annex"]),
        SequenceStep("defense", "peopleSayNo", SEQUENCE_DURATIONS["protest"],
                     group_key=f"{country}SaysNo", label="protest"),
    ]


async def run_demo(catalog_path=None, audit: bool = False) -> None:
    catalog = load_catalog(catalog_path) if catalog_path else None
    audio = await initialize(catalog)
    if isinstance(audio, NullAudioManager):
        logger.warning("No audio device - nothing to demo")
        return

    if audit:
        audio.start_audit()

    try:
        # Desktop mixers need no user gesture, unlock right away
        await audio.unlock()
        await audio.start_music()

        for _ in range(4):
            audio.play_random("defense", "slap")
            await asyncio.sleep(0.15)

        audio.add_step_listener(
            lambda seq_id, index, step: logger.info(f"▶️ {seq_id}[{index}] {step.category}.{step.name}")
        )
        await audio.play_sequence(
            smash_sequence("mexico"),
            finale=SequenceStep("trump", "trumpYa", label="ya"),
        )
        audio.play_after(SEQUENCE_DURATIONS["grab_warning"], "ui", "grabWarning")

        swell = await audio.start_swell()
        await asyncio.sleep(3.0)
        if swell is not None:
            done = asyncio.Event()
            audio.fade_to(swell, 0.0, 1.0, on_complete=done.set)
            await done.wait()
        audio.stop_swell()

        logger.info(f"Audio stats: {audio.stats()}")
    finally:
        audio.shutdown()


def main() -> None:
    """Main entry point."""
    args = [arg for arg in sys.argv[1:] if not arg.startswith("--")]
    audit = "--audit" in sys.argv

    try:
        asyncio.run(run_demo(args[0] if args else None, audit))
        logger.info("Demo finished")
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except CatalogError as e:
        logger.error(f"Invalid catalog: {e}")
        sys.exit(1)
    except Exception as e:
        logger.critical(f"💥 Fatal error: {e}")
        logger.critical("Traceback:\n%s", traceback.format_exc())
        sys.exit(1)


if __name__ == "__main__":
    main()
