"""Unit tests for the LoadCoordinator."""

import asyncio
import dataclasses
import unittest
from unittest.mock import MagicMock

from fakes import FAST_SETTINGS, FakeLoader, make_catalog, make_sound, settle

from audio_resources.loading import LoadCoordinator
from audio_resources.models import AssetKey, HandleOwner, LoadState, PriorityTier
from audio_resources.pool import PlaybackPool

CLICK = AssetKey("ui", "click")
FASTER = AssetKey("ui", "faster")


class LoadingTestCase(unittest.IsolatedAsyncioTestCase):

    settings = FAST_SETTINGS

    async def asyncSetUp(self):
        self.catalog, self.priorities = make_catalog()
        self.pool = PlaybackPool()
        self.pool.prime(8)
        self.loader = FakeLoader()
        self.coordinator = LoadCoordinator(
            self.catalog, self.priorities, self.pool, self.loader, self.settings
        )

    async def asyncTearDown(self):
        self.coordinator.shutdown()


class TestLoadByKey(LoadingTestCase):

    async def test_load_success(self):
        self.assertTrue(await self.coordinator.load_by_key(CLICK))

        self.assertIs(self.coordinator.state(CLICK), LoadState.LOADED)
        handle = self.coordinator.handle_for(CLICK)
        self.assertEqual(handle.owner, HandleOwner.CACHED)
        self.assertEqual(handle.source, "click.mp3")
        self.assertIs(self.coordinator.sound_for(CLICK), handle.sound)
        self.assertEqual(self.loader.calls, ["click.mp3"])

    async def test_loaded_key_resolves_without_loading(self):
        await self.coordinator.load_by_key(CLICK)
        self.assertTrue(await self.coordinator.load_by_key(CLICK))
        self.assertEqual(len(self.loader.calls), 1)

    async def test_concurrent_loads_are_deduplicated(self):
        self.loader.hold = asyncio.Event()
        waiters = [asyncio.ensure_future(self.coordinator.load_by_key(CLICK)) for _ in range(5)]
        await settle()

        self.assertIs(self.coordinator.state(CLICK), LoadState.LOADING)
        self.assertIsNotNone(self.coordinator.in_flight(CLICK))
        self.assertEqual(len(self.loader.calls), 1)

        self.loader.hold.set()
        self.assertEqual(await asyncio.gather(*waiters), [True] * 5)
        self.assertEqual(len(self.loader.calls), 1)
        self.assertIsNone(self.coordinator.in_flight(CLICK))

    async def test_abandoned_waiter_does_not_cancel_shared_load(self):
        self.loader.hold = asyncio.Event()
        first = asyncio.ensure_future(self.coordinator.load_by_key(CLICK))
        second = asyncio.ensure_future(self.coordinator.load_by_key(CLICK))
        await settle()

        first.cancel()
        await settle()
        self.loader.hold.set()

        self.assertTrue(await second)
        with self.assertRaises(asyncio.CancelledError):
            await first
        self.assertTrue(self.coordinator.is_loaded(CLICK))

    async def test_failure_is_not_raised_and_retry_succeeds(self):
        self.loader.fail.add("click.mp3")

        self.assertFalse(await self.coordinator.load_by_key(CLICK))
        self.assertIs(self.coordinator.state(CLICK), LoadState.FAILED)
        self.assertNotIn(CLICK, self.coordinator.loaded_keys)
        self.assertEqual(self.pool.size, 8)

        self.loader.fail.clear()
        self.assertTrue(await self.coordinator.load_by_key(CLICK))
        self.assertIs(self.coordinator.state(CLICK), LoadState.LOADED)

    async def test_unknown_key(self):
        self.assertFalse(await self.coordinator.load_by_key(AssetKey("ui", "nope")))
        self.assertIsNone(self.coordinator.schedule(AssetKey("ui", "nope")))
        self.assertEqual(self.loader.calls, [])

    async def test_load_timeout(self):
        self.coordinator.load_timeout = 0.01
        self.loader.hold = asyncio.Event()

        self.assertFalse(await self.coordinator.load_by_key(CLICK))
        self.assertIs(self.coordinator.state(CLICK), LoadState.FAILED)

    async def test_pooled_handle_with_same_source_skips_loader(self):
        handle = self.pool.acquire()
        handle.bind("click.mp3", make_sound())
        self.pool.release(handle)

        self.assertTrue(await self.coordinator.load_by_key(CLICK))
        self.assertEqual(self.loader.calls, [])
        self.assertIs(self.coordinator.handle_for(CLICK), handle)

    async def test_reset_discards_stale_load(self):
        self.loader.hold = asyncio.Event()
        pending = asyncio.ensure_future(self.coordinator.load_by_key(CLICK))
        await settle()

        self.coordinator.reset()
        self.loader.hold.set()

        self.assertFalse(await pending)
        self.assertIs(self.coordinator.state(CLICK), LoadState.UNLOADED)
        self.assertEqual(self.coordinator.loaded_count, 0)

    async def test_listeners_notified_with_tier(self):
        listener = MagicMock()
        self.coordinator.add_listener(listener)

        await self.coordinator.load_by_key(CLICK)
        listener.assert_called_once_with(
            CLICK, self.coordinator.handle_for(CLICK), PriorityTier.CRITICAL
        )

    async def test_schedule_is_fire_and_forget(self):
        task = self.coordinator.schedule(FASTER)
        self.assertIs(self.coordinator.schedule(FASTER), task)
        self.assertTrue(await task)
        self.assertIsNone(self.coordinator.schedule(FASTER))


class TestPriorityLoading(LoadingTestCase):

    async def test_drains_every_tier(self):
        await self.coordinator.start_priority_loading()

        self.assertEqual(self.coordinator.loaded_count, len(self.catalog.keys()))
        self.assertTrue(self.coordinator.critical_requested)
        self.assertEqual(len(self.loader.calls), len(self.catalog.keys()))

    async def test_start_priority_loading_is_idempotent(self):
        self.loader.hold = asyncio.Event()
        task = self.coordinator.start_priority_loading()
        self.assertIs(self.coordinator.start_priority_loading(), task)
        self.loader.hold.set()
        await task

    async def test_preload_critical_runs_once(self):
        # Keep the follow-up batch out of the call count
        self.coordinator.settings = dataclasses.replace(FAST_SETTINGS, followup_delay=60)
        self.assertTrue(await self.coordinator.preload_critical())
        self.assertFalse(await self.coordinator.preload_critical())

        critical = self.priorities.keys_in(PriorityTier.CRITICAL)
        self.assertTrue(all(self.coordinator.is_loaded(key) for key in critical))
        self.assertEqual(len(self.loader.calls), len(critical))

    async def test_critical_followups_load_first_important_variants(self):
        await self.coordinator.preload_critical()
        await settle(20)

        self.assertTrue(self.coordinator.is_loaded(AssetKey("trump", "trumpYa", 0)))
        self.assertTrue(self.coordinator.is_loaded(AssetKey("ui", "stopHim")))
        self.assertFalse(self.coordinator.is_loaded(AssetKey("trump", "trumpYa", 1)))

    async def test_load_tier_counts_loaded(self):
        self.loader.fail.add("slap2.mp3")
        self.assertEqual(await self.coordinator.load_tier(PriorityTier.IMMEDIATE), 3)

    async def test_load_group_respects_limit(self):
        loaded = await self.coordinator.load_group("defense", "peopleSayNo.mexicoSaysNo", limit=2)
        self.assertEqual(loaded, 2)
        self.assertEqual(self.loader.calls, ["protestMex1.mp3", "protestMex2.mp3"])

        self.assertEqual(await self.coordinator.load_group("defense", "nope"), 0)

    async def test_throttle_bounds_concurrent_loads(self):
        self.coordinator.settings = dataclasses.replace(FAST_SETTINGS, max_concurrent_loads=2)
        self.loader.hold = asyncio.Event()
        keys = self.catalog.keys()[:4]
        tasks = [self.coordinator.schedule(key) for key in keys]
        await settle()

        self.assertEqual(len(self.loader.calls), 2)
        self.loader.hold.set()
        await asyncio.gather(*tasks)
        self.assertEqual(len(self.loader.calls), 4)


class TestConstrainedDevice(LoadingTestCase):

    settings = dataclasses.replace(FAST_SETTINGS, variant_preload_count=2, background_limit=3)

    async def test_background_tier_is_trimmed(self):
        self.assertEqual(
            self.coordinator.tier_keys(PriorityTier.BACKGROUND),
            [
                FASTER,
                AssetKey("defense", "peopleSayNo.mexicoSaysNo", 0),
                AssetKey("defense", "peopleSayNo.mexicoSaysNo", 1),
            ],
        )

    async def test_other_tiers_are_not_trimmed(self):
        self.assertEqual(len(self.coordinator.tier_keys(PriorityTier.IMMEDIATE)), 4)


if __name__ == '__main__':
    unittest.main()
