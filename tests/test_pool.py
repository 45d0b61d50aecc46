"""Unit tests for PlaybackHandle, PlaybackPool and the playback caches."""

import unittest
from unittest.mock import MagicMock

import pygame

from fakes import make_sound

from audio_resources.caches import CriticalCache, InstantCache
from audio_resources.errors import PlaybackRejected
from audio_resources.handles import PlaybackHandle, clamp_volume
from audio_resources.models import AssetKey, HandleOwner, PriorityTier
from audio_resources.pool import PlaybackPool


class TestPlaybackHandle(unittest.TestCase):

    def setUp(self):
        self.handle = PlaybackHandle()
        self.sound = make_sound()
        self.handle.bind("slap1.mp3", self.sound)

    def test_play_applies_volume_and_mute(self):
        self.handle.volume = 0.4
        self.handle.muted = True
        self.handle.play()

        self.sound.play.assert_called_once_with(loops=0)
        self.handle.channel.set_volume.assert_called_with(0.0)
        self.assertTrue(self.handle.is_playing)

    def test_looping_play(self):
        self.handle.loop = True
        self.handle.play()
        self.sound.play.assert_called_once_with(loops=-1)

    def test_play_without_sound_rejected(self):
        with self.assertRaises(PlaybackRejected):
            PlaybackHandle().play()

    def test_play_without_free_channel_rejected(self):
        self.sound.play.return_value = None
        with self.assertRaises(PlaybackRejected):
            self.handle.play()

    def test_mixer_error_rejected(self):
        self.sound.play.side_effect = pygame.error("device lost")
        with self.assertRaises(PlaybackRejected):
            self.handle.play()
        self.assertIsNotNone(self.handle.error)

    def test_poll_fires_ended_once(self):
        ended = MagicMock()
        self.handle.play()
        self.handle.on_ended(ended)

        self.assertFalse(self.handle.poll())
        self.handle.channel.get_busy.return_value = False
        self.assertTrue(self.handle.poll())
        self.assertFalse(self.handle.poll())
        ended.assert_called_once_with(self.handle)

    def test_paused_handle_is_not_finished(self):
        self.handle.play()
        self.handle.pause()
        self.handle.channel.get_busy.return_value = False
        self.assertFalse(self.handle.poll())
        self.assertTrue(self.handle.is_active)

    def test_channel_reassigned_to_another_sound_counts_as_ended(self):
        ended = MagicMock()
        self.handle.play()
        self.handle.on_ended(ended)
        # The clip ended and the mixer gave its channel to another sound
        self.handle.channel.get_sound.return_value = make_sound()

        self.assertFalse(self.handle.is_playing)
        self.assertTrue(self.handle.poll())
        ended.assert_called_once_with(self.handle)

    def test_reassigned_channel_is_left_alone(self):
        self.handle.play()
        channel = self.handle.channel
        channel.get_sound.return_value = make_sound()
        channel.set_volume.reset_mock()

        self.handle.set_volume(0.5)
        self.handle.pause()
        self.handle.stop()
        channel.set_volume.assert_not_called()
        channel.pause.assert_not_called()
        channel.stop.assert_not_called()

    def test_replay_does_not_cut_off_other_sound(self):
        self.handle.play()
        channel = self.handle.channel
        channel.get_sound.return_value = make_sound()
        self.sound.play.return_value = MagicMock(name="FreshChannel")

        self.handle.play()
        channel.stop.assert_not_called()
        self.assertIsNot(self.handle.channel, channel)

    def test_mixer_error_while_polling_fails_handle(self):
        errors = MagicMock()
        self.handle.play()
        self.handle.on_error(errors)
        self.handle.channel.get_busy.side_effect = pygame.error("device lost")

        self.assertTrue(self.handle.poll())
        errors.assert_called_once()
        self.assertIsInstance(self.handle.error, pygame.error)
        self.assertFalse(self.handle.is_active)

    def test_mixer_error_on_volume_fails_handle(self):
        errors = MagicMock()
        self.handle.play()
        self.handle.on_error(errors)
        self.handle.channel.set_volume.side_effect = pygame.error("device lost")

        self.handle.set_volume(0.2)
        errors.assert_called_once()
        self.assertFalse(self.handle.is_active)

    def test_reset_keeps_source(self):
        self.handle.volume = 0.3
        self.handle.loop = True
        self.handle.play()
        self.handle.reset()

        self.assertEqual(self.handle.source, "slap1.mp3")
        self.assertEqual(self.handle.volume, 1.0)
        self.assertFalse(self.handle.loop)
        self.assertFalse(self.handle.is_active)

    def test_fail_notifies_error_callbacks(self):
        errors = MagicMock()
        self.handle.on_error(errors)
        error = RuntimeError("decode")
        self.handle.fail(error)
        errors.assert_called_once_with(self.handle, error)
        self.assertFalse(self.handle.has_callbacks)

    def test_clamp_volume(self):
        self.assertEqual(clamp_volume(1.5), 1.0)
        self.assertEqual(clamp_volume(-0.2), 0.0)
        self.assertEqual(clamp_volume(0.25), 0.25)


class TestPlaybackPool(unittest.TestCase):

    def setUp(self):
        self.pool = PlaybackPool(max_size=3)

    def test_prime_capped_by_max_size(self):
        self.assertEqual(self.pool.prime(8), 3)
        self.assertEqual(self.pool.size, 3)

    def test_pool_bound(self):
        """Releasing cap + 1 handles leaves exactly cap pooled."""
        handles = [self.pool.acquire() for _ in range(4)]
        for handle in handles:
            self.pool.release(handle)

        self.assertEqual(self.pool.size, 3)
        self.assertEqual(self.pool.stats()["dropped"], 1)

    def test_empty_pool_allocates_ad_hoc(self):
        handle = self.pool.acquire()
        self.assertEqual(handle.owner, HandleOwner.AD_HOC)
        self.assertEqual(self.pool.stats()["allocated"], 1)

    def test_acquire_prefers_matching_source(self):
        self.pool.prime(3)
        bound = self.pool.acquire()
        bound.bind("click.mp3", make_sound())
        self.pool.release(bound)

        self.assertIs(self.pool.acquire(preferred_source="click.mp3"), bound)

    def test_acquire_resets_volatile_state(self):
        handle = self.pool.acquire()
        handle.bind("click.mp3", make_sound())
        handle.volume = 0.2
        handle.muted = True
        self.pool.release(handle)

        again = self.pool.acquire(preferred_source="click.mp3")
        self.assertEqual(again.volume, 1.0)
        self.assertFalse(again.muted)
        self.assertEqual(again.source, "click.mp3")

    def test_acquire_clear_source(self):
        handle = self.pool.acquire()
        handle.bind("click.mp3", make_sound())
        self.pool.release(handle)

        again = self.pool.acquire(clear_source=True)
        self.assertIsNone(again.source)
        self.assertFalse(again.is_bound)

    def test_release_detaches_callbacks_and_playing(self):
        handle = self.pool.acquire()
        handle.on_ended(MagicMock())
        self.pool.mark_playing(handle)

        self.assertTrue(self.pool.release(handle))
        self.assertFalse(handle.has_callbacks)
        self.assertFalse(self.pool.is_playing(handle))
        self.assertEqual(handle.owner, HandleOwner.POOLED)

    def test_release_clears_source_on_error(self):
        handle = self.pool.acquire()
        handle.bind("bad.mp3", make_sound())
        handle.error = RuntimeError("decode")
        self.pool.release(handle)

        self.assertIsNone(handle.source)
        self.assertIsNone(handle.error)

    def test_double_release_does_not_duplicate(self):
        handle = self.pool.acquire()
        self.pool.release(handle)
        self.pool.release(handle)
        self.assertEqual(self.pool.size, 1)

    def test_clear(self):
        self.pool.prime(2)
        playing = self.pool.acquire()
        self.pool.mark_playing(playing)
        self.pool.clear()

        self.assertEqual(self.pool.size, 0)
        self.assertEqual(self.pool.playing, [])


class TestCaches(unittest.TestCase):

    def setUp(self):
        self.cached = PlaybackHandle(HandleOwner.CACHED)
        self.cached.bind("slap1.mp3", make_sound())
        self.key = AssetKey("defense", "slap", 0)

    def test_critical_cache_keeps_high_tiers_only(self):
        cache = CriticalCache()
        cache.on_loaded(self.key, self.cached, PriorityTier.IMMEDIATE)
        cache.on_loaded(AssetKey("ui", "faster"), self.cached, PriorityTier.BACKGROUND)

        self.assertIs(cache.get(self.key), self.cached)
        self.assertEqual(len(cache), 1)
        cache.clear()
        self.assertNotIn(self.key, cache)

    def test_instant_ring_round_robin(self):
        cache = InstantCache(ring_size=3)
        cache.on_loaded(self.key, self.cached, PriorityTier.IMMEDIATE)

        ring = [cache.next(self.key) for _ in range(4)]
        self.assertIs(ring[0], ring[3])
        self.assertEqual(len({id(handle) for handle in ring[:3]}), 3)
        for handle in ring:
            self.assertEqual(handle.owner, HandleOwner.INSTANT)
            self.assertIs(handle.sound, self.cached.sound)

    def test_instant_cache_ignores_other_tiers(self):
        cache = InstantCache()
        cache.on_loaded(self.key, self.cached, PriorityTier.CRITICAL)
        self.assertIsNone(cache.next(self.key))
        self.assertEqual(cache.ready_keys("defense", "slap"), [])

    def test_instant_ready_keys_and_clear(self):
        cache = InstantCache()
        cache.fill(self.key, "slap1.mp3", self.cached.sound)
        self.assertEqual(cache.ready_keys("defense", "slap"), [self.key])
        cache.clear()
        self.assertEqual(len(cache), 0)


if __name__ == '__main__':
    unittest.main()
