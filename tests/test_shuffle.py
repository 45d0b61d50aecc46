"""Unit tests for the shuffle bag."""

import random
import unittest

import fakes  # noqa: F401  (puts the project root on sys.path)

from audio_resources.shuffle import ShuffleSelector


class TestShuffleSelector(unittest.TestCase):

    def setUp(self):
        self.selector = ShuffleSelector(random.Random(42))

    def test_each_cycle_is_a_permutation(self):
        """n consecutive picks cover every variant exactly once."""
        for count in (2, 3, 4, 7):
            for _ in range(3):
                picks = [self.selector.next(("defense", "slap", count), count) for _ in range(count)]
                self.assertEqual(sorted(picks), list(range(count)))

    def test_single_variant_always_zero(self):
        self.assertEqual([self.selector.next("solo", 1) for _ in range(5)], [0] * 5)

    def test_non_positive_count_raises(self):
        with self.assertRaises(ValueError):
            self.selector.next("empty", 0)
        with self.assertRaises(ValueError):
            self.selector.next("empty", -2)

    def test_changed_count_restarts_bag(self):
        self.selector.next("group", 3)
        picks = [self.selector.next("group", 5) for _ in range(5)]
        self.assertEqual(sorted(picks), list(range(5)))

    def test_keys_are_independent(self):
        self.selector.next("a", 4)
        picks = [self.selector.next("b", 4) for _ in range(4)]
        self.assertEqual(sorted(picks), [0, 1, 2, 3])
        self.assertEqual(self.selector.peek_state("a").cursor, 1)

    def test_reset(self):
        self.selector.next("a", 3)
        self.selector.next("b", 3)
        self.selector.reset("a")
        self.assertIsNone(self.selector.peek_state("a"))
        self.assertEqual(len(self.selector), 1)

        self.selector.reset()
        self.assertEqual(len(self.selector), 0)


if __name__ == '__main__':
    unittest.main()
