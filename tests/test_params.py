"""Tests for ParameterSpace over IntRange and KeyWords specs."""

import unittest

from scrapepipe.errors import ConfigError
from scrapepipe.params import IntRange, KeyWords, NamedParam, ParameterSpace, PathSuffix


class TestIntRange(unittest.TestCase):
    """Verify the arithmetic sequence and its precomputed length."""

    def test_inclusive_bounds(self):
        """Both start and end belong to the sequence when the step lands on end."""
        space = ParameterSpace(IntRange(NamedParam("page"), start=1, end=5, step=2))
        self.assertEqual(list(space), ["1", "3", "5"])
        self.assertEqual(len(space), 3)

    def test_step_overshooting_end(self):
        """Values stop at the last one that does not exceed end."""
        space = ParameterSpace(IntRange(NamedParam("page"), start=0, end=10, step=4))
        self.assertEqual(list(space), ["0", "4", "8"])
        self.assertEqual(len(space), 3)

    def test_length_matches_emitted_count(self):
        """len() equals the number of emitted values for a spread of ranges."""
        for start, end, step in [(1, 1, 1), (1, 100, 7), (5, 50, 5), (-3, 3, 2), (0, 99, 100)]:
            space = ParameterSpace(IntRange(PathSuffix("/"), start=start, end=end, step=step))
            values = [int(v) for v in space]
            self.assertEqual(len(space), len(values))
            self.assertEqual(values, list(range(start, end + 1, step)))

    def test_empty_when_start_after_end(self):
        """A range whose start exceeds its end yields nothing."""
        space = ParameterSpace(IntRange(NamedParam("p"), start=5, end=1, step=1))
        self.assertEqual(len(space), 0)
        self.assertEqual(list(space), [])

    def test_zero_step_is_config_error(self):
        """A zero step would loop forever and must be rejected."""
        with self.assertRaises(ConfigError):
            IntRange(NamedParam("page"), start=1, end=5, step=0)

    def test_negative_step_is_config_error(self):
        with self.assertRaises(ConfigError):
            IntRange(NamedParam("page"), start=5, end=1, step=-1)


class TestKeyWords(unittest.TestCase):
    """Verify literal word lists are yielded unchanged."""

    def test_words_in_order(self):
        """Words are yielded exactly as configured, in order."""
        words = ("zeta", "alpha", "alpha", "mid")
        space = ParameterSpace(KeyWords(NamedParam("q"), words=words))
        self.assertEqual(list(space), list(words))
        self.assertEqual(len(space), 4)


class TestRestartable(unittest.TestCase):
    """Two iterations over the same parameter spec produce identical sequences."""

    def test_iterating_twice(self):
        space = ParameterSpace(IntRange(NamedParam("page"), start=2, end=20, step=3))
        self.assertEqual(list(space), list(space))

    def test_independent_spaces_agree(self):
        """The sequence is a pure function of the spec."""
        spec = KeyWords(PathSuffix("-"), words=("a", "b", "c"))
        self.assertEqual(list(ParameterSpace(spec)), list(ParameterSpace(spec)))


if __name__ == "__main__":
    unittest.main()
