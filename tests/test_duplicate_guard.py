import unittest

from speech_relay.config import Config
from speech_relay.models import ProcessingType
from speech_relay.processing.duplicate_guard import (
    DuplicateGuard,
    length_difference_ratio,
    normalize_text,
    word_similarity,
)

from tests.helpers import FakeClock


class TestDuplicateGuard(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.guard = DuplicateGuard(Config(), clock=self.clock)

    def test_second_analysis_of_same_text_is_duplicate(self):
        first = self.guard.analyze("Welcome to the conference")
        second = self.guard.analyze("Welcome to the conference")
        self.assertTrue(first.should_process)
        self.assertEqual(first.processing_type, ProcessingType.NEW_CONTENT)
        self.assertFalse(second.should_process)
        self.assertEqual(second.processing_type, ProcessingType.DUPLICATE)

    def test_expansion_returns_text_to_remove(self):
        self.guard.analyze("I went to the store")
        result = self.guard.analyze("I went to the store and bought milk")
        self.assertTrue(result.should_process)
        self.assertEqual(result.processing_type, ProcessingType.EXPANSION)
        self.assertEqual(result.text_to_remove, "I went to the store")

    def test_punctuation_variant_is_duplicate(self):
        self.guard.mark_processed("hello world")
        result = self.guard.analyze("Hello, world!")
        self.assertFalse(result.should_process)
        self.assertEqual(result.reason, "exact match")

    def test_fragment_of_processed_text_is_duplicate(self):
        self.guard.mark_processed("I went to the store and bought milk")
        self.assertFalse(self.guard.analyze("bought milk").should_process)

    def test_word_containment_respects_word_edges(self):
        self.guard.mark_processed("the category list")
        self.assertTrue(self.guard.analyze("the cat").should_process)

    def test_tiny_growth_is_duplicate(self):
        self.guard.mark_processed("we will now begin the session today")
        result = self.guard.analyze("we will now begin the session today ok")
        self.assertFalse(result.should_process)

    def test_reordered_words_above_threshold_are_duplicate(self):
        self.guard.mark_processed("we are going to talk about the budget for next year")
        result = self.guard.analyze("we are going to talk about the budget for the next year")
        self.assertFalse(result.should_process)
        self.assertGreaterEqual(result.similarity, 0.85)

    def test_unrelated_text_is_new_content(self):
        self.guard.mark_processed("Welcome to the conference")
        result = self.guard.analyze("Completely different sentence here")
        self.assertTrue(result.should_process)
        self.assertEqual(result.processing_type, ProcessingType.NEW_CONTENT)

    def test_empty_text_is_not_processed(self):
        self.assertFalse(self.guard.analyze(" ... ").should_process)

    def test_remove_from_cache_allows_resubmission(self):
        self.guard.analyze("Alpha beta gamma")
        self.assertTrue(self.guard.remove_from_cache("Alpha beta gamma"))
        self.assertTrue(self.guard.analyze("Alpha beta gamma").should_process)

    def test_mark_processed_confirms_reservation(self):
        self.guard.analyze("Alpha beta gamma")
        self.assertEqual(self.guard.get_statistics()["confirmed"], 0)
        self.guard.mark_processed("Alpha beta gamma.")
        self.assertEqual(len(self.guard), 1)
        self.assertEqual(self.guard.get_statistics()["confirmed"], 1)

    def test_cache_is_bounded_fifo(self):
        guard = DuplicateGuard(Config(duplicate_cache_size=3), clock=self.clock)
        for text in ("first entry here", "second entry here", "third entry here", "fourth entry here"):
            guard.mark_processed(text)
        self.assertEqual(len(guard), 3)
        self.assertNotIn("first entry here", guard)
        self.assertIn("fourth entry here", guard)

    def test_expansion_of_oldest_entry_in_full_cache(self):
        guard = DuplicateGuard(Config(duplicate_cache_size=3), clock=self.clock)
        for text in ("I went to the store", "second entry here", "third entry here"):
            guard.mark_processed(text)

        result = guard.analyze("I went to the store and bought milk")

        self.assertTrue(result.should_process)
        self.assertEqual(result.processing_type, ProcessingType.EXPANSION)
        self.assertEqual(result.text_to_remove, "I went to the store")
        self.assertEqual(len(guard), 3)
        self.assertIn("I went to the store and bought milk", guard)
        self.assertNotIn("I went to the store", guard)

    def test_length_difference_ratio_bounds_expansions(self):
        self.guard.mark_processed("I went to the store")
        self.assertEqual(
            self.guard.analyze("I went to the store today").processing_type, ProcessingType.EXPANSION
        )

        strict = DuplicateGuard(Config(max_length_difference_ratio=0.3), clock=self.clock)
        strict.mark_processed("I went to the store")
        result = strict.analyze("I went to the store today")
        self.assertFalse(result.should_process)
        self.assertEqual(result.reason, "length difference too small")

    def test_entries_expire_after_ttl(self):
        guard = DuplicateGuard(Config(duplicate_ttl_s=10.0), clock=self.clock)
        guard.mark_processed("Good morning everyone")
        self.clock.advance(5)
        self.assertFalse(guard.analyze("Good morning everyone").should_process)
        self.clock.advance(11)
        self.assertTrue(guard.analyze("Good morning everyone").should_process)

    def test_clear(self):
        self.guard.mark_processed("something")
        self.guard.clear()
        self.assertEqual(len(self.guard), 0)


class TestNormalization(unittest.TestCase):
    def test_normalize_text(self):
        self.assertEqual(normalize_text("  Hello,   WORLD! "), "hello world")

    def test_word_similarity(self):
        self.assertEqual(word_similarity("a b", "a b"), 1.0)
        self.assertAlmostEqual(word_similarity("a b c", "a b d"), 0.5)

    def test_length_difference_ratio(self):
        self.assertAlmostEqual(length_difference_ratio("abcd", "abcdef"), 0.4)
        self.assertEqual(length_difference_ratio("", ""), 0.0)


if __name__ == "__main__":
    unittest.main()
