from collections import OrderedDict
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Tuple
import re
import time

from speech_relay.config import Config, preview
from speech_relay.models import DuplicateAnalysis, DuplicateRecord, ProcessingType


def _norm_word(word: str) -> str:
    text = word.strip().lower()
    text = re.sub(r"^[^\w]+|[^\w]+$", "", text, flags=re.UNICODE)
    return text


def normalize_text(text: str) -> str:
    """Lowercase, drop punctuation around words and collapse whitespace."""
    words = (_norm_word(w) for w in text.split())
    return " ".join(w for w in words if w)


def word_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the word sets of two normalized strings."""
    words_a, words_b = set(a.split()), set(b.split())
    if not words_a and not words_b:
        return 1.0
    union = words_a | words_b
    return len(words_a & words_b) / len(union)


def _contains_words(outer: str, inner: str) -> bool:
    # Whole-word containment: "cat" is not inside "category"
    return f" {inner} " in f" {outer} "


def length_difference_ratio(a: str, b: str) -> float:
    """Length difference relative to the average length of both strings."""
    average = (len(a) + len(b)) / 2
    if average == 0:
        return 0.0
    return abs(len(a) - len(b)) / average


class DuplicateGuard:
    """
    Recency cache of processed text.

    `analyze()` classifies a candidate as new content, an expansion of a
    cached entry, or a duplicate. An accepted candidate is admitted to the
    cache straight away as an unconfirmed reservation, so a second
    submission of the same text is rejected even while the first is still
    being translated. `mark_processed()` confirms the entry and
    `remove_from_cache()` rolls it back when processing fails.
    """

    def __init__(self, config: Optional[Config] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or Config()
        self.clock = clock
        self.cache: "OrderedDict[str, DuplicateRecord]" = OrderedDict()
        self.duplicates_rejected = 0
        self.expansions_detected = 0

    def analyze(self, text: str) -> DuplicateAnalysis:
        self._expire()
        normalized = normalize_text(text)
        if not normalized:
            return DuplicateAnalysis(False, ProcessingType.DUPLICATE, reason="empty")

        if normalized in self.cache:
            return self._reject(text, 1.0, "exact match")

        expansions: List[Tuple[str, float]] = []
        for key in self.cache:
            similarity = word_similarity(normalized, key)
            if _contains_words(key, normalized):
                return self._reject(text, similarity, "contained in processed text")
            if _contains_words(normalized, key):
                if self._is_expansion(normalized, key):
                    expansions.append((key, similarity))
                    continue
                return self._reject(text, similarity, "length difference too small")
            if similarity >= self.config.duplicate_similarity_threshold:
                return self._reject(text, similarity, "similar to processed text")

        if expansions:
            key, similarity = max(expansions, key=lambda item: item[1])
            # Read before admitting: a full cache may evict the expanded entry
            replaced = self.cache[key].text
            self._admit(normalized, text)
            self.expansions_detected += 1
            print(f"[DuplicateGuard] Expansion of \"{preview(replaced, self.config.log_preview_chars)}\"")
            return DuplicateAnalysis(
                True,
                ProcessingType.EXPANSION,
                text_to_remove=replaced,
                similarity=similarity,
                reason="expands processed text",
            )

        self._admit(normalized, text)
        return DuplicateAnalysis(True, ProcessingType.NEW_CONTENT, reason="new content")

    def mark_processed(self, text: str):
        normalized = normalize_text(text)
        if not normalized:
            return
        record = self.cache.get(normalized)
        if record is None:
            self._admit(normalized, text, confirmed=True)
            return
        self.cache[normalized] = replace(record, confirmed=True, timestamp=self.clock())
        self.cache.move_to_end(normalized)

    def remove_from_cache(self, text: str) -> bool:
        record = self.cache.pop(normalize_text(text), None)
        return record is not None

    def clear(self):
        self.cache.clear()
        self.duplicates_rejected = 0
        self.expansions_detected = 0

    def __len__(self) -> int:
        return len(self.cache)

    def __contains__(self, text: str) -> bool:
        return normalize_text(text) in self.cache

    def get_statistics(self) -> Dict:
        return {
            "cache_size": len(self.cache),
            "max_cache_size": self.config.duplicate_cache_size,
            "confirmed": sum(1 for r in self.cache.values() if r.confirmed),
            "duplicates_rejected": self.duplicates_rejected,
            "expansions_detected": self.expansions_detected,
        }

    def _is_expansion(self, normalized: str, key: str) -> bool:
        if length_difference_ratio(normalized, key) < self.config.max_length_difference_ratio:
            return False
        return len(normalized) / len(key) >= self.config.minimum_expansion_ratio

    def _reject(self, text: str, similarity: float, reason: str) -> DuplicateAnalysis:
        self.duplicates_rejected += 1
        print(f"[DuplicateGuard] Duplicate ({reason}): \"{preview(text, self.config.log_preview_chars)}\"")
        return DuplicateAnalysis(
            False,
            ProcessingType.DUPLICATE,
            similarity=similarity,
            reason=reason,
        )

    def _admit(self, normalized: str, text: str, confirmed: bool = False):
        self.cache[normalized] = DuplicateRecord(text=text, timestamp=self.clock(), confirmed=confirmed)
        self.cache.move_to_end(normalized)
        while len(self.cache) > self.config.duplicate_cache_size:
            self.cache.popitem(last=False)

    def _expire(self):
        ttl = self.config.duplicate_ttl_s
        if ttl <= 0:
            return
        cutoff = self.clock() - ttl
        stale = [key for key, record in self.cache.items() if record.timestamp < cutoff]
        for key in stale:
            del self.cache[key]
