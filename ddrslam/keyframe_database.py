"""Inverted-file database of keyframes for place recognition."""

from __future__ import annotations

import threading
from typing import Any

_NEIGHBOURS_FOR_ACCUMULATION = 10
_COMMON_WORDS_RATIO = 0.8
_RETAIN_RATIO = 0.75


class KeyFrameDatabase:
    """Index of keyframes by the visual words of their bag-of-words vectors.

    The vocabulary must support ``len()`` (the number of words) and
    ``score(bow_a, bow_b)`` returning a similarity. Bag-of-words vectors are
    mappings from word id to weight. Keyframes expose ``id``, ``bow_vec``,
    ``connected_keyframes()``, ``best_covisibility_keyframes(n)`` and the
    query bookkeeping attributes ``loop_query``, ``loop_words``,
    ``loop_score``, ``reloc_query``, ``reloc_words`` and ``reloc_score``.
    """

    def __init__(self, vocabulary: Any) -> None:
        self._vocabulary = vocabulary
        self._lock = threading.RLock()
        self._inverted: list[list[Any]] = [[] for _ in range(len(vocabulary))]

    def add(self, keyframe: Any) -> None:
        with self._lock:
            for word in keyframe.bow_vec:
                self._inverted[word].append(keyframe)

    def erase(self, keyframe: Any) -> None:
        with self._lock:
            for word in keyframe.bow_vec:
                entries = self._inverted[word]
                if keyframe in entries:
                    entries.remove(keyframe)

    def clear(self) -> None:
        with self._lock:
            self._inverted = [[] for _ in range(len(self._vocabulary))]

    @staticmethod
    def _retain_best(scored: list[tuple[float, Any]], best: float) -> list[Any]:
        threshold = _RETAIN_RATIO * best
        seen: set[int] = set()
        result = []
        for acc, keyframe in scored:
            if acc > threshold and id(keyframe) not in seen:
                seen.add(id(keyframe))
                result.append(keyframe)
        return result

    def detect_loop_candidates(self, keyframe: Any, min_score: float) -> list[Any]:
        """Keyframes similar to ``keyframe`` but not connected to it."""
        connected = keyframe.connected_keyframes()
        sharing: list[Any] = []

        with self._lock:
            for word in keyframe.bow_vec:
                for kfi in self._inverted[word]:
                    if kfi.loop_query != keyframe.id:
                        kfi.loop_words = 0
                        if kfi not in connected:
                            kfi.loop_query = keyframe.id
                            sharing.append(kfi)
                    kfi.loop_words += 1

        if not sharing:
            return []

        max_common = max(kfi.loop_words for kfi in sharing)
        min_common = int(max_common * _COMMON_WORDS_RATIO)

        scored: list[tuple[float, Any]] = []
        for kfi in sharing:
            if kfi.loop_words > min_common:
                si = self._vocabulary.score(keyframe.bow_vec, kfi.bow_vec)
                kfi.loop_score = si
                if si >= min_score:
                    scored.append((si, kfi))

        if not scored:
            return []

        accumulated: list[tuple[float, Any]] = []
        best_acc = min_score
        for score, kfi in scored:
            best_score = acc = score
            best_kf = kfi
            for neighbour in kfi.best_covisibility_keyframes(_NEIGHBOURS_FOR_ACCUMULATION):
                if neighbour.loop_query == keyframe.id and neighbour.loop_words > min_common:
                    acc += neighbour.loop_score
                    if neighbour.loop_score > best_score:
                        best_kf = neighbour
                        best_score = neighbour.loop_score
            accumulated.append((acc, best_kf))
            best_acc = max(best_acc, acc)

        return self._retain_best(accumulated, best_acc)

    def detect_relocalization_candidates(self, frame: Any) -> list[Any]:
        """Keyframes similar to ``frame``, for relocalisation."""
        sharing: list[Any] = []

        with self._lock:
            for word in frame.bow_vec:
                for kfi in self._inverted[word]:
                    if kfi.reloc_query != frame.id:
                        kfi.reloc_words = 0
                        kfi.reloc_query = frame.id
                        sharing.append(kfi)
                    kfi.reloc_words += 1

        if not sharing:
            return []

        max_common = max(kfi.reloc_words for kfi in sharing)
        min_common = int(max_common * _COMMON_WORDS_RATIO)

        scored: list[tuple[float, Any]] = []
        for kfi in sharing:
            if kfi.reloc_words > min_common:
                si = self._vocabulary.score(frame.bow_vec, kfi.bow_vec)
                kfi.reloc_score = si
                scored.append((si, kfi))

        if not scored:
            return []

        accumulated: list[tuple[float, Any]] = []
        best_acc = 0.0
        for score, kfi in scored:
            best_score = acc = score
            best_kf = kfi
            for neighbour in kfi.best_covisibility_keyframes(_NEIGHBOURS_FOR_ACCUMULATION):
                if neighbour.reloc_query != frame.id:
                    continue
                acc += neighbour.reloc_score
                if neighbour.reloc_score > best_score:
                    best_kf = neighbour
                    best_score = neighbour.reloc_score
            accumulated.append((acc, best_kf))
            best_acc = max(best_acc, acc)

        return self._retain_best(accumulated, best_acc)