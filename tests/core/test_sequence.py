"""Tests for the per-key sequence counter."""

from __future__ import annotations

import threading

from trellis.sequence import Sequence


class TestSequence:
    def test_counts_from_zero_per_key(self) -> None:
        seq = Sequence()
        assert [seq.next("a"), seq.next("a"), seq.next("b"), seq.next("a")] == [0, 1, 0, 2]

    def test_reset_all(self) -> None:
        seq = Sequence()
        seq.next("a")
        seq.next("b")
        seq.reset()
        assert seq.next("a") == 0
        assert seq.next("b") == 0

    def test_reset_one_key(self) -> None:
        seq = Sequence()
        seq.next("a")
        seq.next("b")
        seq.reset("a")
        assert seq.peek("a") == 0
        assert seq.peek("b") == 1

    def test_concurrent_next_hands_out_unique_values(self) -> None:
        seq = Sequence()
        results: list[int] = []
        lock = threading.Lock()

        def draw() -> None:
            for _ in range(100):
                value = seq.next(("User", "author", "email"))
                with lock:
                    results.append(value)

        threads = [threading.Thread(target=draw) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sorted(results) == list(range(400))
