"""
Unit tests for versioned table id generation.
"""
import threading

from rightsizer.catalog.ids import UniqueIdGenerator


class TestUniqueIdGenerator:
    """Test id ordering and uniqueness."""

    def test_same_millisecond_increments_sequence(self):
        """Test ids within one millisecond stay distinct and ordered."""
        gen = UniqueIdGenerator(clock=lambda: 1700000000.0)

        first, second = gen.next_id(), gen.next_id()

        assert second == first + 1
        assert first >> UniqueIdGenerator.SEQUENCE_BITS == 1700000000000

    def test_clock_going_backwards(self):
        """Test ids keep increasing when the wall clock steps back."""
        times = iter([100.0, 99.0, 98.0])
        gen = UniqueIdGenerator(clock=lambda: next(times))

        ids = [gen.next_id() for _ in range(3)]

        assert ids == sorted(ids)
        assert len(set(ids)) == 3

    def test_unique_across_threads(self):
        """Test concurrent callers never share an id."""
        gen = UniqueIdGenerator()
        ids = []
        lock = threading.Lock()

        def worker():
            local = [gen.next_id() for _ in range(500)]
            with lock:
                ids.extend(local)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(ids)) == 2000
