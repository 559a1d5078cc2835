"""
Tests for the Flow Selector

- Determinism and minimality of the returned nonce
- Attempt budgets, exhaustion and cancellation
- Progress observers
- Sharded search agrees with sequential search
"""

import logging
from concurrent.futures import ThreadPoolExecutor

import pytest

from collidervm.codec import candidate_index, derive_routing_index, routing_digest
from collidervm.errors import InvalidParameters, SearchCancelled, SearchExhausted
from collidervm.params import HashFunction
from collidervm.selector import (
    LoggingProgressObserver,
    SearchProgress,
    benchmark_hash_rate,
    expected_attempts,
    find_routing_nonce,
    find_routing_nonce_parallel,
)


class TestExpectedAttempts:
    """Tests for 2^(B-L)."""

    def test_values(self):
        assert expected_attempts(16, 4) == 4096
        assert expected_attempts(8, 2) == 64
        assert expected_attempts(8, 8) == 1
        assert expected_attempts(0, 0) == 1


class TestFindRoutingNonce:
    """Tests for sequential search."""

    def test_reference_input(self):
        """x = 123 with L = 4, B = 16 routes into [0, 16)."""
        result = find_routing_nonce(123, 16, 4)
        assert 0 <= result.flow_id < 16
        assert result.attempts == result.nonce + 1
        assert derive_routing_index(123, result.nonce, 16, 4) == (result.flow_id, result.digest)

    def test_deterministic(self):
        """Same inputs, same nonce."""
        assert find_routing_nonce(123, 16, 4) == find_routing_nonce(123, 16, 4)

    def test_first_accepted_nonce(self):
        """No smaller nonce is accepted."""
        result = find_routing_nonce(77, 16, 4)
        for r in range(result.nonce):
            assert candidate_index(routing_digest(77, r), 16) >= 16

    def test_unpacks(self):
        nonce, flow_id, digest = find_routing_nonce(5, 8, 2)
        assert derive_routing_index(5, nonce, 8, 2) == (flow_id, digest)

    def test_everything_accepted(self):
        """L = B accepts nonce 0."""
        assert find_routing_nonce(9, 8, 8).nonce == 0
        assert find_routing_nonce(9, 0, 0).nonce == 0

    def test_sha256_routing(self):
        result = find_routing_nonce(123, 16, 4, hash_function=HashFunction.SHA256)
        flow_id, _ = derive_routing_index(123, result.nonce, 16, 4, HashFunction.SHA256)
        assert flow_id == result.flow_id

    @pytest.mark.parametrize("x, b_bits, l_bits", [
        (1, 12, 4),
        (1, 40, 4),
        (1, 8, 9),
        (-1, 16, 4),
        (1 << 32, 16, 4),
    ])
    def test_invalid_parameters(self, x, b_bits, l_bits):
        """Rejected before any search."""
        with pytest.raises(InvalidParameters):
            find_routing_nonce(x, b_bits, l_bits)

    def test_invalid_budget(self):
        with pytest.raises(InvalidParameters):
            find_routing_nonce(1, 16, 4, max_attempts=0)
        with pytest.raises(InvalidParameters):
            find_routing_nonce(1, 16, 4, attempt_multiple=0)


class TestExhaustion:
    """Tests for budgets and cancellation."""

    def test_max_attempts(self):
        """One accepted index in 2^32: ten attempts are not enough."""
        with pytest.raises(SearchExhausted) as info:
            find_routing_nonce(123, 32, 0, max_attempts=10)
        assert info.value.attempts == 10
        assert info.value.expected == 1 << 32

    def test_cancellation(self):
        calls = []

        def should_stop():
            calls.append(1)
            return True

        with pytest.raises(SearchCancelled) as info:
            find_routing_nonce(123, 32, 0, should_stop=should_stop, check_interval=5)
        assert info.value.attempts == 5
        assert len(calls) == 1

    def test_cancelled_is_exhausted(self):
        with pytest.raises(SearchExhausted):
            find_routing_nonce(123, 32, 0, should_stop=lambda: True, check_interval=1)

    def test_not_cancelled_finds_same_nonce(self):
        expected = find_routing_nonce(123, 16, 4)
        assert find_routing_nonce(123, 16, 4, should_stop=lambda: False, check_interval=100) == expected


class TestObservers:
    """Tests for progress reporting."""

    def test_observer_cadence(self):
        seen = []
        with pytest.raises(SearchExhausted):
            find_routing_nonce(123, 32, 0, max_attempts=30, observer=seen.append, report_interval=10)
        assert [p.attempts for p in seen] == [10, 20, 30]
        assert all(p.expected == 1 << 32 for p in seen)

    def test_observer_does_not_change_result(self):
        seen = []
        with_observer = find_routing_nonce(123, 16, 4, observer=seen.append, report_interval=64)
        assert with_observer == find_routing_nonce(123, 16, 4)
        assert len(seen) == with_observer.nonce // 64

    def test_progress_rate_and_eta(self):
        progress = SearchProgress(attempts=100, elapsed=2.0, expected=300)
        assert progress.hash_rate == 50.0
        assert progress.eta == 4.0
        assert SearchProgress(attempts=400, elapsed=1.0, expected=300).eta == 0.0
        assert SearchProgress(attempts=0, elapsed=0.0, expected=300).hash_rate == 0.0

    def test_logging_observer(self, caplog):
        observer = LoggingProgressObserver(logging.INFO)
        with caplog.at_level(logging.INFO, logger="collidervm.selector"):
            observer(SearchProgress(attempts=50_000, elapsed=1.0, expected=100_000))
        assert "50000" in caplog.text
        assert "50.0%" in caplog.text

    def test_search_logs_result(self, caplog):
        with caplog.at_level(logging.INFO, logger="collidervm.selector"):
            result = find_routing_nonce(123, 8, 2)
        assert f"Found valid nonce {result.nonce}" in caplog.text

    def test_cadence_with_cancellation_check(self):
        """Reports stay on schedule when cancellation is polled at another interval."""
        seen, polls = [], []

        def should_stop():
            polls.append(True)
            return False

        with pytest.raises(SearchExhausted):
            find_routing_nonce(
                123, 32, 0, max_attempts=100,
                observer=seen.append, report_interval=10,
                should_stop=should_stop, check_interval=3,
            )
        assert [p.attempts for p in seen] == list(range(10, 101, 10))
        assert len(polls) == 33

    def test_cadence_independent_of_check_multiple(self):
        seen = []
        with pytest.raises(SearchExhausted):
            find_routing_nonce(
                123, 32, 0, max_attempts=3000,
                observer=seen.append, report_interval=500,
                should_stop=lambda: False, check_interval=128,
            )
        assert [p.attempts for p in seen] == [500, 1000, 1500, 2000, 2500, 3000]

    def test_invalid_intervals(self):
        with pytest.raises(InvalidParameters):
            find_routing_nonce(123, 16, 4, observer=print, report_interval=0)
        with pytest.raises(InvalidParameters):
            find_routing_nonce(123, 16, 4, should_stop=lambda: False, check_interval=0)


class TestParallelSearch:
    """Tests for sharded search."""

    @pytest.mark.parametrize("x", [0, 1, 100, 123, 200, 0xffffffff])
    def test_matches_sequential(self, x):
        sequential = find_routing_nonce(x, 16, 4)
        parallel = find_routing_nonce_parallel(x, 16, 4, workers=3, chunk_size=500)
        assert parallel == sequential

    def test_small_chunks(self):
        """Hit far beyond the first wave."""
        sequential = find_routing_nonce(321, 8, 2)
        assert find_routing_nonce_parallel(321, 8, 2, workers=2, chunk_size=1) == sequential

    def test_shared_executor(self):
        with ThreadPoolExecutor(max_workers=2) as executor:
            result = find_routing_nonce_parallel(123, 16, 4, workers=2, chunk_size=256, executor=executor)
        assert result == find_routing_nonce(123, 16, 4)

    def test_exhaustion(self):
        with pytest.raises(SearchExhausted) as info:
            find_routing_nonce_parallel(123, 32, 0, max_attempts=50, workers=3, chunk_size=7)
        assert info.value.attempts == 50

    def test_invalid_workers(self):
        with pytest.raises(InvalidParameters):
            find_routing_nonce_parallel(123, 16, 4, workers=0)

    def test_cancellation_between_waves(self):
        calls = []

        def should_stop():
            calls.append(True)
            return True

        with pytest.raises(SearchCancelled) as info:
            find_routing_nonce_parallel(
                123, 32, 0, max_attempts=100, workers=2, chunk_size=10, should_stop=should_stop,
            )
        assert info.value.attempts == 20
        assert len(calls) == 1

    def test_observer_between_waves(self):
        seen = []
        with pytest.raises(SearchExhausted):
            find_routing_nonce_parallel(
                123, 32, 0, max_attempts=100, workers=2, chunk_size=10,
                observer=seen.append, report_interval=20,
            )
        assert [p.attempts for p in seen] == [20, 40, 60, 80, 100]
        assert all(p.expected == 1 << 32 for p in seen)

    def test_observer_on_first_wave_past_interval(self):
        """Waves larger than the interval report once per wave."""
        seen = []
        with pytest.raises(SearchExhausted):
            find_routing_nonce_parallel(
                123, 32, 0, max_attempts=90, workers=3, chunk_size=10,
                observer=seen.append, report_interval=20,
            )
        assert [p.attempts for p in seen] == [30, 60, 90]

    def test_callbacks_do_not_change_result(self):
        seen = []
        result = find_routing_nonce_parallel(
            123, 16, 4, workers=2, chunk_size=64,
            observer=seen.append, report_interval=100, should_stop=lambda: False,
        )
        assert result == find_routing_nonce(123, 16, 4)


class TestHashRate:
    """Tests for the calibration helper."""

    def test_positive_rate(self):
        assert benchmark_hash_rate(0.05) > 0
