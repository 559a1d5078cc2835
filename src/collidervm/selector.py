"""
Flow Selector

Finds a nonce r for input x such that H(x || r)|_B falls in the accepted
set [0, 2^L). This is the operator's work in the online phase; the expected
number of attempts is 2^(B-L).

Nonces are tried in ascending order and the first accepted one is THE
answer: the parallel search shards ascending ranges and reconciles to the
same minimal nonce, so results never depend on how the search ran.
"""

from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional, Tuple
import logging
import time

from .codec import U64_MAX, _check_u32, candidate_index, hash_bytes
from .errors import InvalidParameters, SearchCancelled, SearchExhausted
from .params import HashFunction, check_prefix_params


logger = logging.getLogger(__name__)


DEFAULT_ATTEMPT_MULTIPLE = 100
DEFAULT_REPORT_INTERVAL = 50_000
DEFAULT_CHECK_INTERVAL = 4096


@dataclass(frozen=True)
class NonceSearchResult:
    """An accepted nonce and what it routes to."""
    nonce: int
    flow_id: int
    digest: bytes
    attempts: int

    def __iter__(self):
        # Unpacks as (nonce, flow_id, digest)
        return iter((self.nonce, self.flow_id, self.digest))


@dataclass(frozen=True)
class SearchProgress:
    """Snapshot handed to progress observers."""
    attempts: int
    elapsed: float
    expected: int

    @property
    def hash_rate(self) -> float:
        return self.attempts / self.elapsed if self.elapsed > 0 else 0.0

    @property
    def eta(self) -> float:
        """Seconds until the expected attempt count, 0 once past it."""
        rate = self.hash_rate
        if rate <= 0 or self.attempts >= self.expected:
            return 0.0
        return (self.expected - self.attempts) / rate


ProgressObserver = Callable[[SearchProgress], None]


class LoggingProgressObserver:
    """Reports search progress through the module logger."""

    def __init__(self, level: int = logging.DEBUG):
        self.level = level

    def __call__(self, progress: SearchProgress) -> None:
        done = 100.0 * progress.attempts / progress.expected if progress.expected else 100.0
        logger.log(
            self.level,
            "Tried %d hashes (%.1f%% of expected) @ %.2f KH/s, ETA %s",
            progress.attempts, done, progress.hash_rate / 1000.0, _format_eta(progress.eta),
        )


def _format_eta(seconds: float) -> str:
    if seconds < 60.0:
        return f"{seconds:.1f}s"
    if seconds < 3600.0:
        return f"{seconds // 60:.0f}m {seconds % 60:.0f}s"
    return f"{seconds // 3600:.0f}h {(seconds % 3600) / 60:.0f}m"


def expected_attempts(b_bits: int, l_bits: int) -> int:
    """2^(B-L): inverse density of the accepted set."""
    return 1 << max(b_bits - l_bits, 0)


def _attempt_budget(expected: int, max_attempts: Optional[int], attempt_multiple: int) -> int:
    if max_attempts is None:
        if attempt_multiple < 1:
            raise InvalidParameters("attempt_multiple must be positive")
        max_attempts = expected * attempt_multiple
    if max_attempts < 1:
        raise InvalidParameters(f"max_attempts={max_attempts} must be positive")
    return min(max_attempts, U64_MAX + 1)


def _scan_range(
    prefix: bytes,
    start: int,
    stop: int,
    b_bits: int,
    limit: int,
    hash_function: HashFunction,
) -> Optional[Tuple[int, int, bytes]]:
    """Smallest accepted nonce in [start, stop), or None."""
    for nonce in range(start, stop):
        digest = hash_bytes(prefix + nonce.to_bytes(8, 'little'), hash_function)
        index = candidate_index(digest, b_bits)
        if index < limit:
            return nonce, index, digest
    return None


def find_routing_nonce(
    x: int,
    b_bits: int,
    l_bits: int,
    *,
    hash_function: HashFunction = HashFunction.BLAKE3,
    max_attempts: Optional[int] = None,
    attempt_multiple: int = DEFAULT_ATTEMPT_MULTIPLE,
    observer: Optional[ProgressObserver] = None,
    report_interval: int = DEFAULT_REPORT_INTERVAL,
    should_stop: Optional[Callable[[], bool]] = None,
    check_interval: int = DEFAULT_CHECK_INTERVAL,
) -> NonceSearchResult:
    """
    Find the smallest nonce routing x into [0, 2^L).

    Args:
        x: Input value (u32)
        b_bits: Prefix width B
        l_bits: log2 of the accepted set size L
        hash_function: Routing hash
        max_attempts: Hard attempt budget; defaults to attempt_multiple * 2^(B-L)
        observer: Called with SearchProgress every report_interval attempts
        should_stop: Polled every check_interval attempts; True cancels

    Returns:
        NonceSearchResult (unpacks as nonce, flow_id, digest)

    Raises:
        InvalidParameters: before searching, for bad x / B / L
        SearchExhausted: budget spent or nonce space exhausted
        SearchCancelled: should_stop() returned True
    """
    check_prefix_params(b_bits, l_bits)
    _check_u32(x)
    if report_interval < 1 or check_interval < 1:
        raise InvalidParameters(
            f"report_interval={report_interval} and check_interval={check_interval} must be positive"
        )
    expected = expected_attempts(b_bits, l_bits)
    budget = _attempt_budget(expected, max_attempts, attempt_multiple)
    limit = 1 << l_bits
    prefix = x.to_bytes(4, 'little')

    logger.info(
        "Finding valid nonce (L=%d, B=%d)... expected work ~2^%d = %d hashes",
        l_bits, b_bits, max(b_bits - l_bits, 0), expected,
    )

    start_time = time.perf_counter()
    # Each scan stops at the next report point or cancellation check,
    # whichever comes first.
    next_report = report_interval if observer is not None else None
    next_check = check_interval if should_stop is not None else None

    attempts = 0
    while attempts < budget:
        stop = min(p for p in (budget, next_report, next_check) if p is not None)
        hit = _scan_range(prefix, attempts, stop, b_bits, limit, hash_function)
        if hit is not None:
            nonce, flow_id, digest = hit
            elapsed = time.perf_counter() - start_time
            logger.info("Found valid nonce %d -> flow_id %d after %d hashes", nonce, flow_id, nonce + 1)
            logger.debug("Average hash rate: %.2f hashes/sec", (nonce + 1) / elapsed if elapsed > 0 else 0.0)
            return NonceSearchResult(nonce, flow_id, digest, nonce + 1)
        attempts = stop

        if attempts == next_report:
            observer(SearchProgress(attempts, time.perf_counter() - start_time, expected))
            next_report += report_interval
        if attempts == next_check:
            if should_stop():
                logger.info("Nonce search cancelled after %d attempts", attempts)
                raise SearchCancelled(attempts, expected)
            next_check += check_interval

    if budget > U64_MAX:
        raise SearchExhausted(attempts, expected, reason="nonce overflowed 64 bits")
    logger.warning("Exceeded maximum attempts (%d, expected ~%d)", attempts, expected)
    raise SearchExhausted(attempts, expected)


def find_routing_nonce_parallel(
    x: int,
    b_bits: int,
    l_bits: int,
    *,
    hash_function: HashFunction = HashFunction.BLAKE3,
    max_attempts: Optional[int] = None,
    attempt_multiple: int = DEFAULT_ATTEMPT_MULTIPLE,
    workers: int = 4,
    chunk_size: int = 16_384,
    executor: Optional[Executor] = None,
    observer: Optional[ProgressObserver] = None,
    report_interval: int = DEFAULT_REPORT_INTERVAL,
    should_stop: Optional[Callable[[], bool]] = None,
) -> NonceSearchResult:
    """
    Sharded version of find_routing_nonce with the same result.

    Ranges are scanned in waves of `workers` consecutive chunks. The first
    wave containing any hit decides: its lowest chunk with a hit holds the
    globally smallest accepted nonce, since every earlier wave had none.

    observer and should_stop run between waves, so progress is reported
    and cancellation is polled at least every workers * chunk_size attempts.
    A report is made for the first wave ending at or past each multiple of
    report_interval.
    """
    check_prefix_params(b_bits, l_bits)
    _check_u32(x)
    if workers < 1 or chunk_size < 1:
        raise InvalidParameters(f"workers={workers} and chunk_size={chunk_size} must be positive")
    if report_interval < 1:
        raise InvalidParameters(f"report_interval={report_interval} must be positive")
    expected = expected_attempts(b_bits, l_bits)
    budget = _attempt_budget(expected, max_attempts, attempt_multiple)
    limit = 1 << l_bits
    prefix = x.to_bytes(4, 'little')

    logger.info(
        "Finding valid nonce (L=%d, B=%d) with %d workers... expected work %d hashes",
        l_bits, b_bits, workers, expected,
    )

    own_executor = executor is None
    if own_executor:
        executor = ThreadPoolExecutor(max_workers=workers)
    try:
        start_time = time.perf_counter()
        next_report = report_interval
        wave_start = 0
        while wave_start < budget:
            futures = []
            for i in range(workers):
                start = wave_start + i * chunk_size
                if start >= budget:
                    break
                stop = min(start + chunk_size, budget)
                futures.append(executor.submit(
                    _scan_range, prefix, start, stop, b_bits, limit, hash_function
                ))
            # Collect all; chunk order is ascending nonce order
            hits = [future.result() for future in futures]
            for hit in hits:
                if hit is not None:
                    nonce, flow_id, digest = hit
                    logger.info("Found valid nonce %d -> flow_id %d", nonce, flow_id)
                    return NonceSearchResult(nonce, flow_id, digest, nonce + 1)
            wave_start = min(wave_start + workers * chunk_size, budget)

            if observer is not None and wave_start >= next_report:
                observer(SearchProgress(wave_start, time.perf_counter() - start_time, expected))
                next_report = (wave_start // report_interval + 1) * report_interval
            if should_stop is not None and wave_start < budget and should_stop():
                logger.info("Nonce search cancelled after %d attempts", wave_start)
                raise SearchCancelled(wave_start, expected)
    finally:
        if own_executor:
            executor.shutdown(wait=True)

    if budget > U64_MAX:
        raise SearchExhausted(budget, expected, reason="nonce overflowed 64 bits")
    raise SearchExhausted(budget, expected)


def benchmark_hash_rate(
    duration_secs: float = 1.0,
    x: int = 123,
    hash_function: HashFunction = HashFunction.BLAKE3,
) -> float:
    """A basic "hash rate" calibration in routing hashes per second."""
    prefix = x.to_bytes(4, 'little')
    start = time.perf_counter()
    end = start + duration_secs
    count = 0
    while time.perf_counter() < end:
        # Check the clock every 1024 hashes
        for nonce in range(count, count + 1024):
            hash_bytes(prefix + nonce.to_bytes(8, 'little'), hash_function)
        count += 1024
    elapsed = time.perf_counter() - start
    rate = count / elapsed if elapsed > 0 else 0.0
    logger.info("Hash rate calibration: ~%.2f H/s over %.1fs", rate, elapsed)
    return rate
