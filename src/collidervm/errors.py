"""
Error Kinds for ColliderVM

- InvalidParameters: configuration rejected before any search/compile work
- OutOfRange: a candidate nonce routed outside the accepted flow set
- SearchExhausted: nonce search gave up (budget, overflow or cancellation)
- CompilerError: caller passed inconsistent inputs to the script compiler
"""

from typing import Optional


class ColliderVMError(Exception):
    """Base class for all ColliderVM errors."""


class InvalidParameters(ColliderVMError, ValueError):
    """B/L/threshold configuration that can never produce a valid flow."""


class OutOfRange(ColliderVMError):
    """
    Derived routing index is outside [0, 2^L).

    Expected during search: the selector simply tries the next nonce.
    """

    def __init__(self, index: int, limit: int, digest: bytes):
        self.index = index
        self.limit = limit
        self.digest = digest
        super().__init__(
            f"Hash prefix {index} (from H={digest.hex()}) >= {limit} (out of range)"
        )


class SearchExhausted(ColliderVMError):
    """No accepted nonce within the attempt budget."""

    def __init__(self, attempts: int, expected: int, reason: Optional[str] = None):
        self.attempts = attempts
        self.expected = expected
        message = (
            f"Could not find a valid nonce after {attempts} attempts "
            f"(expected ~{expected})"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class SearchCancelled(SearchExhausted):
    """Search stopped by the caller's cancellation signal."""

    def __init__(self, attempts: int, expected: int):
        super().__init__(attempts, expected, reason="cancelled")


class CompilerError(ColliderVMError, AssertionError):
    """Inconsistent compiler inputs. A programming error, never retried."""
