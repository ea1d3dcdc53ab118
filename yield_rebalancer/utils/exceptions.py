"""Custom exceptions for the yield rebalancer.

This module defines the exception hierarchy for the application.
"""


class RebalancerError(Exception):
    """Base exception for all yield rebalancer errors.

    All custom exceptions in the application should inherit from this class.
    """

    pass


class ConfigurationError(RebalancerError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Initial allocation does not sum to 1.0
        - Unknown adapter or yield source type
        - Negative thresholds or timeouts
    """

    pass


class YieldError(RebalancerError):
    """Base exception for yield layer errors."""

    pass


class FetchError(YieldError):
    """Raised when a yield source cannot supply a rate for a pool.

    Examples:
        - Yield API unreachable or timed out
        - Response body missing the APY field
        - Negative or non-finite rate reported
    """

    def __init__(self, message: str, pool: str | None = None):
        super().__init__(message)
        self.pool = pool


class DegenerateYieldError(YieldError):
    """Raised when yields cannot be turned into a target allocation.

    Examples:
        - All pools report zero yield
        - Sum of yields is not positive
    """

    pass


class AllocationStateError(RebalancerError):
    """Base exception for allocation state errors."""

    pass


class InvalidAllocationError(AllocationStateError):
    """Raised when an allocation would violate the state invariants.

    Examples:
        - Fractions do not sum to 1.0 within tolerance
        - A fraction outside [0, 1]
        - Pool set differs from the configured pools
    """

    pass


class ExecutionError(RebalancerError):
    """Raised when a platform adapter operation fails.

    Examples:
        - Deposit or withdrawal rejected by the venue
        - Adapter not configured for a pool
    """

    def __init__(self, message: str, pool: str | None = None):
        super().__init__(message)
        self.pool = pool


class SchedulingError(RebalancerError):
    """Base exception for scheduling errors."""

    pass


class TickInProgressError(SchedulingError):
    """Raised when a tick is requested while another tick is running."""

    pass


class StorageError(RebalancerError):
    """Raised when allocation checkpoint persistence fails.

    Examples:
        - SQLite database cannot be opened
        - Stored allocation cannot be decoded
    """

    pass
