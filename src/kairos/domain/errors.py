"""
Failure taxonomy for analytics queries.

"Insufficient data" is deliberately absent: too few samples is reported on the
result itself (Confidence.INSUFFICIENT or a None field), never raised.
"""


class AnalyticsError(Exception):
    """Base class for every failure an analytics call can surface."""

    code = "analytics_error"


class NotFoundError(AnalyticsError):
    """The referenced card, deck or session has no data at all."""

    code = "not_found"

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"No data for {kind} '{identifier}'")


class RangeTooLargeError(AnalyticsError):
    """The requested window matches more rows than one call may load."""

    code = "range_too_large"

    def __init__(self, row_cap: int):
        self.row_cap = row_cap
        super().__init__(
            f"Query matches more than {row_cap} rows; narrow the time window or page through it"
        )


class AnalyticsTimeout(AnalyticsError):
    """The call's deadline passed before the repository answered. Retryable."""

    code = "timeout"

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Analytics query exceeded its {timeout:.2f}s deadline")


class StoreUnavailable(AnalyticsError):
    """The event store could not be reached."""

    code = "store_unavailable"
