class RecommendationError(Exception):
    """Base class for errors raised by the recommendation engine."""


class ValidationError(RecommendationError, ValueError):
    """Bad caller input (user id, limit, time range, config). Raised to the caller."""


class UpstreamQueryFailure(RecommendationError):
    """A repository query failed. Caught one level above the strategy that issued it."""

    def __init__(self, query: str, cause: BaseException):
        super().__init__(f"{query} failed: {cause}")
        self.query = query
        self.cause = cause


class CacheFailure(RecommendationError):
    """A cache backend operation failed. Always logged and swallowed."""
