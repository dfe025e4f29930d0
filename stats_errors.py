from typing import Optional


class ContributorStatsError(Exception):
    """Base class for errors raised while collecting contributor statistics."""


class InvalidReference(ContributorStatsError):
    """Raised when a repository reference cannot be parsed."""

    def __init__(self, raw: str):
        self.raw = raw
        super().__init__(
            f"Invalid GitHub repository reference {raw!r}. Please use one of these formats:\n"
            "- owner/repo\n"
            "- github.com/owner/repo\n"
            "- https://github.com/owner/repo"
        )


class TransportFailure(ContributorStatsError):
    """Raised on network errors and non-successful HTTP responses."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class NotFound(ContributorStatsError):
    """Raised when the upstream reports that an entity does not exist."""

    def __init__(self, message: str):
        self.status_code = 404
        super().__init__(message)
