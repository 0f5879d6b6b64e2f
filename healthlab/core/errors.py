"""Error taxonomy for provider orchestration."""

from __future__ import annotations

from typing import Optional


class HealthLabError(RuntimeError):
    """Base error carrying an optional HTTP status code."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(HealthLabError):
    """Raised when required configuration such as an API key is missing."""


class InvalidSubmission(HealthLabError):
    """Raised before any network call when caller data fails a precondition."""


class ProviderRejected(HealthLabError):
    """A single attempt returned a failure that fallback cannot fix."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: Optional[str] = None,
        body: str = "",
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.url = url
        self.body = body


class EndpointExhausted(ProviderRejected):
    """Every candidate base URL answered with a not-found response."""


class NoCandidates(HealthLabError):
    """The endpoint candidate set was empty."""


class AllModelsFailed(HealthLabError):
    """Every model descriptor failed; chained to the last failure."""


class PollingError(HealthLabError):
    """A status fetch failed while polling, distinct from a FAILED task."""


class PollingTimeout(PollingError):
    """Polling gave up after the configured number of attempts."""
