"""fieldscope exception hierarchy.

Every exception carries a three-part message: what failed, the likely
cause, and a suggested fix. Only ``PipelineError`` (and
``ConfigurationError`` from explicit configuration calls) ever reaches
callers of the analysis pipeline; the others are raised internally and
absorbed by the component that owns the fallback.
"""

from __future__ import annotations


class FieldScopeError(Exception):
    """Base exception for all fieldscope errors.

    Args:
        what: Description of what failed.
        cause: Likely cause of the failure.
        fix: Suggested action to resolve the issue.

    Example:
        >>> raise FieldScopeError(
        ...     what="Analysis failed",
        ...     cause="Unexpected internal state",
        ...     fix="Please report this issue",
        ... )
    """

    def __init__(
        self,
        what: str,
        cause: str = "",
        fix: str = "",
    ) -> None:
        self.what = what
        self.cause = cause
        self.fix = fix
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Join the non-empty parts into a multi-line message."""
        parts = [self.what]
        if self.cause:
            parts.append(f"Cause: {self.cause}")
        if self.fix:
            parts.append(f"Fix: {self.fix}")
        return "\n".join(parts)


class ConfigurationError(FieldScopeError):
    """Raised for configuration and credential file errors.

    Example:
        >>> raise ConfigurationError(
        ...     what="Cannot read credentials file",
        ...     cause="File not found: ~/.fieldscope/credentials.json",
        ...     fix="Set SENTINEL_HUB_CLIENT_ID and SENTINEL_HUB_CLIENT_SECRET",
        ... )
    """


class ProviderError(FieldScopeError):
    """Raised when the imagery provider fails after retries are exhausted."""


class AuthError(ProviderError):
    """Raised when the client-credentials exchange or a bearer token is rejected.

    Fatal to a run only when live data is mandatory; otherwise the run
    degrades to synthetic data.
    """


class ImageryError(ProviderError):
    """Raised when a rendered image request returns a non-success status.

    Always absorbed by ``ImageryFetcher`` into a placeholder URI.
    """


class PipelineError(FieldScopeError):
    """Raised when an analysis run aborts.

    The original failure is chained as ``__cause__``.
    """


class TrackingWriteError(FieldScopeError):
    """Describes a run-record write that could not be applied.

    Logged by ``RunTracker``, never raised to callers.
    """
