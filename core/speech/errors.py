"""Classified failures of speech synthesis and playback.

Every fallible speech operation fails with exactly one subclass of SynthesisError.
Errors are created where the failure happens (inside an engine) and reach the caller unchanged.
Descriptions are fixed English strings so they can be shown to users and matched in logs.
"""

from __future__ import annotations

from enum import StrEnum
from typing import ClassVar

__all__: list[str] = [
    "InvalidParametersError",
    "PlaybackFailureError",
    "ProviderError",
    "RateLimitedError",
    "ResourceAccessError",
    "ResponseParseError",
    "SynthesisError",
    "SynthesisErrorKind",
    "SynthesisFailedError",
    "SynthesisTimeoutError",
    "TransportFailureError",
    "UnknownSynthesisError",
    "classify_exception",
]


class SynthesisErrorKind(StrEnum):
    """Stable identity of each failure variant."""

    SYNTHESIS_FAILED = "synthesis_failed"
    INVALID_PARAMETERS = "invalid_parameters"
    PLAYBACK_FAILURE = "playback_failure"
    RESOURCE_ACCESS_FAILURE = "resource_access_failure"
    TRANSPORT_FAILURE = "transport_failure"
    PROVIDER_ERROR = "provider_error"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    RESPONSE_PARSE_FAILURE = "response_parse_failure"
    UNKNOWN = "unknown"


class SynthesisError(Exception):
    """Base class for classified speech failures.

    Subclasses set `kind` and `base_description`. The optional detail passed to the constructor
    is kept for logging and never replaces the fixed description.

    Attributes:
        kind (SynthesisErrorKind): Variant identity.
        base_description (str): Fixed human-readable description of the variant.
        retryable (bool): Whether a caller may retry the same request with backoff.
        detail (str): Free-form diagnostic text from the failure site.
    """

    kind: ClassVar[SynthesisErrorKind]
    base_description: ClassVar[str]
    retryable: ClassVar[bool] = False

    def __init__(self, detail: str = "") -> None:
        self.detail: str = detail
        super().__init__(self.description if not detail else f"{self.description} ({detail})")

    @property
    def description(self) -> str:
        """Ready-to-display description of the failure."""
        return self.base_description

    @property
    def is_retryable(self) -> bool:
        return self.retryable


class SynthesisFailedError(SynthesisError):
    """The engine could not produce audio for the request."""

    kind = SynthesisErrorKind.SYNTHESIS_FAILED
    base_description = "Speech synthesis failed"


class InvalidParametersError(SynthesisError):
    """The request was rejected before any network or device call (empty text, unknown voice)."""

    kind = SynthesisErrorKind.INVALID_PARAMETERS
    base_description = "Invalid parameters"


class PlaybackFailureError(SynthesisError):
    """The audio could not be played (missing file, unsupported format, device error)."""

    kind = SynthesisErrorKind.PLAYBACK_FAILURE
    base_description = "Audio playback failed"


class ResourceAccessError(SynthesisError):
    """A local file or directory needed by the engine could not be read or written."""

    kind = SynthesisErrorKind.RESOURCE_ACCESS_FAILURE
    base_description = "File operation failed"


class TransportFailureError(SynthesisError):
    """The network layer failed. The underlying exception is kept in `cause` for diagnostics."""

    kind = SynthesisErrorKind.TRANSPORT_FAILURE
    base_description = "Network error"
    retryable = True

    def __init__(self, cause: BaseException, detail: str = "") -> None:
        self.cause: BaseException = cause
        super().__init__(detail)

    @property
    def description(self) -> str:
        return f"{self.base_description}: {self.cause}"


class ProviderError(SynthesisError):
    """The provider rejected the request with a status code and message."""

    kind = SynthesisErrorKind.PROVIDER_ERROR
    base_description = "Provider error"

    def __init__(self, code: int, message: str, detail: str = "") -> None:
        self.code: int = code
        self.message: str = message
        super().__init__(detail)

    @property
    def description(self) -> str:
        return f"{self.base_description} ({self.code}): {self.message}"

    @property
    def is_retryable(self) -> bool:
        # Server-side failures may succeed later; client errors will not.
        return self.code >= 500


class RateLimitedError(SynthesisError):
    """The provider throttled the request (HTTP 429)."""

    kind = SynthesisErrorKind.RATE_LIMITED
    base_description = "Too many requests, please try again later"
    retryable = True

    def __init__(self, retry_after: float | None = None, detail: str = "") -> None:
        self.retry_after: float | None = retry_after
        super().__init__(detail)


class SynthesisTimeoutError(SynthesisError):
    """The request did not complete in time."""

    kind = SynthesisErrorKind.TIMEOUT
    base_description = "Request timed out, please check the network connection"
    retryable = True


class ResponseParseError(SynthesisError):
    """The provider response could not be interpreted as audio."""

    kind = SynthesisErrorKind.RESPONSE_PARSE_FAILURE
    base_description = "Failed to parse response data"


class UnknownSynthesisError(SynthesisError):
    """A failure that matched no other variant."""

    kind = SynthesisErrorKind.UNKNOWN
    base_description = "Unknown error"


def classify_exception(err: BaseException) -> SynthesisError:
    """Return err if already classified, otherwise wrap it as UnknownSynthesisError.

    The original exception is chained as `__cause__`.
    """
    if isinstance(err, SynthesisError):
        return err
    classified = UnknownSynthesisError(f"{type(err).__name__}: {err}")
    classified.__cause__ = err
    return classified
