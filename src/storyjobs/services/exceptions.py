"""Service error hierarchy for job processing and the generation service.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (authentication, validation)
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (503)
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400)
    - Malformed service responses
    - Configuration errors
    """

    pass


# Generation service errors
class GenerationRateLimitError(TransientError):
    """Rate limit exceeded (429)."""

    pass


class GenerationNetworkError(TransientError):
    """Network timeout, connection failure or 5xx from the service."""

    pass


class GenerationAuthError(PermanentError):
    """Authentication failure (401, 403)."""

    pass


class GenerationValidationError(PermanentError):
    """Request rejected (other 4xx) or response could not be used."""

    pass


class GenerationNotConfiguredError(PermanentError):
    """GENERATION_SERVICE_URL is not set."""

    pass


# Job processing
class JobCancelledError(ServiceError):
    """The job reached a terminal state while it was being processed."""

    pass
