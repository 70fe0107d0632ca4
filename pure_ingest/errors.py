"""
Exception hierarchy for the ingestion pipeline.

  IngestionError
  ├── ConfigurationError     — a required setting (e.g. API key) is missing
  ├── ProviderError          — non-2xx response from the Pure API (retryable)
  ├── RetryExhaustedError    — an operation failed on every allowed attempt
  ├── EventTimeParseError    — an activity event carried a malformed timestamp
  └── UnknownVariantError    — a transaction references a variant not in ``products``

Transport failures surface as ``httpx.HTTPError`` and are retried the same way
as ``ProviderError``.
"""

from __future__ import annotations

from typing import Optional


class IngestionError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(IngestionError):
    """A required configuration value is missing or unusable."""


class ProviderError(IngestionError):
    """The provider answered with a non-success HTTP status."""

    def __init__(self, status_code: int, body: str, url: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f"API request failed with status {status_code}: {body}")


class RetryExhaustedError(IngestionError):
    """Raised once every attempt allowed by the retry policy has failed.

    Attributes:
        context:    Description of the operation that was retried.
        attempts:   Total attempts made (``max_retries + 1``).
        last_error: The exception raised by the final attempt.
    """

    def __init__(self, context: str, attempts: int, last_error: Exception) -> None:
        self.context = context
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{context}: failed after {attempts} attempt(s): {last_error}")


class EventTimeParseError(IngestionError, ValueError):
    """An activity ``createdAt`` value did not match the expected format."""

    def __init__(self, value: str, reason: Optional[str] = None) -> None:
        self.value = value
        message = f"Unparseable event time {value!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class UnknownVariantError(IngestionError):
    """No ``products`` row exists for a transaction's natural variant key."""

    def __init__(self, pure_product_id: str, pure_variant_id: str) -> None:
        self.pure_product_id = pure_product_id
        self.pure_variant_id = pure_variant_id
        super().__init__(
            f"Product not found for product_id={pure_product_id}, "
            f"variant_id={pure_variant_id}"
        )
