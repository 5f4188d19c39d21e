"""Exception types for crawl errors.

Two families, split by how far a failure propagates:

- Local failures affect one request chain and therefore at most one pending
  entity: ScraperAssumptionException (extraction assumptions violated) and
  TransientException (timeouts, fetch errors).
- SessionUnusable is global: the shared browser is gone and the run must
  close it and stop.
"""

from typing import Any


class ScraperAssumptionException(Exception):
    """Base class for extraction assumption violations.

    Extractors make assumptions about page structure and data formats.
    When these assumptions are violated they raise clear, contextual
    exceptions that help diagnose the issue.
    """

    def __init__(
        self,
        message: str,
        request_url: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable description of the assumption violation.
            request_url: The URL of the request that triggered this error.
            context: Optional dict of additional context (selector, counts, etc).
        """
        self.message = message
        self.request_url = request_url
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]
        parts.append(f"URL: {self.request_url}")

        if self.context:
            parts.append("Context:")
            for key, value in self.context.items():
                parts.append(f"  {key}: {value}")

        return "\n".join(parts)


class HTMLStructuralAssumptionException(ScraperAssumptionException):
    """Raised when HTML structure doesn't match expectations.

    XPath or CSS selectors returned a different number of elements than
    expected, which usually means the site's markup changed.

    Attributes:
        selector: The XPath or CSS selector that was used.
        selector_type: Type of selector ("xpath" or "css").
        is_element_query: True if querying for elements, False for strings/attributes.
    """

    def __init__(
        self,
        selector: str,
        selector_type: str,
        description: str,
        expected_min: int,
        expected_max: int | None,
        actual_count: int,
        request_url: str,
        is_element_query: bool = True,
    ) -> None:
        self.selector = selector
        self.selector_type = selector_type
        self.description = description
        self.expected_min = expected_min
        self.expected_max = expected_max
        self.actual_count = actual_count
        self.is_element_query = is_element_query

        if expected_max is None:
            expected_str = f"at least {expected_min}"
        elif expected_min == expected_max:
            expected_str = f"exactly {expected_min}"
        else:
            expected_str = f"between {expected_min} and {expected_max}"

        message = (
            f"HTML structure mismatch: Expected {expected_str} "
            f"elements for '{description}', but found {actual_count}"
        )

        context = {
            "selector": selector,
            "selector_type": selector_type,
            "expected_min": expected_min,
            "expected_max": expected_max
            if expected_max is not None
            else "unlimited",
            "actual_count": actual_count,
            "is_element_query": is_element_query,
        }

        super().__init__(message, request_url, context)


class DataFormatAssumptionException(ScraperAssumptionException):
    """Raised when a completed entity doesn't match its schema.

    Raised from DeferredValidation.confirm() when Pydantic validation of
    an assembled entity fails.
    """

    def __init__(
        self,
        errors: list[dict[str, Any]],
        failed_doc: dict[str, Any],
        model_name: str,
        request_url: str,
    ) -> None:
        """Initialize the exception.

        Args:
            errors: List of Pydantic validation errors.
            failed_doc: The document that failed validation.
            model_name: Name of the Pydantic model that was being validated against.
            request_url: The URL of the request that produced this data.
        """
        self.errors = errors
        self.failed_doc = failed_doc
        self.model_name = model_name

        error_summary = ", ".join(
            f"{err['loc'][0]}: {err['msg']}" for err in errors
        )

        message = (
            f"Data validation failed for model '{model_name}': {error_summary}"
        )

        context = {
            "model": model_name,
            "error_count": len(errors),
            "errors": errors,
            "failed_doc": failed_doc,
        }

        super().__init__(message, request_url, context)


class RequiredFieldMissing(ScraperAssumptionException):
    """Raised when a field an entity cannot exist without fails to parse.

    Parsers fail closed: unparseable scores, dates and classifiers raise
    this instead of defaulting. The owning pending entity is discarded.

    Attributes:
        field_name: The entity field that could not be produced.
        raw_value: The text that failed to parse, if any.
    """

    def __init__(
        self,
        field_name: str,
        request_url: str = "",
        raw_value: str | None = None,
    ) -> None:
        self.field_name = field_name
        self.raw_value = raw_value
        message = f"Required field '{field_name}' is missing or unparseable"
        context: dict[str, Any] = {"field": field_name}
        if raw_value is not None:
            context["raw_value"] = raw_value
        super().__init__(message, request_url, context)


# =============================================================================
# Transient (request-local) exceptions
# =============================================================================


class TransientException(Exception):
    """Base class for request-local failures that may resolve on retry.

    The engine treats these as fatal to the single request chain that
    raised them; the run continues with the rest of the queue.
    """

    pass


class ContentTimeout(TransientException):
    """Raised when a bounded wait for a content marker expires.

    Attributes:
        marker: The selector that never matched.
        timeout_ms: The wait bound in milliseconds.
        url: The page the browser was on.
    """

    def __init__(self, marker: str, timeout_ms: int, url: str) -> None:
        self.marker = marker
        self.timeout_ms = timeout_ms
        self.url = url
        self.message = (
            f"Content never appeared: '{marker}' not observed on {url} "
            f"within {timeout_ms}ms"
        )
        super().__init__(self.message)


class RequestTimeoutException(TransientException):
    """Raised when a plain fetch times out.

    Attributes:
        url: The URL that timed out.
        timeout_seconds: The timeout duration in seconds.
    """

    def __init__(self, url: str, timeout_seconds: float | None) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.message = f"Request to {url} timed out after {timeout_seconds}s"
        super().__init__(self.message)


class FetchFailure(TransientException):
    """Raised when the plain-fetch path gives up on a URL.

    Attributes:
        url: The URL that could not be fetched.
        attempts: How many attempts were made.
        status_code: Last HTTP status received, if any.
        reason: Description of the last error.
    """

    def __init__(
        self,
        url: str,
        attempts: int,
        reason: str,
        status_code: int | None = None,
    ) -> None:
        self.url = url
        self.attempts = attempts
        self.reason = reason
        self.status_code = status_code
        self.message = (
            f"Fetching {url} failed after {attempts} attempt(s): {reason}"
        )
        super().__init__(self.message)


class BrowserInteractionError(TransientException):
    """Raised when a browser action fails while the session stays healthy.

    Navigation errors such as DNS failures land here; they fail the
    request, not the run.
    """

    def __init__(self, action: str, url: str, reason: str) -> None:
        self.action = action
        self.url = url
        self.reason = reason
        self.message = f"Browser {action} failed on {url}: {reason}"
        super().__init__(self.message)


class AdapterNotConfigured(Exception):
    """Raised when a tagged request has no adapter claiming it.

    A tagged request must never fall back to plain fetch, so this fails
    the request instead.
    """

    def __init__(self, tag: str, url: str) -> None:
        self.tag = tag
        self.url = url
        super().__init__(f"No adapter configured for tag '{tag}' ({url})")


# =============================================================================
# Session-level (run-fatal) exceptions
# =============================================================================


class SessionUnusable(Exception):
    """Raised when the browser process or connection stopped responding.

    Fatal to the whole run: the engine closes the session and terminates
    instead of issuing more browser-routed requests against a dead handle.
    """

    def __init__(self, message: str, cause: str | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message if cause is None else f"{message}: {cause}")


class SessionClosedError(SessionUnusable):
    """Raised by any BrowserSession call made after close()."""

    def __init__(self) -> None:
        super().__init__("Browser session closed")
