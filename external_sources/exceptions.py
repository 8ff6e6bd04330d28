"""
External Source Exceptions.

All are SourceUnavailable: the bundle for that source is absent
this cycle. The fetcher catches them; they never fail a cycle.
"""

from typing import Any, Optional

from core.exceptions import SourceUnavailable


class SourceTimeout(SourceUnavailable):
    """The source did not answer within the timeout."""

    def __init__(
        self,
        message: str,
        source_name: str = "",
        timeout_seconds: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {})
        if timeout_seconds is not None:
            context["timeout_seconds"] = timeout_seconds
        super().__init__(message, source_name=source_name, context=context, **kwargs)
        self.timeout_seconds = timeout_seconds


class SourceFetchError(SourceUnavailable):
    """Transport or HTTP-level failure talking to the source."""

    def __init__(
        self,
        message: str,
        source_name: str = "",
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        response_body: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {})
        if status_code is not None:
            context["status_code"] = status_code
        if url:
            context["url"] = url
        if response_body:
            context["response_body"] = response_body[:500]
        super().__init__(message, source_name=source_name, context=context, **kwargs)
        self.status_code = status_code
        self.url = url


class SourceResponseError(SourceUnavailable):
    """The source answered with something that is not a valid bundle."""

    def __init__(
        self,
        message: str,
        source_name: str = "",
        raw_data: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {})
        if raw_data:
            context["raw_data_preview"] = raw_data[:100]
        super().__init__(message, source_name=source_name, context=context, **kwargs)


class StaleBundleError(SourceResponseError):
    """The bundle is older than the accepted maximum age."""
    pass


class SourceDisabled(SourceUnavailable):
    """External sources are turned off by configuration."""
    pass
