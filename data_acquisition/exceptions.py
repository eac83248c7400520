"""
Data Acquisition Exceptions - Exception hierarchy for the acquisition layer.

Provider-level failures are absorbed by the orchestrator. Only chain
exhaustion (ProvidersExhaustedError) or an overall deadline
(FetchTimeoutError) ever reaches a caller.
"""

from datetime import datetime, timezone
from typing import Any, Optional


class DataAcquisitionError(Exception):
    """Base exception for all data acquisition errors."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.source_name = source_name
        self.original_error = original_error
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "source_name": self.source_name,
            "original_error": str(self.original_error) if self.original_error else None,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        if self.source_name:
            parts.append(f"[source={self.source_name}]")
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)


class FetchError(DataAcquisitionError):
    """HTTP-level failure talking to a provider."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_name, original_error, context)
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({
            "status_code": self.status_code,
            "response_body": self.response_body,
            "request_url": self.request_url,
        })
        return data

    def is_rate_limited(self) -> bool:
        """Check if error is due to provider-side rate limiting."""
        return self.status_code == 429

    def is_server_error(self) -> bool:
        """Check if error is server-side."""
        return self.status_code is not None and 500 <= self.status_code < 600

    def is_client_error(self) -> bool:
        """Check if error is client-side."""
        return self.status_code is not None and 400 <= self.status_code < 500


class FetchTimeoutError(FetchError):
    """A single attempt, or a caller's overall deadline, ran out of time."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        request_url: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message,
            source_name,
            request_url=request_url,
            original_error=original_error,
            context=context,
        )
        self.timeout_seconds = timeout_seconds

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["timeout_seconds"] = self.timeout_seconds
        return data


class RetryExhaustedError(FetchError):
    """Every attempt allowed by the retry policy failed."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        attempts: int = 0,
        last_error: Optional[BaseException] = None,
        request_url: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        status_code = last_error.status_code if isinstance(last_error, FetchError) else None
        super().__init__(
            message,
            source_name,
            status_code=status_code,
            request_url=request_url,
            original_error=last_error,
            context=context,
        )
        self.attempts = attempts
        self.last_error = last_error

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["attempts"] = self.attempts
        return data


class NormalizationError(DataAcquisitionError):
    """Provider payload was malformed, empty or could not be mapped."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        raw_data: Optional[Any] = None,
        field_name: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_name, original_error, context)
        self.raw_data = raw_data
        self.field_name = field_name

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({
            "raw_data": str(self.raw_data)[:500] if self.raw_data else None,
            "field_name": self.field_name,
        })
        return data


class ProvidersExhaustedError(DataAcquisitionError):
    """No provider in the fallback chain produced a valid record."""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        kind: Optional[str] = None,
        tried_providers: Optional[list[str]] = None,
        reasons: Optional[dict[str, str]] = None,
        original_error: Optional[BaseException] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, None, original_error, context)
        self.key = key
        self.kind = kind
        self.tried_providers = tried_providers or []
        self.reasons = reasons or {}

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({
            "key": self.key,
            "kind": self.kind,
            "tried_providers": self.tried_providers,
            "reasons": self.reasons,
        })
        return data


class ConfigurationError(DataAcquisitionError):
    """Invalid acquisition configuration."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        config_key: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_name, original_error, context)
        self.config_key = config_key

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["config_key"] = self.config_key
        return data
