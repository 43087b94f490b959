"""
Exception classes for tablesync.
"""

from typing import Any, Dict, Iterable, Optional


class TableSyncError(Exception):
    """Base exception for all tablesync errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class NonRetryableError(TableSyncError):
    """
    A deterministic failure.

    Retrying reproduces the same error, so the retry shell never retries
    these, even when a broader exception type is listed as retryable.
    """

    pass


class ConfigurationError(TableSyncError):
    """Raised when there's an error in configuration."""

    pass


class RemoteError(TableSyncError):
    """Raised when a call to the remote table service fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = {}
        if status_code:
            details["status_code"] = status_code
        if response_body:
            details["response_body"] = response_body

        super().__init__(message, details, cause)
        self.status_code = status_code
        self.response_body = response_body


class RemoteServiceError(RemoteError):
    """Transient remote failure (network, 5xx). Retryable."""

    pass


class RemoteThrottledError(RemoteServiceError):
    """Raised when the remote service throttles us."""

    def __init__(
        self,
        retry_after: Optional[float] = None,
        response_body: Optional[str] = None,
    ) -> None:
        message = "Remote service throttled the request"
        if retry_after:
            message += f", retry after {retry_after} seconds"

        super().__init__(message, status_code=429, response_body=response_body)
        self.retry_after = retry_after


class RemoteRequestError(RemoteError, NonRetryableError):
    """Raised when the remote service rejects a request (4xx other than 429)."""

    pass


class RemoteJobFailedError(RemoteError, NonRetryableError):
    """Raised when a remote async job reaches a terminal failed state."""

    def __init__(
        self,
        token: str,
        error_message: Optional[str] = None,
        response_body: Optional[str] = None,
    ) -> None:
        message = f"Async job {token} failed"
        if error_message:
            message += f": {error_message}"
        super().__init__(message, response_body=response_body)
        self.token = token
        self.error_message = error_message


class AsyncJobTimeoutError(TableSyncError):
    """
    Raised when an async job did not complete within the allotted polls.

    The outcome is unknown: the job may still complete remotely.
    """

    def __init__(self, token: str, kind: str, polls: int, context: Optional[str] = None) -> None:
        message = f"Timed out waiting for {kind} job {token} after {polls} polls"
        if context:
            message += f" ({context})"
        super().__init__(message, {"token": token, "kind": kind, "polls": polls})
        self.token = token
        self.kind = kind
        self.polls = polls


class SchemaDefinitionError(NonRetryableError):
    """Raised when a column list is malformed, e.g. duplicate column names."""

    pass


class SchemaConsistencyError(NonRetryableError):
    """
    Raised when column metadata is internally inconsistent, e.g. a string
    column with no discoverable max length.
    """

    pass


class SchemaRejectedError(NonRetryableError):
    """Raised when a schema change would delete or incompatibly modify columns."""

    def __init__(
        self,
        table_id: Optional[str],
        deleted_columns: Iterable[str] = (),
        incompatible_columns: Iterable[str] = (),
    ) -> None:
        self.table_id = table_id
        self.deleted_columns = sorted(deleted_columns)
        self.incompatible_columns = sorted(incompatible_columns)

        details: Dict[str, Any] = {}
        if self.deleted_columns:
            details["deleted"] = ", ".join(self.deleted_columns)
        if self.incompatible_columns:
            details["incompatible"] = ", ".join(self.incompatible_columns)

        target = f"Table {table_id}" if table_id else "Table"
        super().__init__(f"{target} has deleted and/or modified columns", details)


class ColumnCountMismatchError(NonRetryableError):
    """Raised when the remote service created a different number of columns than requested."""

    def __init__(self, table_name: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Error creating table {table_name}: Tried to create {expected} columns. "
            f"Actual: {actual} columns."
        )
        self.table_name = table_name
        self.expected = expected
        self.actual = actual


class OverlappingPrincipalsError(NonRetryableError):
    """Raised when a principal is listed as both read-only and admin."""

    def __init__(self, principal_ids: Iterable[str]) -> None:
        self.principal_ids = sorted(str(p) for p in principal_ids)
        super().__init__(
            "Principals cannot be both read-only and admin: " + ", ".join(self.principal_ids)
        )


class UnexpectedResultError(NonRetryableError):
    """Raised when the remote service returns a result of the wrong shape."""

    pass


class MissingResultError(NonRetryableError):
    """Raised when a successful async job carries no result value."""

    pass


class ServiceUnavailableError(TableSyncError):
    """Raised when the remote service is not in a writable state."""

    pass
