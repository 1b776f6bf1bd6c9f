"""
Error types for the sync system.

Configuration errors abort the process before any work starts. Image
errors are recovered per image, document errors per document. A storage
authentication failure means every upload will fail too, so it is fatal.
"""

from typing import Any, Optional


class AniviaError(Exception):
    """Base class for all sync errors."""

    code = "ANIVIA_ERROR"

    def __init__(self, message: str, *, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ConfigurationError(AniviaError, ValueError):
    """Missing or invalid settings."""

    code = "CONFIGURATION_ERROR"


class NotionError(AniviaError):
    """A Notion API call failed."""

    code = "NOTION_API_ERROR"

    def __init__(
        self,
        message: str,
        *,
        api_code: Optional[str] = None,
        status: Optional[int] = None,
        details: Any = None,
    ):
        super().__init__(message, details=details)
        self.api_code = api_code
        self.status = status

    @classmethod
    def from_api_error(cls, error: Exception) -> "NotionError":
        """Classify an error raised by notion-client."""
        api_code = getattr(error, "code", None)
        status = getattr(error, "status", None)
        api_code = str(api_code) if api_code is not None else None

        if api_code == "unauthorized" or status == 401:
            message = "Notion token is missing or invalid"
        elif api_code == "object_not_found" or status == 404:
            message = "Page not found or not shared with the integration"
        elif api_code == "rate_limited" or status == 429:
            message = "Notion API rate limit exceeded"
        else:
            message = str(error) or "Notion API request failed"

        return cls(message, api_code=api_code, status=status, details=error)


class ImageFetchError(AniviaError):
    """Image bytes could not be downloaded or read."""

    code = "IMAGE_DOWNLOAD_FAILED"

    def __init__(self, locator: str, reason: Any = None, *, status: Optional[int] = None):
        message = f"Failed to fetch image {locator}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, details=reason)
        self.locator = locator
        self.status = status


class ImageProcessingError(AniviaError):
    """Image bytes could not be transcoded."""

    code = "IMAGE_PROCESSING_FAILED"


class StorageError(AniviaError):
    """An object storage operation failed."""

    code = "STORAGE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        status: Optional[int] = None,
        details: Any = None,
    ):
        super().__init__(message, details=details)
        self.error_code = error_code
        self.status = status

    @classmethod
    def from_client_error(cls, error: Exception) -> "StorageError":
        """Classify a botocore error, returning the auth subclass where it applies."""
        response = getattr(error, "response", None) or {}
        error_code = response.get("Error", {}).get("Code")
        status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")

        if error_code in ("InvalidAccessKeyId", "SignatureDoesNotMatch", "AccessDenied") or status in (401, 403):
            return StorageAuthError(
                "Object storage rejected the credentials, check the access key and secret",
                error_code=error_code,
                status=status,
                details=error,
            )
        if error_code == "NoSuchBucket":
            return cls("Object storage bucket does not exist", error_code=error_code, status=status, details=error)

        return cls(str(error) or "Object storage request failed", error_code=error_code, status=status, details=error)


class StorageAuthError(StorageError):
    """Object storage credentials were rejected."""

    code = "STORAGE_AUTH_ERROR"


class DocumentValidationError(AniviaError):
    """A document is missing fields required for persistence."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, missing_fields: Optional[list[str]] = None):
        super().__init__(message, details=missing_fields)
        self.missing_fields = missing_fields or []


class DatabaseError(AniviaError):
    """A backing store operation failed."""

    code = "DATABASE_ERROR"
