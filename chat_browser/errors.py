"""Standardized error codes for the chat browser service.

Error code format: CB-[CATEGORY]-[CODE]

Categories:
- URL: URL validation errors
- NAV: Browser engine / navigation errors
- BND: Index and coordinate bounds errors
- SES: Session and tab lifecycle errors
- MED: Media download errors
- CMD: Command usage errors
"""

from dataclasses import dataclass
from typing import Any


@dataclass
class ErrorDefinition:
    """Definition of a standardized error code."""

    code: str
    message: str
    http_status: int = 500
    retryable: bool = False


class BrowserError(Exception):
    """Base error with code and details.

    Subclasses set ``code``; the default message, HTTP status and
    retryability come from the registry definition for that code.
    """

    code = "CB-INT-001"

    def __init__(
        self,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        definition = BROWSER_ERRORS.get(self.code)
        if message is None:
            message = definition.message if definition else "Unknown error"
        super().__init__(message)
        self.http_status = definition.http_status if definition else 500
        self.retryable = definition.retryable if definition else False
        self.details = details or {}

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error": {
                "code": self.code,
                "kind": self.kind,
                "message": str(self),
                "http_status": self.http_status,
                "retryable": self.retryable,
                "details": self.details,
            }
        }


class ValidationError(BrowserError):
    """Malformed, disallowed or blocked URL."""

    code = "CB-URL-000"


class TooLong(ValidationError):
    code = "CB-URL-001"


class InvalidURL(ValidationError):
    code = "CB-URL-002"


class SchemeNotAllowed(ValidationError):
    code = "CB-URL-003"


class DomainNotAllowed(ValidationError):
    code = "CB-URL-004"


class BlockedHost(ValidationError):
    code = "CB-URL-005"


class NavigationError(BrowserError):
    """Engine timeout or navigation failure."""

    code = "CB-NAV-001"


class BoundsError(BrowserError):
    """Invalid tab/link/media index, zoom value, or out-of-viewport tap."""

    code = "CB-BND-001"


class SessionError(BrowserError):
    """Illegal session or tab operation."""

    code = "CB-SES-001"


class MediaError(BrowserError):
    """Media download failure."""

    code = "CB-MED-000"


class NonHttpSource(MediaError):
    code = "CB-MED-001"


class HttpError(MediaError):
    code = "CB-MED-002"

    def __init__(self, status: int, message: str | None = None):
        super().__init__(message or f"Failed to download media: HTTP {status}", details={"status": status})
        self.status = status


class TooLarge(MediaError):
    code = "CB-MED-003"


class UsageError(BrowserError):
    """Command arguments could not be parsed."""

    code = "CB-CMD-001"


# =============================================================================
# Error Definitions
# =============================================================================

BROWSER_ERRORS: dict[str, ErrorDefinition] = {
    # URL validation
    "CB-URL-000": ErrorDefinition("CB-URL-000", "URL rejected", 400),
    "CB-URL-001": ErrorDefinition("CB-URL-001", "URL missing/too long.", 400),
    "CB-URL-002": ErrorDefinition("CB-URL-002", "Invalid URL.", 400),
    "CB-URL-003": ErrorDefinition("CB-URL-003", "Only http/https allowed.", 400),
    "CB-URL-004": ErrorDefinition("CB-URL-004", "Domain not allowed.", 403),
    "CB-URL-005": ErrorDefinition("CB-URL-005", "Blocked private/internal host.", 403),

    # Engine
    "CB-NAV-001": ErrorDefinition("CB-NAV-001", "Navigation failed.", 504, retryable=True),

    # Bounds
    "CB-BND-001": ErrorDefinition("CB-BND-001", "Out of range.", 400),

    # Sessions
    "CB-SES-001": ErrorDefinition("CB-SES-001", "Session operation not allowed.", 409),

    # Media
    "CB-MED-000": ErrorDefinition("CB-MED-000", "Failed to download media.", 502, retryable=True),
    "CB-MED-001": ErrorDefinition(
        "CB-MED-001",
        "This media source can't be downloaded (non-http URL). Try opening it in the page.",
        400,
    ),
    "CB-MED-002": ErrorDefinition("CB-MED-002", "Failed to download media.", 502, retryable=True),
    "CB-MED-003": ErrorDefinition("CB-MED-003", "Media too large to send. Try opening it directly.", 413),

    # Commands
    "CB-CMD-001": ErrorDefinition("CB-CMD-001", "Invalid command.", 400),

    # Internal
    "CB-INT-001": ErrorDefinition("CB-INT-001", "Action failed.", 500),
}


class ErrorRegistry:
    """Registry for looking up standardized error definitions."""

    def __init__(self) -> None:
        self.errors = dict(BROWSER_ERRORS)

    def get_definition(self, code: str) -> ErrorDefinition | None:
        """Get error definition by code."""
        return self.errors.get(code)

    def get_all_definitions(self) -> dict[str, ErrorDefinition]:
        """Get all error definitions."""
        return dict(self.errors)

    def is_retryable(self, code: str) -> bool:
        """Check if an error is retryable."""
        definition = self.errors.get(code)
        return definition.retryable if definition else False


# Singleton instance
_registry: ErrorRegistry | None = None


def get_error_registry() -> ErrorRegistry:
    """Get the singleton error registry instance."""
    global _registry
    if _registry is None:
        _registry = ErrorRegistry()
    return _registry
