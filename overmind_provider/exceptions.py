"""Exception classes for the Overmind provider."""


class OvermindError(Exception):
    """Base exception for provider errors."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        identifier: str | None = None,
    ) -> None:
        """Initialize provider error.

        Args:
            message: Error message
            operation: Name of the operation that failed, if known
            identifier: Source identifier the operation targeted, if known
        """
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.identifier = identifier

    def add_context(
        self, operation: str | None = None, identifier: str | None = None
    ) -> "OvermindError":
        """Attach operation context without overwriting what is already set."""
        if self.operation is None:
            self.operation = operation
        if self.identifier is None:
            self.identifier = identifier
        return self

    def __str__(self) -> str:
        """String representation of the error."""
        parts = [self.message]
        if self.operation:
            parts.append(f"Operation: {self.operation}")
        if self.identifier:
            parts.append(f"Source: {self.identifier}")
        return " | ".join(parts)


class ConfigurationError(OvermindError):
    """Raised when a prerequisite is missing or the provider is misconfigured."""

    pass


class ValidationError(OvermindError):
    """Raised when local data is malformed. Never reaches the remote service."""

    pass


class StateError(OvermindError):
    """Raised on illegal lifecycle transitions or unreadable state files."""

    pass


class OperationCancelledError(OvermindError):
    """Raised when an operation's deadline expires before it completes."""

    pass


class RemoteError(OvermindError):
    """Base exception for failures reported by the management API."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
        response_text: str | None = None,
        operation: str | None = None,
        identifier: str | None = None,
    ) -> None:
        """Initialize remote error.

        Args:
            message: Error message
            code: Connect error code (e.g. "not_found", "unavailable")
            status_code: HTTP status code if available
            response_text: Response body text if available
            operation: Name of the operation that failed, if known
            identifier: Source identifier the operation targeted, if known
        """
        super().__init__(message, operation=operation, identifier=identifier)
        self.code = code
        self.status_code = status_code
        self.response_text = response_text

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.code:
            parts.append(f"Code: {self.code}")
        if self.status_code:
            parts.append(f"Status: {self.status_code}")
        if self.response_text:
            # Truncate response text for readability
            response_preview = self.response_text[:200]
            if len(self.response_text) > 200:
                response_preview += "..."
            parts.append(f"Response: {response_preview}")
        return " | ".join(parts)


class RemoteNotFoundError(RemoteError):
    """Raised when the requested source does not exist remotely."""

    pass


class RemoteTransientError(RemoteError):
    """Raised for any other RPC failure (network, auth, server error)."""

    pass
