"""Base class for provider resources and data sources."""

import asyncio
from collections.abc import Awaitable, Iterator
from contextlib import contextmanager
from typing import Any, ClassVar, TypeVar

import structlog

from overmind_provider.client import ManagementService
from overmind_provider.exceptions import (
    ConfigurationError,
    OperationCancelledError,
    OvermindError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ClientBoundComponent:
    """Common plumbing for components that talk to the management API.

    Provides:
    - Fail-fast validation of the injected client's capabilities
    - Per-operation deadlines
    - Operation and identifier context on every raised error
    """

    # Protocol the injected client must satisfy
    required_capability: ClassVar[type] = ManagementService

    def __init__(
        self,
        client: Any,
        operation_timeout: float | None = None,
    ) -> None:
        """Bind the component to a management client.

        Args:
            client: Configured management API client.
            operation_timeout: Default deadline in seconds for each operation,
                or None for no deadline.

        Raises:
            ConfigurationError: If the client is missing or lacks the
                required capability.
        """
        name = self.__class__.__name__
        if client is None:
            raise ConfigurationError(
                f"{name} requires a configured management client; configure the provider first"
            )
        if not isinstance(client, self.required_capability):
            raise ConfigurationError(
                f"Unexpected {name} client type: expected "
                f"{self.required_capability.__name__}, got {type(client).__name__}"
            )
        self.client = client
        self.operation_timeout = operation_timeout
        self._logger = logger.bind(component=name)

    @contextmanager
    def _operation(
        self, operation: str, identifier: str | None = None
    ) -> Iterator[Any]:
        """Scope one operation: bind log context and annotate failures."""
        log = self._logger.bind(operation=operation, source_id=identifier)
        try:
            yield log
        except OvermindError as e:
            e.add_context(operation=operation, identifier=identifier)
            log.error(
                "Operation failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    async def _with_deadline(
        self,
        operation: str,
        awaitable: Awaitable[T],
        timeout: float | None = None,
    ) -> T:
        """Await ``awaitable``, abandoning it once the deadline passes.

        Task cancellation is not intercepted and reaches the caller unchanged.

        Raises:
            OperationCancelledError: If the deadline expires first.
        """
        effective_timeout = timeout if timeout is not None else self.operation_timeout
        if effective_timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, effective_timeout)
        except asyncio.TimeoutError as e:
            raise OperationCancelledError(
                f"{operation} exceeded its deadline of {effective_timeout}s"
            ) from e
