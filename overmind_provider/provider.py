"""Provider bootstrap: builds the management client and injects it into resources."""

from typing import Any

import httpx
import structlog

from overmind_provider.client import ManagementClient, resolve_api_url
from overmind_provider.config import ProviderConfig
from overmind_provider.exceptions import ConfigurationError
from overmind_provider.resources import AWSExternalIdDataSource, AWSSourceReconciler

logger = structlog.get_logger(__name__)


class OvermindProvider:
    """Entry point that wires configuration to resources.

    Usage::

        async with OvermindProvider(config.provider) as provider:
            state = await provider.aws_source().create(desired)
    """

    type_name = "overmind"

    def __init__(
        self,
        config: ProviderConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            config: Connection settings.
            http_client: Optional pre-built HTTP client. The caller keeps
                ownership of it.
        """
        self.config = config
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._client: ManagementClient | None = None
        self._logger = logger.bind(provider=self.type_name, app_url=str(config.app_url))

    async def __aenter__(self) -> "OvermindProvider":
        """Async context manager entry."""
        await self.configure()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def configure(self) -> ManagementClient:
        """Resolve the API URL and build the shared management client.

        Returns:
            The configured client. Calling again returns the same client.

        Raises:
            ConfigurationError: If the instance cannot be resolved.
        """
        if self._client is not None:
            return self._client

        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.request_timeout_seconds),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
            )
            self._owns_http_client = True

        try:
            if self.config.api_url is not None:
                api_url = str(self.config.api_url)
            else:
                api_url = await resolve_api_url(
                    str(self.config.app_url),
                    self._http_client,
                    retry_attempts=self.config.instance_retry_attempts,
                    retry_delay=self.config.instance_retry_delay,
                )
        except BaseException:
            self._logger.error("Failed to configure Overmind provider")
            await self.close()
            raise

        self._client = ManagementClient(
            api_url,
            self.config.api_key,
            timeout_seconds=self.config.request_timeout_seconds,
            http_client=self._http_client,
        )
        self._logger.info("Configured Overmind provider", api_url=api_url)
        return self._client

    @property
    def client(self) -> ManagementClient:
        """The configured management client.

        Raises:
            ConfigurationError: If :meth:`configure` has not run.
        """
        if self._client is None:
            raise ConfigurationError("Overmind provider is not configured")
        return self._client

    def aws_source(self) -> AWSSourceReconciler:
        """Reconciler for ``overmind_aws_source`` resources."""
        return AWSSourceReconciler(
            self.client, operation_timeout=self.config.operation_timeout_seconds
        )

    def aws_external_id(self) -> AWSExternalIdDataSource:
        """The ``overmind_aws_external_id`` data source."""
        return AWSExternalIdDataSource(
            self.client, operation_timeout=self.config.operation_timeout_seconds
        )

    async def close(self) -> None:
        """Release the HTTP connection pool if this provider created it."""
        self._client = None
        if self._http_client is not None and self._owns_http_client:
            try:
                await self._http_client.aclose()
            except Exception as e:
                self._logger.warning("Error closing HTTP client", error=str(e))
            finally:
                self._http_client = None
