"""Resolution of the account's AWS external ID."""

import structlog

from overmind_provider.client import ExternalIdService
from overmind_provider.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)


class IdentityResolver:
    """Fetches the account-scoped external ID from the management API.

    The API implements get-or-create, so repeated calls for the same account
    return the same value. Nothing is cached here: every call round-trips, and
    failures are raised to the caller as they come.
    """

    def __init__(self, client: ExternalIdService) -> None:
        if client is None:
            raise ConfigurationError(
                "Cannot resolve the AWS external ID without a management client"
            )
        self.client = client
        self._logger = logger.bind(component="IdentityResolver")

    async def resolve(self) -> str:
        """Return the account's external ID.

        Raises:
            RemoteError: If the API call fails.
            ConfigurationError: If the API returns no external ID.
        """
        external_id = await self.client.get_or_create_aws_external_id()
        if not external_id:
            raise ConfigurationError(
                "Failed to get AWS external ID: the management API returned an empty value"
            )
        self._logger.debug("Resolved AWS external ID")
        return external_id
