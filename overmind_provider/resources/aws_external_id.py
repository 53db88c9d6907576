"""Data source exposing the account's AWS external ID."""

from typing import Any, ClassVar

from overmind_provider.client import ExternalIdService
from overmind_provider.identity import IdentityResolver
from overmind_provider.models import ExternalIdentityState
from overmind_provider.resources.base import ClientBoundComponent


class AWSExternalIdDataSource(ClientBoundComponent):
    """Reads the stable AWS STS external ID for the current Overmind account.

    Use this to configure the trust policy on an IAM role before creating the
    source. Keeps no state between calls.
    """

    type_name = "overmind_aws_external_id"
    required_capability: ClassVar[type] = ExternalIdService

    def __init__(self, client: Any, operation_timeout: float | None = None) -> None:
        super().__init__(client, operation_timeout)
        self.identity = IdentityResolver(client)

    async def fetch(self, timeout: float | None = None) -> ExternalIdentityState:
        """Return the account's external ID."""
        with self._operation("fetch") as log:
            external_id = await self._with_deadline(
                "fetch", self.identity.resolve(), timeout
            )
            log.debug("Read AWS external ID")
            return ExternalIdentityState(external_identity=external_id)
