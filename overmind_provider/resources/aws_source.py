"""Reconciler for Overmind AWS infrastructure sources."""

from typing import Any

from overmind_provider.codec import decode_source_config, encode_source_config
from overmind_provider.exceptions import ConfigurationError, RemoteNotFoundError
from overmind_provider.identifiers import (
    canonical_identifier,
    identifier_from_bytes,
    identifier_to_bytes,
)
from overmind_provider.identity import IdentityResolver
from overmind_provider.models import (
    AWS_SOURCE_KIND,
    AWSSourceConfig,
    AWSSourceState,
    SourceStatus,
)
from overmind_provider.resources.base import ClientBoundComponent


class AWSSourceReconciler(ClientBoundComponent):
    """Reconciles declared AWS sources against the management API.

    Every verb works on copies: the tracked state passed in is never mutated,
    so a failed verb leaves the caller's state exactly as it was.

    Remote "not found" is handled in two places only. A read drops the
    source from tracking (it was deleted out of band), and a delete treats it
    as already done. Everywhere else it is an ordinary failure.
    """

    type_name = "overmind_aws_source"

    def __init__(self, client: Any, operation_timeout: float | None = None) -> None:
        super().__init__(client, operation_timeout)
        self.identity = IdentityResolver(client)

    async def create(
        self, desired: AWSSourceConfig, timeout: float | None = None
    ) -> AWSSourceState:
        """Create the source and return its tracked state.

        Args:
            desired: Declared configuration.
            timeout: Deadline in seconds, overriding the default.

        Returns:
            Tracked state carrying the server-assigned identifier and the
            account's external ID.

        Raises:
            ValidationError: If the config map cannot be built.
            ConfigurationError: If no external ID can be resolved.
            RemoteError: If an API call fails.
            OperationCancelledError: If the deadline expires.
        """
        with self._operation("create") as log:
            return await self._with_deadline("create", self._create(desired, log), timeout)

    async def _create(self, desired: AWSSourceConfig, log: Any) -> AWSSourceState:
        log.info(
            "Creating AWS source",
            name=desired.name,
            role_reference=desired.role_reference,
        )

        external_id = await self.identity.resolve()
        config = encode_source_config(
            desired.role_reference, desired.region_set, external_id
        )
        record = await self.client.create_source(desired.name, AWS_SOURCE_KIND, config)
        identifier = identifier_from_bytes(record.identifier)

        created = AWSSourceState(
            identifier=identifier,
            name=desired.name,
            role_reference=desired.role_reference,
            region_set=list(desired.region_set),
            external_identity=external_id,
            status=SourceStatus.CREATED,
        )
        log.info("Created AWS source", source_id=identifier)
        return created.transition(SourceStatus.STABLE)

    async def read(
        self, tracked: AWSSourceState, timeout: float | None = None
    ) -> AWSSourceState | None:
        """Refresh tracked state from the management API.

        Returns:
            The refreshed state, or None if the source no longer exists and
            should be dropped from tracking.

        Raises:
            ValidationError: If the tracked identifier is malformed.
            RemoteTransientError: If the API call fails for any reason other
                than the source being absent.
        """
        with self._operation("read", tracked.identifier) as log:
            return await self._with_deadline("read", self._read(tracked, log), timeout)

    async def _read(self, tracked: AWSSourceState, log: Any) -> AWSSourceState | None:
        tracked.ensure_transition(SourceStatus.STABLE)
        uuid_bytes = identifier_to_bytes(tracked.identifier)

        try:
            record = await self.client.get_source(uuid_bytes)
        except RemoteNotFoundError:
            tracked.ensure_transition(SourceStatus.REMOVED)
            log.info("AWS source no longer exists, removing from state", removed=True)
            return None

        if record.kind != AWS_SOURCE_KIND:
            log.warning("Source has an unexpected type", kind=record.kind)

        decoded = decode_source_config(record.config)
        refreshed = tracked.transition(
            SourceStatus.STABLE,
            name=record.descriptive_name,
            role_reference=_prefer(decoded.role_reference, tracked.role_reference),
            region_set=_prefer(decoded.region_set, tracked.region_set),
            external_identity=_prefer(
                decoded.external_identity, tracked.external_identity
            ),
        )
        if refreshed != tracked.transition(SourceStatus.STABLE):
            log.info("Pulled remote changes into state")
        return refreshed

    async def update(
        self,
        desired: AWSSourceConfig,
        tracked: AWSSourceState,
        timeout: float | None = None,
    ) -> AWSSourceState:
        """Push the desired configuration onto an existing source.

        The external ID is carried forward from ``tracked`` and never
        re-resolved. The identifier is preserved.

        Raises:
            ValidationError: If the identifier or config map is invalid.
            ConfigurationError: If the tracked state has no external ID.
            RemoteError: If the API call fails, including not-found.
        """
        with self._operation("update", tracked.identifier) as log:
            return await self._with_deadline(
                "update", self._update(desired, tracked, log), timeout
            )

    async def _update(
        self, desired: AWSSourceConfig, tracked: AWSSourceState, log: Any
    ) -> AWSSourceState:
        updating = tracked.transition(SourceStatus.UPDATING)
        uuid_bytes = identifier_to_bytes(tracked.identifier)

        # A freshly resolved ID would not match the IAM trust policy
        # already written against the stored one.
        external_id = tracked.external_identity
        if not external_id:
            raise ConfigurationError(
                "Tracked state has no external ID; refusing to resolve a new one. "
                "Re-import the source to recover it"
            )

        config = encode_source_config(
            desired.role_reference, desired.region_set, external_id
        )
        log.info(
            "Updating AWS source",
            name=desired.name,
            role_reference=desired.role_reference,
        )
        await self.client.update_source(
            uuid_bytes, desired.name, AWS_SOURCE_KIND, config
        )

        log.info("Updated AWS source")
        return updating.transition(
            SourceStatus.STABLE,
            name=desired.name,
            role_reference=desired.role_reference,
            region_set=desired.region_set,
        )

    async def delete(
        self, tracked: AWSSourceState, timeout: float | None = None
    ) -> None:
        """Delete the source. An already-absent source counts as deleted.

        Raises:
            ValidationError: If the tracked identifier is malformed.
            RemoteTransientError: If the API call fails; the caller's state
                is unchanged and the delete can be retried.
        """
        with self._operation("delete", tracked.identifier) as log:
            await self._with_deadline("delete", self._delete(tracked, log), timeout)

    async def _delete(self, tracked: AWSSourceState, log: Any) -> None:
        deleting = tracked.transition(SourceStatus.DELETING)
        uuid_bytes = identifier_to_bytes(tracked.identifier)

        try:
            await self.client.delete_source(uuid_bytes)
        except RemoteNotFoundError:
            log.info("AWS source already deleted", already_gone=True)

        deleting.ensure_transition(SourceStatus.REMOVED)
        log.info("Deleted AWS source")

    def import_state(self, external_key: str) -> AWSSourceState:
        """Seed tracked state from an existing source's identifier.

        Only the identifier is known afterwards; callers must :meth:`read`
        to fill in the rest. No API call is made.

        Raises:
            ValidationError: If ``external_key`` is not a valid identifier.
        """
        with self._operation("import", external_key) as log:
            identifier = canonical_identifier(external_key)
            log.info("Imported AWS source", source_id=identifier)
            return AWSSourceState(identifier=identifier, status=SourceStatus.IMPORTED)


def _prefer(value: Any, fallback: Any) -> Any:
    return fallback if value is None else value
