"""Unit tests for AWSSourceReconciler."""

import asyncio
import uuid
from dataclasses import replace

import pytest

from overmind_provider.codec import EXTERNAL_ID_KEY, REGIONS_KEY, ROLE_ARN_KEY
from overmind_provider.exceptions import (
    ConfigurationError,
    OperationCancelledError,
    RemoteNotFoundError,
    RemoteTransientError,
    StateError,
    ValidationError,
)
from overmind_provider.identifiers import identifier_to_bytes
from overmind_provider.models import AWSSourceConfig, AWSSourceState, SourceStatus
from overmind_provider.resources import AWSSourceReconciler

EXTERNAL_ID = "test-external-id-12345"
ROLE_ARN = "arn:aws:iam::123456789012:role/test"
MISSING_SOURCE_ID = "00000000-0000-4000-8000-000000000000"


def _record(fake_service, state):
    return fake_service.sources[identifier_to_bytes(state.identifier)]


class TestConfiguration:
    """Test client injection checks."""

    def test_requires_client(self):
        """Test that a missing client fails before any operation."""
        with pytest.raises(ConfigurationError, match="configure the provider first"):
            AWSSourceReconciler(None)

    def test_rejects_client_without_source_capability(self):
        """Test that an external-ID-only client cannot manage sources."""

        class ExternalIdOnly:
            async def get_or_create_aws_external_id(self) -> str:
                return EXTERNAL_ID

        with pytest.raises(
            ConfigurationError, match="expected ManagementService, got ExternalIdOnly"
        ):
            AWSSourceReconciler(ExternalIdOnly())


class TestCreate:
    """Test creating sources."""

    async def test_create_tracks_identifier_and_external_id(
        self, reconciler, desired_source
    ):
        """Test the tracked state produced by create."""
        state = await reconciler.create(desired_source)

        assert len(identifier_to_bytes(state.identifier)) == 16
        assert state.identifier == str(uuid.UUID(state.identifier))
        assert state.name == "test-source"
        assert state.role_reference == ROLE_ARN
        assert state.region_set == ["us-east-1", "eu-west-1"]
        assert state.external_identity == EXTERNAL_ID
        assert state.status == SourceStatus.STABLE

    async def test_create_sends_encoded_config(
        self, reconciler, fake_service, desired_source
    ):
        """Test the remote record written by create."""
        state = await reconciler.create(desired_source)

        record = _record(fake_service, state)
        assert record.kind == "aws"
        assert record.descriptive_name == "test-source"
        assert record.config == {
            "access-strategy": "external-id",
            "external-id": EXTERNAL_ID,
            "target-role-arn": ROLE_ARN,
            "regions": "us-east-1,eu-west-1",
        }

    async def test_create_then_read(self, reconciler, desired_source):
        """Test that reading a new source returns what was declared."""
        created = await reconciler.create(desired_source)

        state = await reconciler.read(created)

        assert state.identifier == created.identifier
        assert state.name == "test-source"
        assert state.role_reference == ROLE_ARN
        assert state.region_set == ["us-east-1", "eu-west-1"]
        assert state.external_identity == EXTERNAL_ID

    async def test_identity_failure_aborts_before_create(
        self, reconciler, fake_service, desired_source
    ):
        """Test that no source is created when the external ID is unavailable."""
        fake_service.failures["get_or_create_aws_external_id"] = RemoteTransientError(
            "GetOrCreateAWSExternalId failed", code="unavailable"
        )

        with pytest.raises(RemoteTransientError) as exc_info:
            await reconciler.create(desired_source)

        assert exc_info.value.operation == "create"
        assert fake_service.call_count("create_source") == 0
        assert fake_service.sources == {}

    async def test_encoding_failure_aborts_before_create(self, reconciler, fake_service):
        """Test that a region that cannot be encoded never reaches the API."""
        desired = AWSSourceConfig(
            name="bad", role_reference=ROLE_ARN, region_set=["us-east-1,eu-west-1"]
        )

        with pytest.raises(ValidationError):
            await reconciler.create(desired)

        assert fake_service.call_count("create_source") == 0

    async def test_blank_region_aborts_before_create(self, reconciler, fake_service):
        """Test that a whitespace-only region never reaches the API."""
        desired = AWSSourceConfig(
            name="bad", role_reference=ROLE_ARN, region_set=["us-east-1", "  "]
        )

        with pytest.raises(ValidationError, match="is empty"):
            await reconciler.create(desired)

        assert fake_service.call_count("create_source") == 0
        assert fake_service.sources == {}

    async def test_remote_create_failure(self, reconciler, fake_service, desired_source):
        """Test that API failures propagate with operation context."""
        fake_service.failures["create_source"] = RemoteTransientError(
            "CreateSource failed: internal error", code="internal", status_code=500
        )

        with pytest.raises(RemoteTransientError) as exc_info:
            await reconciler.create(desired_source)

        assert exc_info.value.operation == "create"
        assert "Operation: create" in str(exc_info.value)

    async def test_malformed_identifier_from_api(
        self, reconciler, fake_service, desired_source
    ):
        """Test that a non-16-byte identifier from the API is rejected."""
        create_source = fake_service.create_source

        async def create_with_short_id(*args):
            record = await create_source(*args)
            return replace(record, identifier=record.identifier[:8])

        fake_service.create_source = create_with_short_id

        with pytest.raises(ValidationError, match="Failed to parse source UUID"):
            await reconciler.create(desired_source)


class TestRead:
    """Test refreshing tracked state."""

    async def test_read_pulls_out_of_band_changes(
        self, reconciler, fake_service, desired_source
    ):
        """Test that remote edits are pulled back into tracked state."""
        created = await reconciler.create(desired_source)
        record = _record(fake_service, created)
        record.descriptive_name = "renamed-in-ui"
        record.config[ROLE_ARN_KEY] = "arn:aws:iam::123456789012:role/other"
        record.config[REGIONS_KEY] = "ap-southeast-2, us-east-1 ,"

        state = await reconciler.read(created)

        assert state.name == "renamed-in-ui"
        assert state.role_reference == "arn:aws:iam::123456789012:role/other"
        assert state.region_set == ["ap-southeast-2", "us-east-1"]
        assert state.identifier == created.identifier

    async def test_read_keeps_fields_missing_from_config(
        self, reconciler, fake_service, desired_source
    ):
        """Test that absent config keys leave tracked values alone."""
        created = await reconciler.create(desired_source)
        record = _record(fake_service, created)
        del record.config[EXTERNAL_ID_KEY]
        del record.config[REGIONS_KEY]

        state = await reconciler.read(created)

        assert state.external_identity == EXTERNAL_ID
        assert state.region_set == ["us-east-1", "eu-west-1"]

    async def test_read_does_not_mutate_input(
        self, reconciler, fake_service, desired_source
    ):
        """Test that the caller's state object is left untouched."""
        created = await reconciler.create(desired_source)
        snapshot = replace(created, region_set=list(created.region_set))
        _record(fake_service, created).descriptive_name = "changed"

        await reconciler.read(created)

        assert created == snapshot

    async def test_read_missing_source_drops_tracking(self, reconciler):
        """Test that a source deleted out of band is removed, not an error."""
        tracked = AWSSourceState(
            identifier=MISSING_SOURCE_ID,
            name="gone",
            role_reference=ROLE_ARN,
            region_set=["us-east-1"],
            external_identity=EXTERNAL_ID,
        )

        assert await reconciler.read(tracked) is None

    async def test_read_invalid_identifier(self, reconciler, fake_service):
        """Test that a malformed identifier never reaches the API."""
        tracked = AWSSourceState(identifier="not-a-uuid")

        with pytest.raises(ValidationError) as exc_info:
            await reconciler.read(tracked)

        assert exc_info.value.operation == "read"
        assert exc_info.value.identifier == "not-a-uuid"
        assert fake_service.call_count("get_source") == 0

    async def test_read_transient_failure(self, reconciler, fake_service, desired_source):
        """Test that non-not-found failures are fatal and carry the identifier."""
        created = await reconciler.create(desired_source)
        fake_service.failures["get_source"] = RemoteTransientError(
            "GetSource failed: permission denied", code="permission_denied"
        )

        with pytest.raises(RemoteTransientError) as exc_info:
            await reconciler.read(created)

        assert exc_info.value.identifier == created.identifier
        assert exc_info.value.operation == "read"


class TestUpdate:
    """Test updating sources."""

    async def test_update_regions(self, reconciler, fake_service, desired_source):
        """Test narrowing regions keeps identifier and external ID."""
        created = await reconciler.create(desired_source)
        desired = AWSSourceConfig(
            name="updated-source", role_reference=ROLE_ARN, region_set=["us-west-2"]
        )

        updated = await reconciler.update(desired, created)
        state = await reconciler.read(updated)

        assert updated.identifier == created.identifier
        assert updated.external_identity == created.external_identity
        assert state.name == "updated-source"
        assert len(state.region_set) == 1
        assert state.region_set[0] == "us-west-2"
        assert state.external_identity == EXTERNAL_ID
        assert state.identifier == created.identifier

    async def test_update_carries_external_id_forward(
        self, reconciler, fake_service, desired_source
    ):
        """Test that update never re-resolves the external ID."""
        created = await reconciler.create(desired_source)
        fake_service.external_id = "a-different-external-id"

        updated = await reconciler.update(desired_source, created)

        assert updated.external_identity == EXTERNAL_ID
        assert _record(fake_service, created).config[EXTERNAL_ID_KEY] == EXTERNAL_ID
        assert fake_service.call_count("get_or_create_aws_external_id") == 1

    async def test_update_without_external_id(self, reconciler, fake_service, desired_source):
        """Test that missing tracked external ID fails before any API call."""
        created = await reconciler.create(desired_source)
        corrupted = replace(created, external_identity=None)

        with pytest.raises(ConfigurationError, match="no external ID"):
            await reconciler.update(desired_source, corrupted)

        assert fake_service.call_count("update_source") == 0
        assert fake_service.call_count("get_or_create_aws_external_id") == 1

    async def test_update_missing_source_is_fatal(self, reconciler, desired_source):
        """Test that not-found on update is surfaced, not swallowed."""
        tracked = AWSSourceState(
            identifier=MISSING_SOURCE_ID,
            name="gone",
            role_reference=ROLE_ARN,
            region_set=["us-east-1"],
            external_identity=EXTERNAL_ID,
        )

        with pytest.raises(RemoteNotFoundError) as exc_info:
            await reconciler.update(desired_source, tracked)

        assert exc_info.value.operation == "update"

    async def test_update_failure_leaves_state_unchanged(
        self, reconciler, fake_service, desired_source
    ):
        """Test that a failed update commits nothing."""
        created = await reconciler.create(desired_source)
        fake_service.failures["update_source"] = RemoteTransientError(
            "UpdateSource failed", code="unavailable"
        )
        desired = AWSSourceConfig(
            name="updated-source", role_reference=ROLE_ARN, region_set=["us-west-2"]
        )

        with pytest.raises(RemoteTransientError):
            await reconciler.update(desired, created)

        assert created.name == "test-source"
        assert created.region_set == ["us-east-1", "eu-west-1"]
        assert created.status == SourceStatus.STABLE

    async def test_update_requires_read_after_import(self, reconciler, desired_source):
        """Test that an imported source must be read before it is updated."""
        imported = reconciler.import_state(MISSING_SOURCE_ID)

        with pytest.raises(StateError):
            await reconciler.update(desired_source, imported)


class TestDelete:
    """Test deleting sources."""

    async def test_delete_then_read(self, reconciler, fake_service, desired_source):
        """Test that a deleted source is dropped by the next read."""
        created = await reconciler.create(desired_source)

        await reconciler.delete(created)

        assert fake_service.sources == {}
        assert await reconciler.read(created) is None

    async def test_delete_missing_source_succeeds(self, reconciler):
        """Test that deleting an absent source completes without error."""
        tracked = AWSSourceState(identifier=MISSING_SOURCE_ID)

        assert await reconciler.delete(tracked) is None

    async def test_delete_twice(self, reconciler, desired_source):
        """Test that delete is idempotent."""
        created = await reconciler.create(desired_source)

        await reconciler.delete(created)
        await reconciler.delete(created)

    async def test_delete_failure_is_fatal(self, reconciler, fake_service, desired_source):
        """Test that other failures propagate and leave the source tracked."""
        created = await reconciler.create(desired_source)
        fake_service.failures["delete_source"] = RemoteTransientError(
            "DeleteSource failed", code="unavailable"
        )

        with pytest.raises(RemoteTransientError) as exc_info:
            await reconciler.delete(created)

        assert exc_info.value.operation == "delete"
        assert created.status == SourceStatus.STABLE
        assert len(fake_service.sources) == 1

    async def test_delete_invalid_identifier(self, reconciler, fake_service):
        """Test that a malformed identifier never reaches the API."""
        with pytest.raises(ValidationError):
            await reconciler.delete(AWSSourceState(identifier="1234"))

        assert fake_service.call_count("delete_source") == 0


class TestImport:
    """Test importing existing sources."""

    def test_import_seeds_identifier_only(self, reconciler, fake_service):
        """Test that import records only the identifier, without API calls."""
        state = reconciler.import_state(MISSING_SOURCE_ID.upper())

        assert state == AWSSourceState(
            identifier=MISSING_SOURCE_ID, status=SourceStatus.IMPORTED
        )
        assert fake_service.calls == []

    def test_import_invalid_identifier(self, reconciler):
        """Test that malformed identifiers are rejected on import."""
        with pytest.raises(ValidationError):
            reconciler.import_state("not-a-uuid")

    async def test_import_then_read(self, reconciler, desired_source):
        """Test that read fills in an imported source."""
        created = await reconciler.create(desired_source)

        state = await reconciler.read(reconciler.import_state(created.identifier))

        assert state == created

    async def test_import_then_read_missing_source(self, reconciler):
        """Test that importing an unknown source ends in removal, not an error."""
        imported = reconciler.import_state(MISSING_SOURCE_ID)

        assert await reconciler.read(imported) is None


class TestDeadlines:
    """Test deadline and cancellation handling."""

    async def test_deadline_expiry(self, reconciler, fake_service, desired_source):
        """Test that an expired deadline is reported as cancellation."""
        fake_service.delay = 1.0

        with pytest.raises(OperationCancelledError) as exc_info:
            await reconciler.create(desired_source, timeout=0.01)

        assert exc_info.value.operation == "create"

    async def test_default_deadline(self, fake_service):
        """Test that the reconciler's default deadline applies."""
        fake_service.delay = 1.0
        reconciler = AWSSourceReconciler(fake_service, operation_timeout=0.01)

        with pytest.raises(OperationCancelledError):
            await reconciler.read(AWSSourceState(identifier=MISSING_SOURCE_ID))

    async def test_task_cancellation_propagates(
        self, reconciler, fake_service, desired_source
    ):
        """Test that cancelling the caller's task is not turned into an error."""
        fake_service.delay = 1.0

        task = asyncio.create_task(reconciler.create(desired_source))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert fake_service.sources == {}
