"""Shared pytest fixtures for the provider tests."""

import asyncio
import uuid
from dataclasses import replace

import pytest
from pydantic import SecretStr

from overmind_provider.config import ProviderConfig
from overmind_provider.exceptions import RemoteNotFoundError
from overmind_provider.models import AWSSourceConfig, RemoteSourceRecord
from overmind_provider.resources import AWSExternalIdDataSource, AWSSourceReconciler

TEST_EXTERNAL_ID = "test-external-id-12345"
TEST_ROLE_ARN = "arn:aws:iam::123456789012:role/test"


class FakeManagementService:
    """In-memory management API with the remote service's semantics.

    ``failures`` maps a method name to an exception raised on its next call.
    ``delay`` makes every call sleep first, for deadline tests.
    """

    def __init__(self, external_id: str = TEST_EXTERNAL_ID) -> None:
        self.external_id = external_id
        self.sources: dict[bytes, RemoteSourceRecord] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.failures: dict[str, BaseException] = {}
        self.delay = 0.0

    async def _enter(self, method: str, *args) -> None:
        self.calls.append((method, args))
        if self.delay:
            await asyncio.sleep(self.delay)
        if method in self.failures:
            raise self.failures.pop(method)

    def call_count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    async def get_or_create_aws_external_id(self) -> str:
        await self._enter("get_or_create_aws_external_id")
        return self.external_id

    async def create_source(self, descriptive_name, kind, config) -> RemoteSourceRecord:
        await self._enter("create_source", descriptive_name, kind, config)
        record = RemoteSourceRecord(
            identifier=uuid.uuid4().bytes,
            descriptive_name=descriptive_name,
            kind=kind,
            config=dict(config),
        )
        self.sources[record.identifier] = record
        return replace(record, config=dict(record.config))

    async def get_source(self, identifier) -> RemoteSourceRecord:
        await self._enter("get_source", identifier)
        if identifier not in self.sources:
            raise RemoteNotFoundError("GetSource failed: not found", code="not_found")
        record = self.sources[identifier]
        return replace(record, config=dict(record.config))

    async def update_source(self, identifier, descriptive_name, kind, config) -> RemoteSourceRecord:
        await self._enter("update_source", identifier, descriptive_name, kind, config)
        if identifier not in self.sources:
            raise RemoteNotFoundError("UpdateSource failed: not found", code="not_found")
        record = RemoteSourceRecord(
            identifier=identifier,
            descriptive_name=descriptive_name,
            kind=kind,
            config=dict(config),
        )
        self.sources[identifier] = record
        return replace(record, config=dict(record.config))

    async def delete_source(self, identifier) -> None:
        await self._enter("delete_source", identifier)
        if identifier not in self.sources:
            raise RemoteNotFoundError("DeleteSource failed: not found", code="not_found")
        del self.sources[identifier]


@pytest.fixture
def fake_service():
    """Create an empty in-memory management service."""
    return FakeManagementService()


@pytest.fixture
def reconciler(fake_service):
    """Create an AWS source reconciler bound to the fake service."""
    return AWSSourceReconciler(fake_service)


@pytest.fixture
def data_source(fake_service):
    """Create an external ID data source bound to the fake service."""
    return AWSExternalIdDataSource(fake_service)


@pytest.fixture
def desired_source():
    """Create the declared configuration used across scenarios."""
    return AWSSourceConfig(
        name="test-source",
        role_reference=TEST_ROLE_ARN,
        region_set=["us-east-1", "eu-west-1"],
    )


@pytest.fixture
def provider_config():
    """Create a provider configuration that skips instance discovery."""
    return ProviderConfig(
        api_key=SecretStr("test-api-key"),
        app_url="https://app.example.com",
        api_url="https://api.example.com",
        instance_retry_delay=0.1,
    )
