"""Desired configuration, tracked state and remote record models."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from overmind_provider.exceptions import StateError

AWS_SOURCE_KIND = "aws"


class SourceStatus(str, Enum):
    """Lifecycle states of a tracked source.

    An unmanaged source has no state object at all, and a planned one exists
    only as an :class:`AWSSourceConfig`.
    """

    CREATED = "created"
    IMPORTED = "imported"
    STABLE = "stable"
    UPDATING = "updating"
    DELETING = "deleting"
    REMOVED = "removed"


# Allowed lifecycle transitions, keyed by current status
TRANSITIONS: dict[SourceStatus, frozenset[SourceStatus]] = {
    SourceStatus.CREATED: frozenset({SourceStatus.STABLE}),
    SourceStatus.IMPORTED: frozenset({SourceStatus.STABLE, SourceStatus.REMOVED}),
    SourceStatus.STABLE: frozenset(
        {
            SourceStatus.STABLE,
            SourceStatus.UPDATING,
            SourceStatus.DELETING,
            SourceStatus.REMOVED,
        }
    ),
    SourceStatus.UPDATING: frozenset({SourceStatus.STABLE}),
    SourceStatus.DELETING: frozenset({SourceStatus.REMOVED}),
    SourceStatus.REMOVED: frozenset(),
}


class AWSSourceConfig(BaseModel):
    """Declared configuration for an AWS infrastructure source."""

    name: str = Field(..., description="Human-readable name for this source")
    role_reference: str = Field(
        ..., description="ARN of the IAM role to assume in the customer's AWS account"
    )
    region_set: list[str] = Field(
        ..., description="AWS regions this source should discover resources in"
    )

    model_config = {"frozen": True}

    @field_validator("name")
    def validate_name(cls, v: str) -> str:
        """Validate that the name is not empty."""
        if not v or v.strip() == "":
            raise ValueError("Source name cannot be empty")
        return v

    @field_validator("region_set")
    def validate_region_set(cls, v: list[str]) -> list[str]:
        """Strip surrounding whitespace from each declared region."""
        return [region.strip() for region in v]


@dataclass(slots=True)
class AWSSourceState:
    """Tracked state of a managed AWS source.

    ``identifier`` and ``external_identity`` are populated by the provider and
    never change once the source exists. Lifecycle changes go through
    :meth:`transition`, which returns a copy and leaves this object untouched.
    """

    identifier: str
    name: str | None = None
    role_reference: str | None = None
    region_set: list[str] | None = None
    external_identity: str | None = None
    status: SourceStatus = SourceStatus.STABLE

    def ensure_transition(self, target: SourceStatus) -> None:
        """Raise StateError unless the lifecycle allows moving to ``target``."""
        if target not in TRANSITIONS[self.status]:
            raise StateError(
                f"Cannot move source from {self.status.value} to {target.value}",
                identifier=self.identifier,
            )

    def transition(self, target: SourceStatus, **changes: Any) -> "AWSSourceState":
        """Return a copy moved to ``target`` with ``changes`` applied.

        Raises:
            StateError: If the lifecycle does not allow the transition.
        """
        self.ensure_transition(target)
        if "region_set" in changes and changes["region_set"] is not None:
            changes["region_set"] = list(changes["region_set"])
        return replace(self, status=target, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "identifier": self.identifier,
            "name": self.name,
            "role_reference": self.role_reference,
            "region_set": list(self.region_set) if self.region_set is not None else None,
            "external_identity": self.external_identity,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AWSSourceState":
        """Create from dictionary loaded from JSON."""
        region_set = data.get("region_set")
        return cls(
            identifier=data["identifier"],
            name=data.get("name"),
            role_reference=data.get("role_reference"),
            region_set=list(region_set) if region_set is not None else None,
            external_identity=data.get("external_identity"),
            status=SourceStatus(data.get("status", SourceStatus.STABLE.value)),
        )


@dataclass(slots=True, frozen=True)
class ExternalIdentityState:
    """Result of reading the account's external ID."""

    external_identity: str


@dataclass(slots=True)
class RemoteSourceRecord:
    """The management API's persisted form of a source."""

    identifier: bytes
    descriptive_name: str
    kind: str
    config: dict[str, str] = field(default_factory=dict)
