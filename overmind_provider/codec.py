"""Mapping between declared source settings and the remote config map."""

from collections.abc import Sequence
from dataclasses import dataclass

from overmind_provider.exceptions import ValidationError

ACCESS_STRATEGY_KEY = "access-strategy"
EXTERNAL_ID_KEY = "external-id"
ROLE_ARN_KEY = "target-role-arn"
REGIONS_KEY = "regions"

# Role assumption keyed on the account's external ID is the only strategy
EXTERNAL_ID_ACCESS_STRATEGY = "external-id"
REGION_SEPARATOR = ","


@dataclass(slots=True, frozen=True)
class DecodedSourceConfig:
    """Fields recovered from a config map. ``None`` means the key was absent."""

    role_reference: str | None = None
    region_set: list[str] | None = None
    external_identity: str | None = None


def encode_source_config(
    role_reference: str,
    region_set: Sequence[str],
    external_identity: str,
) -> dict[str, str]:
    """Build the config map persisted by the management API.

    Raises:
        ValidationError: If a value is not a string, or a region is blank
            or contains the separator.
    """
    if not isinstance(role_reference, str):
        raise ValidationError(
            f"Failed to build source config: role reference must be a string, got {type(role_reference).__name__}"
        )
    if not isinstance(external_identity, str):
        raise ValidationError(
            f"Failed to build source config: external ID must be a string, got {type(external_identity).__name__}"
        )
    if isinstance(region_set, str):
        raise ValidationError(
            "Failed to build source config: regions must be a list, not a string"
        )

    regions = list(region_set)
    for region in regions:
        if not isinstance(region, str):
            raise ValidationError(
                f"Failed to build source config: region {region!r} is not a string"
            )
        if not region.strip():
            raise ValidationError(
                f"Failed to build source config: region {region!r} is empty"
            )
        if REGION_SEPARATOR in region:
            raise ValidationError(
                f"Failed to build source config: region {region!r} contains {REGION_SEPARATOR!r}"
            )

    return {
        ACCESS_STRATEGY_KEY: EXTERNAL_ID_ACCESS_STRATEGY,
        EXTERNAL_ID_KEY: external_identity,
        ROLE_ARN_KEY: role_reference,
        REGIONS_KEY: REGION_SEPARATOR.join(regions),
    }


def decode_source_config(config: dict[str, str] | None) -> DecodedSourceConfig:
    """Recover role, regions and external ID from a config map."""
    if not config:
        return DecodedSourceConfig()

    regions = None
    if REGIONS_KEY in config:
        regions = split_regions(config[REGIONS_KEY])

    return DecodedSourceConfig(
        role_reference=config.get(ROLE_ARN_KEY),
        region_set=regions,
        external_identity=config.get(EXTERNAL_ID_KEY),
    )


def split_regions(value: str) -> list[str]:
    """Split a joined region string, tolerating stray whitespace and separators."""
    return [part.strip() for part in value.split(REGION_SEPARATOR) if part.strip()]
