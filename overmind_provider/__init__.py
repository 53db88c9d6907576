"""Overmind source provider.

Declarative management of Overmind AWS infrastructure sources: external ID
bootstrap, config map encoding and reconciliation against the Overmind API.
"""

__version__ = "0.1.0"

from overmind_provider.config import Config, ProviderConfig
from overmind_provider.models import AWSSourceConfig, AWSSourceState, SourceStatus
from overmind_provider.provider import OvermindProvider
from overmind_provider.resources import AWSExternalIdDataSource, AWSSourceReconciler

__all__ = [
    "AWSExternalIdDataSource",
    "AWSSourceConfig",
    "AWSSourceReconciler",
    "AWSSourceState",
    "Config",
    "OvermindProvider",
    "ProviderConfig",
    "SourceStatus",
    "__version__",
]
