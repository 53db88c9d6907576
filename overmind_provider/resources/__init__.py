"""Provider resources and data sources."""

from .aws_external_id import AWSExternalIdDataSource
from .aws_source import AWSSourceReconciler

__all__ = [
    "AWSExternalIdDataSource",
    "AWSSourceReconciler",
]
