"""DataForSEO provider client and response schemas."""

from seo_aggregator.provider.client import DataForSeoClient
from seo_aggregator.provider.models import (
    TASK_COMPLETE,
    ProviderResponse,
    ProviderTask,
    ReadyEntry,
)

__all__ = [
    "TASK_COMPLETE",
    "DataForSeoClient",
    "ProviderResponse",
    "ProviderTask",
    "ReadyEntry",
]
