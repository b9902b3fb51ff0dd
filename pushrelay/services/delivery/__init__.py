from pushrelay.services.delivery.contracts import EndpointRegistry, JobStore
from pushrelay.services.delivery.orchestrator import (
    BatchSummary,
    DeliveryOrchestrator,
    JobOutcome,
)

__all__ = [
    "BatchSummary",
    "DeliveryOrchestrator",
    "EndpointRegistry",
    "JobOutcome",
    "JobStore",
]
