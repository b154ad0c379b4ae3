from .signature import make_signature
from .registry import InFlightRegistry, InFlightIngestion, Admission
from .orchestrator import IngestionOrchestrator, IngestionResult, IngestionState, UploadRequest

__all__ = [
    "make_signature",
    "InFlightRegistry",
    "InFlightIngestion",
    "Admission",
    "IngestionOrchestrator",
    "IngestionResult",
    "IngestionState",
    "UploadRequest",
]
