"""
External Service Clients

HTTP clients for the services the hybrid pipeline depends on. Each client
takes an injected httpx.AsyncClient and its config section.

Components:
    - payloads: pydantic boundary schemas (tagged union keyed by source)
    - embedding_client: face embedding service (mandatory signal)
    - measurement_client: anthropometric measurement service (optional)
    - traits_client: hair, eye and skin description from a vision model (optional)
    - narrative_client: chat-completions report writer (optional)

The vision classifier adapter lives in phenomatch.matching.vision_adapter.
"""

from phenomatch.services.payloads import (
    EmbeddingPayload,
    MeasurementPayload,
    TraitPayload,
    VisionMatchPayload,
    VisionPayload,
    parse_signal_payload,
)

from phenomatch.services.embedding_client import EmbeddingServiceClient
from phenomatch.services.measurement_client import MeasurementServiceClient
from phenomatch.services.narrative_client import NarrativeClient, build_report_prompt
from phenomatch.services.traits_client import TraitAnalysisClient

__all__ = [
    # Payloads
    "EmbeddingPayload",
    "MeasurementPayload",
    "TraitPayload",
    "VisionMatchPayload",
    "VisionPayload",
    "parse_signal_payload",
    # Clients
    "EmbeddingServiceClient",
    "MeasurementServiceClient",
    "NarrativeClient",
    "TraitAnalysisClient",
    "build_report_prompt",
]
