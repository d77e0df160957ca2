"""
Core Module for the Hybrid Phenotype Matcher

This package contains the core functionality for matching an uploaded
face image against a reference corpus of phenotypes.

Main components:
    - config: Configuration loading and management
    - models: Shared data model (entities, profiles, matches, results)
    - errors: Fatal pipeline errors with machine-readable codes
    - matching: Retrieval, comparison, reconciliation and fusion
    - services: HTTP clients for the external signal services
    - reference_store: SQLite reference corpus, analyses and reports
    - report_assembler: Report creation and access tracking
    - pipeline: Concurrent end-to-end orchestration

Usage:
    from phenomatch.config import get_config
    from phenomatch.reference_store import ReferenceStore
    from phenomatch.pipeline import build_pipeline, run_hybrid_analysis
"""

from phenomatch.config import (
    get_config,
    get_section,
    get_embedding_config,
    get_measurement_config,
    get_vision_config,
    get_traits_config,
    get_narrative_config,
    get_matching_config,
    get_pipeline_config,
    get_pipeline_settings,
    get_storage_config,
    get_api_config,
    get_server_config,
)

from phenomatch.errors import (
    PipelineError,
    EmbeddingSignalError,
    ServiceUnavailableError,
    DatastoreError,
    NoCandidatesError,
    NoResolvableMatchesError,
    NarrativeError,
)

from phenomatch.models import (
    SignalSource,
    ConfidenceTier,
    ReferenceEntity,
    AnthropometricProfile,
    RawMatch,
    FusedMatch,
    AnalysisResult,
)

from phenomatch.reference_store import (
    ReferenceStore,
    get_reference_store,
    generate_id,
)

from phenomatch.report_assembler import (
    Report,
    ReportAssembler,
    fallback_narrative,
)

from phenomatch.pipeline import (
    HybridAnalysisPipeline,
    PipelineOutcome,
    build_pipeline,
    run_hybrid_analysis,
)

__all__ = [
    # Configuration
    "get_config",
    "get_section",
    "get_embedding_config",
    "get_measurement_config",
    "get_vision_config",
    "get_traits_config",
    "get_narrative_config",
    "get_matching_config",
    "get_pipeline_config",
    "get_pipeline_settings",
    "get_storage_config",
    "get_api_config",
    "get_server_config",
    # Errors
    "PipelineError",
    "EmbeddingSignalError",
    "ServiceUnavailableError",
    "DatastoreError",
    "NoCandidatesError",
    "NoResolvableMatchesError",
    "NarrativeError",
    # Data model
    "SignalSource",
    "ConfidenceTier",
    "ReferenceEntity",
    "AnthropometricProfile",
    "RawMatch",
    "FusedMatch",
    "AnalysisResult",
    # Reference Store
    "ReferenceStore",
    "get_reference_store",
    "generate_id",
    # Reports
    "Report",
    "ReportAssembler",
    "fallback_narrative",
    # Pipeline
    "HybridAnalysisPipeline",
    "PipelineOutcome",
    "build_pipeline",
    "run_hybrid_analysis",
]
