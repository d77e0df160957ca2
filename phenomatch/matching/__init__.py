"""
Matching Module for Hybrid Phenotype Analysis

This package contains the components that turn the raw signals into a
ranked list of reference phenotypes.

Components:
    - interfaces: Abstract providers and the vector index, with stubs
    - reconciliation: Name normalization and reference lookup
    - embedding_retriever: Nearest-neighbour candidates (mandatory signal)
    - anthropometric: Measurement similarity and facial feature descriptions
    - vision_adapter: Timeout-bounded vision classifier client
    - score_fusion: Weighted fusion, confidence tiers and degradation modes

Usage:
    from phenomatch.matching import EmbeddingRetriever, FusionEngine
    # or use stubs for local testing:
    from phenomatch.matching import StubEmbeddingProvider, StubVectorIndex
"""

from phenomatch.matching.interfaces import (
    VectorIndex,
    EmbeddingProvider,
    MeasurementProvider,
    VisionProvider,
    TraitProvider,
    NarrativeProvider,
    StubVectorIndex,
    StubEmbeddingProvider,
    StubMeasurementProvider,
    StubVisionProvider,
    StubTraitProvider,
    StubNarrativeProvider,
)

from phenomatch.matching.reconciliation import (
    ReferenceIndex,
    normalize,
    match_by_name,
    resolve,
)

from phenomatch.matching.anthropometric import (
    AnthropometricComparator,
    keyword_similarity,
    archetype_similarity,
    describe_facial_features,
)

from phenomatch.matching.embedding_retriever import EmbeddingRetriever, cosine_to_similarity

from phenomatch.matching.vision_adapter import VisionClassifierAdapter

from phenomatch.matching.score_fusion import (
    FusionMode,
    DegradationController,
    FusionEngine,
    confidence_tier,
)

__all__ = [
    # Abstract interfaces
    "VectorIndex",
    "EmbeddingProvider",
    "MeasurementProvider",
    "VisionProvider",
    "TraitProvider",
    "NarrativeProvider",
    # Stub implementations
    "StubVectorIndex",
    "StubEmbeddingProvider",
    "StubMeasurementProvider",
    "StubVisionProvider",
    "StubTraitProvider",
    "StubNarrativeProvider",
    # Reconciliation
    "ReferenceIndex",
    "normalize",
    "match_by_name",
    "resolve",
    # Signals
    "AnthropometricComparator",
    "keyword_similarity",
    "archetype_similarity",
    "describe_facial_features",
    "EmbeddingRetriever",
    "cosine_to_similarity",
    "VisionClassifierAdapter",
    # Fusion
    "FusionMode",
    "DegradationController",
    "FusionEngine",
    "confidence_tier",
]
