"""
Embedding Retriever: nearest-neighbour lookup over reference vectors.

This is the mandatory signal of the hybrid pipeline. It queries the
vector index with the probe vector, resolves every hit against the
reference index and returns (entity, similarity) pairs ordered by
similarity.

Cosine similarity from the index lies in [-1, 1]. Negative values are
clamped to 0 so that every similarity handed to fusion lies in [0, 1].
"""

import logging
from typing import List, Tuple

import numpy as np

from phenomatch.errors import (
    DatastoreError,
    EmbeddingSignalError,
    NoCandidatesError,
    NoResolvableMatchesError,
    PipelineError,
)
from phenomatch.matching.interfaces import VectorIndex
from phenomatch.matching.reconciliation import ReferenceIndex, resolve
from phenomatch.models import RawMatch, ReferenceEntity, SignalSource

logger = logging.getLogger(__name__)


def cosine_to_similarity(raw_cosine: float) -> float:
    """Clamp a cosine similarity into [0, 1]."""
    if raw_cosine != raw_cosine:  # NaN
        return 0.0
    return max(0.0, min(1.0, float(raw_cosine)))


class EmbeddingRetriever:
    """
    Retrieve the reference entities closest to a probe vector.

    Args:
        vector_index: Datastore-backed nearest-neighbour search.
        reference_index: Read-only id/name lookup for the corpus.
        dimensions: Expected vector dimension (None disables the check).
    """

    def __init__(
        self,
        vector_index: VectorIndex,
        reference_index: ReferenceIndex,
        dimensions: int = None,
    ):
        self.vector_index = vector_index
        self.reference_index = reference_index
        self.dimensions = dimensions

    def retrieve(self, vector: np.ndarray, k: int) -> List[Tuple[ReferenceEntity, float]]:
        """
        Return at most k (entity, similarity) pairs, most similar first.

        Ties are ordered by entity id so the output is deterministic.

        Raises:
            EmbeddingSignalError: If the vector is malformed.
            DatastoreError: If the vector index cannot be queried.
            NoCandidatesError: If the index returned nothing.
            NoResolvableMatchesError: If no hit resolves to a reference entity.
        """
        if k <= 0:
            raise ValueError(f"k must be positive, got {k}")

        probe = self._validate(vector)

        try:
            hits = self.vector_index.search(probe, k)
        except PipelineError:
            raise
        except Exception as e:
            logger.error(f"Vector search failed: {e}")
            raise DatastoreError(f"Vector search failed: {e}") from e

        if not hits:
            raise NoCandidatesError("Vector search returned no candidates")

        candidates: List[Tuple[ReferenceEntity, float]] = []
        seen = set()
        for entity_id, raw_cosine in hits:
            raw = RawMatch(
                source=SignalSource.EMBEDDING,
                entity_ref=str(entity_id),
                raw_score=float(raw_cosine),
            )
            entity = resolve(raw, self.reference_index)
            if entity is None or entity.id in seen:
                continue
            seen.add(entity.id)
            candidates.append((entity, cosine_to_similarity(raw.raw_score)))

        if not candidates:
            raise NoResolvableMatchesError(
                f"None of {len(hits)} vector search hits resolve to a reference entity"
            )

        candidates.sort(key=lambda pair: (-pair[1], pair[0].id))
        candidates = candidates[:k]

        logger.info(
            f"Retrieved {len(candidates)} embedding candidates "
            f"(top: {candidates[0][0].name} {candidates[0][1]:.3f})"
        )
        return candidates

    def _validate(self, vector: np.ndarray) -> np.ndarray:
        if vector is None:
            raise EmbeddingSignalError("Received None embedding")

        probe = np.asarray(vector, dtype=np.float32).ravel()

        if probe.size == 0:
            raise EmbeddingSignalError("Received empty embedding")
        if self.dimensions is not None and probe.shape[0] != self.dimensions:
            raise EmbeddingSignalError(
                f"Embedding dimension mismatch: expected {self.dimensions}, got {probe.shape[0]}"
            )
        if not np.all(np.isfinite(probe)):
            raise EmbeddingSignalError("Embedding contains non-finite values")
        if np.linalg.norm(probe) < 1e-8:
            raise EmbeddingSignalError("Zero-norm embedding")

        return probe
