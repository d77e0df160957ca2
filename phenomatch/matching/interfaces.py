"""
Matching Interfaces Module

Abstract interfaces for the collaborators of the hybrid matching pipeline.
The pipeline only ever talks to these interfaces, so every external
service can be swapped for a stub in tests or local development.

The pipeline has five external services and one datastore:
1. EmbeddingProvider - image -> feature vector (mandatory)
2. MeasurementProvider - image -> anthropometric profile (optional)
3. VisionProvider - image -> free-text classification (optional)
4. TraitProvider - image -> hair, eye and skin description (optional, metadata only)
5. NarrativeProvider - ranked result -> report text (optional)
6. VectorIndex - nearest-neighbour search over reference vectors

Stub implementations return fixed values, optionally after a delay or by
raising a configured error.

Usage:
    from phenomatch.matching.interfaces import StubEmbeddingProvider

    provider = StubEmbeddingProvider(vector=np.ones(512))
    vector = await provider.embed("https://example.com/face.jpg")
"""

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

import numpy as np

from phenomatch.models import AnthropometricProfile

if TYPE_CHECKING:
    from phenomatch.models import AnalysisResult
    from phenomatch.services.payloads import TraitPayload, VisionPayload


class VectorIndex(ABC):
    """
    Nearest-neighbour search over stored reference vectors.

    Implemented by ReferenceStore on top of SQLite.
    """

    @abstractmethod
    def search(self, vector: np.ndarray, k: int) -> List[Tuple[str, float]]:
        """
        Find the k reference vectors most similar to `vector`.

        Args:
            vector: Probe vector, shape (D,).
            k: Maximum number of results.

        Returns:
            List of (entity_id, cosine_similarity), most similar first.
            Shorter than k when the corpus is smaller.

        Raises:
            DatastoreError: If the datastore cannot be queried.
        """
        pass


class EmbeddingProvider(ABC):
    """Turns an image reference into a fixed-dimensionality feature vector."""

    @abstractmethod
    async def embed(self, image_ref: str) -> np.ndarray:
        """
        Generate the feature vector for an image.

        Raises:
            EmbeddingSignalError: On any failure. This signal is mandatory.
        """
        pass

    async def check_health(self) -> bool:
        """Return True when the service is ready to embed."""
        return True


class MeasurementProvider(ABC):
    """Extracts anthropometric ratios from an image."""

    @abstractmethod
    async def measure(self, image_ref: str) -> Optional[AnthropometricProfile]:
        """Return the measured profile, or None when extraction failed."""
        pass


class VisionProvider(ABC):
    """Classifies an image against the phenotype corpus with a vision LLM."""

    @abstractmethod
    async def classify(self, image_ref: str) -> Optional["VisionPayload"]:
        """Return the validated classification, or None. Must not raise."""
        pass


class TraitProvider(ABC):
    """Describes visible traits (hair, eyes, skin) of the face in an image."""

    @abstractmethod
    async def analyze(self, image_ref: str) -> Optional["TraitPayload"]:
        """Return the validated traits, or None. Must not raise."""
        pass


class NarrativeProvider(ABC):
    """Writes the narrative text of a report from a ranked result."""

    @abstractmethod
    async def generate(self, result: "AnalysisResult") -> str:
        """
        Generate report text.

        Raises:
            NarrativeError: When no text could be produced.
        """
        pass


# ============================================================
# Stub Implementations (local development and tests)
# ============================================================


class StubVectorIndex(VectorIndex):
    """
    In-memory vector index over fixed similarities.

    Returns the configured (entity_id, similarity) pairs regardless of
    the probe vector, sorted by similarity.
    """

    def __init__(self, similarities: Dict[str, float], error: Optional[Exception] = None):
        self.similarities = dict(similarities)
        self.error = error
        self.calls: List[int] = []

    def search(self, vector: np.ndarray, k: int) -> List[Tuple[str, float]]:
        self.calls.append(k)
        if self.error is not None:
            raise self.error
        ranked = sorted(self.similarities.items(), key=lambda item: (-item[1], item[0]))
        return ranked[:k]


class StubEmbeddingProvider(EmbeddingProvider):
    """Returns a fixed vector, or raises the configured error."""

    def __init__(
        self,
        vector: Optional[Sequence[float]] = None,
        error: Optional[Exception] = None,
        delay_sec: float = 0.0,
        healthy: bool = True,
    ):
        self.vector = np.asarray(vector if vector is not None else np.ones(8), dtype=np.float32)
        self.error = error
        self.delay_sec = delay_sec
        self.healthy = healthy

    async def embed(self, image_ref: str) -> np.ndarray:
        if self.delay_sec:
            await asyncio.sleep(self.delay_sec)
        if self.error is not None:
            raise self.error
        return self.vector

    async def check_health(self) -> bool:
        return self.healthy


class StubMeasurementProvider(MeasurementProvider):
    """Returns a fixed profile (or None) after an optional delay."""

    def __init__(
        self,
        profile: Optional[AnthropometricProfile] = None,
        delay_sec: float = 0.0,
        error: Optional[Exception] = None,
    ):
        self.profile = profile
        self.delay_sec = delay_sec
        self.error = error

    async def measure(self, image_ref: str) -> Optional[AnthropometricProfile]:
        if self.delay_sec:
            await asyncio.sleep(self.delay_sec)
        if self.error is not None:
            raise self.error
        return self.profile


class StubVisionProvider(VisionProvider):
    """Returns a fixed classification (or None) after an optional delay."""

    def __init__(self, payload: Optional["VisionPayload"] = None, delay_sec: float = 0.0):
        self.payload = payload
        self.delay_sec = delay_sec

    async def classify(self, image_ref: str) -> Optional["VisionPayload"]:
        if self.delay_sec:
            await asyncio.sleep(self.delay_sec)
        return self.payload


class StubTraitProvider(TraitProvider):
    """Returns fixed traits (or None) after an optional delay."""

    def __init__(self, payload: Optional["TraitPayload"] = None, delay_sec: float = 0.0):
        self.payload = payload
        self.delay_sec = delay_sec

    async def analyze(self, image_ref: str) -> Optional["TraitPayload"]:
        if self.delay_sec:
            await asyncio.sleep(self.delay_sec)
        return self.payload


class StubNarrativeProvider(NarrativeProvider):
    """Returns fixed text, or raises the configured error."""

    def __init__(self, text: str = "Stub narrative.", error: Optional[Exception] = None):
        self.text = text
        self.error = error

    async def generate(self, result: "AnalysisResult") -> str:
        if self.error is not None:
            raise self.error
        return self.text
