"""
Data Model for Hybrid Phenotype Matching

Plain dataclasses shared by the matching components:

- ReferenceEntity: an immutable phenotype from the reference corpus
- AnthropometricProfile: facial ratios measured on the uploaded image
- RawMatch: a signal's unreconciled claim about an entity
- FusedMatch: one ranked, scored, tiered candidate
- AnalysisResult: the ordered list of FusedMatch plus signal bookkeeping

Signals that did not contribute are stored as None ("unavailable"),
never as 0.0.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np


class SignalSource(str, Enum):
    """Where a score came from."""
    EMBEDDING = "embedding"
    MEASUREMENT = "measurement"
    VISION = "vision"


class ConfidenceTier(str, Enum):
    """Coarse display bucket for a fused score."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Ratio fields reported by the measurement service, in display order
RATIO_NAMES: Tuple[str, ...] = (
    "face_width_to_height_ratio",
    "jaw_to_face_width_ratio",
    "eye_spacing_ratio",
    "nose_width_ratio",
    "mouth_width_ratio",
    "facial_index",
    "nasal_index",
    "cephalic_index",
    "nasofrontal_angle",
    "gonial_angle",
)


@dataclass(frozen=True)
class ReferenceEntity:
    """
    A canonical phenotype archetype from the reference corpus.

    Attributes:
        id: Stable identifier (primary key in the reference store).
        name: Display name, e.g. "Nordid".
        description: Free-text description.
        regions: Geographic regions associated with the phenotype.
        parent_groups: Broader groups this phenotype belongs to.
        vector: Stored reference embedding, shape (D,) float32.
        ratios: Stored archetype facial ratios keyed by RATIO_NAMES.
    """

    id: str
    name: str
    description: Optional[str] = None
    regions: Tuple[str, ...] = ()
    parent_groups: Tuple[str, ...] = ()
    vector: Optional[np.ndarray] = field(default=None, compare=False, repr=False)
    ratios: Optional[Mapping[str, float]] = field(default=None, compare=False, repr=False)

    def summary(self) -> Dict[str, Any]:
        """Serializable view without the vector."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "regions": list(self.regions),
            "parent_groups": list(self.parent_groups),
        }


@dataclass
class AnthropometricProfile:
    """
    Facial ratios extracted from one uploaded image.

    Any ratio may be None when the measurement service could not compute
    it. landmark_count == 0 means no face was measured at all.
    """

    face_width_to_height_ratio: Optional[float] = None
    jaw_to_face_width_ratio: Optional[float] = None
    eye_spacing_ratio: Optional[float] = None
    nose_width_ratio: Optional[float] = None
    mouth_width_ratio: Optional[float] = None
    facial_index: Optional[float] = None
    nasal_index: Optional[float] = None
    cephalic_index: Optional[float] = None
    nasofrontal_angle: Optional[float] = None
    gonial_angle: Optional[float] = None
    landmark_count: int = 0
    confidence: float = 0.0

    def is_usable(self, min_landmarks: int = 1) -> bool:
        """True when enough landmarks were detected to trust the ratios."""
        return self.landmark_count >= max(1, min_landmarks)

    def ratios(self) -> Dict[str, float]:
        """Available ratios only."""
        return {
            name: getattr(self, name)
            for name in RATIO_NAMES
            if getattr(self, name) is not None
        }

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {name: getattr(self, name) for name in RATIO_NAMES}
        data["landmark_count"] = self.landmark_count
        data["confidence"] = self.confidence
        return data


@dataclass(frozen=True)
class RawMatch:
    """
    One signal's claim about a reference entity, before reconciliation.

    entity_ref is an entity id (embedding signal) or a free-text name
    (vision signal). raw_score keeps the source's own scale: similarity
    in [0, 1] for embedding and measurement, 0-100 for vision.
    """

    source: SignalSource
    entity_ref: str
    raw_score: float
    reasoning: Optional[str] = None
    groups: Tuple[str, ...] = ()
    rank: Optional[int] = None


@dataclass
class FusedMatch:
    """A reference entity with its per-signal scores and fused ranking score."""

    entity: ReferenceEntity
    embedding_similarity: float
    fused_score: float
    confidence: ConfidenceTier
    measurement_similarity: Optional[float] = None
    vision_confidence: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = self.entity.summary()
        data.update({
            "embedding_similarity": self.embedding_similarity,
            "measurement_similarity": self.measurement_similarity,
            "vision_confidence": self.vision_confidence,
            "fused_score": self.fused_score,
            "confidence": self.confidence.value,
            "metadata": dict(self.metadata),
        })
        return data


@dataclass
class AnalysisResult:
    """
    Ranked output of one hybrid analysis run.

    matches is strictly ordered by fused_score (descending). The first
    entry is the primary match, the next `secondary_count` are secondary.
    """

    matches: List[FusedMatch]
    mode: str
    signals_used: Dict[str, bool]
    degraded: bool = False
    secondary_count: int = 4
    measurements: Optional[AnthropometricProfile] = None
    facial_features: Optional[Dict[str, Any]] = None
    vision_summary: Optional[Dict[str, Any]] = None
    traits: Optional[Dict[str, Any]] = None

    @property
    def primary(self) -> Optional[FusedMatch]:
        return self.matches[0] if self.matches else None

    @property
    def secondary(self) -> List[FusedMatch]:
        return self.matches[1:1 + self.secondary_count]

    def __len__(self) -> int:
        return len(self.matches)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matches": [m.to_dict() for m in self.matches],
            "mode": self.mode,
            "signals_used": dict(self.signals_used),
            "degraded": self.degraded,
            "measurements": self.measurements.to_dict() if self.measurements else None,
            "facial_features": self.facial_features,
            "vision_summary": self.vision_summary,
            "traits": self.traits,
        }
