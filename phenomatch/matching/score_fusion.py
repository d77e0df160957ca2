"""
Score Fusion: combine the available signals into one ranked result.

Includes:
  - FusionMode / DegradationController: choose the scoring rule from the
    set of signals that actually arrived
  - FusionEngine: score, tier, merge vision metadata, sort and truncate

Scoring rules (embedding is always present by the time fusion runs):

    embedding only            fused = embedding
    embedding + measurement   fused = 0.70 * embedding + 0.30 * measurement
    embedding + vision        fused = embedding, vision merged as metadata
    all three                 measurement blended, vision merged as metadata

Vision confidence is a self-reported 0-100 LLM number and is never blended
into the fused score.
"""

import logging
import math
import warnings
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from phenomatch.errors import NoCandidatesError
from phenomatch.matching.anthropometric import AnthropometricComparator, describe_facial_features
from phenomatch.matching.reconciliation import ReferenceIndex, resolve
from phenomatch.models import (
    AnalysisResult,
    AnthropometricProfile,
    ConfidenceTier,
    FusedMatch,
    ReferenceEntity,
    SignalSource,
)
from phenomatch.services.payloads import VisionPayload

logger = logging.getLogger(__name__)

EMBEDDING_WEIGHT = 0.70
MEASUREMENT_WEIGHT = 0.30
HIGH_THRESHOLD = 0.80
MEDIUM_THRESHOLD = 0.65


class FusionMode(str, Enum):
    """Scoring rule selected from signal availability."""
    EMBEDDING_ONLY = "embedding_only"
    EMBEDDING_MEASUREMENT = "embedding_measurement"
    EMBEDDING_VISION = "embedding_vision"
    FULL = "embedding_measurement_vision"

    @property
    def blends_measurement(self) -> bool:
        return self in (FusionMode.EMBEDDING_MEASUREMENT, FusionMode.FULL)

    @property
    def merges_vision(self) -> bool:
        return self in (FusionMode.EMBEDDING_VISION, FusionMode.FULL)


class DegradationController:
    """Pick the fusion mode for the signals that are available."""

    @staticmethod
    def select_mode(measurement_available: bool, vision_available: bool) -> FusionMode:
        if measurement_available and vision_available:
            return FusionMode.FULL
        if measurement_available:
            return FusionMode.EMBEDDING_MEASUREMENT
        if vision_available:
            return FusionMode.EMBEDDING_VISION
        return FusionMode.EMBEDDING_ONLY

    @staticmethod
    def signals_used(mode: FusionMode) -> Dict[str, bool]:
        return {
            SignalSource.EMBEDDING.value: True,
            SignalSource.MEASUREMENT.value: mode.blends_measurement,
            SignalSource.VISION.value: mode.merges_vision,
        }


def confidence_tier(
    score: float,
    high_threshold: float = HIGH_THRESHOLD,
    medium_threshold: float = MEDIUM_THRESHOLD,
) -> ConfidenceTier:
    """Bucket a fused score: > high -> HIGH, > medium -> MEDIUM, else LOW."""
    if score > high_threshold:
        return ConfidenceTier.HIGH
    if score > medium_threshold:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW


def ranking_key(match: FusedMatch) -> Tuple[float, float, str]:
    """Sort key: fused score desc, then embedding similarity desc, then id."""
    return (-match.fused_score, -match.embedding_similarity, match.entity.id)


class FusionEngine:
    """
    Weighted fusion of embedding and measurement scores with vision metadata.

    Args:
        config: Dictionary with optional keys:
            - embedding_weight: Weight of embedding similarity (default 0.70)
            - measurement_weight: Weight of measurement similarity (default 0.30)
            - high_threshold: Lower bound (exclusive) of the HIGH tier (default 0.80)
            - medium_threshold: Lower bound (exclusive) of the MEDIUM tier (default 0.65)
            - top_n: Number of matches kept (default 10)
            - secondary_count: Matches after the primary reported as secondary (default 4)
        comparator: Anthropometric comparator used in measurement modes.
    """

    def __init__(self, config: dict = None, comparator: AnthropometricComparator = None):
        if config is None:
            config = {}
        self.embedding_weight = float(config.get("embedding_weight", EMBEDDING_WEIGHT))
        self.measurement_weight = float(config.get("measurement_weight", MEASUREMENT_WEIGHT))
        self.high_threshold = float(config.get("high_threshold", HIGH_THRESHOLD))
        self.medium_threshold = float(config.get("medium_threshold", MEDIUM_THRESHOLD))
        self.top_n = int(config.get("top_n", 10))
        self.secondary_count = int(config.get("secondary_count", 4))
        self.comparator = comparator or AnthropometricComparator(config)

        total = self.embedding_weight + self.measurement_weight
        if abs(total - 1.0) > 0.01:
            warnings.warn(
                f"Fusion weights sum to {total:.3f}, not 1.0. Normalizing."
            )
            self.embedding_weight /= total
            self.measurement_weight /= total

    def fused_score(self, embedding_similarity: float, measurement_similarity: Optional[float]) -> float:
        """Fused score in [0, 1]; measurement is ignored when None or not finite."""
        if not math.isfinite(embedding_similarity):
            embedding_similarity = 0.0
        if measurement_similarity is None or not math.isfinite(measurement_similarity):
            score = embedding_similarity
        else:
            score = (
                self.embedding_weight * embedding_similarity
                + self.measurement_weight * measurement_similarity
            )
        return float(np.clip(score, 0.0, 1.0))

    def fuse(
        self,
        candidates: Sequence[Tuple[ReferenceEntity, float]],
        reference_index: ReferenceIndex,
        profile: Optional[AnthropometricProfile] = None,
        vision: Optional[VisionPayload] = None,
        degraded: bool = False,
    ) -> AnalysisResult:
        """
        Build the ranked AnalysisResult from the available signals.

        Args:
            candidates: Embedding candidates as (entity, similarity).
            reference_index: Lookup used to reconcile vision labels.
            profile: Measured profile, or None when unavailable.
            vision: Validated vision classification, or None.
            degraded: True when an optional signal was requested but failed.

        Raises:
            NoCandidatesError: If there are no embedding candidates.
        """
        if not candidates:
            raise NoCandidatesError("Fusion requires at least one embedding candidate")

        measurement_available = self.comparator.is_available(profile)
        if profile is not None and not measurement_available:
            logger.warning(
                f"Measurement profile unusable ({profile.landmark_count} landmarks); "
                f"dropping measurement from fusion"
            )
        vision_available = vision is not None
        mode = DegradationController.select_mode(measurement_available, vision_available)

        matches: List[FusedMatch] = []
        for entity, embedding_similarity in candidates:
            embedding_similarity = float(embedding_similarity)
            if not math.isfinite(embedding_similarity):
                logger.warning(f"Non-finite embedding similarity for {entity.id}; scoring as 0")
                embedding_similarity = 0.0
            embedding_similarity = float(np.clip(embedding_similarity, 0.0, 1.0))
            measurement_similarity = None
            if mode.blends_measurement:
                measurement_similarity = self.comparator.compare_entity(profile, entity)
                if measurement_similarity is not None and not math.isfinite(measurement_similarity):
                    measurement_similarity = None

            score = self.fused_score(embedding_similarity, measurement_similarity)
            matches.append(FusedMatch(
                entity=entity,
                embedding_similarity=embedding_similarity,
                measurement_similarity=measurement_similarity,
                fused_score=score,
                confidence=confidence_tier(score, self.high_threshold, self.medium_threshold),
            ))

        if mode.merges_vision:
            self._merge_vision(matches, vision, reference_index)

        matches.sort(key=ranking_key)
        matches = matches[:self.top_n]

        facial_features = None
        if measurement_available:
            facial_features = describe_facial_features(profile)
            matches[0].metadata["facial_features"] = facial_features

        logger.info(
            f"Fused {len(matches)} matches in mode {mode.value} "
            f"(primary: {matches[0].entity.name} {matches[0].fused_score:.3f})"
        )

        return AnalysisResult(
            matches=matches,
            mode=mode.value,
            signals_used=DegradationController.signals_used(mode),
            degraded=degraded,
            secondary_count=self.secondary_count,
            measurements=profile if measurement_available else None,
            facial_features=facial_features,
            vision_summary=vision.summary() if vision_available else None,
        )

    def _merge_vision(
        self,
        matches: List[FusedMatch],
        vision: VisionPayload,
        reference_index: ReferenceIndex,
    ) -> None:
        """Attach vision confidence and reasoning to the candidates they name."""
        by_id: Dict[str, FusedMatch] = {m.entity.id: m for m in matches}
        merged: Dict[str, Any] = {}

        for raw in vision.to_raw_matches():
            entity = resolve(raw, reference_index)
            if entity is None:
                continue
            target = by_id.get(entity.id)
            if target is None:
                logger.info(
                    f"Vision match '{raw.entity_ref}' ({entity.id}) is not an embedding "
                    f"candidate; not promoted"
                )
                continue
            if entity.id in merged:
                # Keep the classifier's highest-ranked mention
                continue
            merged[entity.id] = raw

        for match in matches:
            raw = merged.get(match.entity.id)

            groups: List[str] = []
            for group in (
                list(match.entity.parent_groups)
                + list(match.entity.regions)
                + ([vision.primary_region] if vision.primary_region else [])
                + (list(raw.groups) if raw is not None else [])
            ):
                if group and group not in groups:
                    groups.append(group)

            match.metadata.update({
                "vision_groups": groups,
                "vision_provider": vision.provider,
                "vision_analysis": vision.analysis,
                "vision_primary_region": vision.primary_region,
                "vision_cost": vision.cost_estimate,
            })
            if raw is not None:
                match.vision_confidence = raw.raw_score
                match.metadata["vision_reasoning"] = raw.reasoning
                match.metadata["vision_rank"] = raw.rank

        logger.info(f"Merged {len(merged)} vision matches onto {len(matches)} candidates")
