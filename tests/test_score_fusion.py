"""
Tests for score fusion and signal degradation.

This test suite verifies:
- Mode selection from signal availability
- Weighted fusion of embedding and measurement scores
- Confidence tiers and ranking (including tie-breaks)
- Vision merged as metadata only, never blended into the fused score
- Fused scores stay in [0, 1] across random inputs
- Non-finite ratios or similarities never produce a non-finite score

Run with: pytest tests/test_score_fusion.py -v
"""

import numpy as np
import pytest

from phenomatch.errors import NoCandidatesError
from phenomatch.matching.anthropometric import AnthropometricComparator
from phenomatch.matching.score_fusion import (
    DegradationController,
    FusionEngine,
    FusionMode,
    confidence_tier,
    ranking_key,
)
from phenomatch.models import (
    AnthropometricProfile,
    ConfidenceTier,
    FusedMatch,
    ReferenceEntity,
)


@pytest.fixture
def engine():
    return FusionEngine()


@pytest.fixture
def candidates(reference_index):
    return [
        (reference_index.get("ph_nordid"), 0.91),
        (reference_index.get("ph_alpinid"), 0.77),
        (reference_index.get("ph_sinid"), 0.60),
    ]


class TestDegradationController:
    """Tests for choosing the fusion mode."""

    @pytest.mark.parametrize("measurement,vision,mode", [
        (False, False, FusionMode.EMBEDDING_ONLY),
        (True, False, FusionMode.EMBEDDING_MEASUREMENT),
        (False, True, FusionMode.EMBEDDING_VISION),
        (True, True, FusionMode.FULL),
    ])
    def test_select_mode(self, measurement, vision, mode):
        assert DegradationController.select_mode(measurement, vision) == mode

    def test_signals_used(self):
        used = DegradationController.signals_used(FusionMode.EMBEDDING_VISION)
        assert used == {"embedding": True, "measurement": False, "vision": True}


class TestConfidenceTier:
    """Tests for tier boundaries (exclusive lower bounds)."""

    @pytest.mark.parametrize("score,tier", [
        (0.95, ConfidenceTier.HIGH),
        (0.81, ConfidenceTier.HIGH),
        (0.80, ConfidenceTier.MEDIUM),
        (0.66, ConfidenceTier.MEDIUM),
        (0.65, ConfidenceTier.LOW),
        (0.0, ConfidenceTier.LOW),
    ])
    def test_boundaries(self, score, tier):
        assert confidence_tier(score) == tier


class TestFusionEngine:
    """Tests for fusing candidates into an AnalysisResult."""

    def test_embedding_only(self, engine, candidates, reference_index):
        result = engine.fuse(candidates, reference_index)

        assert result.mode == "embedding_only"
        assert result.signals_used == {"embedding": True, "measurement": False, "vision": False}
        assert [m.fused_score for m in result.matches] == pytest.approx([0.91, 0.77, 0.60])
        assert [m.confidence for m in result.matches] == [
            ConfidenceTier.HIGH, ConfidenceTier.MEDIUM, ConfidenceTier.LOW,
        ]
        assert all(m.measurement_similarity is None for m in result.matches)
        assert all(m.vision_confidence is None for m in result.matches)

    def test_embedding_with_measurement(self, engine, narrow_profile, reference_index):
        entity = ReferenceEntity(id="ph_bantuid", name="Bantuid")

        result = engine.fuse([(entity, 0.80)], reference_index, profile=narrow_profile)

        match = result.primary
        assert result.mode == "embedding_measurement"
        assert match.measurement_similarity == pytest.approx(0.5)
        assert match.fused_score == pytest.approx(0.71)
        assert match.confidence == ConfidenceTier.MEDIUM

    def test_measurement_adds_facial_features(self, engine, candidates, narrow_profile, reference_index):
        result = engine.fuse(candidates, reference_index, profile=narrow_profile)

        assert result.facial_features["face_shape"] == "elongated"
        assert result.primary.metadata["facial_features"] == result.facial_features
        assert result.measurements is narrow_profile

    def test_unusable_profile_dropped(self, engine, candidates, empty_profile, reference_index):
        result = engine.fuse(candidates, reference_index, profile=empty_profile, degraded=True)

        assert result.mode == "embedding_only"
        assert result.degraded is True
        assert result.measurements is None
        assert all(m.measurement_similarity is None for m in result.matches)
        assert [m.fused_score for m in result.matches] == pytest.approx([0.91, 0.77, 0.60])

    def test_vision_reconciled_onto_candidate(self, engine, candidates, vision_payload, reference_index):
        result = engine.fuse(candidates, reference_index, vision=vision_payload)

        nordid = result.primary
        assert result.mode == "embedding_vision"
        assert nordid.entity.id == "ph_nordid"
        assert nordid.vision_confidence == 92
        assert nordid.metadata["vision_reasoning"] == "Narrow face"
        assert nordid.metadata["vision_rank"] == 1
        assert nordid.metadata["vision_groups"] == [
            "Europid", "Scandinavia", "Northern Europe", "Nordic",
        ]
        assert nordid.metadata["vision_provider"] == "gpt5"
        assert result.vision_summary["primary_region"] == "Northern Europe"

    def test_vision_never_changes_fused_score(self, engine, candidates, vision_payload, reference_index):
        without = engine.fuse(candidates, reference_index)
        with_vision = engine.fuse(candidates, reference_index, vision=vision_payload)

        assert [m.entity.id for m in with_vision.matches] == [m.entity.id for m in without.matches]
        assert [m.fused_score for m in with_vision.matches] == [m.fused_score for m in without.matches]

    def test_vision_does_not_promote_non_candidates(self, engine, reference_index):
        from phenomatch.services.payloads import parse_signal_payload

        vision = parse_signal_payload("vision", {
            "matches": [{"phenotype": "Bantuid", "confidence": 99}],
        })
        candidates = [(reference_index.get("ph_nordid"), 0.7)]

        result = engine.fuse(candidates, reference_index, vision=vision)

        assert [m.entity.id for m in result.matches] == ["ph_nordid"]
        assert result.primary.vision_confidence is None
        assert "vision_groups" in result.primary.metadata

    def test_first_vision_mention_wins(self, engine, candidates, reference_index):
        from phenomatch.services.payloads import parse_signal_payload

        vision = parse_signal_payload("vision", {
            "matches": [
                {"phenotype": "Alpinid", "confidence": 80, "reasoning": "first"},
                {"phenotype": "ALPINID", "confidence": 30, "reasoning": "second"},
            ],
        })

        result = engine.fuse(candidates, reference_index, vision=vision)
        alpinid = next(m for m in result.matches if m.entity.id == "ph_alpinid")

        assert alpinid.vision_confidence == 80
        assert alpinid.metadata["vision_rank"] == 1

    def test_full_mode(self, engine, candidates, narrow_profile, vision_payload, reference_index):
        result = engine.fuse(candidates, reference_index, profile=narrow_profile, vision=vision_payload)

        assert result.mode == "embedding_measurement_vision"
        assert result.signals_used == {"embedding": True, "measurement": True, "vision": True}
        assert all(m.measurement_similarity is not None for m in result.matches)

    def test_top_n_truncation(self, candidates, reference_index):
        engine = FusionEngine({"top_n": 2, "secondary_count": 1})

        result = engine.fuse(candidates, reference_index)

        assert len(result) == 2
        assert [m.entity.id for m in result.secondary] == ["ph_alpinid"]

    def test_ties_ordered_by_id(self, engine, reference_index):
        candidates = [
            (reference_index.get("ph_sinid"), 0.7),
            (reference_index.get("ph_alpinid"), 0.7),
        ]

        result = engine.fuse(candidates, reference_index)

        assert [m.entity.id for m in result.matches] == ["ph_alpinid", "ph_sinid"]

    def test_no_candidates_raises(self, engine, reference_index):
        with pytest.raises(NoCandidatesError):
            engine.fuse([], reference_index)

    def test_weights_normalized(self):
        with pytest.warns(UserWarning):
            engine = FusionEngine({"embedding_weight": 0.7, "measurement_weight": 0.7})

        assert engine.embedding_weight == pytest.approx(0.5)
        assert engine.measurement_weight == pytest.approx(0.5)

    def test_nan_ratio_in_archetype_mode(self, reference_index):
        engine = FusionEngine({}, AnthropometricComparator({"use_archetype_ratios": True}))
        profile = AnthropometricProfile(
            face_width_to_height_ratio=float("nan"), landmark_count=478, confidence=0.9,
        )
        entity = ReferenceEntity(
            id="ph_bantuid", name="Bantuid", ratios={"face_width_to_height_ratio": 0.8},
        )

        result = engine.fuse([(entity, 0.80)], reference_index, profile=profile)

        match = result.primary
        assert match.measurement_similarity == pytest.approx(0.5)
        assert match.fused_score == pytest.approx(0.71)
        assert result.to_dict()["matches"][0]["fused_score"] == pytest.approx(0.71)

    def test_fused_score_non_finite_inputs(self, engine):
        assert engine.fused_score(float("nan"), 0.5) == pytest.approx(0.15)
        assert engine.fused_score(0.8, float("nan")) == pytest.approx(0.8)
        assert engine.fused_score(0.8, float("inf")) == pytest.approx(0.8)

    def test_non_finite_embedding_similarity_scored_as_zero(self, engine, reference_index):
        entity = ReferenceEntity(id="ph_sinid", name="Sinid")

        result = engine.fuse([(entity, float("nan"))], reference_index)

        assert result.primary.embedding_similarity == 0.0
        assert result.primary.fused_score == 0.0
        assert result.primary.confidence == ConfidenceTier.LOW

    def test_fused_scores_bounded_and_sorted(self, reference_entities, reference_index):
        """Random similarities and profiles never leave [0, 1] in any mode."""
        from phenomatch.services.payloads import parse_signal_payload

        rng = np.random.RandomState(42)
        engine = FusionEngine()
        vision = parse_signal_payload("vision", {
            "matches": [{"phenotype": e.name, "confidence": 50} for e in reference_entities],
        })

        for _ in range(50):
            candidates = [(e, float(rng.uniform(-0.2, 1.2))) for e in reference_entities]
            profile = AnthropometricProfile(
                face_width_to_height_ratio=float(rng.uniform(0.5, 1.1)),
                nasal_index=float(rng.uniform(0.5, 1.1)),
                landmark_count=int(rng.randint(0, 3)),
            )
            for use_profile in (False, True):
                for use_vision in (False, True):
                    result = engine.fuse(
                        candidates,
                        reference_index,
                        profile=profile if use_profile else None,
                        vision=vision if use_vision else None,
                    )
                    scores = [m.fused_score for m in result.matches]
                    assert all(0.0 <= s <= 1.0 for s in scores)
                    assert scores == sorted(scores, reverse=True)
                    for m in result.matches:
                        assert m.confidence == confidence_tier(m.fused_score)


class TestRankingKey:
    """Tests for the sort key used by fusion."""

    def test_embedding_breaks_fused_ties(self):
        a = FusedMatch(
            entity=ReferenceEntity(id="b", name="B"),
            embedding_similarity=0.65, fused_score=0.71, confidence=ConfidenceTier.MEDIUM,
        )
        b = FusedMatch(
            entity=ReferenceEntity(id="a", name="A"),
            embedding_similarity=0.80, fused_score=0.71, confidence=ConfidenceTier.MEDIUM,
        )

        assert sorted([a, b], key=ranking_key) == [b, a]
