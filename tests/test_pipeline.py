"""
Tests for the HybridAnalysisPipeline.

This test suite verifies the end-to-end orchestration with stub providers:
- All signals available -> full fusion mode, everything persisted
- Vision exceeding the shared deadline -> vision absent, request succeeds
- Embedding failure -> fatal error, nothing persisted
- Unusable or failed measurement -> measurement dropped, result degraded
- Narrative failure of any kind -> templated narrative
- Trait analysis -> reported, never scored; failure marks the result degraded
- Report write failure -> upload and analysis rolled back
- Request cancellation cancels in-flight signal calls

Run with: pytest tests/test_pipeline.py -v
"""

import asyncio
import os
import shutil
import tempfile

import httpx
import pytest

from phenomatch.errors import (
    DatastoreError,
    EmbeddingSignalError,
    NarrativeError,
    NoCandidatesError,
)
from phenomatch.matching.interfaces import (
    MeasurementProvider,
    StubEmbeddingProvider,
    StubMeasurementProvider,
    StubNarrativeProvider,
    StubTraitProvider,
    StubVectorIndex,
    StubVisionProvider,
)
from phenomatch.matching.vision_adapter import VisionClassifierAdapter
from phenomatch.pipeline import HybridAnalysisPipeline
from phenomatch.reference_store import ReferenceStore
from phenomatch.report_assembler import NARRATIVE_GENERATED, NARRATIVE_TEMPLATE
from phenomatch.services.narrative_client import NarrativeClient

IMAGE_URL = "https://images.example.com/face.jpg"

SIMILARITIES = {
    "ph_nordid": 0.91,
    "ph_alpinid": 0.77,
    "ph_sinid": 0.60,
    "ph_bantuid": 0.55,
    "ph_mediterranid": 0.50,
}

CONFIG = {
    "matching": {"top_n": 10, "candidate_pool_factor": 2, "secondary_count": 4},
    "pipeline": {"optional_signal_timeout_sec": 0.2},
}


class SlowMeasurementProvider(MeasurementProvider):
    """Sleeps until cancelled and records the cancellation."""

    def __init__(self):
        self.cancelled = False

    async def measure(self, image_ref):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            self.cancelled = True
            raise


@pytest.fixture
def store():
    path = tempfile.mkdtemp()
    store = ReferenceStore(db_path=os.path.join(path, "pipeline.sqlite"))
    yield store
    store.close()
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def make_pipeline(reference_index, store):
    def _make(**overrides):
        kwargs = dict(
            embedding_provider=StubEmbeddingProvider(),
            vector_index=StubVectorIndex(SIMILARITIES),
            reference_index=reference_index,
            narrative_provider=StubNarrativeProvider("Generated narrative."),
            store=store,
            config=CONFIG,
        )
        kwargs.update(overrides)
        return HybridAnalysisPipeline(**kwargs)

    return _make


def persisted_counts(store):
    stats = store.get_stats()
    return stats["total_uploads"], stats["total_analyses"], stats["total_reports"]


class TestPipelineSuccess:
    """Tests for successful analyses."""

    def test_all_signals(self, make_pipeline, store, narrow_profile, vision_payload):
        pipeline = make_pipeline(
            measurement_provider=StubMeasurementProvider(narrow_profile),
            vision_provider=StubVisionProvider(vision_payload),
        )

        outcome = asyncio.run(pipeline.analyze(IMAGE_URL))
        result = outcome.result

        assert result.mode == "embedding_measurement_vision"
        assert result.signals_used == {"embedding": True, "measurement": True, "vision": True}
        assert result.degraded is False
        assert result.primary.entity.id == "ph_nordid"
        assert result.primary.vision_confidence == 92
        assert outcome.narrative == "Generated narrative."
        assert outcome.narrative_source == NARRATIVE_GENERATED
        assert outcome.report.primary_phenotype_id == "ph_nordid"
        assert len(outcome.report.secondary_phenotypes) == 4
        assert persisted_counts(store) == (1, 1, 1)

    def test_traits_are_reported_but_never_scored(
        self, make_pipeline, narrow_profile, vision_payload, trait_payload
    ):
        signals = dict(
            measurement_provider=StubMeasurementProvider(narrow_profile),
            vision_provider=StubVisionProvider(vision_payload),
        )
        baseline = asyncio.run(make_pipeline(**signals).run_hybrid_analysis(IMAGE_URL))
        result = asyncio.run(
            make_pipeline(trait_provider=StubTraitProvider(trait_payload), **signals)
            .run_hybrid_analysis(IMAGE_URL)
        )

        assert [m.fused_score for m in result.matches] == [m.fused_score for m in baseline.matches]
        assert result.mode == baseline.mode
        assert result.signals_used == baseline.signals_used
        assert result.degraded is False
        assert result.traits["description"].startswith("chocolate brown straight hair")
        assert result.to_dict()["traits"]["eye_color"]["primary"] == "brown"

    def test_candidate_pool_size(self, make_pipeline):
        index = StubVectorIndex(SIMILARITIES)
        pipeline = make_pipeline(vector_index=index)

        asyncio.run(pipeline.run_hybrid_analysis(IMAGE_URL))

        assert index.calls == [20]

    def test_run_hybrid_analysis_persists_nothing(self, make_pipeline, store):
        result = asyncio.run(make_pipeline().run_hybrid_analysis(IMAGE_URL))

        assert result.mode == "embedding_only"
        assert [m.fused_score for m in result.matches][:3] == pytest.approx([0.91, 0.77, 0.60])
        assert persisted_counts(store) == (0, 0, 0)

    def test_without_store(self, make_pipeline):
        outcome = asyncio.run(make_pipeline(store=None).analyze(IMAGE_URL))

        assert outcome.report is None
        assert outcome.analysis_id is None
        assert outcome.result.primary is not None

    def test_disabled_vision_is_not_degraded(self, make_pipeline, monkeypatch):
        monkeypatch.delenv("VISION_LLM_API_URL", raising=False)
        vision = VisionClassifierAdapter(client=None, config={"base_url": None})
        pipeline = make_pipeline(vision_provider=vision)

        result = asyncio.run(pipeline.run_hybrid_analysis(IMAGE_URL))

        assert pipeline.vision_enabled is False
        assert result.signals_used["vision"] is False
        assert result.degraded is False


class TestPipelineDegradation:
    """Tests for optional signals that fail or time out."""

    def test_vision_deadline_exceeded(self, make_pipeline, store, vision_payload):
        pipeline = make_pipeline(vision_provider=StubVisionProvider(vision_payload, delay_sec=2.0))

        outcome = asyncio.run(pipeline.analyze(IMAGE_URL))
        result = outcome.result

        assert result.signals_used["vision"] is False
        assert result.degraded is True
        assert result.vision_summary is None
        assert all(m.vision_confidence is None for m in result.matches)
        assert [m.fused_score for m in result.matches][:3] == pytest.approx([0.91, 0.77, 0.60])
        assert persisted_counts(store) == (1, 1, 1)

    def test_zero_landmarks(self, make_pipeline, empty_profile):
        pipeline = make_pipeline(measurement_provider=StubMeasurementProvider(empty_profile))

        result = asyncio.run(pipeline.run_hybrid_analysis(IMAGE_URL))

        assert result.signals_used["measurement"] is False
        assert result.degraded is True
        assert all(m.measurement_similarity is None for m in result.matches)

    def test_measurement_error(self, make_pipeline):
        pipeline = make_pipeline(
            measurement_provider=StubMeasurementProvider(error=RuntimeError("connection reset")),
        )

        result = asyncio.run(pipeline.run_hybrid_analysis(IMAGE_URL))

        assert result.mode == "embedding_only"
        assert result.degraded is True

    def test_vision_returning_none(self, make_pipeline):
        pipeline = make_pipeline(vision_provider=StubVisionProvider(None))

        result = asyncio.run(pipeline.run_hybrid_analysis(IMAGE_URL))

        assert result.signals_used["vision"] is False
        assert result.degraded is True

    def test_narrative_failure_uses_template(self, make_pipeline, store):
        pipeline = make_pipeline(narrative_provider=StubNarrativeProvider(error=NarrativeError("down")))

        outcome = asyncio.run(pipeline.analyze(IMAGE_URL))

        assert outcome.narrative_source == NARRATIVE_TEMPLATE
        assert "Nordid" in outcome.narrative
        assert store.get_report(outcome.report.report_id)["narrative_source"] == NARRATIVE_TEMPLATE

    def test_no_narrative_provider(self, make_pipeline):
        outcome = asyncio.run(make_pipeline(narrative_provider=None).analyze(IMAGE_URL))

        assert outcome.narrative_source == NARRATIVE_TEMPLATE

    def test_unexpected_narrative_exception_uses_template(self, make_pipeline, store):
        pipeline = make_pipeline(narrative_provider=StubNarrativeProvider(error=RuntimeError("socket closed")))

        outcome = asyncio.run(pipeline.analyze(IMAGE_URL))

        assert outcome.narrative_source == NARRATIVE_TEMPLATE
        assert "Nordid" in outcome.narrative
        assert persisted_counts(store) == (1, 1, 1)

    def test_non_text_narrative_content_uses_template(self, make_pipeline, monkeypatch):
        monkeypatch.setenv("TEST_NARRATIVE_KEY", "sk-test")
        handler = lambda request: httpx.Response(
            200, json={"choices": [{"message": {"content": 123}}]}
        )

        async def _run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                narrative = NarrativeClient(client, {
                    "base_url": "http://llm.test/v1",
                    "api_key_env": "TEST_NARRATIVE_KEY",
                })
                return await make_pipeline(narrative_provider=narrative).analyze(IMAGE_URL)

        outcome = asyncio.run(_run())

        assert outcome.narrative_source == NARRATIVE_TEMPLATE
        assert outcome.report.narrative_source == NARRATIVE_TEMPLATE

    def test_traits_failure_is_degraded(self, make_pipeline):
        pipeline = make_pipeline(trait_provider=StubTraitProvider(None))

        result = asyncio.run(pipeline.run_hybrid_analysis(IMAGE_URL))

        assert result.traits is None
        assert result.degraded is True
        assert result.mode == "embedding_only"

    def test_traits_deadline_exceeded(self, make_pipeline, trait_payload):
        pipeline = make_pipeline(trait_provider=StubTraitProvider(trait_payload, delay_sec=2.0))

        result = asyncio.run(pipeline.run_hybrid_analysis(IMAGE_URL))

        assert result.traits is None
        assert result.degraded is True


class TestPipelineFailures:
    """Tests for fatal errors: nothing is returned or persisted."""

    def test_embedding_failure(self, make_pipeline, store, narrow_profile):
        pipeline = make_pipeline(
            embedding_provider=StubEmbeddingProvider(error=EmbeddingSignalError("service down")),
            measurement_provider=StubMeasurementProvider(narrow_profile),
        )

        with pytest.raises(EmbeddingSignalError) as exc_info:
            asyncio.run(pipeline.analyze(IMAGE_URL))

        assert exc_info.value.code == "embedding_failed"
        assert persisted_counts(store) == (0, 0, 0)

    def test_unexpected_embedding_exception_is_wrapped(self, make_pipeline, store):
        pipeline = make_pipeline(embedding_provider=StubEmbeddingProvider(error=KeyError("embedding")))

        with pytest.raises(EmbeddingSignalError):
            asyncio.run(pipeline.analyze(IMAGE_URL))
        assert persisted_counts(store) == (0, 0, 0)

    def test_datastore_failure(self, make_pipeline, store):
        pipeline = make_pipeline(vector_index=StubVectorIndex({}, error=RuntimeError("disk I/O error")))

        with pytest.raises(DatastoreError):
            asyncio.run(pipeline.analyze(IMAGE_URL))
        assert persisted_counts(store) == (0, 0, 0)

    def test_no_candidates(self, make_pipeline, store):
        pipeline = make_pipeline(vector_index=StubVectorIndex({}))

        with pytest.raises(NoCandidatesError):
            asyncio.run(pipeline.analyze(IMAGE_URL))
        assert persisted_counts(store) == (0, 0, 0)

    def test_cancellation_cancels_signal_calls(self, make_pipeline, store):
        measurement = SlowMeasurementProvider()
        pipeline = make_pipeline(
            embedding_provider=StubEmbeddingProvider(delay_sec=10),
            measurement_provider=measurement,
        )

        async def _run():
            task = asyncio.ensure_future(pipeline.analyze(IMAGE_URL))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            await asyncio.sleep(0.05)

        asyncio.run(_run())

        assert measurement.cancelled is True
        assert persisted_counts(store) == (0, 0, 0)

    def test_report_write_failure_rolls_back(self, make_pipeline, store, monkeypatch):
        def failing_create_report(*args, **kwargs):
            raise DatastoreError("Datastore write failed: disk full")

        monkeypatch.setattr(store, "create_report", failing_create_report)

        with pytest.raises(DatastoreError):
            asyncio.run(make_pipeline().analyze(IMAGE_URL))
        assert persisted_counts(store) == (0, 0, 0)
