"""
Hybrid Analysis Pipeline

Orchestrates one analysis request end to end:

1. Start embedding, measurement, vision and trait calls concurrently
2. Await the embedding (mandatory; any failure aborts the request)
3. Await the optional signals until the shared deadline; anything not
   finished by then is treated as unavailable and left running detached
4. Retrieve embedding candidates and fuse the available signals
5. Generate the narrative (templated fallback on failure)
6. Persist upload, analysis snapshot and report

Fatal errors are raised as PipelineError subclasses and nothing is
persisted for them. If the calling request is cancelled, every in-flight
signal call is cancelled as well.

Usage:
    import httpx
    from phenomatch.pipeline import build_pipeline

    async with httpx.AsyncClient() as client:
        pipeline = build_pipeline(client, store)
        outcome = await pipeline.analyze("https://example.com/face.jpg")
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import httpx
import numpy as np

from phenomatch.config import get_pipeline_settings
from phenomatch.errors import EmbeddingSignalError, NarrativeError, PipelineError
from phenomatch.matching.anthropometric import AnthropometricComparator
from phenomatch.matching.embedding_retriever import EmbeddingRetriever
from phenomatch.matching.interfaces import (
    EmbeddingProvider,
    MeasurementProvider,
    NarrativeProvider,
    TraitProvider,
    VectorIndex,
    VisionProvider,
)
from phenomatch.matching.reconciliation import ReferenceIndex
from phenomatch.matching.score_fusion import FusionEngine
from phenomatch.matching.vision_adapter import VisionClassifierAdapter
from phenomatch.models import AnalysisResult
from phenomatch.reference_store import ReferenceStore
from phenomatch.report_assembler import (
    NARRATIVE_GENERATED,
    NARRATIVE_TEMPLATE,
    Report,
    ReportAssembler,
    fallback_narrative,
)
from phenomatch.services.embedding_client import EmbeddingServiceClient
from phenomatch.services.measurement_client import MeasurementServiceClient
from phenomatch.services.narrative_client import NarrativeClient
from phenomatch.services.traits_client import TraitAnalysisClient

logger = logging.getLogger(__name__)


@dataclass
class PipelineOutcome:
    """Everything produced by one successful analysis."""

    result: AnalysisResult
    narrative: str
    narrative_source: str
    upload_id: Optional[str] = None
    analysis_id: Optional[str] = None
    report: Optional[Report] = None


def _discard_result(task: asyncio.Task) -> None:
    """Done-callback for detached tasks: retrieve the outcome so it is never reported as lost."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Detached signal task {task.get_name()} failed after deadline: {error}")


class HybridAnalysisPipeline:
    """
    One-request orchestration of the hybrid matcher.

    The reference index is read-only and may be shared between pipelines;
    the pipeline itself holds no per-request state.

    Args:
        embedding_provider: Mandatory embedding signal.
        vector_index: Nearest-neighbour search over reference vectors.
        reference_index: Read-only id/name lookup for the corpus.
        measurement_provider: Optional anthropometric signal.
        vision_provider: Optional vision-classifier signal.
        trait_provider: Optional hair/eye/skin description; reported, never scored.
        narrative_provider: Optional report writer.
        store: Datastore for uploads, analyses and reports. None disables persistence.
        config: Full configuration dictionary (sections matching, pipeline,
            embedding, measurement).
    """

    def __init__(
        self,
        embedding_provider: EmbeddingProvider,
        vector_index: VectorIndex,
        reference_index: ReferenceIndex,
        measurement_provider: Optional[MeasurementProvider] = None,
        vision_provider: Optional[VisionProvider] = None,
        trait_provider: Optional[TraitProvider] = None,
        narrative_provider: Optional[NarrativeProvider] = None,
        store: Optional[ReferenceStore] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        if config is None:
            config = {}
        matching_config = dict(config.get("matching", {}))
        pipeline_config = config.get("pipeline", {})
        measurement_config = config.get("measurement", {})
        embedding_config = config.get("embedding", {})

        self.embedding_provider = embedding_provider
        self.measurement_provider = measurement_provider
        self.vision_provider = vision_provider
        self.trait_provider = trait_provider
        self.narrative_provider = narrative_provider
        self.reference_index = reference_index
        self.store = store

        self.optional_timeout_sec = float(pipeline_config.get("optional_signal_timeout_sec", 35.0))
        self.top_n = int(matching_config.get("top_n", 10))
        self.candidate_pool = self.top_n * max(1, int(matching_config.get("candidate_pool_factor", 2)))

        self.retriever = EmbeddingRetriever(
            vector_index,
            reference_index,
            dimensions=embedding_config.get("dimensions"),
        )
        self.comparator = AnthropometricComparator({
            "min_landmarks": measurement_config.get("min_landmarks", 1),
            "use_archetype_ratios": matching_config.get("use_archetype_ratios", False),
        })
        self.fusion = FusionEngine(matching_config, self.comparator)
        self.assembler = (
            ReportAssembler(store, self.fusion.secondary_count) if store is not None else None
        )

    @property
    def vision_enabled(self) -> bool:
        return self.vision_provider is not None and getattr(self.vision_provider, "enabled", True)

    @property
    def traits_enabled(self) -> bool:
        return self.trait_provider is not None and getattr(self.trait_provider, "enabled", True)

    async def run_hybrid_analysis(self, image_ref: str) -> AnalysisResult:
        """
        Run the signals and fusion for one image, without persisting anything.

        Raises:
            PipelineError: On any fatal failure (embedding, datastore, no candidates).
        """
        result, _ = await self._run(image_ref)
        return result

    async def analyze(self, image_ref: str) -> PipelineOutcome:
        """
        Full request: signals, fusion, narrative and persistence.

        Raises:
            PipelineError: On any fatal failure. Nothing is persisted in that case.
        """
        result, vector = await self._run(image_ref)
        narrative, source = await self._generate_narrative(result)

        outcome = PipelineOutcome(result=result, narrative=narrative, narrative_source=source)
        if self.store is None:
            return outcome

        with self.store.transaction():
            upload_id = self.store.save_upload(image_ref, vector)
            analysis_id = self.store.save_analysis(upload_id, result, narrative)
            report = self.assembler.assemble(
                result,
                narrative if source == NARRATIVE_GENERATED else None,
                upload_ref=upload_id,
                analysis_ref=analysis_id,
            )
        outcome.upload_id = upload_id
        outcome.analysis_id = analysis_id
        outcome.report = report

        logger.info(
            f"Hybrid analysis complete: analysis={outcome.analysis_id} "
            f"report={outcome.report.report_id}"
        )
        return outcome

    async def _run(self, image_ref: str) -> Tuple[AnalysisResult, np.ndarray]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.optional_timeout_sec

        logger.info(f"Starting hybrid analysis for {image_ref}")

        embedding_task = asyncio.ensure_future(self.embedding_provider.embed(image_ref))
        optional: Dict[str, asyncio.Future] = {}
        if self.measurement_provider is not None:
            optional["measurement"] = asyncio.ensure_future(
                self.measurement_provider.measure(image_ref)
            )
        if self.vision_enabled:
            optional["vision"] = asyncio.ensure_future(self.vision_provider.classify(image_ref))
        if self.traits_enabled:
            optional["traits"] = asyncio.ensure_future(self.trait_provider.analyze(image_ref))

        try:
            try:
                vector = await embedding_task
            except PipelineError:
                raise
            except Exception as e:
                raise EmbeddingSignalError(f"Embedding generation failed: {e}") from e

            signals, degraded = await self._collect_optional(optional, deadline)
        except asyncio.CancelledError:
            logger.warning("Hybrid analysis cancelled; cancelling in-flight signal calls")
            for task in [embedding_task, *optional.values()]:
                task.cancel()
            raise
        except PipelineError as e:
            logger.error(f"Hybrid analysis failed ({e.code}): {e}")
            for task in optional.values():
                task.cancel()
            raise

        try:
            candidates = self.retriever.retrieve(vector, self.candidate_pool)
            result = self.fusion.fuse(
                candidates,
                self.reference_index,
                profile=signals.get("measurement"),
                vision=signals.get("vision"),
                degraded=degraded,
            )
        except PipelineError as e:
            logger.error(f"Hybrid analysis failed ({e.code}): {e}")
            raise

        traits = signals.get("traits")
        if traits is not None:
            result.traits = traits.summary()

        return result, vector

    async def _collect_optional(
        self,
        tasks: Dict[str, asyncio.Future],
        deadline: float,
    ) -> Tuple[Dict[str, Any], bool]:
        """
        Wait for the optional signals until the deadline.

        Returns:
            (values, degraded). values maps each signal that produced a
            result to that result; unfinished or failed signals are left
            out and mark the result as degraded.
        """
        if not tasks:
            return {}, False

        remaining = max(0.0, deadline - asyncio.get_running_loop().time())
        done, pending = await asyncio.wait(list(tasks.values()), timeout=remaining)

        values: Dict[str, Any] = {}
        degraded = False
        for name, task in tasks.items():
            if task in pending:
                logger.warning(
                    f"{name} signal did not finish within {self.optional_timeout_sec:.0f}s; "
                    f"treating as unavailable"
                )
                task.add_done_callback(_discard_result)
                degraded = True
                continue
            error = task.exception()
            if error is not None:
                logger.warning(f"{name} signal failed: {error}")
                degraded = True
                continue
            value = task.result()
            if value is None:
                logger.warning(f"{name} signal returned no result")
                degraded = True
                continue
            values[name] = value

        profile = values.get("measurement")
        if profile is not None and not self.comparator.is_available(profile):
            degraded = True

        return values, degraded

    async def _generate_narrative(self, result: AnalysisResult) -> Tuple[str, str]:
        if self.narrative_provider is not None:
            try:
                return await self.narrative_provider.generate(result), NARRATIVE_GENERATED
            except NarrativeError as e:
                logger.warning(f"Narrative generation failed, using template: {e}")
            except Exception as e:
                logger.warning(
                    f"Unexpected narrative failure ({type(e).__name__}), using template: {e}"
                )
        return fallback_narrative(result), NARRATIVE_TEMPLATE


def build_pipeline(
    http_client: httpx.AsyncClient,
    store: ReferenceStore,
    config: Optional[Dict[str, Any]] = None,
    reference_index: Optional[ReferenceIndex] = None,
) -> HybridAnalysisPipeline:
    """
    Wire the HTTP clients, datastore and reference index into a pipeline.

    Args:
        http_client: Shared client used by every service client.
        store: Reference store (vector index and persistence).
        config: Section dict (embedding, measurement, vision, traits, narrative,
            matching, pipeline); read through get_pipeline_settings when None.
        reference_index: Prebuilt corpus index; built from the store when None.
    """
    if config is None:
        config = get_pipeline_settings()

    if reference_index is None:
        reference_index = store.build_index()

    return HybridAnalysisPipeline(
        embedding_provider=EmbeddingServiceClient(http_client, config.get("embedding", {})),
        vector_index=store,
        reference_index=reference_index,
        measurement_provider=MeasurementServiceClient(http_client, config.get("measurement", {})),
        vision_provider=VisionClassifierAdapter(http_client, config.get("vision", {})),
        trait_provider=TraitAnalysisClient(http_client, config.get("traits", {})),
        narrative_provider=NarrativeClient(http_client, config.get("narrative", {})),
        store=store,
        config=config,
    )


async def run_hybrid_analysis(image_ref: str, store: Optional[ReferenceStore] = None) -> AnalysisResult:
    """
    Convenience entry point: analyse one image with the configured services.

    Nothing is persisted; use HybridAnalysisPipeline.analyze for the full request.
    """
    if store is None:
        from phenomatch.reference_store import get_reference_store
        store = get_reference_store()

    async with httpx.AsyncClient() as client:
        pipeline = build_pipeline(client, store)
        return await pipeline.run_hybrid_analysis(image_ref)
