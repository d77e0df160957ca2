"""
Tests for the ReportAssembler.

This test suite verifies:
- Primary/secondary selection and stored scores
- Templated fallback narrative when no text was generated
- Access counting through record_access

Run with: pytest tests/test_report_assembler.py -v
"""

import os
import shutil
import tempfile

import pytest

from phenomatch.matching.score_fusion import FusionEngine
from phenomatch.reference_store import ReferenceStore
from phenomatch.report_assembler import (
    NARRATIVE_GENERATED,
    NARRATIVE_TEMPLATE,
    ReportAssembler,
    fallback_narrative,
)


@pytest.fixture
def store():
    path = tempfile.mkdtemp()
    store = ReferenceStore(db_path=os.path.join(path, "reports.sqlite"))
    yield store
    store.close()
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def result(reference_index):
    candidates = [
        (reference_index.get(pid), score)
        for pid, score in [
            ("ph_nordid", 0.91), ("ph_alpinid", 0.85), ("ph_sinid", 0.80),
            ("ph_bantuid", 0.70), ("ph_mediterranid", 0.60),
        ]
    ]
    return FusionEngine({"secondary_count": 3}).fuse(candidates, reference_index)


class TestFallbackNarrative:
    """Tests for the deterministic templated narrative."""

    def test_mentions_top_three(self, result):
        text = fallback_narrative(result)

        assert "Nordid phenotype (91% match)" in text
        assert "Alpinid and Sinid" in text
        assert "Bantuid" not in text

    def test_deterministic(self, result):
        assert fallback_narrative(result) == fallback_narrative(result)

    def test_single_match(self, reference_index):
        single = FusionEngine().fuse([(reference_index.get("ph_sinid"), 0.7)], reference_index)

        text = fallback_narrative(single)

        assert "Sinid phenotype (70% match)" in text
        assert "No secondary matches" in text


class TestReportAssembler:
    """Tests for report creation and access tracking."""

    def test_assemble_with_generated_narrative(self, store, result):
        assembler = ReportAssembler(store, secondary_count=3)

        report = assembler.assemble(result, "Generated text.", upload_ref="upl_1", analysis_ref="ana_1")

        assert report.primary_phenotype_id == "ph_nordid"
        assert [s["id"] for s in report.secondary_phenotypes] == ["ph_alpinid", "ph_sinid", "ph_bantuid"]
        assert report.secondary_phenotypes[0]["score"] == pytest.approx(0.85)
        assert report.narrative == "Generated text."
        assert report.narrative_source == NARRATIVE_GENERATED

        stored = store.get_report(report.report_id)
        assert stored["analysis_id"] == "ana_1"
        assert stored["narrative"] == "Generated text."

    @pytest.mark.parametrize("narrative", [None, "", "   "])
    def test_missing_narrative_uses_template(self, store, result, narrative):
        report = ReportAssembler(store).assemble(result, narrative, upload_ref="upl_1", analysis_ref="ana_1")

        assert report.narrative_source == NARRATIVE_TEMPLATE
        assert report.narrative == fallback_narrative(result)

    def test_record_access(self, store, result):
        assembler = ReportAssembler(store)
        report = assembler.assemble(result, "Text", upload_ref="upl_1", analysis_ref="ana_1")

        first = assembler.record_access(report.report_id)
        second = assembler.record_access(report.report_id)

        assert first["access_count"] == 1
        assert second["access_count"] == 2
        assert second["narrative"] == "Text"

    def test_record_access_missing(self, store):
        assert ReportAssembler(store).record_access("rpt_missing") is None

    def test_empty_result_rejected(self, store, result):
        result.matches = []
        with pytest.raises(ValueError):
            ReportAssembler(store).assemble(result, None, upload_ref="u", analysis_ref="a")
