"""
Report Assembler

Turns a ranked AnalysisResult into a persisted report: the primary
phenotype, the ordered secondary phenotypes and the narrative text.
Reports are append-only; the access counter is the only field updated
after creation.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from phenomatch.models import AnalysisResult
from phenomatch.reference_store import ReferenceStore

logger = logging.getLogger(__name__)

NARRATIVE_GENERATED = "generated"
NARRATIVE_TEMPLATE = "template"


def fallback_narrative(result: AnalysisResult) -> str:
    """
    Deterministic narrative built from the top-3 match names.

    Used whenever the narrative service is unavailable or failed.
    """
    top = result.matches[0]
    secondary = [m.entity.name for m in result.matches[1:3]]

    if secondary:
        secondary_text = (
            f"Secondary matches include {' and '.join(secondary)}, indicating shared "
            f"structural characteristics across these phenotypic patterns."
        )
    else:
        secondary_text = "No secondary matches were close enough to report."

    return (
        f"Your facial structure analysis using hybrid matching reveals a primary "
        f"similarity to the {top.entity.name} phenotype "
        f"({round(top.fused_score * 100)}% match).\n\n"
        f"This match is determined through a combination of AI-powered embedding "
        f"analysis and, where available, anthropometric facial measurements.\n\n"
        f"{secondary_text}\n\n"
        f"This computational analysis is based on geometric facial morphology "
        f"comparison against a reference database of historical anthropological "
        f"classifications. Results are for educational purposes and represent "
        f"structural similarity, not ancestry or ethnic determination."
    )


@dataclass
class Report:
    """A persisted report."""

    report_id: str
    upload_id: str
    analysis_id: str
    primary_phenotype_id: str
    secondary_phenotypes: List[Dict[str, Any]] = field(default_factory=list)
    narrative: str = ""
    narrative_source: str = NARRATIVE_GENERATED
    generated_at: str = ""
    status: str = "preview"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ReportAssembler:
    """
    Build and persist reports.

    Args:
        store: Datastore the reports are written to.
        secondary_count: Number of matches after the primary listed as secondary.
    """

    def __init__(self, store: ReferenceStore, secondary_count: int = 4):
        self.store = store
        self.secondary_count = secondary_count

    def assemble(
        self,
        result: AnalysisResult,
        narrative: Optional[str],
        upload_ref: str,
        analysis_ref: str,
    ) -> Report:
        """
        Create the report for one analysis.

        Args:
            result: Ranked analysis result (must contain at least one match).
            narrative: Generated text, or None to use the templated fallback.
            upload_ref: ID of the stored upload.
            analysis_ref: ID of the stored analysis snapshot.

        Raises:
            ValueError: If the result has no matches.
            DatastoreError: If the report cannot be written.
        """
        if result.primary is None:
            raise ValueError("Cannot build a report from an empty result")

        if narrative and narrative.strip():
            source = NARRATIVE_GENERATED
        else:
            narrative = fallback_narrative(result)
            source = NARRATIVE_TEMPLATE

        secondary = [
            {"id": m.entity.id, "name": m.entity.name, "score": m.fused_score}
            for m in result.matches[1:1 + self.secondary_count]
        ]
        generated_at = datetime.now().isoformat()

        with self.store.transaction():
            report_id = self.store.create_report(
                upload_id=upload_ref,
                analysis_id=analysis_ref,
                primary_phenotype_id=result.primary.entity.id,
                secondary_phenotypes=secondary,
                narrative=narrative,
                narrative_source=source,
                generated_at=generated_at,
            )

        logger.info(
            f"Created report {report_id} (primary: {result.primary.entity.name}, "
            f"narrative: {source})"
        )

        return Report(
            report_id=report_id,
            upload_id=upload_ref,
            analysis_id=analysis_ref,
            primary_phenotype_id=result.primary.entity.id,
            secondary_phenotypes=secondary,
            narrative=narrative,
            narrative_source=source,
            generated_at=generated_at,
        )

    def record_access(self, report_id: str) -> Optional[Dict[str, Any]]:
        """
        Increment the access counter and return the updated report.

        Returns:
            The stored report, or None if it does not exist.
        """
        if not self.store.increment_report_access(report_id):
            logger.warning(f"Report not found: {report_id}")
            return None
        return self.store.get_report(report_id)
