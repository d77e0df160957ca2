"""
Phenotype API Routes

This module provides read-only REST endpoints for the reference corpus:
- GET /phenotypes: List all reference phenotypes
- GET /phenotypes/{phenotype_id}: Get one phenotype
"""

from fastapi import APIRouter, HTTPException

from phenomatch.models import ReferenceEntity
from phenomatch.reference_store import get_reference_store
from phenomatch_api.schemas import PhenotypeInfo, PhenotypeListResponse

# Create router
router = APIRouter(tags=["phenotypes"])


def to_phenotype_info(entity: ReferenceEntity) -> PhenotypeInfo:
    return PhenotypeInfo(
        **entity.summary(),
        has_embedding=entity.vector is not None,
        has_ratios=bool(entity.ratios),
    )


@router.get("/phenotypes", response_model=PhenotypeListResponse)
async def list_phenotypes():
    """List all reference phenotypes, ordered by name."""
    entities = get_reference_store().load_phenotypes()

    return PhenotypeListResponse(
        phenotypes=[to_phenotype_info(e) for e in entities],
        total=len(entities),
    )


@router.get("/phenotypes/{phenotype_id}", response_model=PhenotypeInfo)
async def get_phenotype(phenotype_id: str):
    """
    Get one reference phenotype.

    Raises:
        404: If the phenotype is not found.
    """
    entity = get_reference_store().get_phenotype(phenotype_id)

    if entity is None:
        raise HTTPException(status_code=404, detail=f"Phenotype {phenotype_id} not found")

    return to_phenotype_info(entity)
