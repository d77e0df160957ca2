"""
Pydantic Schemas for API Request/Response Models

This module defines the data models used by the HTTP surface of the
hybrid phenotype matcher.

These schemas provide:
- Type validation
- Automatic documentation in OpenAPI/Swagger
- Clear interface contracts
"""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field


# ============================================================
# Analysis Schemas
# ============================================================

class AnalyzeRequest(BaseModel):
    """Request for a hybrid analysis of one uploaded image."""
    image_url: str = Field(..., min_length=1, description="Public URL of the uploaded face image")


class MatchSchema(BaseModel):
    """One ranked phenotype match."""
    id: str = Field(..., description="Reference phenotype ID")
    name: str = Field(..., description="Phenotype display name")
    description: Optional[str] = Field(None, description="Phenotype description")
    regions: List[str] = Field(default_factory=list, description="Associated geographic regions")
    parent_groups: List[str] = Field(default_factory=list, description="Broader parent groups")
    embedding_similarity: float = Field(..., description="Embedding similarity (0-1)")
    measurement_similarity: Optional[float] = Field(
        None, description="Anthropometric similarity (0-1), null when unavailable"
    )
    vision_confidence: Optional[float] = Field(
        None, description="Vision classifier confidence (0-100), never part of fused_score"
    )
    fused_score: float = Field(..., description="Fused ranking score (0-1)")
    confidence: str = Field(..., description="Confidence tier: 'high', 'medium' or 'low'")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Vision and measurement annotations")


class SignalsUsed(BaseModel):
    """Which signals contributed to the result."""
    embedding: bool = Field(True, description="Embedding signal (always present)")
    measurement: bool = Field(False, description="Whether measurement was blended")
    vision: bool = Field(False, description="Whether vision metadata was merged")


class AnalyzeResponse(BaseModel):
    """Response for a completed hybrid analysis."""
    analysis_id: Optional[str] = Field(None, description="Stored analysis snapshot ID")
    report_id: Optional[str] = Field(None, description="Stored report ID")
    matches: List[MatchSchema] = Field(default_factory=list, description="Ranked matches, best first")
    narrative: str = Field(..., description="Report narrative text")
    narrative_source: str = Field(..., description="'generated' or 'template'")
    mode: str = Field(..., description="Fusion mode selected from the available signals")
    signals_used: SignalsUsed = Field(..., description="Signals that contributed")
    degraded: bool = Field(False, description="True when an optional signal was attempted but failed")
    facial_features: Optional[Dict[str, Any]] = Field(None, description="Descriptive facial features")
    measurements: Optional[Dict[str, Any]] = Field(None, description="Measured facial ratios")
    vision_summary: Optional[Dict[str, Any]] = Field(None, description="Vision classifier summary")
    traits: Optional[Dict[str, Any]] = Field(
        None, description="Hair, eye and skin description; never part of fused_score"
    )
    image_url: str = Field(..., description="Analysed image URL")


class ErrorResponse(BaseModel):
    """Error body returned for failed analyses."""
    error: str = Field(..., description="Error message")
    code: str = Field(..., description="Machine-readable error code")


# ============================================================
# Report Schemas
# ============================================================

class SecondaryPhenotype(BaseModel):
    """A secondary phenotype listed in a report."""
    id: str = Field(..., description="Reference phenotype ID")
    name: str = Field(..., description="Phenotype display name")
    score: float = Field(..., description="Fused score (0-1)")


class ReportResponse(BaseModel):
    """A stored report."""
    id: str = Field(..., description="Report ID")
    upload_id: str = Field(..., description="Stored upload ID")
    analysis_id: str = Field(..., description="Stored analysis ID")
    primary_phenotype_id: str = Field(..., description="ID of the primary phenotype")
    secondary_phenotypes: List[SecondaryPhenotype] = Field(default_factory=list)
    narrative: str = Field(..., description="Report narrative")
    narrative_source: str = Field(..., description="'generated' or 'template'")
    status: str = Field(..., description="Report status")
    generated_at: Optional[str] = Field(None, description="ISO timestamp of generation")
    access_count: int = Field(0, description="Number of times the report was viewed")
    last_accessed: Optional[str] = Field(None, description="ISO timestamp of the last view")


# ============================================================
# Phenotype Schemas
# ============================================================

class PhenotypeInfo(BaseModel):
    """Summary information about a reference phenotype."""
    id: str = Field(..., description="Reference phenotype ID")
    name: str = Field(..., description="Phenotype display name")
    description: Optional[str] = Field(None, description="Phenotype description")
    regions: List[str] = Field(default_factory=list)
    parent_groups: List[str] = Field(default_factory=list)
    has_embedding: bool = Field(..., description="Whether a reference embedding is stored")
    has_ratios: bool = Field(..., description="Whether archetype ratios are stored")


class PhenotypeListResponse(BaseModel):
    """Response for listing reference phenotypes."""
    phenotypes: List[PhenotypeInfo] = Field(default_factory=list)
    total: int = Field(0, description="Total number of phenotypes")


# ============================================================
# System Schemas
# ============================================================

class HealthResponse(BaseModel):
    """
    Health check response.
    """
    status: str = Field(..., description="Overall status: 'healthy', 'degraded' or 'unhealthy'")
    datastore_available: bool = Field(..., description="Whether the reference store is readable")
    embedding_service_available: bool = Field(..., description="Whether the embedding service is healthy")
    vision_enabled: bool = Field(..., description="Whether a vision classifier is configured")
    phenotypes: int = Field(0, description="Number of reference phenotypes")
