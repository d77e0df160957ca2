"""
Boundary Schemas for External Signal Services

Every JSON payload received from the embedding, measurement, vision and
trait-analysis services is validated here before anything else touches
it. The payload models form one tagged union keyed by `source`, so a payload can
never be mistaken for another service's shape.

Usage:
    from phenomatch.services.payloads import parse_signal_payload

    payload = parse_signal_payload("vision", response.json())
    raw_matches = payload.to_raw_matches()
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
)
from pydantic.alias_generators import to_camel

from phenomatch.models import AnthropometricProfile, RawMatch, SignalSource


# ============================================================
# Embedding service
# ============================================================

class EmbeddingPayload(BaseModel):
    """Response of POST /api/embeddings/generate."""
    model_config = ConfigDict(allow_inf_nan=False)

    source: Literal["embedding"] = "embedding"
    embedding: List[float] = Field(..., min_length=1)
    dimensions: Optional[int] = Field(None, ge=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def dimension(self) -> int:
        return self.dimensions or len(self.embedding)


# ============================================================
# Measurement service
# ============================================================

class MeasurementPayload(BaseModel):
    """Response of POST /api/measurements (camelCase keys on the wire)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, allow_inf_nan=False)

    source: Literal["measurement"] = "measurement"
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
    landmark_count: int = Field(0, ge=0)
    confidence: float = Field(0.0, ge=0.0, le=1.0)

    def to_profile(self) -> AnthropometricProfile:
        data = self.model_dump(exclude={"source"})
        return AnthropometricProfile(**data)


# ============================================================
# Vision classification service
# ============================================================

class VisionMatchPayload(BaseModel):
    """One label suggested by the vision classifier."""
    name: str = Field(..., min_length=1, validation_alias=AliasChoices("phenotype", "name"))
    confidence: float = Field(..., ge=0.0, le=100.0)
    reasoning: Optional[str] = None
    groups: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("groups", "hierarchy")
    )

    @field_validator("groups", mode="before")
    @classmethod
    def _drop_empty_groups(cls, value):
        if value is None:
            return []
        return [g for g in value if g]


class VisionPayload(BaseModel):
    """Response of POST /classify-url."""
    source: Literal["vision"] = "vision"
    analysis: str = ""
    primary_region: Optional[str] = Field(
        None, validation_alias=AliasChoices("primary_region", "primaryRegion")
    )
    matches: List[VisionMatchPayload] = Field(default_factory=list)
    provider: Optional[str] = None
    cost_estimate: Optional[float] = Field(
        None, validation_alias=AliasChoices("cost_estimate", "costEstimate", "cost")
    )

    def to_raw_matches(self) -> List[RawMatch]:
        """Convert to RawMatch, keeping the classifier's 1-based rank."""
        return [
            RawMatch(
                source=SignalSource.VISION,
                entity_ref=m.name,
                raw_score=m.confidence,
                reasoning=m.reasoning,
                groups=tuple(m.groups),
                rank=index + 1,
            )
            for index, m in enumerate(self.matches)
        ]

    def summary(self) -> Dict[str, Any]:
        return {
            "analysis": self.analysis,
            "primary_region": self.primary_region,
            "provider": self.provider,
            "cost_estimate": self.cost_estimate,
            "matches": [m.model_dump() for m in self.matches],
        }


# ============================================================
# Trait analysis (hair, eyes, skin) from a vision chat model
# ============================================================

class HairColorPayload(BaseModel):
    primary: str
    shade: str = ""
    texture: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class EyeColorPayload(BaseModel):
    primary: str
    shade: str = ""
    pattern: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class SkinTonePayload(BaseModel):
    fitzpatrick: int = Field(..., ge=1, le=6)
    undertone: str = ""
    description: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class FacialHairPayload(BaseModel):
    present: bool = False
    type: Optional[str] = None
    color: Optional[str] = None


class AgeEstimatePayload(BaseModel):
    range: str
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class TraitPayload(BaseModel):
    """Visible traits extracted by the trait-analysis model (camelCase keys on the wire)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, allow_inf_nan=False)

    source: Literal["traits"] = "traits"
    hair_color: HairColorPayload
    eye_color: EyeColorPayload
    skin_tone: SkinTonePayload
    facial_hair: Optional[FacialHairPayload] = None
    age_estimate: Optional[AgeEstimatePayload] = None

    def describe(self) -> str:
        """One-line description, e.g. "chocolate brown straight hair, dark brown eyes, ..."."""
        hair = " ".join(
            p for p in (self.hair_color.shade or self.hair_color.primary, self.hair_color.texture) if p
        )
        skin = " ".join(
            p for p in (self.skin_tone.description or self.skin_tone.undertone, "skin") if p
        )
        parts = [
            f"{hair} hair",
            f"{self.eye_color.shade or self.eye_color.primary} eyes",
            f"{skin} (Fitzpatrick Type {self.skin_tone.fitzpatrick})",
        ]
        if self.age_estimate is not None:
            parts.append(f"estimated age {self.age_estimate.range}")
        return ", ".join(parts)

    def summary(self) -> Dict[str, Any]:
        data = self.model_dump(exclude={"source"})
        data["description"] = self.describe()
        return data


SignalPayload = Annotated[
    Union[EmbeddingPayload, MeasurementPayload, VisionPayload, TraitPayload],
    Field(discriminator="source"),
]

_signal_adapter = TypeAdapter(SignalPayload)


def parse_signal_payload(
    source: str, data: Any
) -> Union[EmbeddingPayload, MeasurementPayload, VisionPayload, TraitPayload]:
    """
    Validate a raw JSON body as the payload of the given source.

    Raises:
        pydantic.ValidationError: If the body does not match the source's schema.
        TypeError: If the body is not a JSON object.
    """
    if not isinstance(data, dict):
        raise TypeError(f"{source} payload must be a JSON object, got {type(data).__name__}")
    return _signal_adapter.validate_python({**data, "source": source})
