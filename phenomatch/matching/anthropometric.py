"""
Anthropometric Comparator: score reference entities against measured facial ratios.

Default scoring is a keyword-bucket heuristic. Each entity starts at a
neutral 0.5 ("no evidence against") and earns fixed bonuses when a
measured ratio falls in a band associated with keywords in its name:

    face width/height > 0.85 (broad)   alpine, dinarid, armenid, east        +0.20
    face width/height < 0.70 (narrow)  mediterranean, atlanto, gracile, nordic +0.20
    nasal index > 0.85 (broad)         african, melanesid, south, bantuid     +0.15
    nasal index < 0.70 (narrow)        nordic, sino, east, alpine             +0.15

The heuristic is an approximation. When `use_archetype_ratios` is enabled
and an entity carries stored archetype ratios, a weighted relative
distance over shared ratios is used for that entity instead.

Profiles with too few landmarks make every comparison return None, so
fusion drops the measurement term instead of scoring everything at 0.5.
"""

import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Tuple

from phenomatch.models import AnthropometricProfile, ReferenceEntity

logger = logging.getLogger(__name__)

BASELINE_SIMILARITY = 0.5
FACE_SHAPE_BONUS = 0.20
NASAL_BONUS = 0.15

BROAD_THRESHOLD = 0.85
NARROW_THRESHOLD = 0.70

BROAD_FACE_KEYWORDS = ("alpine", "dinarid", "armenid", "east")
NARROW_FACE_KEYWORDS = ("mediterranean", "atlanto", "gracile", "nordic")
BROAD_NOSE_KEYWORDS = ("african", "melanesid", "south", "bantuid")
NARROW_NOSE_KEYWORDS = ("nordic", "sino", "east", "alpine")

# Relative importance of each ratio in archetype distance mode
ARCHETYPE_WEIGHTS: Dict[str, float] = {
    "face_width_to_height_ratio": 0.20,
    "jaw_to_face_width_ratio": 0.15,
    "eye_spacing_ratio": 0.12,
    "nose_width_ratio": 0.12,
    "mouth_width_ratio": 0.10,
    "facial_index": 0.12,
    "nasal_index": 0.10,
    "nasofrontal_angle": 0.05,
    "gonial_angle": 0.04,
}


def _has_keyword(name: str, keywords: Tuple[str, ...]) -> bool:
    return any(keyword in name for keyword in keywords)


def _band_bonus(
    value: Optional[float],
    name: str,
    broad_keywords: Tuple[str, ...],
    narrow_keywords: Tuple[str, ...],
    bonus: float,
) -> float:
    if value is None:
        return 0.0
    if value > BROAD_THRESHOLD and _has_keyword(name, broad_keywords):
        return bonus
    if value < NARROW_THRESHOLD and _has_keyword(name, narrow_keywords):
        return bonus
    return 0.0


def keyword_similarity(profile: AnthropometricProfile, entity_name: str) -> float:
    """Keyword-bucket similarity in [0, 1]."""
    name = (entity_name or "").lower()

    similarity = BASELINE_SIMILARITY
    similarity += _band_bonus(
        profile.face_width_to_height_ratio, name,
        BROAD_FACE_KEYWORDS, NARROW_FACE_KEYWORDS, FACE_SHAPE_BONUS,
    )
    similarity += _band_bonus(
        profile.nasal_index, name,
        BROAD_NOSE_KEYWORDS, NARROW_NOSE_KEYWORDS, NASAL_BONUS,
    )

    return min(max(similarity, 0.0), 1.0)


def _usable_ratio(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value) and value != 0


def archetype_similarity(
    profile: AnthropometricProfile, archetype: Mapping[str, float]
) -> Optional[float]:
    """
    Weighted relative-difference similarity against stored archetype ratios.

    Returns None when the profile and archetype share no usable ratio.
    """
    total_similarity = 0.0
    total_weight = 0.0

    for ratio_name, weight in ARCHETYPE_WEIGHTS.items():
        measured = getattr(profile, ratio_name, None)
        reference = archetype.get(ratio_name)
        if not _usable_ratio(measured) or not _usable_ratio(reference):
            continue

        percent_diff = abs(measured - reference) / max(abs(measured), abs(reference))
        total_similarity += (1.0 - min(percent_diff, 1.0)) * weight
        total_weight += weight

    if total_weight == 0:
        return None
    return min(max(total_similarity / total_weight, 0.0), 1.0)


class AnthropometricComparator:
    """
    Compare a measured profile against reference entities.

    Args:
        config: Dictionary with optional keys:
            - min_landmarks: Profiles below this landmark count are unusable (default 1)
            - use_archetype_ratios: Prefer stored per-entity ratios (default False)
    """

    def __init__(self, config: dict = None):
        if config is None:
            config = {}
        self.min_landmarks = int(config.get("min_landmarks", 1))
        self.use_archetype_ratios = bool(config.get("use_archetype_ratios", False))

    def is_available(self, profile: Optional[AnthropometricProfile]) -> bool:
        return profile is not None and profile.is_usable(self.min_landmarks)

    def compare(
        self,
        profile: Optional[AnthropometricProfile],
        entity_name: str,
        archetype: Optional[Mapping[str, float]] = None,
    ) -> Optional[float]:
        """
        Similarity between the measured profile and one entity.

        Returns:
            Similarity in [0, 1], or None when the profile is unusable.
        """
        if not self.is_available(profile):
            return None

        if self.use_archetype_ratios and archetype:
            similarity = archetype_similarity(profile, archetype)
            if similarity is not None:
                return similarity

        return keyword_similarity(profile, entity_name)

    def compare_entity(
        self, profile: Optional[AnthropometricProfile], entity: ReferenceEntity
    ) -> Optional[float]:
        return self.compare(profile, entity.name, entity.ratios)


# ============================================================
# Descriptive features (used in narratives and API responses)
# ============================================================


def describe_facial_features(profile: AnthropometricProfile) -> Dict[str, Any]:
    """
    Translate measured ratios into descriptive facial features.

    Returns:
        Dict with face_shape, nose_type, jaw_type, proportions and a list
        of human-readable characteristics.
    """
    characteristics: List[str] = []

    face_shape = "oval"
    fwh = profile.face_width_to_height_ratio
    if fwh is not None and fwh > BROAD_THRESHOLD:
        face_shape = "round"
        characteristics.append("Broad facial structure")
    elif fwh is not None and fwh < NARROW_THRESHOLD:
        face_shape = "elongated"
        characteristics.append("Narrow, elongated facial structure")
    else:
        characteristics.append("Balanced facial proportions")

    nose_type = "medium"
    if profile.nasal_index is not None and profile.nasal_index > BROAD_THRESHOLD:
        nose_type = "broad"
        characteristics.append("Wider nasal structure")
    elif profile.nasal_index is not None and profile.nasal_index < NARROW_THRESHOLD:
        nose_type = "narrow"
        characteristics.append("Narrow nasal structure")

    jaw_type = "medium"
    jaw = profile.jaw_to_face_width_ratio
    if jaw is not None and jaw > 0.90:
        jaw_type = "wide"
        characteristics.append("Prominent jaw structure")
    elif jaw is not None and jaw < 0.75:
        jaw_type = "narrow"
        characteristics.append("Delicate jaw structure")

    proportions = "balanced"
    if profile.facial_index is not None and profile.facial_index > 1.2:
        proportions = "leptoprosopic (narrow and tall)"
        characteristics.append("Vertically elongated features")
    elif profile.facial_index is not None and profile.facial_index < 0.9:
        proportions = "euryprosopic (wide and short)"
        characteristics.append("Horizontally broad features")

    if profile.eye_spacing_ratio is not None:
        if profile.eye_spacing_ratio > 0.45:
            characteristics.append("Wide-set eyes")
        elif profile.eye_spacing_ratio < 0.35:
            characteristics.append("Close-set eyes")

    if profile.nasofrontal_angle is not None:
        if profile.nasofrontal_angle > 140:
            characteristics.append("Prominent nasal bridge")
        elif profile.nasofrontal_angle < 125:
            characteristics.append("Flatter nasal profile")

    return {
        "face_shape": face_shape,
        "nose_type": nose_type,
        "jaw_type": jaw_type,
        "proportions": proportions,
        "characteristics": characteristics,
    }


def format_measurement_summary(profile: AnthropometricProfile, features: Dict[str, Any]) -> str:
    """Plain-text summary of measurements and derived features."""

    def fmt(value: Optional[float]) -> str:
        return f"{value:.2f}" if value is not None else "n/a"

    lines = [
        "Facial Analysis Results:",
        "",
        f"Face Shape: {features['face_shape']}",
        f"Face Proportions: {features['proportions']}",
        f"Nasal Structure: {features['nose_type']}",
        f"Jaw Structure: {features['jaw_type']}",
        "",
        "Key Measurements:",
        f"- Face Width-to-Height Ratio: {fmt(profile.face_width_to_height_ratio)}",
        f"- Nasal Index: {fmt(profile.nasal_index)}",
        f"- Facial Index: {fmt(profile.facial_index)}",
        f"- Eye Spacing Ratio: {fmt(profile.eye_spacing_ratio)}",
        "",
        "Distinctive Characteristics:",
    ]
    lines.extend(f"- {c}" for c in features["characteristics"])
    lines.append("")
    lines.append(f"Analysis Confidence: {profile.confidence * 100:.0f}%")
    lines.append(f"Landmarks Detected: {profile.landmark_count}")
    return "\n".join(lines)
