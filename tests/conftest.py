"""
Shared fixtures for the hybrid matcher test suite.

Provides a small reference corpus, its ReferenceIndex and helpers to
build measurement profiles, vision payloads and trait payloads.
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from phenomatch.matching.reconciliation import ReferenceIndex
from phenomatch.models import AnthropometricProfile, ReferenceEntity
from phenomatch.services.payloads import parse_signal_payload

DIM = 8


def make_vector(seed: int, dim: int = DIM) -> np.ndarray:
    """Deterministic unit vector."""
    rng = np.random.RandomState(seed)
    v = rng.randn(dim).astype(np.float32)
    return v / np.linalg.norm(v)


@pytest.fixture
def reference_entities():
    """Five phenotypes with distinct names, vectors and groups."""
    return [
        ReferenceEntity(
            id="ph_nordid",
            name="Nordid",
            description="Tall, narrow-faced northern type",
            regions=("Scandinavia",),
            parent_groups=("Europid",),
            vector=make_vector(1),
            ratios={"face_width_to_height_ratio": 0.66, "nasal_index": 0.62},
        ),
        ReferenceEntity(
            id="ph_alpinid",
            name="Alpinid",
            description="Broad-faced central European type",
            regions=("Central Europe",),
            parent_groups=("Europid",),
            vector=make_vector(2),
            ratios={"face_width_to_height_ratio": 0.90, "nasal_index": 0.68},
        ),
        ReferenceEntity(
            id="ph_mediterranid",
            name="Mediterranid",
            regions=("Southern Europe",),
            parent_groups=("Europid",),
            vector=make_vector(3),
        ),
        ReferenceEntity(
            id="ph_sinid",
            name="Sinid",
            regions=("East Asia",),
            parent_groups=("Mongolid",),
            vector=make_vector(4),
        ),
        ReferenceEntity(
            id="ph_bantuid",
            name="Bantuid",
            regions=("Sub-Saharan Africa",),
            parent_groups=("Congolid",),
            vector=make_vector(5),
        ),
    ]


@pytest.fixture
def reference_index(reference_entities):
    return ReferenceIndex(reference_entities)


@pytest.fixture
def narrow_profile():
    """Usable profile with a narrow face and a narrow nose."""
    return AnthropometricProfile(
        face_width_to_height_ratio=0.65,
        jaw_to_face_width_ratio=0.80,
        eye_spacing_ratio=0.40,
        facial_index=1.25,
        nasal_index=0.60,
        landmark_count=478,
        confidence=0.95,
    )


@pytest.fixture
def empty_profile():
    """Profile from an image where no face landmarks were found."""
    return AnthropometricProfile(
        face_width_to_height_ratio=0.65,
        nasal_index=0.60,
        landmark_count=0,
        confidence=0.0,
    )


@pytest.fixture
def vision_payload():
    """Classifier output naming one candidate with a messy label."""
    return parse_signal_payload("vision", {
        "analysis": "Narrow face with a high nasal bridge.",
        "primary_region": "Northern Europe",
        "provider": "gpt5",
        "cost_estimate": 0.012,
        "matches": [
            {"phenotype": "Nord-ID!!", "confidence": 92, "reasoning": "Narrow face", "groups": ["Nordic"]},
            {"phenotype": "Unknownid", "confidence": 40, "reasoning": "Weak"},
        ],
    })


TRAIT_BODY = {
    "hairColor": {"primary": "dark brown", "shade": "chocolate brown", "texture": "straight", "confidence": 0.9},
    "eyeColor": {"primary": "brown", "shade": "dark brown", "pattern": "uniform", "confidence": 0.95},
    "skinTone": {"fitzpatrick": 3, "undertone": "warm", "description": "medium with warm undertones", "confidence": 0.85},
    "facialHair": {"present": False},
    "ageEstimate": {"range": "25-35", "confidence": 0.7},
}


@pytest.fixture
def trait_payload():
    """Hair, eye and skin description as returned by the trait model."""
    return parse_signal_payload("traits", TRAIT_BODY)
