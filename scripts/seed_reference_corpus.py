"""
Reference Corpus Seeding Script

Loads a JSON corpus of reference phenotypes into the SQLite reference
store used by the hybrid matcher.

Input format (a JSON list, or an object with a "phenotypes" list):

    [
      {
        "id": "ph_nordid",
        "name": "Nordid",
        "description": "...",
        "regions": ["Scandinavia"],
        "parent_groups": ["Europid"],
        "vector": [0.012, -0.034, ...],
        "ratios": {"face_width_to_height_ratio": 0.68, "nasal_index": 0.64}
      },
      ...
    ]

Usage:
  python scripts/seed_reference_corpus.py --corpus data/phenotypes.json
  python scripts/seed_reference_corpus.py --corpus data/phenotypes.json \\
    --db-path storage/phenomatch.sqlite --dimensions 512
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
from pydantic import BaseModel, Field, ValidationError

# Add project root to path
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

from phenomatch.config import get_embedding_config, get_storage_config
from phenomatch.models import RATIO_NAMES, ReferenceEntity
from phenomatch.reference_store import ReferenceStore

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class CorpusEntry(BaseModel):
    """One phenotype record in the corpus file."""
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    regions: List[str] = Field(default_factory=list)
    parent_groups: List[str] = Field(default_factory=list)
    vector: Optional[List[float]] = None
    ratios: Optional[Dict[str, float]] = None


def load_corpus(path: Path, dimensions: Optional[int]) -> List[ReferenceEntity]:
    """
    Parse and validate a corpus file.

    Entries that fail validation, or whose vector has the wrong dimension,
    are skipped with a warning.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get("phenotypes", [])

    entities: List[ReferenceEntity] = []
    for i, record in enumerate(data):
        try:
            entry = CorpusEntry.model_validate(record)
        except ValidationError as e:
            logger.warning(f"Skipping entry {i}: {e.error_count()} validation error(s)")
            continue

        vector = None
        if entry.vector is not None:
            vector = np.asarray(entry.vector, dtype=np.float32)
            if dimensions is not None and vector.shape[0] != dimensions:
                logger.warning(
                    f"Skipping {entry.id}: vector has {vector.shape[0]} dims, expected {dimensions}"
                )
                continue

        ratios = None
        if entry.ratios:
            unknown = sorted(set(entry.ratios) - set(RATIO_NAMES))
            if unknown:
                logger.warning(f"{entry.id}: ignoring unknown ratios {unknown}")
            ratios = {k: v for k, v in entry.ratios.items() if k in RATIO_NAMES}

        entities.append(ReferenceEntity(
            id=entry.id,
            name=entry.name,
            description=entry.description,
            regions=tuple(entry.regions),
            parent_groups=tuple(entry.parent_groups),
            vector=vector,
            ratios=ratios or None,
        ))

    return entities


def main():
    parser = argparse.ArgumentParser(
        description="Seed the reference phenotype corpus from a JSON file"
    )
    parser.add_argument(
        "--corpus", type=str, required=True,
        help="Path to the JSON corpus file",
    )
    parser.add_argument(
        "--db-path", type=str, default=None,
        help="SQLite database path (default: storage.db_path from config.yaml)",
    )
    parser.add_argument(
        "--dimensions", type=int, default=None,
        help="Expected vector dimension (default: embedding.dimensions from config.yaml)",
    )
    args = parser.parse_args()

    corpus_path = Path(args.corpus)
    if not corpus_path.exists():
        logger.error(f"Corpus file not found: {corpus_path}")
        sys.exit(1)

    db_path = args.db_path or get_storage_config().get("db_path", "storage/phenomatch.sqlite")
    dimensions = args.dimensions or get_embedding_config().get("dimensions")

    entities = load_corpus(corpus_path, dimensions)
    logger.info(f"Loaded {len(entities)} valid phenotypes from {corpus_path}")

    store = ReferenceStore(db_path=db_path)
    try:
        for entity in entities:
            store.add_phenotype(entity)
        stats = store.get_stats()
    finally:
        store.close()

    logger.info(f"Done: {stats['total_phenotypes']} phenotypes in {db_path}")


if __name__ == "__main__":
    main()
