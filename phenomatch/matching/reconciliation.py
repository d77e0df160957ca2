"""
Name Reconciliation

Maps free-text labels coming from one signal (e.g. "Nord-ID!!" from the
vision classifier) onto the canonical reference entities identified by
another signal. Lookup is exact on the normalized key; there is no fuzzy
or edit-distance matching.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional

from phenomatch.models import RawMatch, ReferenceEntity

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize(name: Optional[str]) -> str:
    """
    Canonical key for a label: lowercase, keep only [a-z0-9].

    Idempotent: normalize(normalize(x)) == normalize(x).
    """
    if not name:
        return ""
    return _NON_ALNUM.sub("", name.lower()).strip()


class ReferenceIndex:
    """
    Read-only lookup from ids and canonical keys to reference entities.

    Built once from the corpus and shared by concurrent requests without
    locking. When two entities normalize to the same key, the first one
    wins and the collision is logged.
    """

    def __init__(self, entities: Iterable[ReferenceEntity]):
        self._by_id: Dict[str, ReferenceEntity] = {}
        self._by_key: Dict[str, ReferenceEntity] = {}

        for entity in entities:
            self._by_id[entity.id] = entity
            key = normalize(entity.name)
            if not key:
                logger.warning(f"Reference entity {entity.id} has an empty canonical name")
                continue
            existing = self._by_key.get(key)
            if existing is not None and existing.id != entity.id:
                logger.warning(
                    f"Canonical key collision '{key}': keeping {existing.id}, ignoring {entity.id}"
                )
                continue
            self._by_key[key] = entity

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._by_id

    @property
    def entities(self) -> List[ReferenceEntity]:
        return list(self._by_id.values())

    def get(self, entity_id: str) -> Optional[ReferenceEntity]:
        return self._by_id.get(entity_id)

    def lookup_key(self, key: str) -> Optional[ReferenceEntity]:
        return self._by_key.get(key)


def match_by_name(raw_name: Optional[str], index: ReferenceIndex) -> Optional[ReferenceEntity]:
    """Exact canonical-key lookup of a free-text label."""
    key = normalize(raw_name)
    if not key:
        return None
    return index.lookup_key(key)


def resolve(raw_match: RawMatch, index: ReferenceIndex) -> Optional[ReferenceEntity]:
    """
    Resolve a RawMatch to a reference entity, by id first and then by name.

    Returns None (and logs) when the match cannot be resolved. Callers drop
    such matches; they never become new entities.
    """
    entity = index.get(raw_match.entity_ref)
    if entity is None:
        entity = match_by_name(raw_match.entity_ref, index)

    if entity is None:
        logger.warning(
            f"Dropping unresolvable {raw_match.source.value} match '{raw_match.entity_ref}'"
        )
    return entity
