"""Persistence seam for reference answers and an in-memory, YAML-backed store."""

import logging
import threading
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Protocol

import yaml

from .models import ReferenceAnswer, ReferenceFilters

LOG = logging.getLogger(__name__)


class ReferencePersistenceError(RuntimeError):
    """Raised by persistence implementations when a lookup or write fails."""


class ReferencePersistence(Protocol):
    """Storage collaborator for reference answers. Keyed lookups only."""

    def find_by_exercise(self, exercise_id: Optional[str],
                         filters: ReferenceFilters) -> List[ReferenceAnswer]:
        """References for ``exercise_id`` (any exercise when None) matching ``filters``."""

    def insert(self, reference: ReferenceAnswer) -> str:
        """Store a new reference and return its id."""

    def mark_verified(self, reference_id: str, source_kind: Optional[str] = None) -> bool:
        """Mark a reference verified, optionally changing its source kind."""

    def deactivate(self, reference_id: str) -> bool:
        """Soft-delete a reference."""


class InMemoryReferenceStore:
    """Thread-safe in-memory reference store that can load from and save to YAML."""

    def __init__(self, references: Optional[List[ReferenceAnswer]] = None):
        self._lock = threading.Lock()
        self._references: Dict[str, ReferenceAnswer] = {}
        for ref in references or []:
            self.insert(ref)

    def __len__(self) -> int:
        with self._lock:
            return len(self._references)

    def find_by_exercise(self, exercise_id: Optional[str],
                         filters: ReferenceFilters) -> List[ReferenceAnswer]:
        with self._lock:
            rows = list(self._references.values())

        results = []
        for ref in rows:
            if exercise_id is not None and ref.exercise_id != exercise_id:
                continue
            if filters.exclude_exercise_id and ref.exercise_id == filters.exclude_exercise_id:
                continue
            if filters.skill_category and ref.skill_category != filters.skill_category:
                continue
            if filters.active_only and not ref.active:
                continue
            if filters.min_score is not None and ref.score < filters.min_score:
                continue
            results.append(ref)

        if filters.limit is not None:
            results = results[:filters.limit]
        return results

    def insert(self, reference: ReferenceAnswer) -> str:
        ref_id = reference.id or uuid.uuid4().hex
        with self._lock:
            if ref_id in self._references:
                raise ReferencePersistenceError(f"Reference {ref_id} already exists")
            self._references[ref_id] = reference.model_copy(update={'id': ref_id})
        return ref_id

    def get(self, reference_id: str) -> Optional[ReferenceAnswer]:
        with self._lock:
            return self._references.get(reference_id)

    def mark_verified(self, reference_id: str, source_kind: Optional[str] = None) -> bool:
        update = {'verified': True}
        if source_kind:
            update['source_kind'] = source_kind
        return self._update(reference_id, update)

    def deactivate(self, reference_id: str) -> bool:
        return self._update(reference_id, {'active': False})

    def _update(self, reference_id: str, update: dict) -> bool:
        with self._lock:
            ref = self._references.get(reference_id)
            if ref is None:
                return False
            self._references[reference_id] = ref.model_copy(update=update)
            return True

    @classmethod
    def load(cls, yaml_path: Path) -> "InMemoryReferenceStore":
        """Load references from a YAML file with a top-level ``references`` list."""
        if not yaml_path.exists():
            LOG.info(f"Reference bank {yaml_path} does not exist, starting empty")
            return cls()
        with open(yaml_path, 'r') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise TypeError(f"Reference bank {yaml_path} must be a dict")
        references = [ReferenceAnswer.model_validate(row) for row in data.get('references', [])]
        LOG.info(f"Loaded {len(references)} references from {yaml_path}")
        return cls(references)

    def save(self, yaml_path: Path) -> None:
        with self._lock:
            rows = [ref.model_dump() for ref in self._references.values()]
        with open(yaml_path, 'w') as f:
            yaml.dump({'references': rows}, f, default_flow_style=False, sort_keys=False)
        LOG.info(f"Saved {len(rows)} references to {yaml_path}")
