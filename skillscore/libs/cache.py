"""Bounded, thread-safe caches injected into the scoring components."""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Tuple

from tqdm import tqdm

from .config_loader import ConfigType, policy_from_config

LOG = logging.getLogger(__name__)

EmbeddingProvider = Callable[[str], List[float]]

# Embedding cache keys use the exercise id plus this many leading characters.
EMBEDDING_KEY_PREFIX_CHARS = 50


@dataclass(frozen=True)
class CachePolicy:
    """Capacity limits for the process-wide caches."""

    embedding_max_entries: int = 512
    similarity_max_entries: int = 4096

    @classmethod
    def from_config(cls, configs: Optional[ConfigType]) -> "CachePolicy":
        return policy_from_config(cls, configs, "scoring.cache")


class BoundedCache:
    """
    Least-recently-used cache with a fixed number of entries.

    All reads and writes happen under a single lock so one instance can be
    shared between concurrently running scoring requests.
    """

    def __init__(self, max_entries: int = 1024, name: str = "cache"):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.name = name
        self._entries: "OrderedDict[Hashable, Any]" = OrderedDict()
        self._lock = threading.Lock()
        self._metrics = {"hits": 0, "misses": 0, "evictions": 0}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self._metrics["hits"] += 1
                return self._entries[key]
            self._metrics["misses"] += 1
            return default

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = value
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self._metrics["evictions"] += 1
                LOG.debug("Evicted %s entry: %s", self.name, evicted)

    def get_or_compute(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        """
        Return the cached value for ``key`` or compute and store it.

        ``compute`` runs outside the lock; two racing callers may both compute,
        and the last write wins. Values are deterministic so either is fine.
        """
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self._metrics["hits"] += 1
                return self._entries[key]
            self._metrics["misses"] += 1

        value = compute()
        self.set(key, value)
        return value

    def invalidate(self, predicate: Optional[Callable[[Hashable], bool]] = None) -> int:
        """Remove entries whose key matches ``predicate`` (all entries if None)."""
        with self._lock:
            if predicate is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                doomed = [k for k in self._entries if predicate(k)]
                for k in doomed:
                    del self._entries[k]
                removed = len(doomed)
        if removed:
            LOG.info("Invalidated %d %s entries", removed, self.name)
        return removed

    def clear(self) -> None:
        self.invalidate()

    def metrics(self) -> Dict[str, Any]:
        with self._lock:
            total = self._metrics["hits"] + self._metrics["misses"]
            return {
                **self._metrics,
                "hit_rate": self._metrics["hits"] / max(total, 1),
                "num_entries": len(self._entries),
                "max_entries": self.max_entries,
            }


def pair_key(id_a: str, id_b: str) -> Tuple[str, str]:
    """Order-independent key for a pair of ids."""
    return (id_a, id_b) if id_a <= id_b else (id_b, id_a)


class EmbeddingCache:
    """Caches exemplar embeddings keyed by exercise id and a text prefix."""

    def __init__(self, max_entries: int = 512):
        self._cache = BoundedCache(max_entries=max_entries, name="embedding")

    @staticmethod
    def make_key(exercise_id: str, text: str) -> str:
        return f"{exercise_id}:{text[:EMBEDDING_KEY_PREFIX_CHARS]}"

    def get_embedding(self, exercise_id: str, text: str,
                      provider: EmbeddingProvider) -> Optional[List[float]]:
        """
        Cached embedding for ``text``; computes it with ``provider`` on a miss.

        Provider failures are logged and reported as None ("no signal").
        Failed lookups are not cached so a later request can retry.
        """
        key = self.make_key(exercise_id, text)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            embedding = list(provider(text))
        except Exception as e:  # pylint: disable=broad-except
            LOG.warning(f"Embedding provider failed for {exercise_id}: {e}")
            return None
        if not embedding:
            LOG.warning(f"Embedding provider returned an empty vector for {exercise_id}")
            return None

        self._cache.set(key, embedding)
        return embedding

    def warm(self, exercises: Iterable[Tuple[str, Optional[str]]],
             provider: EmbeddingProvider) -> int:
        """
        Pre-compute embeddings for (exercise_id, exemplar_text) pairs.

        Exercises without exemplar text are skipped. Returns the number of
        embeddings now cached for the given exercises.
        """
        with_text = [(ex_id, text) for ex_id, text in exercises if text]
        warmed = 0
        for exercise_id, text in tqdm(with_text, desc="Warming embedding cache"):
            if self.get_embedding(exercise_id, text, provider) is not None:
                warmed += 1
        LOG.info(f"Warmed embedding cache for {warmed}/{len(with_text)} exercises")
        return warmed

    def invalidate_exercise(self, exercise_id: str) -> int:
        prefix = f"{exercise_id}:"
        return self._cache.invalidate(lambda key: str(key).startswith(prefix))

    def metrics(self) -> Dict[str, Any]:
        return self._cache.metrics()

    def __len__(self) -> int:
        return len(self._cache)
