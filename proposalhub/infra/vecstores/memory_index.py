"""
Index vectoriel en mémoire.

Implémente `VectorIndex` pour le développement local et les tests (`VECTOR_BACKEND=memory`).
Similarité cosinus naïve, par balayage complet de la collection.
"""

from __future__ import annotations

import copy
import math
import threading
from typing import Any

from proposalhub.domain.proposal import SearchHit, normalize_id
from proposalhub.infra.vecstores.base import VectorIndex, clamp_top_k


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0 or nb == 0:
        return 0.0
    return dot / (na * nb)


class MemoryVectorIndex(VectorIndex):
    """Index en mémoire, non persistant, sûr entre threads."""

    backend = "memory"

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._dimensions: dict[str, int] = {}
        self._lock = threading.Lock()

    def _records(self, name: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(name, {})

    def ensure_collection(self, name: str, dimension: int) -> bool:
        with self._lock:
            if name in self._collections:
                return False
            self._collections[name] = {}
            self._dimensions[name] = dimension
            return True

    def insert_or_update(self, name: str, records: list[dict[str, Any]]) -> Any:
        with self._lock:
            store = self._records(name)
            for rec in records:
                key = normalize_id(rec["id"])
                store[key] = copy.deepcopy({**rec, "id": key})
        return {"insertCount": len(records)}

    def search(
        self,
        name: str,
        vector: list[float],
        top_k: int = 5,
        output_fields: list[str] | None = None,
    ) -> list[SearchHit]:
        with self._lock:
            rows = list(self._records(name).values())
        hits: list[SearchHit] = []
        for row in rows:
            similarity = cosine_similarity(vector, row.get("vector") or [])
            distance = min(1.0, max(0.0, (1.0 - similarity) / 2.0))
            fields = {
                k: copy.deepcopy(v)
                for k, v in row.items()
                if k != "id" and (output_fields is None or k in output_fields)
            }
            hits.append(SearchHit(id=row["id"], score=1.0 - distance, distance=distance, fields=fields))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[: clamp_top_k(top_k)]

    def get(self, name: str, entity_id: Any) -> dict[str, Any] | None:
        with self._lock:
            row = self._records(name).get(normalize_id(entity_id))
            return copy.deepcopy(row) if row is not None else None

    def delete(self, name: str, entity_id: Any) -> Any:
        with self._lock:
            removed = self._records(name).pop(normalize_id(entity_id), None)
        return {"deleteCount": 0 if removed is None else 1}

    def list_entities(self, name: str, offset: int = 0, limit: int = 50) -> list[dict[str, Any]]:
        with self._lock:
            rows = list(self._records(name).values())
        start = max(0, int(offset))
        return [copy.deepcopy(r) for r in rows[start : start + max(1, int(limit))]]
