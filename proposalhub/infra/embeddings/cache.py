"""Cache borné des embeddings, partagé entre requêtes.

Éviction déterministe du plus ancien élément inséré une fois la capacité dépassée.
"""

from __future__ import annotations

import threading
from collections import OrderedDict


class EmbeddingCache:
    """Table `(modèle, texte) -> vecteur` de capacité fixe, sûre en accès concurrent."""

    def __init__(self, capacity: int = 1000) -> None:
        self.capacity = max(1, int(capacity))
        self._data: OrderedDict[tuple[str, str], list[float]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, model: str, text: str) -> list[float] | None:
        with self._lock:
            vec = self._data.get((model, text))
        return list(vec) if vec is not None else None

    def put(self, model: str, text: str, vector: list[float]) -> None:
        key = (model, text)
        with self._lock:
            if key in self._data:
                self._data[key] = list(vector)
                return
            self._data[key] = list(vector)
            while len(self._data) > self.capacity:
                self._data.popitem(last=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
