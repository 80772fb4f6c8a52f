"""Interface de base pour les index vectoriels.

Ce module définit le contrat que doivent implémenter les index vectoriels (REST managé ou mémoire)
ainsi que les deux opérations composées partagées: la mise à jour par ré-insertion complète et
l'incrément de compteur par lecture-modification-écriture.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import structlog

from proposalhub.core.constants import MAX_TOP_K, MIN_TOP_K
from proposalhub.domain.proposal import INDEX_FIELDS, SearchHit, normalize_id

# Champs qu'un appelant peut recopier dans l'index
INDEX_WRITABLE_FIELDS = (*INDEX_FIELDS, "vector")

_log = structlog.get_logger(__name__).bind(component="vector_index")


def clamp_top_k(top_k: Any) -> int:
    """Borne `top_k` dans [MIN_TOP_K, MAX_TOP_K]."""
    try:
        k = int(top_k)
    except (TypeError, ValueError):
        k = MIN_TOP_K
    return max(MIN_TOP_K, min(MAX_TOP_K, k))


class VectorIndex(ABC):
    """Contrat d'un index vectoriel adressé par identifiant de proposition."""

    backend = "abstract"

    @abstractmethod
    def ensure_collection(self, name: str, dimension: int) -> bool:
        """Crée la collection si absente; True si elle vient d'être créée."""
        raise NotImplementedError

    @abstractmethod
    def insert_or_update(self, name: str, records: list[dict[str, Any]]) -> Any:
        """Insère des enregistrements complets; un id existant est remplacé."""
        raise NotImplementedError

    @abstractmethod
    def search(
        self,
        name: str,
        vector: list[float],
        top_k: int = 5,
        output_fields: list[str] | None = None,
    ) -> list[SearchHit]:
        """Plus proches voisins, triés par score décroissant."""
        raise NotImplementedError

    @abstractmethod
    def get(self, name: str, entity_id: Any) -> dict[str, Any] | None:
        """Enregistrement par identifiant, ou None."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, name: str, entity_id: Any) -> Any:
        """Supprime un enregistrement; retourne l'acquittement du backend."""
        raise NotImplementedError

    @abstractmethod
    def list_entities(self, name: str, offset: int = 0, limit: int = 50) -> list[dict[str, Any]]:
        """Liste paginée des enregistrements."""
        raise NotImplementedError

    def health(self) -> dict[str, Any]:
        return {"backend": self.backend, "configured": True}

    def update_entity(self, name: str, entity_id: Any, fields: dict[str, Any]) -> bool:
        """Mise à jour partielle par ré-insertion complète.

        Seuls les champs de `INDEX_WRITABLE_FIELDS` sont fusionnés dans une copie de
        l'enregistrement distant; le vecteur n'est remplacé que s'il a changé.

        Returns:
            bool: False si l'enregistrement distant est absent ou sans vecteur.
        """
        existing = self.get(name, entity_id)
        if existing is None:
            _log.info("vector_update_skipped", reason="absent", id=str(entity_id))
            return False
        record: dict[str, Any] = {
            k: existing[k] for k in INDEX_WRITABLE_FIELDS if existing.get(k) is not None
        }
        for key, value in fields.items():
            if key not in INDEX_WRITABLE_FIELDS:
                continue
            if key == "vector" and (not value or value == existing.get("vector")):
                continue
            record[key] = value
        if not record.get("vector"):
            _log.warning("vector_update_skipped", reason="no_vector", id=str(entity_id))
            return False
        record["id"] = existing.get("id", normalize_id(entity_id))
        self.insert_or_update(name, [record])
        return True

    def increment_counter(
        self, name: str, entity_id: Any, field: str, delta: int | float
    ) -> dict[str, Any] | None:
        """Incrémente `field` par lecture-modification-écriture.

        Non atomique côté service distant: deux appels concurrents peuvent perdre une mise à
        jour. Les appelants qui ont besoin d'exclusion doivent la fournir autour de cet appel.

        Returns:
            dict | None: `{"previous", "now"}`, ou None si l'enregistrement est absent.
        """
        existing = self.get(name, entity_id)
        if existing is None:
            return None
        try:
            previous = int(existing.get(field) or 0)
        except (TypeError, ValueError):
            previous = 0
        now = previous + delta
        if not self.update_entity(name, entity_id, {field: now}):
            return None
        return {"previous": previous, "now": now}
