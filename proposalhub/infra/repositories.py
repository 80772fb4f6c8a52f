"""
Magasin d'enregistrements des propositions.

Ce module fournit deux implémentations du même contrat (`append`, `find`, `list`, `replace`,
`remove`): un fichier JSON unique réécrit atomiquement, et une version en mémoire pour les tests.
"""

from __future__ import annotations

import copy
import json
import os
import threading
from pathlib import Path
from typing import Any

import structlog

from proposalhub.domain.proposal import same_id

log = structlog.get_logger(__name__).bind(component="record_store")


class JSONProposalRepo:
    """
    Dépôt de propositions adossé à un fichier JSON (liste d'objets).

    Chaque mutation relit le document entier, applique le changement en mémoire puis réécrit le
    fichier via un fichier temporaire et `os.replace`: un arrêt brutal ne laisse jamais un
    document à moitié écrit. Le format sur disque est lu par des outils externes.
    """

    def __init__(self, path: str | os.PathLike[str]):
        """Mémorise le chemin; le fichier est créé à la première écriture."""
        self.path = Path(path)
        self._lock = threading.Lock()

    # -------------------- I/O --------------------

    def _read_all(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            log.warning("record_store_unreadable", path=str(self.path), error=str(exc))
            return []
        if not isinstance(data, list):
            log.warning("record_store_unexpected_shape", path=str(self.path))
            return []
        return [r for r in data if isinstance(r, dict)]

    def _write_all(self, records: list[dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(records, f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)

    # -------------------- Contrat --------------------

    def exists(self) -> bool:
        return self.path.exists()

    def append(self, record: dict[str, Any]) -> dict[str, Any]:
        """Ajoute un enregistrement en fin de document et le renvoie."""
        with self._lock:
            records = self._read_all()
            records.append(record)
            self._write_all(records)
        return record

    def find(self, proposal_id: Any) -> dict[str, Any] | None:
        """Retourne l'enregistrement d'id `proposal_id` (égalité lâche), ou None."""
        with self._lock:
            records = self._read_all()
        return next((r for r in records if same_id(r.get("id"), proposal_id)), None)

    def list(
        self, offset: int = 0, limit: int | None = None, newest_first: bool = True
    ) -> list[dict[str, Any]]:
        """Liste paginée, la plus récente d'abord par défaut (ordre d'insertion inversé)."""
        with self._lock:
            records = self._read_all()
        if newest_first:
            records.reverse()
        start = max(0, offset)
        return records[start:] if limit is None else records[start : start + limit]

    def count(self) -> int:
        with self._lock:
            return len(self._read_all())

    def replace(self, proposal_id: Any, updated: dict[str, Any]) -> bool:
        """Remplace l'enregistrement; False s'il est absent."""
        with self._lock:
            records = self._read_all()
            for i, rec in enumerate(records):
                if same_id(rec.get("id"), proposal_id):
                    records[i] = updated
                    self._write_all(records)
                    return True
        return False

    def remove(self, proposal_id: Any) -> int:
        """Supprime toutes les occurrences de l'id; retourne le nombre supprimé."""
        with self._lock:
            records = self._read_all()
            kept = [r for r in records if not same_id(r.get("id"), proposal_id)]
            removed = len(records) - len(kept)
            if removed:
                self._write_all(kept)
        return removed


class InMemoryProposalRepo:
    """
    Dépôt de propositions en mémoire (utilisé pour dev/tests).

    Même contrat que `JSONProposalRepo`, sans persistance.
    """

    def __init__(self, records: list[dict[str, Any]] | None = None):
        self._db: list[dict[str, Any]] = copy.deepcopy(records or [])
        self._lock = threading.Lock()

    def exists(self) -> bool:
        return True

    def append(self, record: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self._db.append(copy.deepcopy(record))
        return record

    def find(self, proposal_id: Any) -> dict[str, Any] | None:
        with self._lock:
            rec = next((r for r in self._db if same_id(r.get("id"), proposal_id)), None)
            return copy.deepcopy(rec) if rec is not None else None

    def list(
        self, offset: int = 0, limit: int | None = None, newest_first: bool = True
    ) -> list[dict[str, Any]]:
        with self._lock:
            records = copy.deepcopy(self._db)
        if newest_first:
            records.reverse()
        start = max(0, offset)
        return records[start:] if limit is None else records[start : start + limit]

    def count(self) -> int:
        return len(self._db)

    def replace(self, proposal_id: Any, updated: dict[str, Any]) -> bool:
        with self._lock:
            for i, rec in enumerate(self._db):
                if same_id(rec.get("id"), proposal_id):
                    self._db[i] = copy.deepcopy(updated)
                    return True
        return False

    def remove(self, proposal_id: Any) -> int:
        with self._lock:
            before = len(self._db)
            self._db = [r for r in self._db if not same_id(r.get("id"), proposal_id)]
            return before - len(self._db)
