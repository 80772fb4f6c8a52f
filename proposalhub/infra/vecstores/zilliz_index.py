# ============================================================
# Module : proposalhub/infra/vecstores/zilliz_index.py
# Objet  : Client REST de l'index vectoriel managé (Milvus/Zilliz).
# Contexte : Tous les appels passent par l'exécuteur résilient.
# Invariants :
#  - URL de base absente => UnconfiguredError (jamais de repli silencieux).
#  - Les enveloppes `data` / `results` / `rows` / `entities` sont normalisées.
#  - Absence d'un enregistrement => None, pas une erreur.
# ============================================================
"""Adaptateur REST de l'index vectoriel des propositions."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import structlog

from proposalhub.app.metrics import VECTOR_DIMENSION_MISMATCH
from proposalhub.core.constants import HTTP_CONFLICT, HTTP_NOT_FOUND
from proposalhub.domain.errors import (
    PermanentServiceError,
    UnconfiguredError,
    UnparsableResponseError,
)
from proposalhub.domain.proposal import INDEX_FIELDS, SearchHit, same_id
from proposalhub.infra.http_clients import ResilientExecutor
from proposalhub.infra.vecstores.base import VectorIndex, clamp_top_k

_ENVELOPE_KEYS = ("results", "rows", "entities", "data")
_HIT_META_KEYS = ("id", "score", "distance", "entity")
_NOT_FOUND_MARKERS = ("not exist", "not found", "doesn't exist", "does not exist")
_ALREADY_EXISTS_MARKERS = ("already exist",)
# Dernier recours de `get`: balayage borné des entités
_LIST_SCAN_LIMIT = 1000


def extract_rows(payload: Any) -> list[dict[str, Any]]:
    """Normalise les enveloppes de réponse en liste de lignes.

    Ordre: liste nue, `data` (liste ou objet imbriqué), `results`, `rows`, `entities`.

    Raises:
        UnparsableResponseError: payload qui n'est ni un objet ni une liste.
    """
    if payload is None:
        return []
    if isinstance(payload, list):
        return [r for r in payload if isinstance(r, dict)]
    if not isinstance(payload, dict):
        raise UnparsableResponseError("vector index returned an unexpected payload")
    data = payload.get("data")
    if isinstance(data, list):
        # Recherche par lot: [[hit, ...]]
        if data and isinstance(data[0], list):
            data = data[0]
        return [r for r in data if isinstance(r, dict)]
    if isinstance(data, dict):
        for key in _ENVELOPE_KEYS:
            if isinstance(data.get(key), list):
                return extract_rows(data[key])
        if "id" in data:
            return [data]
    for key in _ENVELOPE_KEYS[:-1]:
        if isinstance(payload.get(key), list):
            return extract_rows(payload[key])
    return []


def _message_has(payload: Any, markers: tuple[str, ...]) -> bool:
    text = str(payload.get("message", "") if isinstance(payload, dict) else payload).lower()
    return any(m in text for m in markers)


def _escape_filter_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class ZillizVectorIndex(VectorIndex):
    """Index vectoriel REST (`/v2/collections`, `/v2/vectors`, `/v2/vectors/search`).

    Variables de configuration utilisées:
      - `ZILLIZ_API_URL`: URL de l'instance
      - `ZILLIZ_API_KEY`: jeton bearer (optionnel)
    """

    backend = "zilliz"

    def __init__(
        self,
        base_url: str,
        executor: ResilientExecutor,
        *,
        default_dimension: int = 1536,
        metric: str = "COSINE",
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.default_dimension = default_dimension
        self.metric = (metric or "COSINE").upper()
        self._executor = executor
        self._dimensions: dict[str, int] = {}
        self._log = structlog.get_logger(__name__).bind(component="zilliz_index")

    # -------------------- Transport --------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> Any:
        if not self.base_url:
            raise UnconfiguredError("ZILLIZ_API_URL is not configured")
        resp = self._executor.execute(method, f"{self.base_url}{path}", json=json, params=params)
        try:
            payload: Any = resp.json()
        except ValueError:
            payload = resp.text

        if resp.status_code == HTTP_NOT_FOUND and allow_not_found:
            return None
        if not resp.is_success:
            raise PermanentServiceError(
                f"vector index {resp.status_code}: {str(payload)[:500]}",
                status_code=resp.status_code,
                details={"path": path},
            )
        # Certains déploiements répondent 200 avec un code applicatif non nul
        if isinstance(payload, dict) and payload.get("code") not in (None, 0, 200):
            if allow_not_found and _message_has(payload, _NOT_FOUND_MARKERS):
                return None
            raise PermanentServiceError(
                f"vector index error {payload.get('code')}: {payload.get('message', '')}",
                status_code=resp.status_code,
                details={"path": path, "code": payload.get("code")},
            )
        return payload

    # -------------------- Distances --------------------

    def _to_hit(self, row: dict[str, Any]) -> SearchHit:
        entity = row.get("entity") if isinstance(row.get("entity"), dict) else None
        fields = dict(entity) if entity else {
            k: v for k, v in row.items() if k not in _HIT_META_KEYS
        }
        raw_id = row.get("id", fields.get("id"))
        fields.pop("id", None)
        raw = row.get("distance", row.get("score", 0.0))
        try:
            value = float(raw)
        except (TypeError, ValueError):
            value = 0.0
        if self.metric in ("COSINE", "IP"):
            # Le backend renvoie une similarité dans [-1, 1]
            distance = min(1.0, max(0.0, (1.0 - value) / 2.0))
        else:
            distance = value / (1.0 + value) if value > 0 else 0.0
        return SearchHit(
            id="" if raw_id is None else str(raw_id),
            score=1.0 - distance,
            distance=distance,
            fields=fields,
        )

    def _check_dimension(self, name: str, vector: Any) -> None:
        expected = self._dimensions.get(name, self.default_dimension)
        if isinstance(vector, list) and vector and len(vector) != expected:
            VECTOR_DIMENSION_MISMATCH.inc()
            self._log.warning(
                "vector_dimension_mismatch", collection=name, expected=expected, actual=len(vector)
            )

    # -------------------- Contrat --------------------

    def ensure_collection(self, name: str, dimension: int) -> bool:
        """Idempotent: vérifie l'existence puis crée seulement si absente."""
        existing = self._request("GET", f"/v2/collections/{quote(name, safe='')}", allow_not_found=True)
        if existing:
            self._dimensions.setdefault(name, dimension)
            return False

        body = {
            "collectionName": name,
            "dimension": dimension,
            "metricType": self.metric,
            "primaryField": "id",
            "fields": [
                {"name": "id", "dataType": "VarChar", "maxLength": 128, "isPrimary": True},
                {"name": "title", "dataType": "VarChar", "maxLength": 1024},
                {"name": "content", "dataType": "VarChar", "maxLength": 65535},
                {"name": "category", "dataType": "VarChar", "maxLength": 128},
                {"name": "risk", "dataType": "VarChar", "maxLength": 32},
                {"name": "status", "dataType": "VarChar", "maxLength": 32},
                {"name": "votes", "dataType": "Int64"},
                {"name": "vector", "dataType": "FloatVector", "dimension": dimension},
            ],
        }
        try:
            self._request("POST", "/v2/collections", json=body)
        except PermanentServiceError as exc:
            # Course: la collection a pu apparaître entre la vérification et la création
            if exc.status_code == HTTP_CONFLICT or _message_has(
                {"message": exc.message}, _ALREADY_EXISTS_MARKERS
            ):
                self._log.info("collection_create_race", collection=name)
                self._dimensions.setdefault(name, dimension)
                return False
            raise
        self._dimensions[name] = dimension
        self._log.info("collection_created", collection=name, dimension=dimension)
        return True

    def insert_or_update(self, name: str, records: list[dict[str, Any]]) -> Any:
        if not records:
            return {"insertCount": 0}
        for rec in records:
            self._check_dimension(name, rec.get("vector"))
        return self._request("POST", "/v2/vectors", json={"collectionName": name, "data": records})

    def _search_rows(
        self,
        name: str,
        vector: list[float],
        top_k: int,
        output_fields: list[str] | None,
        filter_expr: str | None,
        allow_not_found: bool = False,
    ) -> list[dict[str, Any]] | None:
        self._check_dimension(name, vector)
        body: dict[str, Any] = {
            "collectionName": name,
            "vector": vector,
            "topK": clamp_top_k(top_k),
            "metricType": self.metric,
            "outputFields": list(output_fields or ["id", *INDEX_FIELDS]),
        }
        if filter_expr:
            body["filter"] = filter_expr
        payload = self._request(
            "POST", "/v2/vectors/search", json=body, allow_not_found=allow_not_found
        )
        return None if payload is None else extract_rows(payload)

    def search(
        self,
        name: str,
        vector: list[float],
        top_k: int = 5,
        output_fields: list[str] | None = None,
        filter_expr: str | None = None,
    ) -> list[SearchHit]:
        rows = self._search_rows(name, vector, top_k, output_fields, filter_expr) or []
        hits = [self._to_hit(r) for r in rows]
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits

    def get(self, name: str, entity_id: Any) -> dict[str, Any] | None:
        """Lecture ponctuelle, puis replis successifs:

        1. `GET .../entities/{id}`;
        2. recherche par vecteur nul filtrée sur `id`;
        3. balayage de `list_entities` (borné à `_LIST_SCAN_LIMIT`).

        Une collection absente vaut "introuvable": retourne None.
        """
        key = str(entity_id)
        try:
            payload = self._request(
                "GET",
                f"/v2/collections/{quote(name, safe='')}/entities/{quote(key, safe='')}",
                allow_not_found=True,
            )
            for row in extract_rows(payload):
                if same_id(row.get("id"), key):
                    return row
        except PermanentServiceError as exc:
            self._log.info("point_lookup_unavailable", collection=name, status=exc.status_code)

        dim = self._dimensions.get(name, self.default_dimension)
        try:
            rows = self._search_rows(
                name,
                [0.0] * dim,
                1,
                ["id", *INDEX_FIELDS, "vector"],
                f'id == "{_escape_filter_value(key)}"',
                allow_not_found=True,
            )
        except PermanentServiceError as exc:
            self._log.info("filtered_lookup_unavailable", collection=name, status=exc.status_code)
            rows = []
        else:
            if rows is None:
                return None
        for hit in (self._to_hit(r) for r in rows):
            if same_id(hit.id, key):
                return {"id": hit.id, **hit.fields}

        for row in self.list_entities(name, offset=0, limit=_LIST_SCAN_LIMIT):
            if same_id(row.get("id"), key):
                return row
        return None

    def delete(self, name: str, entity_id: Any) -> Any:
        return self._request(
            "DELETE",
            f"/v2/collections/{quote(name, safe='')}/entities",
            json={"ids": [str(entity_id)]},
        )

    def list_entities(self, name: str, offset: int = 0, limit: int = 50) -> list[dict[str, Any]]:
        payload = self._request(
            "GET",
            f"/v2/collections/{quote(name, safe='')}/entities",
            params={"offset": max(0, int(offset)), "limit": max(1, int(limit))},
            allow_not_found=True,
        )
        return extract_rows(payload)

    def health(self) -> dict[str, Any]:
        return {"backend": self.backend, "configured": bool(self.base_url), "metric": self.metric}
