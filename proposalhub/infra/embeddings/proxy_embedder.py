"""
Embedder distant via un proxy compatible OpenAI (`POST {base}/v1/embeddings`).

Ce module implémente la génération d'embeddings avec validation d'entrée, normalisation des
différentes enveloppes de réponse et mémoïsation optionnelle.
"""

from __future__ import annotations

from numbers import Real
from typing import Any

import structlog

from proposalhub.app.metrics import (
    EMBEDDING_CACHE_HITS,
    EMBEDDING_CACHE_MISSES,
    VECTOR_DIMENSION_MISMATCH,
)
from proposalhub.domain.errors import (
    InvalidInputError,
    UnconfiguredError,
    UnparsableResponseError,
)
from proposalhub.infra.embeddings.base import Embeddings
from proposalhub.infra.embeddings.cache import EmbeddingCache
from proposalhub.infra.http_clients import (
    ResilientExecutor,
    parse_json,
    raise_for_service_status,
)


def normalize_embedding_response(payload: Any) -> list[float]:
    """Extrait le vecteur d'une réponse d'embeddings.

    Formes acceptées, dans cet ordre:
      - `{"data": [{"embedding": [...]}]}` (OpenAI)
      - `{"embeddings": [{"embedding": [...]}]}`
      - `{"embedding": [...]}`

    Raises:
        UnparsableResponseError: aucune forme reconnue, vecteur vide ou non numérique.
    """
    candidate: Any = None
    if isinstance(payload, dict):
        for key in ("data", "embeddings"):
            rows = payload.get(key)
            if isinstance(rows, list) and rows and isinstance(rows[0], dict):
                if rows[0].get("embedding") is not None:
                    candidate = rows[0]["embedding"]
                    break
        if candidate is None:
            candidate = payload.get("embedding")

    if not isinstance(candidate, list):
        raise UnparsableResponseError("embedding response shape not recognised")
    if not candidate:
        raise UnparsableResponseError("embedding response contains an empty vector")
    if not all(isinstance(x, Real) and not isinstance(x, bool) for x in candidate):
        raise UnparsableResponseError("embedding vector contains non-numeric values")
    return [float(x) for x in candidate]


class ProxyEmbedder(Embeddings):
    """
    Client d'embeddings distant.

    Les échecs (configuration, réseau, forme de réponse) sont propagés à l'appelant: l'index
    vectoriel en dépend.
    """

    def __init__(
        self,
        base_url: str,
        executor: ResilientExecutor,
        *,
        model: str = "text-embedding-3-small",
        cache: EmbeddingCache | None = None,
        expected_dimension: int | None = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.model = model
        self.cache = cache
        self.expected_dimension = expected_dimension
        self._executor = executor
        self._log = structlog.get_logger(__name__).bind(component="proxy_embedder")

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def embed(self, text: str, model: str | None = None) -> list[float]:
        """Retourne l'embedding de `text`.

        Raises:
            InvalidInputError: texte vide ou blanc.
            UnconfiguredError: URL du proxy absente (aucun appel émis).
            TransientServiceError / PermanentServiceError: échec du fournisseur.
            UnparsableResponseError: réponse de forme inconnue.
        """
        if not isinstance(text, str) or not text.strip():
            raise InvalidInputError("text must be a non-empty string")
        model = model or self.model

        if self.cache is not None:
            cached = self.cache.get(model, text)
            if cached is not None:
                EMBEDDING_CACHE_HITS.inc()
                return cached
            EMBEDDING_CACHE_MISSES.inc()

        if not self.base_url:
            raise UnconfiguredError("AI_PROXY_URL is not configured")

        resp = self._executor.execute(
            "POST",
            f"{self.base_url}/v1/embeddings",
            json={"input": text.strip(), "model": model, "encoding_format": "float"},
        )
        if not resp.is_success:
            self._log.error(
                "embedding_request_failed",
                status=resp.status_code,
                text_length=len(text),
                model=model,
            )
        raise_for_service_status(resp, "embedding service")
        vector = normalize_embedding_response(parse_json(resp, "embedding service"))

        if self.expected_dimension and len(vector) != self.expected_dimension:
            VECTOR_DIMENSION_MISMATCH.inc()
            self._log.warning(
                "embedding_dimension_mismatch",
                expected=self.expected_dimension,
                actual=len(vector),
                model=model,
            )
        if self.cache is not None:
            self.cache.put(model, text, vector)
        return vector

    def list_models(self, chat_model: str | None = None) -> dict[str, Any]:
        """Liste les modèles du proxy; ne lève jamais, retombe sur les modèles par défaut."""
        defaults: dict[str, Any] = {
            "embedding": [self.model],
            "chat": [chat_model] if chat_model else [],
        }
        if not self.base_url:
            return {**defaults, "note": "AI_PROXY_URL is not configured, returning defaults"}
        try:
            resp = self._executor.execute("GET", f"{self.base_url}/v1/models")
            if resp.is_success:
                return parse_json(resp, "model listing")
            return {**defaults, "error": f"model listing failed: {resp.status_code}"}
        except Exception as exc:
            self._log.warning("model_listing_failed", error=str(exc))
            return {**defaults, "error": str(exc)}
