# ============================================================
# Module : proposalhub/services/proposal_service.py
# Objet  : Politique de synchronisation entre index vectoriel et magasin d'enregistrements.
# Contexte : Pas de transaction distribuée; chaque mutation est tentée sur les deux magasins
#            et le résultat indique lesquels ont été modifiés (best-effort).
# Invariants :
#  - Lecture: magasin d'enregistrements d'abord, index vectoriel ensuite.
#  - Update/delete/vote échouent seulement si aucun magasin n'a réussi.
#  - Le vecteur n'est régénéré que si title/content/description change.
# ============================================================
"""Service des propositions (création, lecture, mise à jour, vote, recherche)."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any

import structlog

from proposalhub.app.metrics import STORE_WRITE_FAILURES
from proposalhub.core.constants import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_STATUS,
    DEFAULT_TOP_K,
    MAX_PAGE_SIZE,
)
from proposalhub.domain.errors import (
    DuplicateVoteError,
    InconsistentStateError,
    InvalidInputError,
    OperationFailedError,
    ProposalHubError,
    UnconfiguredError,
)
from proposalhub.domain.proposal import (
    INDEX_FIELDS,
    AnalysisResult,
    DualWriteOutcome,
    ProposalCreate,
    StoreStatus,
    VoteRequest,
    new_proposal_id,
    normalize_id,
    parse_model,
    utc_now_iso,
    validate_update_fields,
)
from proposalhub.infra.embeddings.base import Embeddings
from proposalhub.infra.vecstores.base import VectorIndex, clamp_top_k
from proposalhub.services.analysis_client import AnalysisClient


def without_vector(record: dict[str, Any]) -> dict[str, Any]:
    """Copie de l'enregistrement sans le champ `vector` (réponses de liste/recherche)."""
    return {k: v for k, v in record.items() if k != "vector"}


def _index_record(record: dict[str, Any]) -> dict[str, Any]:
    rec = {"id": record["id"], "vector": record["vector"]}
    for key in INDEX_FIELDS:
        value = record.get(key)
        rec[key] = value if value is not None else ""
    rec["votes"] = int(record.get("votes") or 0)
    return rec


def _embedding_text(title: str, body: str) -> str:
    return f"{title}\n{body}"


def _embedded_parts(record: dict[str, Any]) -> tuple[str, str]:
    """Titre et corps embarqués: `content`, sinon `description` (comme à la création)."""
    body = record.get("content") or record.get("description") or ""
    return str(record.get("title") or ""), str(body)


class ProposalService:
    """Orchestration des deux magasins (index vectoriel + magasin d'enregistrements).

    Le magasin d'enregistrements fait foi pour tous les champs; l'index vectoriel fait foi pour
    le classement par similarité.
    """

    def __init__(
        self,
        index: VectorIndex,
        repo: Any,
        embedder: Embeddings,
        analyzer: AnalysisClient,
        *,
        collection: str = "proposals",
        dimension: int = 1536,
        append_attempts: int = 2,
        vote_max_abs_delta: int = 1,
        dedupe_voters: bool = True,
    ) -> None:
        self.index = index
        self.repo = repo
        self.embedder = embedder
        self.analyzer = analyzer
        self.collection = collection
        self.dimension = dimension
        self.append_attempts = max(1, append_attempts)
        self.vote_max_abs_delta = vote_max_abs_delta
        self.dedupe_voters = dedupe_voters
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._log = structlog.get_logger(__name__).bind(component="proposal_service")

    # -------------------- Exclusion par id --------------------

    @contextmanager
    def _id_lock(self, proposal_id: Any):
        key = normalize_id(proposal_id)
        with self._locks_guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield

    def _record_failure(self, store: str, op: str, proposal_id: Any, exc: Exception) -> None:
        STORE_WRITE_FAILURES.labels(store, op).inc()
        self._log.error(f"{store}_{op}_failed", id=str(proposal_id), error=str(exc))

    def _finish(self, op: str, proposal_id: Any, outcome: DualWriteOutcome) -> DualWriteOutcome:
        if not outcome.any_ok:
            raise OperationFailedError(
                f"{op} failed on both stores", details={"id": str(proposal_id), **outcome.as_dict()}
            )
        if outcome.partial:
            self._log.warning("dual_write_partial", op=op, id=str(proposal_id), **outcome.as_dict())
        return outcome

    # -------------------- Create --------------------

    def create(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Valide, analyse, vectorise puis écrit dans l'index et le magasin.

        Returns:
            dict: `{"proposal": record, "analysis": {...}}`

        Raises:
            InvalidInputError: payload invalide.
            UnconfiguredError / ServiceError / UnparsableResponseError: embedding ou index.
            InconsistentStateError: index écrit mais magasin d'enregistrements en échec.
        """
        data = parse_model(ProposalCreate, payload)
        analysis = self.analyzer.analyze(data.title, data.body())
        vector = self.embedder.embed(data.embedding_text())

        now = utc_now_iso()
        record: dict[str, Any] = {
            "id": new_proposal_id(),
            "title": data.title,
            "content": data.body(),
            "description": data.description or data.body(),
            "summary": analysis.summary,
            "budget": data.budget,
            "status": DEFAULT_STATUS,
            "category": analysis.category,
            "risk": analysis.risk,
            "votes": 0,
            "voters": [],
            "tags": list(data.tags),
            "created_by": data.created_by,
            "vector": vector,
            "createdAt": now,
            "updatedAt": now,
        }

        self.index.ensure_collection(self.collection, self.dimension)
        self.index.insert_or_update(self.collection, [_index_record(record)])

        last_error: Exception | None = None
        for attempt in range(1, self.append_attempts + 1):
            try:
                self.repo.append(record)
                break
            except OSError as exc:
                last_error = exc
                self._log.warning(
                    "record_store_append_retry", id=record["id"], attempt=attempt, error=str(exc)
                )
        else:
            self._record_failure("record_store", "create", record["id"], last_error)
            raise InconsistentStateError(
                "proposal indexed but not persisted in the record store",
                details={"id": record["id"], "vector_index": "ok", "record_store": "failed"},
            )

        self._log.info("proposal_created", id=record["id"], category=record["category"])
        return {"proposal": record, "analysis": analysis.to_public()}

    # -------------------- Read --------------------

    def get(self, proposal_id: Any) -> dict[str, Any] | None:
        """Magasin d'enregistrements d'abord, index vectoriel en repli (champs partiels)."""
        record = self.repo.find(proposal_id)
        if record is not None:
            return record
        try:
            partial = self.index.get(self.collection, proposal_id)
        except UnconfiguredError:
            return None
        if partial is None:
            return None
        self._log.info("proposal_read_from_index", id=str(proposal_id))
        return {**partial, "details_available": False}

    def list_proposals(self, offset: int = 0, limit: int = DEFAULT_PAGE_SIZE) -> dict[str, Any]:
        offset = max(0, int(offset))
        limit = max(1, min(MAX_PAGE_SIZE, int(limit)))
        items = [without_vector(r) for r in self.repo.list(offset=offset, limit=limit)]
        return {"items": items, "total": self.repo.count(), "offset": offset, "limit": limit}

    # -------------------- Update --------------------

    def update(self, proposal_id: Any, fields: dict[str, Any]) -> dict[str, Any] | None:
        """Mise à jour partielle sur les deux magasins, indépendamment.

        Returns:
            dict | None: `{"proposal", "outcome", "vector_updated"}`, None si l'id est inconnu.

        Raises:
            InvalidInputError: champ non autorisé ou valeur invalide.
            OperationFailedError: aucun magasin mis à jour.
        """
        values = validate_update_fields(fields)
        current = self.repo.find(proposal_id)
        base = current
        if base is None:
            try:
                base = self.index.get(self.collection, proposal_id)
            except ProposalHubError as exc:
                self._log.warning("vector_index_read_failed", id=str(proposal_id), error=str(exc))
                base = None
        if base is None:
            return None

        changes = dict(values)
        new_vector: list[float] | None = None
        title, body = _embedded_parts({**base, **changes})
        # Seul le texte effectivement embarqué (titre + corps) déclenche un nouvel embedding
        text_changed = (title, body) != _embedded_parts(base)
        if text_changed:
            try:
                new_vector = self.embedder.embed(_embedding_text(title, body))
            except ProposalHubError as exc:
                # Les autres champs sont appliqués, l'ancien vecteur est conservé
                self._log.warning("update_embedding_failed", id=str(proposal_id), error=str(exc))
            analysis = self.analyzer.analyze(title, body)
            if not (analysis.is_error or analysis.is_fallback):
                for key in ("summary", "category", "risk"):
                    changes.setdefault(key, getattr(analysis, key))

        outcome = DualWriteOutcome()
        index_fields = {k: v for k, v in changes.items() if k in INDEX_FIELDS}
        if new_vector is not None:
            index_fields["vector"] = new_vector
        if index_fields:
            try:
                updated = self.index.update_entity(self.collection, proposal_id, index_fields)
                outcome.vector_index = StoreStatus.OK if updated else StoreStatus.ABSENT
            except ProposalHubError as exc:
                outcome.vector_index = StoreStatus.FAILED
                self._record_failure("vector_index", "update", proposal_id, exc)

        result: dict[str, Any] = {**base, **changes}
        if current is not None:
            result = {**current, **changes, "updatedAt": utc_now_iso()}
            if new_vector is not None:
                result["vector"] = new_vector
            try:
                replaced = self.repo.replace(proposal_id, result)
                outcome.record_store = StoreStatus.OK if replaced else StoreStatus.ABSENT
            except OSError as exc:
                outcome.record_store = StoreStatus.FAILED
                self._record_failure("record_store", "update", proposal_id, exc)
        else:
            outcome.record_store = StoreStatus.ABSENT
            result["details_available"] = False

        self._finish("update", proposal_id, outcome)
        return {
            "proposal": result,
            "outcome": outcome.as_dict(),
            "affected": outcome.affected(),
            "vector_updated": new_vector is not None,
        }

    # -------------------- Delete --------------------

    def delete(self, proposal_id: Any) -> DualWriteOutcome | None:
        """Suppression indépendante dans les deux magasins; None si l'id est inconnu partout."""
        known = self.repo.find(proposal_id) is not None
        if not known:
            try:
                known = self.index.get(self.collection, proposal_id) is not None
            except ProposalHubError as exc:
                # Indéterminé: on tente quand même la suppression
                self._log.warning("vector_index_read_failed", id=str(proposal_id), error=str(exc))
                known = True
        if not known:
            return None

        outcome = DualWriteOutcome()
        try:
            self.index.delete(self.collection, proposal_id)
            outcome.vector_index = StoreStatus.OK
        except ProposalHubError as exc:
            outcome.vector_index = StoreStatus.FAILED
            self._record_failure("vector_index", "delete", proposal_id, exc)
        try:
            removed = self.repo.remove(proposal_id)
            outcome.record_store = StoreStatus.OK if removed else StoreStatus.ABSENT
        except OSError as exc:
            outcome.record_store = StoreStatus.FAILED
            self._record_failure("record_store", "delete", proposal_id, exc)

        self._finish("delete", proposal_id, outcome)
        self._log.info("proposal_deleted", id=str(proposal_id), affected=outcome.affected())
        return outcome

    # -------------------- Vote --------------------

    def vote(self, proposal_id: Any, delta: int = 1, voter: str | None = None) -> dict[str, Any] | None:
        """Lecture-modification-écriture du compteur de votes, sous verrou par id.

        Le verrou ne couvre que ce processus: deux instances du service peuvent toujours perdre
        une mise à jour sur l'index distant.

        Raises:
            InvalidInputError: delta nul ou hors borne.
            DuplicateVoteError: le votant a déjà voté.
            OperationFailedError: aucun magasin mis à jour.
        """
        req = parse_model(VoteRequest, {"delta": delta, "voter": voter})
        if abs(req.delta) > self.vote_max_abs_delta:
            raise InvalidInputError(
                f"vote delta must be between -{self.vote_max_abs_delta} and {self.vote_max_abs_delta}",
                details={"delta": req.delta},
            )

        with self._id_lock(proposal_id):
            current = self.repo.find(proposal_id)
            if current is None:
                return self._vote_index_only(proposal_id, req)

            voters = [v for v in (current.get("voters") or []) if isinstance(v, dict)]
            if self.dedupe_voters and req.voter and any(v.get("voter") == req.voter for v in voters):
                raise DuplicateVoteError(
                    "voter has already voted on this proposal",
                    details={"id": str(proposal_id), "voter": req.voter},
                )
            previous = int(current.get("votes") or 0)
            now = previous + req.delta
            stamp = utc_now_iso()
            voters.append({"voter": req.voter, "delta": req.delta, "timestamp": stamp})

            outcome = DualWriteOutcome()
            try:
                replaced = self.repo.replace(
                    proposal_id, {**current, "votes": now, "voters": voters, "updatedAt": stamp}
                )
                outcome.record_store = StoreStatus.OK if replaced else StoreStatus.ABSENT
            except OSError as exc:
                outcome.record_store = StoreStatus.FAILED
                self._record_failure("record_store", "vote", proposal_id, exc)
            try:
                updated = self.index.update_entity(self.collection, proposal_id, {"votes": now})
                outcome.vector_index = StoreStatus.OK if updated else StoreStatus.ABSENT
            except ProposalHubError as exc:
                outcome.vector_index = StoreStatus.FAILED
                self._record_failure("vector_index", "vote", proposal_id, exc)

            self._finish("vote", proposal_id, outcome)
        return {
            "id": str(current["id"]),
            "previous": previous,
            "votes": now,
            "outcome": outcome.as_dict(),
        }

    def _vote_index_only(self, proposal_id: Any, req: VoteRequest) -> dict[str, Any] | None:
        outcome = DualWriteOutcome(record_store=StoreStatus.ABSENT)
        try:
            counter = self.index.increment_counter(self.collection, proposal_id, "votes", req.delta)
        except ProposalHubError as exc:
            outcome.vector_index = StoreStatus.FAILED
            self._record_failure("vector_index", "vote", proposal_id, exc)
            raise OperationFailedError(
                "vote failed on both stores",
                details={"id": str(proposal_id), **outcome.as_dict()},
            ) from exc
        if counter is None:
            return None
        outcome.vector_index = StoreStatus.OK
        return {
            "id": normalize_id(proposal_id),
            "previous": counter["previous"],
            "votes": counter["now"],
            "outcome": outcome.as_dict(),
        }

    # -------------------- Search --------------------

    def search(self, query: str, top_k: int = DEFAULT_TOP_K) -> list[dict[str, Any]]:
        """Recherche par similarité, enrichie depuis le magasin d'enregistrements.

        Les résultats sans enregistrement complet sont marqués `details_available=False`;
        ceux sans identifiant ni champs sont écartés.
        """
        if not isinstance(query, str) or not query.strip():
            raise InvalidInputError("query must be a non-empty string")
        vector = self.embedder.embed(query)
        hits = self.index.search(
            self.collection, vector, clamp_top_k(top_k), output_fields=["id", *INDEX_FIELDS]
        )
        records = {normalize_id(r.get("id")): r for r in self.repo.list(newest_first=False)}

        results: list[dict[str, Any]] = []
        for hit in hits:
            record = records.get(normalize_id(hit.id)) if hit.id else None
            scores = {"score": hit.score, "distance": hit.distance}
            if record is not None:
                results.append({**without_vector(record), **scores, "details_available": True})
            elif hit.id and hit.fields:
                fields = without_vector(hit.fields)
                results.append({"id": hit.id, **fields, **scores, "details_available": False})
            else:
                self._log.debug("search_hit_dropped", id=hit.id)
        results.sort(key=lambda r: r["score"], reverse=True)
        return results

    # -------------------- Aperçu --------------------

    def preview(self, payload: dict[str, Any], top_k: int = DEFAULT_TOP_K) -> dict[str, Any]:
        """Analyse et propositions similaires, sans aucune écriture."""
        data = parse_model(ProposalCreate, payload)
        analysis: AnalysisResult = self.analyzer.analyze(data.title, data.body())
        result: dict[str, Any] = {"analysis": analysis.to_public(), "similar": []}
        try:
            result["similar"] = self.search(data.embedding_text(), top_k)
        except ProposalHubError as exc:
            self._log.warning("preview_similar_unavailable", error=str(exc), code=exc.code)
            result["similar_error"] = {"code": exc.code, "message": exc.message}
        return result

    # -------------------- Santé --------------------

    def health(self) -> dict[str, Any]:
        return {
            "embedding": {"configured": bool(getattr(self.embedder, "configured", True))},
            "analysis": {"configured": self.analyzer.llm.configured},
            "vector_index": {**self.index.health(), "collection": self.collection},
            "record_store": {"available": self.repo.exists()},
        }
