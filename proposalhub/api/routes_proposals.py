# ============================================================
# Module : proposalhub/api/routes_proposals.py
# Objet  : Endpoints /proposals (création, lecture, mise à jour, vote, recherche).
# Notes  : Les routes ne font que parser et déléguer; toute la politique est dans le service.
# ============================================================
"""Routes des propositions."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Response
from pydantic import BaseModel

from proposalhub.api.deps import get_service
from proposalhub.api.errors import not_found
from proposalhub.core.constants import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_TOP_K,
    HTTP_CREATED,
    HTTP_MULTI_STATUS,
    MAX_PAGE_SIZE,
    MAX_TOP_K,
    MIN_TOP_K,
)
from proposalhub.services.proposal_service import ProposalService, without_vector

router = APIRouter(prefix="/proposals", tags=["proposals"])


class VoteBody(BaseModel):
    """Payload de vote (la validation métier est faite par le service)."""

    delta: int = 1
    voter: str | None = None


class SearchBody(BaseModel):
    """Payload pour la recherche par similarité."""

    query: str = ""
    top_k: int = DEFAULT_TOP_K


def _present(record: dict[str, Any], include_vector: bool) -> dict[str, Any]:
    return record if include_vector else without_vector(record)


@router.post("", status_code=HTTP_CREATED)
def create_proposal(
    payload: dict[str, Any] = Body(...),
    service: ProposalService = Depends(get_service),
) -> dict:
    """Crée une proposition (analyse, embedding, double écriture)."""
    result = service.create(payload)
    return {"proposal": without_vector(result["proposal"]), "analysis": result["analysis"]}


@router.get("")
def list_proposals(
    offset: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    service: ProposalService = Depends(get_service),
) -> dict:
    return service.list_proposals(offset=offset, limit=limit)


@router.post("/search")
def search_proposals(body: SearchBody, service: ProposalService = Depends(get_service)) -> dict:
    """Recherche par similarité.

    Returns:
        dict: {"results": [{"id", "score", "distance", "details_available", ...}, ...]}
    """
    top_k = max(MIN_TOP_K, min(MAX_TOP_K, body.top_k))
    return {"results": service.search(body.query, top_k)}


@router.post("/analyze")
def analyze_proposal(
    payload: dict[str, Any] = Body(...),
    top_k: int = Query(DEFAULT_TOP_K, ge=MIN_TOP_K, le=MAX_TOP_K),
    service: ProposalService = Depends(get_service),
) -> dict:
    """Aperçu: analyse et propositions similaires, sans écriture."""
    return service.preview(payload, top_k)


@router.get("/{proposal_id}")
def get_proposal(
    proposal_id: str,
    include_vector: bool = Query(False),
    service: ProposalService = Depends(get_service),
) -> dict:
    record = service.get(proposal_id)
    if record is None:
        raise not_found(f"proposal {proposal_id} not found")
    return _present(record, include_vector)


@router.patch("/{proposal_id}")
def update_proposal(
    proposal_id: str,
    response: Response,
    fields: dict[str, Any] = Body(...),
    service: ProposalService = Depends(get_service),
) -> dict:
    result = service.update(proposal_id, fields)
    if result is None:
        raise not_found(f"proposal {proposal_id} not found")
    if result["outcome"]["partial"]:
        response.status_code = HTTP_MULTI_STATUS
    return {**result, "proposal": without_vector(result["proposal"])}


@router.delete("/{proposal_id}")
def delete_proposal(
    proposal_id: str,
    response: Response,
    service: ProposalService = Depends(get_service),
) -> dict:
    outcome = service.delete(proposal_id)
    if outcome is None:
        raise not_found(f"proposal {proposal_id} not found")
    if outcome.partial:
        response.status_code = HTTP_MULTI_STATUS
    return {"id": proposal_id, "affected": outcome.affected(), "outcome": outcome.as_dict()}


@router.post("/{proposal_id}/vote")
def vote_proposal(
    proposal_id: str,
    body: VoteBody,
    response: Response,
    service: ProposalService = Depends(get_service),
) -> dict:
    result = service.vote(proposal_id, delta=body.delta, voter=body.voter)
    if result is None:
        raise not_found(f"proposal {proposal_id} not found")
    if result["outcome"]["partial"]:
        response.status_code = HTTP_MULTI_STATUS
    return result
