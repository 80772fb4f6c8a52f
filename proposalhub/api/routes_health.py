"""
Endpoint de santé.

Expose `/health` pour signaler la configuration des services distants et la présence du magasin
d'enregistrements. Aucun appel réseau n'est émis.
"""

from fastapi import APIRouter, Depends

from proposalhub.api.deps import get_service
from proposalhub.services.proposal_service import ProposalService

router = APIRouter(tags=["health"])


@router.get("/health")
def health(service: ProposalService = Depends(get_service)):
    """État général et configuration des dépendances."""
    components = service.health()
    ready = components["embedding"]["configured"] and components["vector_index"].get("configured", True)
    return {"status": "ok" if ready else "degraded", "components": components}
