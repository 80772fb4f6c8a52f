"""Dépendances partagées pour les routes de l'API.

Point d'ancrage unique entre les routes et le conteneur; les tests remplacent
`container.service`.
"""

from proposalhub.core.container import container
from proposalhub.services.proposal_service import ProposalService


def get_service() -> ProposalService:
    return container.service
