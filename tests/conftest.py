"""Configuration de test pour pytest avec gestion des chemins.

Ajoute la racine du projet au sys.path et fournit les fixtures communes: index vectoriel en
mémoire, magasin d'enregistrements, fakes d'embeddings/LLM et service assemblé.
"""

import os
import sys

import pytest

# Ensure project root is on sys.path so that
# imports like `from proposalhub...` resolve.
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from proposalhub.infra.repositories import InMemoryProposalRepo  # noqa: E402
from proposalhub.services.analysis_client import AnalysisClient  # noqa: E402
from proposalhub.services.proposal_service import ProposalService  # noqa: E402
from tests.fakes import (  # noqa: E402
    FAKE_DIMENSION,
    FakeEmbeddings,
    FakeLLM,
    FlakyVectorIndex,
)


@pytest.fixture
def embedder() -> FakeEmbeddings:
    return FakeEmbeddings()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def index() -> FlakyVectorIndex:
    return FlakyVectorIndex()


@pytest.fixture
def repo() -> InMemoryProposalRepo:
    return InMemoryProposalRepo()


@pytest.fixture
def service(index, repo, embedder, llm) -> ProposalService:
    """Service complet sur des dépendances en mémoire (aucun appel réseau)."""
    return ProposalService(
        index,
        repo,
        embedder,
        AnalysisClient(llm, language="en"),
        collection="proposals",
        dimension=FAKE_DIMENSION,
        append_attempts=2,
        vote_max_abs_delta=1,
        dedupe_voters=True,
    )
