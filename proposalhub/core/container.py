"""
Conteneur d'injection de dépendances.

Construit une seule fois les composants (settings, exécuteurs HTTP, clients, dépôts, service)
et expose un singleton `container` utilisé par l'API et les scripts.
"""

from __future__ import annotations

from proposalhub.core.settings import Settings, get_settings
from proposalhub.infra.embeddings.cache import EmbeddingCache
from proposalhub.infra.embeddings.proxy_embedder import ProxyEmbedder
from proposalhub.infra.http_clients import ResilientExecutor, RetryPolicy, build_headers
from proposalhub.infra.llm.chat_client import ChatCompletionsLLM
from proposalhub.infra.repositories import JSONProposalRepo
from proposalhub.infra.vecstores.base import VectorIndex
from proposalhub.infra.vecstores.memory_index import MemoryVectorIndex
from proposalhub.infra.vecstores.zilliz_index import ZillizVectorIndex
from proposalhub.services.analysis_client import AnalysisClient
from proposalhub.services.proposal_service import ProposalService


def build_vector_index(settings: Settings, executor: ResilientExecutor) -> VectorIndex:
    """Sélectionne le backend d'index vectoriel (`VECTOR_BACKEND`)."""
    if settings.VECTOR_BACKEND.lower() == "memory":
        return MemoryVectorIndex()
    return ZillizVectorIndex(
        settings.ZILLIZ_API_URL,
        executor,
        default_dimension=settings.VECTOR_DIMENSION,
        metric=settings.VECTOR_METRIC,
    )


class Container:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        s = self.settings
        policy = RetryPolicy.from_settings(s)

        # Une instance d'exécuteur par service distant (pool de connexions dédié)
        self.ai_executor = ResilientExecutor(
            "ai_proxy", headers=build_headers(s.AI_PROXY_KEY), policy=policy
        )
        self.index_executor = ResilientExecutor(
            "vector_index", headers=build_headers(s.ZILLIZ_API_KEY), policy=policy
        )

        cache = EmbeddingCache(s.EMBEDDING_CACHE_SIZE) if s.AI_CACHE_ENABLED else None
        self.embedder = ProxyEmbedder(
            s.AI_PROXY_URL,
            self.ai_executor,
            model=s.EMBEDDINGS_MODEL,
            cache=cache,
            expected_dimension=s.VECTOR_DIMENSION,
        )
        self.llm = ChatCompletionsLLM(s.AI_PROXY_URL, self.ai_executor, model=s.CHAT_MODEL)
        self.analyzer = AnalysisClient(
            self.llm,
            model=s.CHAT_MODEL,
            max_tokens=s.ANALYSIS_MAX_TOKENS,
            temperature=s.ANALYSIS_TEMPERATURE,
            language=s.ANALYSIS_LANGUAGE,
        )
        self.vector_index = build_vector_index(s, self.index_executor)
        self.repo = JSONProposalRepo(s.PROPOSALS_FILE)
        self.service = ProposalService(
            self.vector_index,
            self.repo,
            self.embedder,
            self.analyzer,
            collection=s.VECTOR_COLLECTION,
            dimension=s.VECTOR_DIMENSION,
            append_attempts=s.RECORD_STORE_APPEND_ATTEMPTS,
            vote_max_abs_delta=s.VOTE_MAX_ABS_DELTA,
            dedupe_voters=s.VOTE_DEDUPLICATE_VOTERS,
        )

    def close(self) -> None:
        self.ai_executor.close()
        self.index_executor.close()


container = Container()
