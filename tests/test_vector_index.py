"""Tests du client REST de l'index vectoriel (provisionnement, recherche, lecture, compteur)."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from proposalhub.domain.errors import (
    PermanentServiceError,
    TransientServiceError,
    UnconfiguredError,
)
from proposalhub.infra.http_clients import ResilientExecutor, RetryPolicy
from proposalhub.infra.repositories import InMemoryProposalRepo
from proposalhub.infra.vecstores.zilliz_index import ZillizVectorIndex, extract_rows
from proposalhub.services.analysis_client import AnalysisClient
from proposalhub.services.proposal_service import ProposalService
from tests.fakes import FakeEmbeddings, FakeLLM

BASE = "https://zilliz.test"


class FakeZilliz:
    """Serveur factice: routes -> réponses, et journal des requêtes reçues."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Any] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, response: Any) -> None:
        self.routes[(method, path)] = response

    def bodies(self, method: str, path: str) -> list[dict[str, Any]]:
        return [
            json.loads(r.content)
            for r in self.requests
            if r.method == method and r.url.path == path and r.content
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"code": 404, "message": "route not found"})
        if callable(handler):
            return handler(request)
        status, payload = handler
        return httpx.Response(status, json=payload)


def _index(server: FakeZilliz, base_url: str = BASE, metric: str = "COSINE") -> ZillizVectorIndex:
    executor = ResilientExecutor(
        "vector_index",
        policy=RetryPolicy(max_attempts=2, timeout_s=1.0, retry_delay_s=0.0),
        client=httpx.Client(transport=httpx.MockTransport(server)),
        sleep=lambda _s: None,
    )
    return ZillizVectorIndex(base_url, executor, default_dimension=3, metric=metric)


def test_ensure_collection_is_idempotent():
    server = FakeZilliz()
    state = {"created": False}

    def describe(request):
        if state["created"]:
            return httpx.Response(200, json={"code": 0, "data": {"collectionName": "proposals"}})
        return httpx.Response(200, json={"code": 100, "message": "collection not exist"})

    def create(request):
        state["created"] = True
        return httpx.Response(200, json={"code": 0, "data": {}})

    server.on("GET", "/v2/collections/proposals", describe)
    server.on("POST", "/v2/collections", create)
    index = _index(server)

    assert index.ensure_collection("proposals", 3) is True
    assert index.ensure_collection("proposals", 3) is False
    (body,) = server.bodies("POST", "/v2/collections")
    assert body["collectionName"] == "proposals"
    vector_field = next(f for f in body["fields"] if f["name"] == "vector")
    assert vector_field["dimension"] == 3


def test_ensure_collection_tolerates_create_race():
    server = FakeZilliz()
    server.on("GET", "/v2/collections/proposals", (404, {"message": "not found"}))
    server.on(
        "POST",
        "/v2/collections",
        (200, {"code": 65535, "message": "collection proposals already exists"}),
    )
    assert _index(server).ensure_collection("proposals", 3) is False


def test_ensure_collection_propagates_other_failures():
    server = FakeZilliz()
    server.on("GET", "/v2/collections/proposals", (404, {}))
    server.on("POST", "/v2/collections", (400, {"message": "invalid schema"}))
    with pytest.raises(PermanentServiceError):
        _index(server).ensure_collection("proposals", 3)


def test_missing_base_url_is_a_hard_failure():
    server = FakeZilliz()
    index = _index(server, base_url="")
    with pytest.raises(UnconfiguredError):
        index.search("proposals", [0.1, 0.2, 0.3])
    with pytest.raises(UnconfiguredError):
        index.delete("proposals", "p_1")
    assert server.requests == []


def test_search_clamps_top_k_and_ranks_hits():
    server = FakeZilliz()
    server.on(
        "POST",
        "/v2/vectors/search",
        (
            200,
            {
                "code": 0,
                "data": [
                    {"id": "far", "distance": 0.2, "title": "Far"},
                    {"id": "near", "distance": 0.9, "title": "Near"},
                    "garbage",
                ],
            },
        ),
    )
    hits = _index(server).search("proposals", [0.1, 0.2, 0.3], top_k=500)

    (body,) = server.bodies("POST", "/v2/vectors/search")
    assert body["topK"] == 100
    assert body["metricType"] == "COSINE"
    assert [h.id for h in hits] == ["near", "far"]
    assert hits[0].score == pytest.approx(0.95)
    assert hits[0].distance == pytest.approx(0.05)
    assert hits[0].fields == {"title": "Near"}


def test_search_top_k_lower_bound():
    server = FakeZilliz()
    server.on("POST", "/v2/vectors/search", (200, {"code": 0, "data": []}))
    _index(server).search("proposals", [0.0, 0.0, 1.0], top_k=0)
    assert server.bodies("POST", "/v2/vectors/search")[0]["topK"] == 1


def test_search_l2_distance_is_normalised():
    server = FakeZilliz()
    server.on("POST", "/v2/vectors/search", (200, {"data": [{"id": "x", "distance": 1.0}]}))
    (hit,) = _index(server, metric="L2").search("proposals", [1.0, 0.0, 0.0])
    assert hit.distance == pytest.approx(0.5)
    assert hit.score == pytest.approx(0.5)


def test_search_server_errors_are_transient():
    server = FakeZilliz()
    server.on("POST", "/v2/vectors/search", (503, {"message": "busy"}))
    with pytest.raises(TransientServiceError):
        _index(server).search("proposals", [0.1, 0.2, 0.3])
    assert len(server.requests) == 2


@pytest.mark.parametrize(
    "payload",
    [
        {"data": [{"id": "a"}]},
        {"data": {"results": [{"id": "a"}]}},
        {"data": {"rows": [{"id": "a"}]}},
        {"results": [{"id": "a"}]},
        {"entities": [{"id": "a"}]},
        {"data": [[{"id": "a"}]]},
        [{"id": "a"}],
    ],
)
def test_extract_rows_envelopes(payload):
    assert extract_rows(payload) == [{"id": "a"}]


def test_hit_with_nested_entity():
    server = FakeZilliz()
    server.on(
        "POST",
        "/v2/vectors/search",
        (200, {"data": [{"distance": 1.0, "entity": {"id": 7, "title": "Seven"}}]}),
    )
    (hit,) = _index(server).search("proposals", [0.1, 0.2, 0.3])
    assert hit.id == "7"
    assert hit.fields == {"title": "Seven"}


def test_get_uses_point_lookup():
    server = FakeZilliz()
    server.on(
        "GET",
        "/v2/collections/proposals/entities/p_1",
        (200, {"code": 0, "data": [{"id": "p_1", "votes": 3, "vector": [1, 0, 0]}]}),
    )
    record = _index(server).get("proposals", "p_1")
    assert record == {"id": "p_1", "votes": 3, "vector": [1, 0, 0]}
    assert server.bodies("POST", "/v2/vectors/search") == []


def test_get_falls_back_to_filtered_search():
    server = FakeZilliz()
    server.on(
        "POST",
        "/v2/vectors/search",
        (200, {"data": [{"id": "p_1", "distance": 0.0, "title": "T", "vector": [1, 0, 0]}]}),
    )
    record = _index(server).get("proposals", "p_1")

    assert record == {"id": "p_1", "title": "T", "vector": [1, 0, 0]}
    (body,) = server.bodies("POST", "/v2/vectors/search")
    assert body["filter"] == 'id == "p_1"'
    assert body["vector"] == [0.0, 0.0, 0.0]
    assert body["topK"] == 1
    assert "vector" in body["outputFields"]


def test_get_returns_none_when_absent_everywhere():
    server = FakeZilliz()
    server.on("POST", "/v2/vectors/search", (200, {"code": 0, "data": []}))
    assert _index(server).get("proposals", "missing") is None


COLLECTION_MISSING = {"code": 100, "message": "collection not found[collection=proposals]"}


def test_get_on_missing_collection_is_none():
    server = FakeZilliz()
    server.on("POST", "/v2/vectors/search", (200, COLLECTION_MISSING))

    assert _index(server).get("proposals", "nope") is None
    assert not any(r.url.path == "/v2/collections/proposals/entities" for r in server.requests)


def test_get_falls_back_to_listing_when_filter_is_rejected():
    server = FakeZilliz()
    server.on("POST", "/v2/vectors/search", (400, {"message": "filter not supported"}))
    server.on(
        "GET",
        "/v2/collections/proposals/entities",
        (200, {"data": [{"id": "p_1"}, {"id": 9, "title": "Nine"}]}),
    )

    assert _index(server).get("proposals", "9") == {"id": 9, "title": "Nine"}
    listing = [r for r in server.requests if r.url.path == "/v2/collections/proposals/entities"]
    assert listing[0].url.params["limit"] == "1000"


def test_get_scans_listing_when_filtered_search_is_empty():
    server = FakeZilliz()
    server.on("POST", "/v2/vectors/search", (200, {"code": 0, "data": []}))
    server.on(
        "GET",
        "/v2/collections/proposals/entities",
        (200, {"data": [{"id": "p_2", "votes": 4}]}),
    )
    assert _index(server).get("proposals", "p_2") == {"id": "p_2", "votes": 4}


def test_unknown_id_on_fresh_deployment_is_not_found():
    server = FakeZilliz()
    server.on("POST", "/v2/vectors/search", (200, COLLECTION_MISSING))
    service = ProposalService(
        _index(server),
        InMemoryProposalRepo(),
        FakeEmbeddings(dimension=3),
        AnalysisClient(FakeLLM()),
        dimension=3,
    )

    assert service.get("nope") is None
    assert service.vote("nope", 1) is None
    assert service.delete("nope") is None
    assert server.bodies("POST", "/v2/vectors") == []


def test_delete_sends_id_list():
    server = FakeZilliz()
    server.on("DELETE", "/v2/collections/proposals/entities", (200, {"code": 0, "data": {}}))
    _index(server).delete("proposals", 42)
    assert server.bodies("DELETE", "/v2/collections/proposals/entities") == [{"ids": ["42"]}]


def test_list_entities_paginates():
    server = FakeZilliz()
    server.on(
        "GET",
        "/v2/collections/proposals/entities",
        (200, {"data": [{"id": "a"}, {"id": "b"}]}),
    )
    rows = _index(server).list_entities("proposals", offset=10, limit=2)
    assert [r["id"] for r in rows] == ["a", "b"]
    params = server.requests[0].url.params
    assert params["offset"] == "10"
    assert params["limit"] == "2"


def _existing_record(server: FakeZilliz, record: dict[str, Any]) -> None:
    server.on(
        "GET",
        f"/v2/collections/proposals/entities/{record['id']}",
        (200, {"code": 0, "data": [record]}),
    )
    server.on("POST", "/v2/vectors", (200, {"code": 0, "data": {"insertCount": 1}}))


def test_increment_counter_is_read_modify_write():
    server = FakeZilliz()
    _existing_record(server, {"id": "p_1", "title": "T", "votes": 2, "vector": [1.0, 0.0, 0.0]})

    result = _index(server).increment_counter("proposals", "p_1", "votes", 1)

    assert result == {"previous": 2, "now": 3}
    (body,) = server.bodies("POST", "/v2/vectors")
    (written,) = body["data"]
    assert written["votes"] == 3
    assert written["vector"] == [1.0, 0.0, 0.0]
    assert written["id"] == "p_1"


def test_increment_counter_on_absent_record():
    server = FakeZilliz()
    server.on("POST", "/v2/vectors/search", (200, {"data": []}))
    assert _index(server).increment_counter("proposals", "nope", "votes", 1) is None
    assert server.bodies("POST", "/v2/vectors") == []


def test_update_entity_merges_only_index_fields():
    server = FakeZilliz()
    _existing_record(
        server, {"id": "p_1", "title": "Old", "status": "pending", "vector": [1.0, 0.0, 0.0]}
    )

    updated = _index(server).update_entity(
        "proposals",
        "p_1",
        {"title": "New", "tags": ["ignored"], "vector": [1.0, 0.0, 0.0]},
    )

    assert updated is True
    (written,) = server.bodies("POST", "/v2/vectors")[0]["data"]
    assert written == {"id": "p_1", "title": "New", "status": "pending", "vector": [1.0, 0.0, 0.0]}


def test_update_entity_replaces_changed_vector():
    server = FakeZilliz()
    _existing_record(server, {"id": "p_1", "title": "Old", "vector": [1.0, 0.0, 0.0]})

    _index(server).update_entity("proposals", "p_1", {"vector": [0.0, 1.0, 0.0]})

    (written,) = server.bodies("POST", "/v2/vectors")[0]["data"]
    assert written["vector"] == [0.0, 1.0, 0.0]
