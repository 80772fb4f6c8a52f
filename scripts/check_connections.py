"""
Vérifie la connectivité des services distants configurés.

Checks:
- embedding (`POST /v1/embeddings`) et dimension du vecteur
- analyse (`POST /v1/chat/completions`), drapeaux de dégradation
- modèles disponibles (`GET /v1/models`)
- index vectoriel: provisionnement idempotent de la collection

Chaque étape est indépendante: un échec est affiché et les suivantes s'exécutent.
"""

from __future__ import annotations

import argparse
import sys

from proposalhub.core.container import Container
from proposalhub.domain.errors import ProposalHubError


def run_checks(container: Container, skip_index: bool = False) -> dict[str, bool]:
    s = container.settings
    results: dict[str, bool] = {}

    print("1. embedding")
    try:
        vector = container.embedder.embed("connection test")
        print(f"   ok, dimension={len(vector)} (expected {s.VECTOR_DIMENSION})")
        results["embedding"] = True
    except ProposalHubError as exc:
        print(f"   failed [{exc.code}] {exc.message}")
        results["embedding"] = False

    print("2. analysis")
    analysis = container.analyzer.analyze("Test proposal", "This is a connectivity test proposal.")
    if analysis.degraded:
        reason = analysis.error_message or ("fallback" if analysis.is_fallback else "missing fields")
        print(f"   degraded: {reason}")
    else:
        print(f"   ok, summary={analysis.summary[:50]!r}")
    results["analysis"] = not (analysis.is_error or analysis.is_fallback)

    print("3. models")
    models = container.embedder.list_models(chat_model=s.CHAT_MODEL)
    if "error" in models or "note" in models:
        print(f"   defaults: {models.get('error') or models.get('note')}")
    else:
        print("   ok")

    if skip_index:
        return results
    print(f"4. vector index ({container.vector_index.backend})")
    try:
        created = container.vector_index.ensure_collection(s.VECTOR_COLLECTION, s.VECTOR_DIMENSION)
        print(f"   ok, collection {s.VECTOR_COLLECTION} {'created' if created else 'already exists'}")
        results["vector_index"] = True
    except ProposalHubError as exc:
        print(f"   failed [{exc.code}] {exc.message}")
        results["vector_index"] = False
    return results


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Check remote service connectivity")
    parser.add_argument(
        "--skip-index", action="store_true", help="Do not provision the vector index collection"
    )
    args = parser.parse_args(argv)

    container = Container()
    try:
        results = run_checks(container, skip_index=args.skip_index)
    finally:
        container.close()
    print("done:", ", ".join(f"{k}={'ok' if v else 'failed'}" for k, v in results.items()))
    return 0 if all(results.values()) else 1


if __name__ == "__main__":  # pragma: no cover - script entry
    sys.exit(main())
