"""
Initialise le magasin d'enregistrements avec une proposition d'exemple.

Le fichier cible est `PROPOSALS_FILE` (défaut `data/proposals.json`), ou le chemin passé en
argument. Un fichier existant n'est écrasé qu'avec `--force`. L'index vectoriel n'est pas touché:
la proposition d'exemple n'a pas de vecteur et n'apparaît pas dans la recherche.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from proposalhub.core.settings import get_settings
from proposalhub.infra.repositories import JSONProposalRepo

SAMPLE_PROPOSALS = [
    {
        "id": 1,
        "title": "关于改进社区治理机制的提案",
        "content": "我们建议引入新的投票机制，包括二次投票和委托投票功能，以提高社区决策的效率和参与度。",
        "description": "改进社区治理机制，引入二次投票和委托投票",
        "summary": "提案旨在通过引入二次投票和委托投票机制来提升社区治理效率...",
        "budget": 5000,
        "status": "pending",
        "category": "governance",
        "risk": "medium",
        "votes": 15,
        "createdAt": "2024-01-15T10:30:00.000Z",
        "updatedAt": "2024-01-20T14:25:00.000Z",
        "created_by": "0x742d35Cc6634C0532925a3b8D4B5A3B8D5B3B8D5",
        "voters": [],
        "tags": ["治理", "投票", "社区"],
    }
]


def seed(path: Path, force: bool = False) -> int:
    """Écrit les propositions d'exemple; retourne le nombre écrit (0 si fichier conservé)."""
    repo = JSONProposalRepo(path)
    if repo.exists() and not force:
        return 0
    if force:
        for rec in repo.list(newest_first=False):
            repo.remove(rec.get("id"))
    for rec in SAMPLE_PROPOSALS:
        repo.append(dict(rec))
    return len(SAMPLE_PROPOSALS)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Seed the proposal record store")
    parser.add_argument("path", nargs="?", help="Record store file (default: PROPOSALS_FILE)")
    parser.add_argument("--force", action="store_true", help="Overwrite an existing store")
    args = parser.parse_args(argv)

    path = Path(args.path or get_settings().PROPOSALS_FILE)
    written = seed(path, force=args.force)
    if not written:
        print(f"{path} already exists, use --force to overwrite")
        return 1
    print(f"seeded {written} proposal(s) into {path}")
    return 0


if __name__ == "__main__":  # pragma: no cover - script entry
    sys.exit(main())
