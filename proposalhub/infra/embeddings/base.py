"""
Interface de base pour les générateurs d'embeddings.

Ce module définit l'interface abstraite que doivent implémenter tous les générateurs d'embeddings
vectoriels.
"""

from abc import ABC, abstractmethod


class Embeddings(ABC):
    """Interface abstraite pour les générateurs d'embeddings."""

    @abstractmethod
    def embed(self, text: str, model: str | None = None) -> list[float]:
        """Génère l'embedding d'un texte non vide."""
        ...

    def embed_batch(self, texts: list[str], model: str | None = None) -> list[list[float]]:
        """Génère les embeddings séquentiellement; échoue au premier texte en erreur."""
        return [self.embed(t, model) for t in texts]
