"""Contrat des fournisseurs de complétion de chat utilisés par l'analyse des propositions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Literal, overload


class LLM(ABC):
    """Fournisseur de complétions à partir de messages `{role, content}`.

    `generate` propage ses erreurs (`UnconfiguredError`, erreurs de service); c'est
    l'`AnalysisClient` qui décide de la dégradation.
    """

    model: str = ""

    @overload
    def generate(
        self,
        messages: list[dict[str, str]],
        *,
        with_usage: Literal[True],
        **kwargs: Any,
    ) -> tuple[str, dict[str, int]]: ...

    @overload
    def generate(
        self,
        messages: list[dict[str, str]],
        *,
        with_usage: Literal[False] = False,
        **kwargs: Any,
    ) -> str: ...

    @abstractmethod
    def generate(
        self,
        messages: list[dict[str, str]],
        *,
        with_usage: bool = False,
        **kwargs: Any,
    ) -> str | tuple[str, dict[str, int]]:
        """Texte de la première réponse; avec `with_usage`, aussi le décompte de tokens.

        kwargs reconnus: `model`, `max_tokens`, `temperature`.
        """
        ...

    @property
    def configured(self) -> bool:
        """False si aucun point d'accès n'est défini (l'appel lèverait `UnconfiguredError`)."""
        return True
