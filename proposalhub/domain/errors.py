"""Taxonomie d'erreurs du domaine des propositions.

Chaque erreur porte un code machine stable et un message lisible. La couche API traduit ces codes
en statuts HTTP; les composants internes ne connaissent pas HTTP.
"""

from __future__ import annotations

from typing import Any


class ErrorCodes:
    """Codes d'erreur stables exposés aux appelants."""

    INVALID_INPUT = "INVALID_INPUT"
    UNCONFIGURED = "UNCONFIGURED"
    TRANSIENT_SERVICE_ERROR = "TRANSIENT_SERVICE_ERROR"
    PERMANENT_SERVICE_ERROR = "PERMANENT_SERVICE_ERROR"
    UNPARSABLE_RESPONSE = "UNPARSABLE_RESPONSE"
    NOT_FOUND = "NOT_FOUND"
    DUPLICATE_VOTE = "DUPLICATE_VOTE"
    STORE_INCONSISTENT = "STORE_INCONSISTENT"
    OPERATION_FAILED = "OPERATION_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ProposalHubError(RuntimeError):
    """Erreur de base, avec code et détails optionnels."""

    code = ErrorCodes.INTERNAL_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidInputError(ProposalHubError):
    """Données fournies par l'appelant invalides (jamais rejouées)."""

    code = ErrorCodes.INVALID_INPUT


class UnconfiguredError(ProposalHubError):
    """Un point d'accès externe requis n'est pas configuré."""

    code = ErrorCodes.UNCONFIGURED


class ServiceError(ProposalHubError):
    """Échec d'un service distant."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code


class TransientServiceError(ServiceError):
    """5xx ou timeout après épuisement du budget de tentatives."""

    code = ErrorCodes.TRANSIENT_SERVICE_ERROR

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        attempts: int = 0,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, status_code, details)
        self.attempts = attempts


class PermanentServiceError(ServiceError):
    """Statut non-succès non rejouable (4xx hors not-found attendu)."""

    code = ErrorCodes.PERMANENT_SERVICE_ERROR


class UnparsableResponseError(ProposalHubError):
    """Réponse distante de forme inconnue."""

    code = ErrorCodes.UNPARSABLE_RESPONSE


class DuplicateVoteError(ProposalHubError):
    """Le votant a déjà voté pour cette proposition."""

    code = ErrorCodes.DUPLICATE_VOTE


class InconsistentStateError(ProposalHubError):
    """L'index vectoriel a été écrit mais pas le magasin d'enregistrements."""

    code = ErrorCodes.STORE_INCONSISTENT


class OperationFailedError(ProposalHubError):
    """Aucun des deux magasins n'a pu appliquer l'opération."""

    code = ErrorCodes.OPERATION_FAILED
