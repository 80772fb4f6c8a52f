"""
Types de données pour les propositions et les résultats d'opérations.

Ce module définit les modèles Pydantic de validation des entrées (création, mise à jour, vote),
le résultat d'analyse, les résultats de recherche et le résultat "à deux magasins" des opérations
de mutation.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from proposalhub.core.constants import (
    CONTENT_MAX_LEN,
    DEFAULT_CATEGORY,
    DEFAULT_RISK,
    PROPOSAL_STATUSES,
    RISK_LEVELS,
    TITLE_MAX_LEN,
)
from proposalhub.domain.errors import InvalidInputError

# Champs textuels dont la modification impose un nouvel embedding
# Champs modifiables par une mise à jour
UPDATABLE_FIELDS = (
    "title",
    "content",
    "description",
    "summary",
    "budget",
    "category",
    "risk",
    "status",
    "tags",
)
# Champs gérés par le système, jamais acceptés en mise à jour
PROTECTED_FIELDS = ("id", "votes", "voters", "vector", "createdAt", "updatedAt", "created_by")
# Champs recopiés dans l'index vectoriel
INDEX_FIELDS = ("title", "content", "category", "risk", "status", "votes")

M = TypeVar("M", bound=BaseModel)


def new_proposal_id() -> str:
    """Identifiant dérivé de l'horodatage, suffixé aléatoirement."""
    return f"p_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


def utc_now_iso() -> str:
    """Horodatage ISO-8601 UTC au format `...Z` utilisé sur disque."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_id(value: Any) -> str:
    """Forme canonique d'un identifiant, numérique ou chaîne (`1`, `1.0`, `"1"` -> `"1"`)."""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def same_id(left: Any, right: Any) -> bool:
    """Égalité lâche des identifiants (chaîne vs nombre)."""
    if left is None or right is None:
        return False
    return normalize_id(left) == normalize_id(right)


def parse_model(model: type[M], data: Any) -> M:
    """Valide `data` avec `model` et traduit les erreurs en `InvalidInputError`."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        raise InvalidInputError("invalid proposal payload", details={"errors": errors}) from exc


def _clean_text(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    return value


class ProposalCreate(BaseModel):
    """Payload de création d'une proposition.

    `content` peut être omis si `description` est fourni (anciens enregistrements).
    """

    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1, max_length=TITLE_MAX_LEN)
    content: str = Field(default="", max_length=CONTENT_MAX_LEN)
    description: str | None = Field(default=None, max_length=CONTENT_MAX_LEN)
    budget: float = Field(default=0.0, ge=0)
    tags: list[str] = Field(default_factory=list)
    created_by: str | None = None

    @field_validator("title", "content", "description", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> Any:
        return _clean_text(value)

    @model_validator(mode="after")
    def _require_body(self) -> ProposalCreate:
        if not self.body():
            raise ValueError("content or description is required")
        return self

    def body(self) -> str:
        """Texte principal, `content` sinon `description`."""
        return self.content or (self.description or "")

    def embedding_text(self) -> str:
        return f"{self.title}\n{self.body()}"


class ProposalPatch(BaseModel):
    """Valeurs d'une mise à jour (après contrôle de la liste blanche)."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=TITLE_MAX_LEN)
    content: str | None = Field(default=None, min_length=1, max_length=CONTENT_MAX_LEN)
    description: str | None = Field(default=None, max_length=CONTENT_MAX_LEN)
    summary: str | None = None
    budget: float | None = Field(default=None, ge=0)
    category: str | None = Field(default=None, min_length=1)
    risk: str | None = None
    status: str | None = None
    tags: list[str] | None = None

    @field_validator("title", "content", "description", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> Any:
        return _clean_text(value)

    @field_validator("risk")
    @classmethod
    def _known_risk(cls, value: str | None) -> str | None:
        if value is not None and value not in RISK_LEVELS:
            raise ValueError(f"risk must be one of {', '.join(RISK_LEVELS)}")
        return value

    @field_validator("status")
    @classmethod
    def _known_status(cls, value: str | None) -> str | None:
        if value is not None and value not in PROPOSAL_STATUSES:
            raise ValueError(f"status must be one of {', '.join(PROPOSAL_STATUSES)}")
        return value


def validate_update_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Contrôle la liste blanche puis valide les valeurs.

    Returns:
        dict: uniquement les champs fournis, valeurs normalisées.

    Raises:
        InvalidInputError: champ protégé, inconnu, ou valeur invalide.
    """
    if not isinstance(fields, dict) or not fields:
        raise InvalidInputError("no fields to update")
    protected = sorted(k for k in fields if k in PROTECTED_FIELDS)
    unknown = sorted(k for k in fields if k not in UPDATABLE_FIELDS and k not in PROTECTED_FIELDS)
    if protected or unknown:
        raise InvalidInputError(
            "fields not allowed in update",
            details={"protected": protected, "unknown": unknown},
        )
    values = parse_model(ProposalPatch, fields).model_dump(exclude_unset=True)
    nulls = sorted(k for k, v in values.items() if v is None and k in _NON_NULLABLE)
    if nulls:
        raise InvalidInputError("fields cannot be null", details={"fields": nulls})
    return values


_NON_NULLABLE = ("title", "content", "budget", "category", "risk", "status")


class VoteRequest(BaseModel):
    """Vote pour une proposition; `voter` est facultatif (vote anonyme)."""

    delta: int = 1
    voter: str | None = None

    @field_validator("delta")
    @classmethod
    def _non_zero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("delta must be non-zero")
        return value


class AnalysisResult(BaseModel):
    """Classification structurée produite par le client d'analyse.

    Les drapeaux (`isFallback`, `hasMissingFields`, `isError`) signalent un résultat dégradé.
    """

    model_config = ConfigDict(populate_by_name=True)

    summary: str = ""
    category: str = DEFAULT_CATEGORY
    risk: str = DEFAULT_RISK
    suggestions: list[str] = Field(default_factory=list)
    confidence: float = 0.0
    is_fallback: bool = Field(default=False, alias="isFallback")
    has_missing_fields: bool = Field(default=False, alias="hasMissingFields")
    is_error: bool = Field(default=False, alias="isError")
    error_message: str | None = Field(default=None, alias="errorMessage")
    raw_response: str | None = Field(default=None, alias="rawResponse")

    @property
    def degraded(self) -> bool:
        return self.is_fallback or self.has_missing_fields or self.is_error

    def to_public(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class SearchHit:
    """Résultat brut de l'index vectoriel."""

    id: str
    score: float
    distance: float
    fields: dict[str, Any] = field(default_factory=dict)


class StoreStatus(str, Enum):
    """État d'un magasin après une opération."""

    OK = "ok"
    FAILED = "failed"
    ABSENT = "absent"
    SKIPPED = "skipped"


@dataclass
class DualWriteOutcome:
    """Résultat d'une mutation appliquée indépendamment aux deux magasins."""

    vector_index: StoreStatus = StoreStatus.SKIPPED
    record_store: StoreStatus = StoreStatus.SKIPPED

    @property
    def any_ok(self) -> bool:
        return StoreStatus.OK in (self.vector_index, self.record_store)

    @property
    def partial(self) -> bool:
        """Au moins un magasin a réussi et l'autre a échoué."""
        return self.any_ok and StoreStatus.FAILED in (self.vector_index, self.record_store)

    def affected(self) -> list[str]:
        """Noms des magasins effectivement modifiés."""
        names = []
        if self.vector_index == StoreStatus.OK:
            names.append("vector_index")
        if self.record_store == StoreStatus.OK:
            names.append("record_store")
        return names

    def as_dict(self) -> dict[str, Any]:
        return {
            "vector_index": self.vector_index.value,
            "record_store": self.record_store.value,
            "partial": self.partial,
        }
