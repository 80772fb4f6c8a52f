"""Définition et chargement des paramètres de configuration applicative.

Objectif du module
------------------
- Centraliser les paramètres (env/.env) via Pydantic Settings
- Résoudre le fichier `.env` à utiliser selon la stratégie: ENV_FILE > .env.{APP_ENV} > .env
- Produire une configuration immuable, construite une fois et passée aux clients
"""

import os
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Détermination du fichier .env à utiliser avec priorité:
# 1) ENV_FILE (chemin explicite)
# 2) .env.{APP_ENV} si présent
# 3) .env (défaut)
_cwd = Path.cwd()
_env_file_from_env = os.getenv("ENV_FILE")
if _env_file_from_env:
    _ENV_FILE_PATH = _env_file_from_env
else:
    _app_env = os.getenv("APP_ENV", "dev")
    _candidate_specific = _cwd / f".env.{_app_env}"
    _candidate_default = _cwd / ".env"
    if _candidate_specific.exists():
        _ENV_FILE_PATH = _candidate_specific
    else:
        _ENV_FILE_PATH = _candidate_default

_DEV_ENVS = {"dev", "development"}


class Settings(BaseSettings):
    """Modèle de configuration chargé depuis l'environnement et .env.

    L'instance est figée (`frozen=True`): toute modification après construction lève une
    erreur de validation.
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE_PATH,
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )
    APP_NAME: str = "proposalhub"
    APP_ENV: str = "dev"
    APP_DEBUG: bool = False

    # Fournisseur d'embeddings / chat (proxy compatible OpenAI)
    AI_PROXY_URL: str = ""
    AI_PROXY_KEY: str = ""
    EMBEDDINGS_MODEL: str = "text-embedding-3-small"
    CHAT_MODEL: str = "gpt-4o-mini"
    ANALYSIS_LANGUAGE: str = "zh"
    ANALYSIS_MAX_TOKENS: int = 800
    ANALYSIS_TEMPERATURE: float = 0.1
    AI_CACHE_ENABLED: bool = False
    EMBEDDING_CACHE_SIZE: int = 1000

    # Index vectoriel
    ZILLIZ_API_URL: str = ""
    ZILLIZ_API_KEY: str = ""
    VECTOR_BACKEND: str = "zilliz"  # "zilliz" | "memory"
    VECTOR_COLLECTION: str = "proposals"
    VECTOR_DIMENSION: int = 1536
    VECTOR_METRIC: str = "COSINE"  # "COSINE" | "IP" | "L2"

    # Appels sortants
    HTTP_TIMEOUT_S: float = 30.0
    HTTP_MAX_ATTEMPTS: int = 3
    HTTP_RETRY_DELAY_S: float = 1.0

    # Magasin d'enregistrements
    PROPOSALS_FILE: str = "data/proposals.json"
    RECORD_STORE_APPEND_ATTEMPTS: int = 2

    # Votes
    VOTE_MAX_ABS_DELTA: int = 1
    VOTE_DEDUPLICATE_VOTERS: bool = True

    @field_validator("AI_PROXY_URL", "ZILLIZ_API_URL")
    @classmethod
    def _strip_trailing_slashes(cls, value: str) -> str:
        return (value or "").strip().rstrip("/")

    @field_validator("HTTP_MAX_ATTEMPTS", "RECORD_STORE_APPEND_ATTEMPTS")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, int(value))

    @property
    def is_development(self) -> bool:
        """Vrai si les traces détaillées peuvent être exposées aux appelants."""
        return self.APP_ENV.lower() in _DEV_ENVS


def get_settings() -> Settings:
    """Construit et retourne la configuration de l'application."""
    return Settings()
