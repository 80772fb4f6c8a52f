# ============================================================
# Module : proposalhub/infra/http_clients.py
# Objet  : Exécuteur d'appels sortants avec timeout et retry borné.
# Contexte : Utilisé par les clients embeddings, analyse et index vectoriel.
# Invariants :
#  - Seuls les 5xx, timeouts et erreurs réseau sont rejoués.
#  - Les autres statuts non-succès sont rendus tels quels à l'appelant.
#  - Délai fixe entre tentatives, aucun effet de bord hors l'appel réseau.
# ============================================================
"""Clients HTTP externes (fournisseur IA, index vectoriel).

Objectif du module
------------------
- Encapsuler les appels réseau vers des services tiers derrière une politique de retry unique.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from proposalhub.app.metrics import OUTBOUND_ATTEMPTS, OUTBOUND_LATENCY
from proposalhub.core.constants import HTTP_STATUS_SERVER_ERROR_MIN
from proposalhub.domain.errors import (
    PermanentServiceError,
    TransientServiceError,
    UnparsableResponseError,
)

USER_AGENT = "proposalhub/0.1"
_BODY_FRAMING_HEADERS = ("content-encoding", "content-length", "transfer-encoding")


@dataclass(frozen=True)
class RetryPolicy:
    """Budget de tentatives pour un appel sortant."""

    max_attempts: int = 3
    timeout_s: float = 30.0
    retry_delay_s: float = 1.0

    @classmethod
    def from_settings(cls, settings: Any) -> RetryPolicy:
        return cls(
            max_attempts=max(1, int(settings.HTTP_MAX_ATTEMPTS)),
            timeout_s=float(settings.HTTP_TIMEOUT_S),
            retry_delay_s=float(settings.HTTP_RETRY_DELAY_S),
        )


def build_headers(api_key: str | None) -> dict[str, str]:
    """En-têtes JSON, avec jeton bearer si une clé est configurée."""
    headers: dict[str, str] = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


class ResilientExecutor:
    """Exécute une requête HTTP avec timeout par tentative et retry à délai fixe.

    Une instance par service distant; le client `httpx` est réutilisé (pool de connexions).
    `httpx.Timeout` borne chaque phase (connexion, lecture d'un bloc...) mais pas la durée totale:
    le corps est donc lu en flux et la tentative échoue en timeout dès que l'échéance est
    dépassée entre deux blocs.
    """

    def __init__(
        self,
        service: str,
        *,
        headers: dict[str, str] | None = None,
        policy: RetryPolicy | None = None,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.service = service
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock
        if client is None:
            limits = httpx.Limits(max_keepalive_connections=20, max_connections=50)
            client = httpx.Client(timeout=self.policy.timeout_s, limits=limits)
        self._client = client
        self._headers = dict(headers or {})
        self._log = structlog.get_logger(__name__).bind(component="http_executor", service=service)

    def execute(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        max_attempts: int | None = None,
        timeout: float | None = None,
        retry_delay: float | None = None,
    ) -> httpx.Response:
        """Envoie la requête et rejoue les échecs transitoires.

        Args:
            method: Verbe HTTP.
            url: URL absolue.
            json: Corps JSON éventuel.
            params: Paramètres de requête.
            max_attempts: Nombre total de tentatives (défaut: politique).
            timeout: Timeout d'une tentative en secondes (défaut: politique).
            retry_delay: Délai fixe entre deux tentatives (défaut: politique).

        Returns:
            httpx.Response: réponse 2xx, ou non-succès non rejouable (4xx) inchangée.

        Raises:
            TransientServiceError: 5xx/timeout/réseau après épuisement des tentatives.
            PermanentServiceError: erreur de transport non rejouable (URL invalide...).
        """
        attempts_max = max(1, max_attempts or self.policy.max_attempts)
        per_attempt = timeout if timeout is not None else self.policy.timeout_s
        delay = retry_delay if retry_delay is not None else self.policy.retry_delay_s

        last_status: int | None = None
        last_error = ""
        for attempt in range(1, attempts_max + 1):
            start = time.perf_counter()
            try:
                resp = self._send(method, url, json=json, params=params, timeout=per_attempt)
            except httpx.TimeoutException as exc:
                OUTBOUND_ATTEMPTS.labels(self.service, "timeout").inc()
                last_status, last_error = None, f"timeout after {per_attempt}s: {exc}"
            except (httpx.NetworkError, httpx.RemoteProtocolError) as exc:
                OUTBOUND_ATTEMPTS.labels(self.service, "network_error").inc()
                last_status, last_error = None, f"network error: {exc}"
            except httpx.HTTPError as exc:
                OUTBOUND_ATTEMPTS.labels(self.service, "transport_error").inc()
                raise PermanentServiceError(f"{self.service} transport error: {exc}") from exc
            else:
                OUTBOUND_LATENCY.labels(self.service).observe(time.perf_counter() - start)
                if resp.status_code < HTTP_STATUS_SERVER_ERROR_MIN:
                    outcome = "ok" if resp.is_success else "client_error"
                    OUTBOUND_ATTEMPTS.labels(self.service, outcome).inc()
                    return resp
                OUTBOUND_ATTEMPTS.labels(self.service, "server_error").inc()
                last_status, last_error = resp.status_code, _short_body(resp)

            if attempt < attempts_max:
                self._log.warning(
                    "http_retry",
                    method=method,
                    url=url,
                    attempt=attempt,
                    remaining=attempts_max - attempt,
                    status=last_status,
                    error=last_error,
                )
                self._sleep(delay)

        self._log.error(
            "http_retries_exhausted",
            method=method,
            url=url,
            attempts=attempts_max,
            status=last_status,
        )
        raise TransientServiceError(
            f"{self.service} unavailable after {attempts_max} attempts: {last_error}",
            status_code=last_status,
            attempts=attempts_max,
        )

    def _send(
        self,
        method: str,
        url: str,
        *,
        json: Any,
        params: dict[str, Any] | None,
        timeout: float,
    ) -> httpx.Response:
        """Une tentative, bornée par une échéance totale de `timeout` secondes."""
        deadline = self._clock() + timeout
        request = self._client.build_request(
            method,
            url,
            json=json,
            params=params,
            headers=self._headers,
            timeout=httpx.Timeout(timeout),
        )
        streamed = self._client.send(request, stream=True)
        try:
            chunks: list[bytes] = []
            for chunk in streamed.iter_bytes():
                if self._clock() > deadline:
                    raise httpx.ReadTimeout(f"attempt exceeded {timeout}s", request=request)
                chunks.append(chunk)
        finally:
            streamed.close()
        # Corps déjà décodé: les en-têtes d'encodage et de longueur ne s'appliquent plus
        headers = [
            (k, v)
            for k, v in streamed.headers.multi_items()
            if k.lower() not in _BODY_FRAMING_HEADERS
        ]
        return httpx.Response(
            streamed.status_code,
            headers=headers,
            content=b"".join(chunks),
            request=request,
        )

    def close(self) -> None:
        self._client.close()


def _short_body(resp: httpx.Response, limit: int = 500) -> str:
    try:
        text = resp.text
    except Exception:  # pragma: no cover - corps illisible
        return f"status {resp.status_code}"
    return f"status {resp.status_code}: {text[:limit]}"


def raise_for_service_status(resp: httpx.Response, service: str) -> None:
    """Lève `PermanentServiceError` pour toute réponse non-succès."""
    if resp.is_success:
        return
    raise PermanentServiceError(
        f"{service} error {resp.status_code}: {resp.text[:500]}",
        status_code=resp.status_code,
    )


def parse_json(resp: httpx.Response, service: str) -> Any:
    """Décode le corps JSON ou lève `UnparsableResponseError`."""
    try:
        return resp.json()
    except ValueError as exc:
        raise UnparsableResponseError(
            f"{service} returned a non-JSON body",
            details={"status": resp.status_code, "body": resp.text[:200]},
        ) from exc
