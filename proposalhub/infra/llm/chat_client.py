"""
Client LLM basé sur l'endpoint `chat/completions` d'un proxy compatible OpenAI.

Implémente l'interface LLM via l'exécuteur résilient:
- `POST {base}/v1/chat/completions` avec `{model, messages, max_tokens, temperature}`
- extraction du premier choix (`message.content`, puis `text`, puis `output`)
"""

from __future__ import annotations

from typing import Any, Literal, overload

from proposalhub.domain.errors import UnconfiguredError, UnparsableResponseError
from proposalhub.infra.http_clients import (
    ResilientExecutor,
    parse_json,
    raise_for_service_status,
)
from proposalhub.infra.llm.base import LLM


def extract_reply(payload: Any) -> str:
    """Texte de la première réponse, ou chaîne vide si absent."""
    if not isinstance(payload, dict):
        return ""
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        first = choices[0]
        message = first.get("message")
        if isinstance(message, dict) and message.get("content"):
            return str(message["content"])
        if first.get("text"):
            return str(first["text"])
    output = payload.get("output")
    return str(output) if isinstance(output, str) else ""


def extract_usage(payload: Any) -> dict[str, int]:
    """Extrait les infos d'usage; toujours un dict."""
    usage = payload.get("usage") if isinstance(payload, dict) else None
    if not isinstance(usage, dict):
        return {}
    out: dict[str, int] = {}
    for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
        try:
            out[key] = int(usage.get(key, 0) or 0)
        except (TypeError, ValueError):
            out[key] = 0
    return out


class ChatCompletionsLLM(LLM):
    """LLM distant; lève `UnconfiguredError` si l'URL du proxy est absente."""

    def __init__(
        self,
        base_url: str,
        executor: ResilientExecutor,
        model: str = "gpt-4o-mini",
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.model = model
        self._executor = executor

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    # ---- Overloads pour coller à l'interface de base ----
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

    def generate(
        self,
        messages: list[dict[str, str]],
        *,
        with_usage: bool = False,
        **kwargs: Any,
    ) -> str | tuple[str, dict[str, int]]:
        """
        Envoie la conversation et retourne le texte du premier choix.

        kwargs reconnus: `model`, `max_tokens`, `temperature`, `response_format`.
        """
        if not self.base_url:
            raise UnconfiguredError("AI_PROXY_URL is not configured")
        body: dict[str, Any] = {
            "model": kwargs.pop("model", None) or self.model,
            "messages": messages,
        }
        for key in ("max_tokens", "temperature", "response_format"):
            if kwargs.get(key) is not None:
                body[key] = kwargs[key]

        resp = self._executor.execute("POST", f"{self.base_url}/v1/chat/completions", json=body)
        raise_for_service_status(resp, "chat service")
        payload = parse_json(resp, "chat service")
        text = extract_reply(payload)
        if not text:
            raise UnparsableResponseError("chat service returned an empty reply")
        return (text, extract_usage(payload)) if with_usage else text
