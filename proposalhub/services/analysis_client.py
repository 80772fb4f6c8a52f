# ============================================================
# Module : proposalhub/services/analysis_client.py
# Objet  : Classification/synthèse d'une proposition par LLM.
# Invariants :
#  - analyze() ne lève jamais: tout échec produit un résultat marqué.
#  - isFallback / hasMissingFields / isError signalent la dégradation.
# ============================================================
"""Client d'analyse des propositions (résumé, catégorie, risque, suggestions)."""

from __future__ import annotations

import json
import math
import re
from typing import Any

import structlog

from proposalhub.app.metrics import ANALYSIS_DEGRADED
from proposalhub.core.constants import (
    DEFAULT_CATEGORY,
    DEFAULT_RISK,
    RISK_LEVELS,
    SUMMARY_FALLBACK_MAX_LEN,
)
from proposalhub.domain import classification_heuristic
from proposalhub.domain.prompts import (
    FALLBACK_TEXTS,
    build_analysis_prompt,
    resolve_language,
)
from proposalhub.domain.proposal import AnalysisResult
from proposalhub.infra.llm.base import LLM

REQUIRED_FIELDS = ("summary", "category", "risk", "suggestions")

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_FENCE_OPEN = re.compile(r"^```[A-Za-z0-9_-]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")


def _strip_code_fences(text: str) -> str:
    t = text.strip()
    if t.startswith("```") and t.endswith("```"):
        t = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", t))
    return t.strip()


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        data = json.loads(text)
    except (ValueError, RecursionError):
        return None
    return data if isinstance(data, dict) else None


def extract_json_object(reply: str) -> dict[str, Any] | None:
    """Décode la réponse entière, sinon le premier fragment `{...}` qu'elle contient."""
    text = _strip_code_fences(reply)
    parsed = _loads_object(text)
    if parsed is not None:
        return parsed
    match = _JSON_OBJECT.search(text)
    if match:
        return _loads_object(match.group(0))
    return None


def _as_suggestions(value: Any) -> list[str]:
    if isinstance(value, list):
        return [str(v) for v in value if str(v).strip()]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def _as_confidence(value: Any, default: float) -> float:
    try:
        conf = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if not math.isfinite(conf):
        return default
    return min(1.0, max(0.0, conf))


class AnalysisClient:
    """Analyse consultative: ne bloque jamais la création d'une proposition."""

    def __init__(
        self,
        llm: LLM,
        *,
        model: str | None = None,
        max_tokens: int = 800,
        temperature: float = 0.1,
        language: str = "zh",
    ) -> None:
        self.llm = llm
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.language = language
        self._log = structlog.get_logger(__name__).bind(component="analysis_client")

    def analyze(
        self,
        title: str,
        content: str,
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        language: str | None = None,
    ) -> AnalysisResult:
        """Analyse une proposition; retourne toujours un `AnalysisResult`."""
        title = (title or "").strip()
        content = (content or "").strip()
        lang = resolve_language(language or self.language)
        texts = FALLBACK_TEXTS[lang]

        if not self.llm.configured:
            self._log.warning("analysis_degraded", reason="unconfigured")
            ANALYSIS_DEGRADED.labels("unconfigured").inc()
            guess = classification_heuristic.classify(title, content)
            return AnalysisResult(
                summary=texts["placeholder_summary"].format(title=title[:50]),
                category=guess["category"],
                risk=guess["risk"],
                suggestions=[texts["manual_review"]],
                confidence=0.0,
                is_fallback=True,
            )

        messages = [{"role": "user", "content": build_analysis_prompt(title, content, lang)}]
        try:
            reply, usage = self.llm.generate(
                messages,
                with_usage=True,
                model=model or self.model,
                max_tokens=max_tokens or self.max_tokens,
                temperature=self.temperature if temperature is None else temperature,
                response_format={"type": "json_object"},
            )
        except Exception as exc:
            self._log.error(
                "analysis_degraded",
                reason="error",
                error=str(exc),
                title=title[:50],
                content_length=len(content),
            )
            ANALYSIS_DEGRADED.labels("error").inc()
            guess = classification_heuristic.classify(title, content)
            return AnalysisResult(
                summary=texts["unavailable_summary"].format(title=title[:100]),
                category=guess["category"],
                risk=guess["risk"],
                suggestions=[texts["unavailable_suggestion"]],
                confidence=0.0,
                is_error=True,
                error_message=str(exc),
            )

        self._log.debug("analysis_completed", usage=usage)
        parsed = extract_json_object(reply)
        if parsed is None:
            self._log.warning("analysis_degraded", reason="unparsable", reply_length=len(reply))
            ANALYSIS_DEGRADED.labels("unparsable").inc()
            summary = reply
            if len(reply) > SUMMARY_FALLBACK_MAX_LEN:
                summary = reply[:SUMMARY_FALLBACK_MAX_LEN] + "..."
            return AnalysisResult(
                summary=summary,
                category=DEFAULT_CATEGORY,
                risk=DEFAULT_RISK,
                suggestions=[texts["manual_review"]],
                confidence=0.1,
                is_fallback=True,
                raw_response=reply,
            )
        return self._from_parsed(parsed, title, texts)

    def _from_parsed(
        self, parsed: dict[str, Any], title: str, texts: dict[str, str]
    ) -> AnalysisResult:
        missing = [f for f in REQUIRED_FIELDS if not parsed.get(f)]
        suggestions = _as_suggestions(parsed.get("suggestions"))
        risk = str(parsed.get("risk") or DEFAULT_RISK).strip().lower()
        if risk not in RISK_LEVELS:
            risk = DEFAULT_RISK
        result = AnalysisResult(
            summary=str(parsed.get("summary") or texts["missing_summary"].format(title=title)),
            category=str(parsed.get("category") or DEFAULT_CATEGORY).strip().lower(),
            risk=risk,
            suggestions=suggestions or [texts["manual_review"]],
            confidence=_as_confidence(parsed.get("confidence"), 0.5),
            has_missing_fields=bool(missing),
        )
        if missing:
            self._log.warning("analysis_degraded", reason="missing_fields", missing=missing)
            ANALYSIS_DEGRADED.labels("missing_fields").inc()
        return result
