"""
Classification déterministe d'une proposition par mots-clés.

Utilisée quand l'analyse distante est indisponible: catégorie et risque sont déduits de mots-clés
(français, anglais, chinois) présents dans le titre et le contenu.
"""

from proposalhub.core.constants import (
    DEFAULT_CATEGORY,
    DEFAULT_RISK,
    HEURISTIC_SUMMARY_MAX_LEN,
)

# Ordre significatif: la dernière règle qui correspond l'emporte
CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("governance", ("治理", "dao", "governance", "gouvernance", "vote")),
    ("tokenomics", ("代币", "token", "jeton", "tokenomics")),
)
HIGH_RISK_KEYWORDS = ("漏洞", "分叉", "vulnerability", "exploit", "fork", "faille")


def classify(title: str, content: str) -> dict[str, str]:
    """Retourne `{"category", "risk", "summary"}` à partir de mots-clés."""
    lower = f"{title} {content}".lower()
    category = DEFAULT_CATEGORY
    for name, words in CATEGORY_KEYWORDS:
        if any(w in lower for w in words):
            category = name
    risk = "high" if any(w in lower for w in HIGH_RISK_KEYWORDS) else DEFAULT_RISK
    summary = f"{title} {content}".strip()[:HEURISTIC_SUMMARY_MAX_LEN]
    return {"category": category, "risk": risk, "summary": summary}
