"""Gabarits de prompt pour l'analyse des propositions.

Deux langues sont disponibles; un code inconnu retombe sur le gabarit canonique (`zh`).
"""

DEFAULT_LANGUAGE = "zh"

_ZH = """请分析以下提案并返回一个 JSON 对象，包含以下字段：
{{
  "summary": "对提案的简洁中文摘要（50-120字）",
  "category": "tokenomics/governance/technical/marketing/community/general",
  "risk": "low/medium/high",
  "suggestions": ["具体建议1", "具体建议2", "具体建议3"],
  "confidence": 0.0到1.0之间的数值，表示分析置信度
}}

要求：
1. 只返回 JSON，不要有其他文本
2. 摘要要突出核心内容和潜在影响
3. 风险评估要基于可行性、社区影响和潜在风险
4. 建议要具体可操作

提案标题：{title}
提案内容：{content}"""

_EN = """Please analyze the following proposal and return a JSON object with these fields:
{{
  "summary": "Concise English summary of the proposal (50-120 words)",
  "category": "tokenomics/governance/technical/marketing/community/general",
  "risk": "low/medium/high",
  "suggestions": ["specific suggestion 1", "specific suggestion 2", "specific suggestion 3"],
  "confidence": a number between 0.0 and 1.0 indicating analysis confidence
}}

Requirements:
1. Return only JSON, no other text
2. Summary should highlight key points and potential impact
3. Risk assessment based on feasibility, community impact, and potential risks
4. Suggestions should be specific and actionable

Proposal Title: {title}
Proposal Content: {content}"""

ANALYSIS_PROMPTS: dict[str, str] = {"zh": _ZH, "en": _EN}

# Textes de repli, par langue
FALLBACK_TEXTS: dict[str, dict[str, str]] = {
    "zh": {
        "placeholder_summary": '模拟摘要：这是一个关于"{title}"的提案分析。',
        "missing_summary": '关于"{title}"的提案分析',
        "manual_review": "建议进行人工审核",
        "unavailable_summary": "分析服务暂时不可用。提案标题: {title}",
        "unavailable_suggestion": "系统分析服务暂时不可用，请稍后重试或进行人工审核",
    },
    "en": {
        "placeholder_summary": 'Placeholder summary: analysis of the proposal "{title}".',
        "missing_summary": 'Analysis of the proposal "{title}"',
        "manual_review": "Manual review recommended",
        "unavailable_summary": "Analysis service temporarily unavailable. Proposal title: {title}",
        "unavailable_suggestion": "Analysis service unavailable, retry later or review manually",
    },
}


def resolve_language(language: str | None) -> str:
    lang = (language or "").strip().lower()
    return lang if lang in ANALYSIS_PROMPTS else DEFAULT_LANGUAGE


def build_analysis_prompt(title: str, content: str, language: str | None = None) -> str:
    """Construit le prompt d'analyse dans la langue demandée."""
    return ANALYSIS_PROMPTS[resolve_language(language)].format(title=title, content=content)
