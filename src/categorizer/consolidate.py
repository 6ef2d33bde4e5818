"""Merge variant spellings of category labels into canonical groups."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

import structlog

from .taxonomy import UNCATEGORIZED, Taxonomy

log = structlog.get_logger(__name__)

# Iteration order is part of the behaviour: the first substring hit wins.
VARIANTS = (
    ("programming", "Development"),
    ("coding", "Development"),
    ("code", "Development"),
    ("developer", "Development"),
    ("dev", "Development"),
    ("engineering", "Development"),
    ("software", "Development"),
    ("documentation", "Development"),
    ("docs", "Development"),
    ("research", "Research"),
    ("reading", "Research"),
    ("learning", "Research"),
    ("education", "Research"),
    ("study", "Research"),
    ("work", "Work"),
    ("productivity", "Work"),
    ("office", "Work"),
    ("business", "Work"),
    ("project", "Work"),
    ("email", "Email"),
    ("mail", "Email"),
    ("inbox", "Email"),
    ("communication", "Email"),
    ("messaging", "Email"),
    ("chat", "Email"),
    ("entertainment", "Entertainment"),
    ("videos", "Entertainment"),
    ("video", "Entertainment"),
    ("streaming", "Entertainment"),
    ("youtube", "Entertainment"),
    ("shopping", "Shopping"),
    ("ecommerce", "Shopping"),
    ("store", "Shopping"),
    ("retail", "Shopping"),
    ("shop", "Shopping"),
    ("social media", "Social"),
    ("social", "Social"),
    ("networking", "Social"),
    ("community", "Social"),
    ("news", "News"),
    ("journalism", "News"),
    ("articles", "News"),
    ("media", "News"),
    ("finance", "Finance"),
    ("financial", "Finance"),
    ("banking", "Finance"),
    ("bank", "Finance"),
    ("money", "Finance"),
    ("travel", "Travel"),
    ("utilities", "Utilities"),
    ("artificial intelligence", "AI"),
    ("machine learning", "AI"),
    ("chatgpt", "AI"),
    ("openai", "AI"),
    ("anthropic", "AI"),
    ("claude", "AI"),
    ("llm", "AI"),
    ("ai", "AI"),
)

_VARIANT_LOOKUP = dict(VARIANTS)

# Short variants would match inside unrelated words ("ai" in "domain").
_MIN_SUBSTRING_LENGTH = 4


def consolidate_label(label: str, taxonomy: Taxonomy) -> str:
    """Canonical bucket for one group label."""
    cleaned = " ".join(str(label or "").split())
    if cleaned == UNCATEGORIZED:
        return UNCATEGORIZED

    custom = taxonomy.custom_name(cleaned)
    if custom:
        return custom
    canonical = taxonomy.canonical_name(cleaned)
    if canonical:
        return canonical
    if taxonomy.is_banned(cleaned):
        return UNCATEGORIZED

    lower = cleaned.lower()
    if lower in _VARIANT_LOOKUP:
        return _VARIANT_LOOKUP[lower]
    for variant, target in VARIANTS:
        if len(variant) >= _MIN_SUBSTRING_LENGTH and variant in lower:
            return target
    return cleaned


def consolidate_categories(
    groups: Mapping[str, Sequence[Any]], taxonomy: Taxonomy
) -> dict[str, list[Any]]:
    """
    Merge ``{label: [tab ids]}`` groups whose labels are variants of each
    other. Id order is preserved; labels that match nothing are kept.
    """
    consolidated: dict[str, list[Any]] = {}
    for label, ids in groups.items():
        target = consolidate_label(label, taxonomy)
        consolidated.setdefault(target, []).extend(ids or [])

    if len(consolidated) != len(groups):
        log.info("Categories consolidated", before=len(groups), after=len(consolidated))
    return consolidated
