"""
Category Validation
===================

Two layers of checks are applied to every label a remote model proposes:

1. `validate_category_strict` decides whether the label is admissible at all
   (custom, canonical, not a catch-all, and academic evidence for restricted
   labels).
2. `validate_category` compares an admissible label with what the tab's
   domain and title suggest. Critical domains are overridden outright; other
   disagreements only lower confidence and flag the answer for review.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

import structlog

from .tabs import parse_domain
from .taxonomy import Taxonomy

log = structlog.get_logger(__name__)

RESTRICTED_ALTERNATIVES = ("Development", "Work", "News")

CRITICAL_OVERRIDE_CONFIDENCE = 0.95
DOMAIN_MISMATCH_CAP = 0.5
PATTERN_MISMATCH_CAP = 0.6
ACADEMIC_DOMAIN_CONFIDENCE = 0.9
ACADEMIC_PATTERN_CONFIDENCE = 0.85

STRONG_PATTERNS = (
    (re.compile(r"\b(movie|film|trailer|imdb|rotten|metacritic)\b", re.I), "Entertainment"),
    (re.compile(r"\b(github|gitlab|stackoverflow|npm|pypi)\b", re.I), "Development"),
    (re.compile(r"\b(gmail|outlook|mail|inbox)\b", re.I), "Email"),
    (re.compile(r"\b(shopping cart|checkout|buy now|add to cart)\b", re.I), "Shopping"),
)


@dataclass(frozen=True)
class TabContext:
    title: str = ""
    url: str = ""
    domain: str = ""


@dataclass(frozen=True)
class StrictValidation:
    allowed: bool
    reason: str
    suggest_uncategorized: bool = False
    suggest_alternatives: tuple[str, ...] = field(default_factory=tuple)
    confidence: float | None = None


@dataclass(frozen=True)
class CategoryCheck:
    category: str
    confidence: float
    needs_review: bool = False
    corrected: bool = False


def validate_restricted_category(
    label: str, context: TabContext, taxonomy: Taxonomy
) -> StrictValidation:
    """A restricted label is only admissible with academic evidence."""
    if taxonomy.is_academic_domain(context.domain):
        return StrictValidation(
            allowed=True,
            reason="Academic domain",
            confidence=ACADEMIC_DOMAIN_CONFIDENCE,
        )

    haystack = f"{context.title} {context.url}"
    for pattern in taxonomy.academic_patterns:
        if pattern.search(haystack):
            return StrictValidation(
                allowed=True,
                reason=f"Academic pattern: {pattern.pattern}",
                confidence=ACADEMIC_PATTERN_CONFIDENCE,
            )

    return StrictValidation(
        allowed=False,
        reason=f"'{label}' requires academic evidence; not academic/scholarly content",
        suggest_uncategorized=True,
        suggest_alternatives=RESTRICTED_ALTERNATIVES,
    )


def validate_category_strict(
    label: str | None, context: TabContext, taxonomy: Taxonomy
) -> StrictValidation:
    label = (label or "").strip()
    if not label:
        return StrictValidation(False, "Empty category name", suggest_uncategorized=True)

    if taxonomy.is_custom(label):
        return StrictValidation(True, "Custom category")

    if taxonomy.is_banned(label):
        return StrictValidation(
            False,
            f"'{label}' is a banned catch-all category",
            suggest_uncategorized=True,
        )

    if taxonomy.is_restricted(label):
        return validate_restricted_category(label, context, taxonomy)

    if taxonomy.canonical_name(label):
        return StrictValidation(True, "Category approved")

    return StrictValidation(False, "Not in allowed taxonomy", suggest_uncategorized=True)


def hard_correction(domain: str, category: str, taxonomy: Taxonomy) -> CategoryCheck | None:
    """Override for critical domains, or None when no override applies."""
    if taxonomy.is_custom(category):
        return None
    expected = taxonomy.critical_category(domain)
    if expected is None or expected == category:
        return None
    log.info("Critical domain override", domain=domain, proposed=category, category=expected)
    return CategoryCheck(
        category=expected,
        confidence=CRITICAL_OVERRIDE_CONFIDENCE,
        corrected=True,
    )


def validate_category(
    url: str,
    title: str,
    proposed: str,
    confidence: float,
    taxonomy: Taxonomy,
    domain: str | None = None,
) -> CategoryCheck:
    """Compare a proposal with domain and title knowledge."""
    if domain is None:
        domain = parse_domain(url)

    if taxonomy.is_custom(proposed):
        return CategoryCheck(proposed, confidence)

    corrected = hard_correction(domain, proposed, taxonomy)
    if corrected is not None:
        return corrected

    expected = taxonomy.domain_category(domain)
    if expected and expected != proposed:
        log.debug("Domain hint disagrees", domain=domain, expected=expected, proposed=proposed)
        return CategoryCheck(
            proposed,
            min(confidence, DOMAIN_MISMATCH_CAP),
            needs_review=True,
        )

    title_lower = (title or "").lower()
    url_lower = (url or "").lower()
    for pattern, category in STRONG_PATTERNS:
        if category == proposed:
            continue
        if pattern.search(title_lower) or pattern.search(url_lower):
            log.debug("Title pattern disagrees", pattern=category, proposed=proposed)
            return CategoryCheck(
                proposed,
                min(confidence, PATTERN_MISMATCH_CAP),
                needs_review=True,
            )

    return CategoryCheck(proposed, confidence)
