"""
Deterministic Fallback Analyzer
===============================

No-network categorization used when the remote classifier cannot help:

- ``strict_domain_only``: exact (or subdomain) domain table lookup
- ``title_signal``: the ordered keyword cascade over the title
- ``analyze_title``: the cascade plus URL, TLD and coarse heuristics; it
  always produces a label and defaults to "Work"

``fallback_category`` chains the domain tier and the title tier and is what
the pipeline calls for tabs still unresolved after every remote pass.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import structlog

from .tabs import TabDescriptor, parse_domain
from .taxonomy import Taxonomy
from .validator import TabContext, validate_restricted_category

log = structlog.get_logger(__name__)

DEFAULT_CATEGORY = "Work"

DOMAIN_FALLBACK_CONFIDENCE = 0.85
TITLE_FALLBACK_CONFIDENCE = 0.70
SOURCE_DOMAIN_FALLBACK = "domain_fallback"
SOURCE_TITLE_FALLBACK = "title_analysis_fallback"


def _words(*patterns: str) -> re.Pattern:
    return re.compile(r"\b(" + "|".join(patterns) + r")\b")


# First matching group wins, so order matters.
TITLE_CASCADE = (
    (
        "Development",
        _words(
            "github", "gitlab", "bitbucket", r"stack ?overflow", "npm", "pypi",
            "api", "sdk", "docs", "documentation", "programming", "coding",
            "code", "debug(ging)?", "compiler", "python", "javascript",
            "typescript", "rust", "golang", "react", "docker", "kubernetes",
            "terraform", "pull request", "commit", "repository", "deploy(ment)?",
        ),
    ),
    (
        "Work",
        _words(
            "meeting", "calendar", "jira", "confluence", "notion",
            "spreadsheet", "slides", "presentation", "agenda", "roadmap",
            "standup", "sprint", "kanban", "crm", "salesforce", "timesheet",
            "project plan",
        ),
    ),
    (
        "Email",
        _words("inbox", "gmail", "outlook", "e-?mail", "mail", "slack", "teams", "discord", "messages?"),
    ),
    (
        "Entertainment",
        _words(
            "youtube", "netflix", "spotify", "movies?", "films?", "trailer",
            "episode", "season", "series", "music", "playlist", "album",
            "songs?", "podcast", "games?", "gaming", "twitch", "imdb",
        ),
    ),
    (
        "Shopping",
        _words(
            "cart", "checkout", "buy", "shop", "shopping", "store", "deals?",
            "sale", "coupon", "amazon", "ebay", "etsy", "add to cart",
        ),
    ),
    (
        "News",
        _words("news", "breaking", "headlines?", "politics", "election", "editorial", "opinion"),
    ),
    (
        "Social",
        _words(
            "facebook", "twitter", "instagram", "linkedin", "reddit",
            "tiktok", "followers", "profile", "timeline",
        ),
    ),
    (
        "Finance",
        _words(
            "bank", "banking", "payment", "invoice", "budget", "stocks?",
            "crypto", "bitcoin", "tax", "mortgage", "loan", "credit card",
            "portfolio", "paypal", "investing",
        ),
    ),
    (
        "Travel",
        _words(
            "flights?", "hotels?", "booking", "airbnb", "trip", "travel",
            "itinerary", "maps", "directions", "vacation", "airline",
        ),
    ),
    (
        "AI",
        _words(
            "chatgpt", "openai", "claude", "gemini", "llm", "gpt(-\\d+)?",
            "prompt", r"hugging ?face", "machine learning", "ai",
        ),
    ),
    (
        "Utilities",
        _words(
            "converter", "calculator", "translate", "translator", "weather",
            "timer", "password", "settings", "pdf", "download", "upload",
            "dropbox", "storage", "backup", "speed test",
        ),
    ),
)

URL_PATH_RULES = (
    ("/docs/", "Development"),
    ("/admin/", "Utilities"),
    ("/console/", "Utilities"),
)

TLD_RULES = (
    (".edu", "Research"),
    (".gov", "News"),
    (".org", "Utilities"),
)

COARSE_FAMILIES = (
    ("Work", _words("business", "company", "enterprise", "client", "customer", "office", "career", "jobs?", "team")),
    ("Social", _words("personal", "family", "friends", "blog", "photos?", "my")),
    ("News", _words("how to", "guide", "tutorial", "wiki", "learn", "what is", "faq", "help", "about")),
)


@dataclass(frozen=True)
class TitleAnalysis:
    category: str
    rule: str


@dataclass(frozen=True)
class FallbackResult:
    category: str
    confidence: float
    source: str


def strict_domain_only(domain: str, taxonomy: Taxonomy) -> str | None:
    """Domain table lookup without any substring guessing."""
    return taxonomy.domain_category(domain)


def title_signal(title: str | None) -> str | None:
    """Category of the first cascade group matching the lower-cased title."""
    title_lower = (title or "").lower()
    if not title_lower:
        return None
    for category, pattern in TITLE_CASCADE:
        if pattern.search(title_lower):
            return category
    return None


def analyze_title(title: str | None, url: str | None) -> TitleAnalysis:
    """Title and URL heuristics. Always returns a concrete label."""
    category = title_signal(title)
    if category:
        return TitleAnalysis(category, "title_keywords")

    url_lower = (url or "").lower()
    for fragment, category in URL_PATH_RULES:
        if fragment in url_lower:
            return TitleAnalysis(category, f"url_path:{fragment}")

    domain = parse_domain(url)
    for suffix, category in TLD_RULES:
        if domain.endswith(suffix):
            return TitleAnalysis(category, f"tld:{suffix}")

    title_lower = (title or "").lower()
    for category, pattern in COARSE_FAMILIES:
        if pattern.search(title_lower):
            return TitleAnalysis(category, "coarse_family")

    return TitleAnalysis(DEFAULT_CATEGORY, "default")


def _admissible(category: str, tab: TabDescriptor, taxonomy: Taxonomy) -> bool:
    """Restricted labels still need academic evidence on the fallback path."""
    if not taxonomy.is_restricted(category):
        return True
    context = TabContext(title=tab.title, url=tab.url, domain=tab.domain)
    return validate_restricted_category(category, context, taxonomy).allowed


def fallback_category(tab: TabDescriptor, taxonomy: Taxonomy) -> FallbackResult:
    category = strict_domain_only(tab.domain, taxonomy)
    if category and _admissible(category, tab, taxonomy):
        return FallbackResult(category, DOMAIN_FALLBACK_CONFIDENCE, SOURCE_DOMAIN_FALLBACK)

    analysis = analyze_title(tab.title, tab.url)
    if not _admissible(analysis.category, tab, taxonomy):
        log.debug("Restricted fallback label rejected", category=analysis.category, rule=analysis.rule)
        analysis = TitleAnalysis(DEFAULT_CATEGORY, "default")
    log.debug("Title analysis fallback", category=analysis.category, rule=analysis.rule)
    return FallbackResult(analysis.category, TITLE_FALLBACK_CONFIDENCE, SOURCE_TITLE_FALLBACK)
