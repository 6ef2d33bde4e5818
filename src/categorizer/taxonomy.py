"""
Taxonomy & Knowledge Base
=========================

Static classification knowledge shared by the validator, the fallback
analyzer, the prompt builder and the consolidator:

- the canonical category list and user-defined custom categories
- domain hints (hostname -> category) and the critical subset of them
- banned catch-all labels and restricted labels that need evidence
- academic domains and title/URL patterns backing the restricted check
- a synonym table used to normalize free-text labels

Everything is bundled into an immutable `Taxonomy` value that callers build
once and pass around, so tests and deployments can swap tables without
touching pipeline code.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping

UNCATEGORIZED = "Uncategorized"

CANONICAL_CATEGORIES = (
    "Email",
    "Work",
    "Development",
    "Shopping",
    "Entertainment",
    "Social",
    "News",
    "Finance",
    "Travel",
    "Utilities",
    "AI",
    # Last on purpose: models over-pick whatever comes first.
    "Research",
)

DOMAIN_HINTS = {
    # Email
    "gmail.com": "Email",
    "mail.google.com": "Email",
    "outlook.com": "Email",
    "outlook.live.com": "Email",
    "office365.com": "Email",
    "yahoo.com": "Email",
    "mail.yahoo.com": "Email",
    "proton.me": "Email",
    "protonmail.com": "Email",
    "fastmail.com": "Email",
    "slack.com": "Email",
    "teams.microsoft.com": "Email",
    "discord.com": "Email",
    # Work
    "docs.google.com": "Work",
    "sheets.google.com": "Work",
    "calendar.google.com": "Work",
    "notion.so": "Work",
    "zoom.us": "Work",
    "asana.com": "Work",
    "trello.com": "Work",
    "airtable.com": "Work",
    "atlassian.net": "Work",
    # Utilities
    "drive.google.com": "Utilities",
    "dropbox.com": "Utilities",
    "onedrive.live.com": "Utilities",
    "wikipedia.org": "Utilities",
    # Development
    "github.com": "Development",
    "gitlab.com": "Development",
    "bitbucket.org": "Development",
    "stackoverflow.com": "Development",
    "stackexchange.com": "Development",
    "npmjs.com": "Development",
    "pypi.org": "Development",
    # Entertainment
    "youtube.com": "Entertainment",
    "netflix.com": "Entertainment",
    "spotify.com": "Entertainment",
    "imdb.com": "Entertainment",
    "rottentomatoes.com": "Entertainment",
    "metacritic.com": "Entertainment",
    "twitch.tv": "Entertainment",
    "hulu.com": "Entertainment",
    "disney.com": "Entertainment",
    "disneyplus.com": "Entertainment",
    "hbomax.com": "Entertainment",
    "primevideo.com": "Entertainment",
    "paramount.com": "Entertainment",
    "peacocktv.com": "Entertainment",
    "crunchyroll.com": "Entertainment",
    "soundcloud.com": "Entertainment",
    "vimeo.com": "Entertainment",
    "pandora.com": "Entertainment",
    # Social
    "linkedin.com": "Social",
    "x.com": "Social",
    "twitter.com": "Social",
    "facebook.com": "Social",
    "instagram.com": "Social",
    "reddit.com": "Social",
    "pinterest.com": "Social",
    "tiktok.com": "Social",
    # News
    "nytimes.com": "News",
    "bbc.com": "News",
    "bbc.co.uk": "News",
    "cnn.com": "News",
    "reuters.com": "News",
    "theguardian.com": "News",
    "bloomberg.com": "News",
    "wsj.com": "News",
    "washingtonpost.com": "News",
    # Shopping
    "amazon.com": "Shopping",
    "ebay.com": "Shopping",
    "etsy.com": "Shopping",
    "alibaba.com": "Shopping",
    "aliexpress.com": "Shopping",
    "shopify.com": "Shopping",
    "walmart.com": "Shopping",
    # Finance
    "paypal.com": "Finance",
    "revolut.com": "Finance",
    "wise.com": "Finance",
    "hsbc.com": "Finance",
    "barclays.co.uk": "Finance",
    "chase.com": "Finance",
    "bankofamerica.com": "Finance",
    # Travel
    "maps.google.com": "Travel",
    "booking.com": "Travel",
    "airbnb.com": "Travel",
    # AI
    "chatgpt.com": "AI",
    "chat.openai.com": "AI",
    "claude.ai": "AI",
    "gemini.google.com": "AI",
    "perplexity.ai": "AI",
    "huggingface.co": "AI",
    # Research (academic only)
    "arxiv.org": "Research",
    "scholar.google.com": "Research",
    "pubmed.ncbi.nlm.nih.gov": "Research",
}

# Domains whose category is unambiguous; a disagreeing label is overridden.
CRITICAL_DOMAINS = {
    "imdb.com": "Entertainment",
    "rottentomatoes.com": "Entertainment",
    "metacritic.com": "Entertainment",
    "github.com": "Development",
    "gitlab.com": "Development",
    "stackoverflow.com": "Development",
    "gmail.com": "Email",
    "mail.google.com": "Email",
    "outlook.com": "Email",
}

BANNED_CATEGORIES = frozenset(
    {
        "other",
        "others",
        "misc",
        "miscellaneous",
        "general",
        "unknown",
        "uncategorized",
        "tools",
        "resources",
        "stuff",
        "random",
        "none",
        "n/a",
    }
)

RESTRICTED_CATEGORIES = frozenset({"research"})

ACADEMIC_DOMAINS = (
    "arxiv.org",
    "scholar.google.com",
    "pubmed.ncbi.nlm.nih.gov",
    "ncbi.nlm.nih.gov",
    "nature.com",
    "science.org",
    "sciencedirect.com",
    "springer.com",
    "link.springer.com",
    "ieee.org",
    "ieeexplore.ieee.org",
    "acm.org",
    "dl.acm.org",
    "jstor.org",
    "researchgate.net",
    "semanticscholar.org",
    "ssrn.com",
    "biorxiv.org",
    "medrxiv.org",
    "plos.org",
    "wiley.com",
    "tandfonline.com",
)

ACADEMIC_DOMAIN_SUFFIXES = (".edu", ".ac.uk", ".ac.jp")

ACADEMIC_PATTERNS = (
    re.compile(r"\bpeer[\s-]?review(ed)?\b", re.I),
    re.compile(r"\bjournals?\b", re.I),
    re.compile(r"\buniversit(y|ies)\b", re.I),
    re.compile(r"\bdoi\b|\b10\.\d{4,9}/", re.I),
    re.compile(r"\barxiv\b", re.I),
    re.compile(r"\b(thesis|dissertation)\b", re.I),
    re.compile(r"\bscientific (study|paper|research|article)\b", re.I),
    re.compile(r"\b(conference )?proceedings\b", re.I),
    re.compile(r"\bscholarly\b|\bacademic paper\b", re.I),
    re.compile(r"\bpubmed\b|\bpreprint\b", re.I),
)

SYNONYMS = {
    # Email
    "email": "Email",
    "mail": "Email",
    "inbox": "Email",
    "communication": "Email",
    "messaging": "Email",
    "chat": "Email",
    # Work
    "work": "Work",
    "productivity": "Work",
    "office": "Work",
    "calendar": "Work",
    "meeting": "Work",
    "meetings": "Work",
    "tasks": "Work",
    "project management": "Work",
    "sheets": "Work",
    "slides": "Work",
    "business": "Work",
    # Research
    "research": "Research",
    "academic": "Research",
    "papers": "Research",
    "paper": "Research",
    "science": "Research",
    "learning": "Research",
    "education": "Research",
    # Development
    "development": "Development",
    "developer": "Development",
    "dev": "Development",
    "programming": "Development",
    "code": "Development",
    "coding": "Development",
    "engineering": "Development",
    "software": "Development",
    "repo": "Development",
    "git": "Development",
    "sdk": "Development",
    "api": "Development",
    "docs": "Development",
    "documentation": "Development",
    # Shopping
    "shopping": "Shopping",
    "shop": "Shopping",
    "ecommerce": "Shopping",
    "e-commerce": "Shopping",
    "store": "Shopping",
    "retail": "Shopping",
    "cart": "Shopping",
    "checkout": "Shopping",
    "deal": "Shopping",
    "deals": "Shopping",
    # Entertainment
    "entertainment": "Entertainment",
    "video": "Entertainment",
    "videos": "Entertainment",
    "music": "Entertainment",
    "streaming": "Entertainment",
    "movie": "Entertainment",
    "movies": "Entertainment",
    "playlist": "Entertainment",
    "gaming": "Entertainment",
    "games": "Entertainment",
    "trailer": "Entertainment",
    # Social
    "social": "Social",
    "social media": "Social",
    "networking": "Social",
    "community": "Social",
    "forum": "Social",
    "forums": "Social",
    # News
    "news": "News",
    "media": "News",
    "press": "News",
    "journalism": "News",
    "article": "News",
    "articles": "News",
    # Finance
    "finance": "Finance",
    "financial": "Finance",
    "banking": "Finance",
    "bank": "Finance",
    "payments": "Finance",
    "payment": "Finance",
    "wallet": "Finance",
    "money": "Finance",
    "investing": "Finance",
    "investment": "Finance",
    # Travel
    "travel": "Travel",
    "maps": "Travel",
    "map": "Travel",
    "directions": "Travel",
    "navigation": "Travel",
    "trip": "Travel",
    # Utilities
    "utilities": "Utilities",
    "utility": "Utilities",
    "storage": "Utilities",
    "cloud": "Utilities",
    "drive": "Utilities",
    "files": "Utilities",
    "backup": "Utilities",
    "reference": "Utilities",
    # AI
    "ai": "AI",
    "artificial intelligence": "AI",
    "machine learning": "AI",
    "llm": "AI",
    "prompt": "AI",
    "chatgpt": "AI",
    "assistant": "AI",
}


@dataclass(frozen=True)
class CustomCategory:
    name: str
    description: str = ""


def _freeze(mapping: Mapping[str, str]) -> Mapping[str, str]:
    return MappingProxyType({k.lower(): v for k, v in mapping.items()})


@dataclass(frozen=True)
class Taxonomy:
    """
    Immutable classification knowledge.

    Build it with `Taxonomy.default()` and pass the result to every component
    that needs taxonomy data.
    """

    canonical: tuple[str, ...] = CANONICAL_CATEGORIES
    custom: tuple[CustomCategory, ...] = ()
    domain_hints: Mapping[str, str] = field(default_factory=lambda: _freeze(DOMAIN_HINTS))
    critical_domains: Mapping[str, str] = field(
        default_factory=lambda: _freeze(CRITICAL_DOMAINS)
    )
    banned: frozenset[str] = BANNED_CATEGORIES
    restricted: frozenset[str] = RESTRICTED_CATEGORIES
    academic_domains: tuple[str, ...] = ACADEMIC_DOMAINS
    academic_suffixes: tuple[str, ...] = ACADEMIC_DOMAIN_SUFFIXES
    academic_patterns: tuple[re.Pattern, ...] = ACADEMIC_PATTERNS
    synonyms: Mapping[str, str] = field(default_factory=lambda: _freeze(SYNONYMS))

    @classmethod
    def default(
        cls,
        custom: Iterable[CustomCategory | tuple[str, str] | str] = (),
    ) -> "Taxonomy":
        """Built-in tables plus de-duplicated custom categories."""
        return cls(custom=_clean_custom(custom, CANONICAL_CATEGORIES))

    def allowed_categories(self) -> list[str]:
        """Canonical labels followed by custom labels."""
        return list(self.canonical) + [c.name for c in self.custom]

    def canonical_name(self, label: str) -> str | None:
        needle = _key(label)
        for name in self.canonical:
            if name.lower() == needle:
                return name
        return None

    def custom_name(self, label: str) -> str | None:
        needle = _key(label)
        for category in self.custom:
            if category.name.lower() == needle:
                return category.name
        return None

    def is_custom(self, label: str) -> bool:
        return self.custom_name(label) is not None

    def is_allowed(self, label: str) -> bool:
        return self.canonical_name(label) is not None or self.is_custom(label)

    def is_banned(self, label: str) -> bool:
        needle = _key(label)
        return not needle or needle in self.banned

    def is_restricted(self, label: str) -> bool:
        return _key(label) in self.restricted

    def domain_category(self, domain: str) -> str | None:
        """Domain hint for ``domain`` or one of its parent domains."""
        return _lookup_domain(domain, self.domain_hints)

    def critical_category(self, domain: str) -> str | None:
        return _lookup_domain(domain, self.critical_domains)

    def is_academic_domain(self, domain: str) -> bool:
        domain = (domain or "").lower()
        if not domain:
            return False
        if any(domain.endswith(suffix) for suffix in self.academic_suffixes):
            return True
        return any(
            domain == known or domain.endswith("." + known)
            for known in self.academic_domains
        )


def _lookup_domain(domain: str, table: Mapping[str, str]) -> str | None:
    """Exact match first, then ``*.known`` suffix matches, longest suffix wins."""
    domain = (domain or "").lower()
    if not domain:
        return None
    if domain in table:
        return table[domain]
    parts = domain.split(".")
    for i in range(1, len(parts) - 1):
        parent = ".".join(parts[i:])
        if parent in table:
            return table[parent]
    return None


def _key(label: str | None) -> str:
    return " ".join(str(label or "").split()).lower()


def _clean_custom(
    items: Iterable[CustomCategory | tuple[str, str] | str],
    canonical: Iterable[str],
) -> tuple[CustomCategory, ...]:
    """Normalize custom category inputs, dropping blanks and name collisions."""
    seen = {name.lower() for name in canonical}
    cleaned = []
    for item in items:
        if isinstance(item, CustomCategory):
            category = item
        elif isinstance(item, tuple):
            category = CustomCategory(str(item[0]), str(item[1] if len(item) > 1 else ""))
        else:
            category = CustomCategory(str(item))
        name = " ".join(category.name.split())
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())
        cleaned.append(CustomCategory(name, category.description.strip()))
    return tuple(cleaned)


def _title_case(value: str) -> str:
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), value.lower())


def normalize_category(raw: str | None, taxonomy: Taxonomy) -> str:
    """
    Turn a free-text label into a single concise label.

    Keeps only the first ``/`` segment, returns the proper spelling of
    canonical or custom matches, maps synonyms onto canonical categories and
    otherwise title-cases the first three words. Empty input returns "".
    """
    base = str(raw or "").split("/")[0]
    base = " ".join(base.split())
    if not base:
        return ""

    exact = taxonomy.canonical_name(base) or taxonomy.custom_name(base)
    if exact:
        return exact

    lower = base.lower()
    if lower in taxonomy.banned:
        return base

    synonym = taxonomy.synonyms.get(lower) or taxonomy.synonyms.get(lower.split(" ")[0])
    if synonym:
        return synonym

    for variant, canonical in taxonomy.synonyms.items():
        if re.search(rf"\b{re.escape(variant)}\b", lower):
            return canonical

    return _title_case(" ".join(base.split(" ")[:3]))
