"""
Tab descriptors and identity keys.

A browser tab arrives as a loose mapping (``id``, ``title``, ``url``). The
pipeline works on immutable `TabDescriptor` values and identifies tabs by a
key derived from the URL, so duplicates of the same page are classified once.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import urlsplit

UNTITLED = "Untitled"


def parse_domain(url: str | None) -> str:
    """Lowercase hostname without a leading ``www.``; "" when unparseable."""
    if not url:
        return ""
    try:
        hostname = urlsplit(str(url).strip()).hostname or ""
    except ValueError:
        return ""
    hostname = hostname.lower()
    if hostname.startswith("www."):
        hostname = hostname[4:]
    return hostname


@dataclass(frozen=True)
class TabDescriptor:
    id: Any
    title: str
    url: str
    domain: str

    @classmethod
    def from_tab(cls, tab: Mapping[str, Any]) -> "TabDescriptor":
        title = str(tab.get("title") or "").strip() or UNTITLED
        url = str(tab.get("url") or "").strip()
        return cls(id=tab.get("id"), title=title, url=url, domain=parse_domain(url))


def make_tab_key(tab: TabDescriptor) -> str:
    """
    Stable identity for caching and batching.

    The lowercased URL when present, otherwise a composite of the tab id and
    the first 64 characters of the lowercased title.
    """
    url = (tab.url or "").strip().lower()
    if url:
        return url
    tab_id = tab.id if tab.id is not None else "na"
    title = (tab.title or "").lower()[:64]
    return f"id:{tab_id}|t:{title}"
