"""
Remote Classifier Client
========================

This module turns a batch of tabs into a chat completion request, calls an
OpenAI-compatible endpoint (OpenAI, Groq or Ollama) and parses the answer
back into raw assignments.

The client makes no policy decisions: labels come back exactly as the model
wrote them (minus hierarchy) and the pipeline validates them. Every failure
is raised as a `ClassifierError` subclass so the pipeline can turn it into a
failed batch.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, replace
from typing import Protocol, Sequence

import openai
import structlog

from common.config import Settings
from common.llm import OpenAIChatMixin, create_async_client
from common.store import KeyValueStore

from .errors import (
    ClassifierAuthError,
    ClassifierError,
    ClassifierRateLimitedError,
    ClassifierUnavailableError,
    MalformedResponseError,
)
from .rate_limit import UsageTracker
from .taxonomy import Taxonomy

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ClassifierInput:
    key: str
    title: str
    url: str
    domain: str

    def to_dict(self) -> dict[str, str]:
        return {"key": self.key, "title": self.title, "url": self.url, "domain": self.domain}


@dataclass(frozen=True)
class RawAssignment:
    key: str
    category: str
    confidence: float | None


class ClassifierClient(Protocol):
    name: str

    async def classify_batch(self, items: Sequence[ClassifierInput]) -> list[RawAssignment]: ...


@dataclass(frozen=True)
class ProviderProfile:
    """Batching and pacing policy for one provider class."""

    name: str
    pass1_batch_size: int
    pass2_batch_size: int
    pass3_batch_size: int
    pass1_delay: float
    pass2_delay: float
    pass3_delay: float
    pass3_rounds: int = 3
    scale_pass3_delay: bool = True
    usage_tracker: UsageTracker | None = None

    @classmethod
    def standard(cls) -> "ProviderProfile":
        return cls("standard", 25, 25, 10, 0.25, 0.5, 1.0)

    @classmethod
    def constrained(cls, usage_tracker: UsageTracker | None = None) -> "ProviderProfile":
        return cls(
            "constrained",
            5,
            5,
            3,
            2.1,
            2.1,
            2.1,
            scale_pass3_delay=False,
            usage_tracker=usage_tracker,
        )

    def pass3_delay_for_round(self, round_number: int) -> float:
        if self.scale_pass3_delay:
            return self.pass3_delay * round_number
        return self.pass3_delay


FEW_SHOT = """
Input:
[
  {"key":"k1","title":"Gmail - Inbox","url":"https://mail.google.com","domain":"mail.google.com"},
  {"key":"k2","title":"Slack - Channel","url":"https://slack.com/app","domain":"slack.com"},
  {"key":"k3","title":"Google Docs - Roadmap","url":"https://docs.google.com/document/d/1","domain":"docs.google.com"},
  {"key":"k4","title":"YouTube - Jazz Playlist","url":"https://www.youtube.com/watch?v=1","domain":"youtube.com"},
  {"key":"k5","title":"IMDb - Top 250 Movies","url":"https://www.imdb.com/chart/top","domain":"imdb.com"},
  {"key":"k6","title":"GitHub - my/repo","url":"https://github.com/my/repo","domain":"github.com"},
  {"key":"k7","title":"Amazon - Product","url":"https://www.amazon.com/dp/1","domain":"amazon.com"},
  {"key":"k8","title":"BBC News - Breaking Story","url":"https://www.bbc.com/news/1","domain":"bbc.com"},
  {"key":"k9","title":"Google Drive","url":"https://drive.google.com/drive/u/0/home","domain":"drive.google.com"},
  {"key":"k10","title":"PayPal","url":"https://paypal.com/","domain":"paypal.com"},
  {"key":"k11","title":"Google Maps","url":"https://maps.google.com","domain":"maps.google.com"}
]
Output:
{"assignments":[
  {"key":"k1","category":"Email","confidence":0.98},
  {"key":"k2","category":"Email","confidence":0.9},
  {"key":"k3","category":"Work","confidence":0.92},
  {"key":"k4","category":"Entertainment","confidence":0.95},
  {"key":"k5","category":"Entertainment","confidence":0.98},
  {"key":"k6","category":"Development","confidence":0.94},
  {"key":"k7","category":"Shopping","confidence":0.96},
  {"key":"k8","category":"News","confidence":0.93},
  {"key":"k9","category":"Utilities","confidence":0.85},
  {"key":"k10","category":"Finance","confidence":0.9},
  {"key":"k11","category":"Travel","confidence":0.93}
]}
""".strip()


def build_system_prompt(taxonomy: Taxonomy) -> str:
    """Fixed instruction block for one taxonomy."""
    allowed = ", ".join(taxonomy.allowed_categories())
    parts = [
        "You are a strict browser tab classifier using domain-first categorization.",
        f"ALLOWED CATEGORIES (use ONLY these, exactly as written): {allowed}",
        "",
        "PROTOCOL:",
        "1. Analyze the domain for explicit category signals.",
        "2. Analyze the title for clear category indicators.",
        "3. Pick the most specific category that fits the content.",
        "4. Always assign a specific category; never answer Uncategorized.",
        "",
    ]

    if taxonomy.custom:
        parts.append("USER-CREATED CATEGORIES:")
        for category in taxonomy.custom:
            if category.description:
                parts.append(f"- {category.name}: {category.description}")
            else:
                parts.append(f"- {category.name}")
        parts.append("")

    banned = ", ".join(f'"{label.title()}"' for label in sorted(taxonomy.banned))
    parts.extend(
        [
            "RULES:",
            "- Produce exactly one assignment per input item.",
            '- The "key" of each assignment MUST match one input "key" exactly.',
            '- The "category" MUST be one of the allowed categories; do not invent labels.',
            '- Do not use slashes ("/") or hierarchical names.',
            f"- Never use catch-all labels such as {banned}.",
            "",
            "DOMAIN-SPECIFIC RULES:",
            "- IMDb, Rotten Tomatoes and Metacritic are always Entertainment, never News.",
            "- Movie, TV and music sites are Entertainment even when they publish articles.",
            "- GitHub, GitLab and Stack Overflow are always Development.",
            "- Gmail, Outlook, Slack, Teams and Discord are always Email.",
            "- Documentation sites, tutorials and how-to guides are Development or Work, not Research.",
            "- Wikipedia is Utilities, not Research.",
            "- Use Research only for academic journals and peer-reviewed papers.",
            "",
            "CONFIDENCE:",
            "- Exact domain match: 0.9-0.95",
            "- Domain and title agree: 0.95 or more",
            "- Title-only inference: 0.7-0.8",
            "- Uncertain: 0.3-0.5",
            "",
            "RESPONSE FORMAT:",
            "- Strict JSON only, no prose, no markdown, no code fences.",
            '- Schema: {"assignments":[{"key":"K","category":"string","confidence":0..1}]}',
            "",
            "DOMAIN GUIDANCE (authoritative):",
        ]
    )
    parts.extend(f"- {domain} -> {category}" for domain, category in taxonomy.domain_hints.items())
    parts.extend(["", "EXAMPLE:", FEW_SHOT])
    return "\n".join(parts)


def build_messages(items: Sequence[ClassifierInput], taxonomy: Taxonomy) -> list[dict]:
    return [
        {"role": "system", "content": build_system_prompt(taxonomy)},
        {
            "role": "user",
            "content": json.dumps([item.to_dict() for item in items], ensure_ascii=False),
        },
    ]


_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.I)


def _balanced_objects(text: str):
    """Yield top-level ``{...}`` substrings in order of appearance."""
    depth = 0
    start = -1
    for i, ch in enumerate(text):
        if ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield text[start : i + 1]


def _extract_json(text: str) -> dict:
    """Parse raw JSON, fenced JSON, or the first embedded assignment object."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    fence = _FENCE_RE.search(text)
    if fence:
        try:
            return json.loads(fence.group(1).strip())
        except json.JSONDecodeError:
            pass

    for candidate in _balanced_objects(text):
        if '"assignments"' in candidate or '"categories"' in candidate:
            try:
                return json.loads(candidate)
            except json.JSONDecodeError:
                continue

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise MalformedResponseError("No JSON object found in classifier response")
    try:
        return json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Classifier response is not valid JSON: {e}") from e


def _clamp_confidence(value) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number:  # NaN
        return None
    return max(0.0, min(1.0, number))


def _clean_label(value) -> str:
    return str(value or "").split("/")[0].strip()


def parse_assignments_response(
    text: str, items: Sequence[ClassifierInput]
) -> list[RawAssignment]:
    """
    Parse a classifier answer into raw assignments.

    Supports ``{"assignments": [{"key", "category", "confidence"}]}`` and the
    older ``{"categories": {"Name": [index or key, ...]}, "confidence": x}``
    shape where indices point into ``items``.
    """
    raw = (text or "").strip()
    if not raw:
        raise MalformedResponseError("Classifier response is empty")

    data = _extract_json(raw)
    if not isinstance(data, dict):
        raise MalformedResponseError("Classifier response is not a JSON object")

    assignments: list[RawAssignment] = []

    if isinstance(data.get("assignments"), list):
        for entry in data["assignments"]:
            if not isinstance(entry, dict):
                continue
            key = str(entry.get("key") or "").strip()
            category = _clean_label(entry.get("category"))
            if not key or not category:
                continue
            assignments.append(
                RawAssignment(key, category, _clamp_confidence(entry.get("confidence")))
            )

    if not assignments and isinstance(data.get("categories"), dict):
        keys_by_index = [item.key for item in items]
        shared_confidence = _clamp_confidence(data.get("confidence"))
        seen = set()
        for name, members in data["categories"].items():
            category = _clean_label(name)
            if not category or not isinstance(members, list):
                continue
            for member in members:
                if isinstance(member, int) and not isinstance(member, bool):
                    if not 0 <= member < len(keys_by_index):
                        continue
                    key = keys_by_index[member]
                elif isinstance(member, str) and member.strip():
                    key = member.strip()
                else:
                    continue
                if (key, category) in seen:
                    continue
                seen.add((key, category))
                assignments.append(RawAssignment(key, category, shared_confidence))

    if not assignments:
        raise MalformedResponseError("No usable assignments in classifier response")
    return assignments


def _translate_error(error: Exception) -> ClassifierError:
    if isinstance(error, ClassifierError):
        return error
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ClassifierAuthError(str(error))
    if isinstance(error, openai.RateLimitError):
        return ClassifierRateLimitedError(str(error))
    if isinstance(
        error,
        (openai.APIConnectionError, openai.APITimeoutError, openai.InternalServerError),
    ):
        return ClassifierUnavailableError(str(error))
    return ClassifierError(str(error))


def _is_temperature_error(error: Exception) -> bool:
    return isinstance(error, openai.BadRequestError) and "temperature" in str(error).lower()


class OpenAICompatibleClassifier(OpenAIChatMixin):
    """
    Classifier backed by any OpenAI-compatible chat completions endpoint.
    """

    def __init__(self, settings: Settings, taxonomy: Taxonomy, client: openai.AsyncOpenAI | None = None):
        self.settings = settings
        self.taxonomy = taxonomy
        self.name = settings.LLM_PROVIDER
        self._client = client if client is not None else create_async_client(settings)

    def _params(self, model: str, messages: list[dict]) -> dict:
        params = {
            "model": model,
            "messages": messages,
            "response_format": {"type": "json_object"},
            "timeout": self.settings.REQUEST_TIMEOUT,
        }
        if not model.startswith("gpt-5"):
            params["temperature"] = 0
        if self.settings.CLASSIFY_MAX_TOKENS:
            params["max_tokens"] = self.settings.CLASSIFY_MAX_TOKENS
        return params

    async def _complete(self, model: str, messages: list[dict]) -> str:
        params = self._params(model, messages)
        try:
            response = await self._create_completion(**params)
        except openai.BadRequestError as e:
            if "temperature" not in params or not _is_temperature_error(e):
                raise
            log.info("Model rejected temperature; retrying without it", model=model)
            params.pop("temperature")
            response = await self._create_completion(**params)
        if not response.choices:
            raise MalformedResponseError(f"Model {model} returned no choices")
        return response.choices[0].message.content or ""

    async def classify_batch(self, items: Sequence[ClassifierInput]) -> list[RawAssignment]:
        """
        Classify one batch, trying each configured model in order.

        Authentication and rate-limit failures stop the chain immediately;
        other failures move on to the next model. The last failure is raised.
        """
        if not items:
            return []
        messages = build_messages(items, self.taxonomy)
        last_error: ClassifierError | None = None

        for model in self.settings.AI_MODELS:
            try:
                content = await self._complete(model, messages)
                assignments = parse_assignments_response(content, items)
                log.debug(
                    "Batch classified",
                    model=model,
                    batch_size=len(items),
                    assignments=len(assignments),
                )
                return assignments
            except MalformedResponseError as e:
                log.warning("Classifier response invalid", model=model, error=str(e))
                last_error = e
            except openai.APIError as e:
                last_error = _translate_error(e)
                log.warning(
                    "Classifier model failed",
                    model=model,
                    error=str(e),
                    error_type=type(last_error).__name__,
                )
                if isinstance(last_error, (ClassifierAuthError, ClassifierRateLimitedError)):
                    break

        log.error("All classifier models failed", provider=self.name)
        raise last_error or ClassifierError("No models configured")


def build_classifier(
    settings: Settings,
    taxonomy: Taxonomy,
    store: KeyValueStore | None = None,
    client: openai.AsyncOpenAI | None = None,
) -> tuple[OpenAICompatibleClassifier, ProviderProfile]:
    """Create the configured classifier and its batching profile."""
    classifier = OpenAICompatibleClassifier(settings, taxonomy, client=client)
    if settings.is_constrained_provider:
        profile = ProviderProfile.constrained(UsageTracker(store=store))
    else:
        profile = ProviderProfile.standard()
    if settings.CLASSIFY_BATCH_SIZE:
        profile = replace(profile, pass1_batch_size=settings.CLASSIFY_BATCH_SIZE)
    log.info(
        "Classifier ready",
        provider=settings.LLM_PROVIDER,
        models=settings.AI_MODELS,
        profile=profile.name,
    )
    return classifier, profile
