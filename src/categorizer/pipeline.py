"""
Categorization Pipeline
=======================

This module owns one categorization run. Every tab moves through the
following states and leaves the unresolved set at the first one that
produces a label:

1. **Init**: a fresh, admissible cache entry resolves the tab.
2. **PreFilter**: a known domain resolves the tab without a remote call.
3. **Pass1 / Pass2 / Pass3**: batches go to the remote classifier with
   shrinking batch sizes and growing delays. Pass2 lets deterministic
   domain/title signals override the model; Pass3 repeats up to three
   rounds.
4. **Fallback**: domain table, then title analysis. Always produces a label.
5. **SafetyNet**: anything still without a label becomes "Uncategorized".

Tabs sharing a key (same URL) are resolved together and sent to the remote
classifier only once. A failed batch leaves its tabs unresolved for the next
pass; nothing raised by the classifier reaches the caller.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence

import structlog

from common.config import Settings
from common.utils import now_ms

from .cache import (
    LOW_CONFIDENCE_THRESHOLD,
    CacheEntry,
    CacheStore,
    LowConfidenceQueue,
    is_valid,
    should_recategorize,
)
from .errors import ClassifierError
from .fallback import fallback_category, strict_domain_only, title_signal
from .provider import ClassifierClient, ClassifierInput, ProviderProfile, RawAssignment
from .tabs import TabDescriptor, make_tab_key
from .taxonomy import UNCATEGORIZED, Taxonomy, normalize_category
from .validator import (
    TabContext,
    hard_correction,
    validate_category,
    validate_category_strict,
)

log = structlog.get_logger(__name__)

SOURCE_CACHE = "cache"
SOURCE_PRE_FILTER = "domain_pre_filter"
SOURCE_SAFETY_NET = "safety_net"

PRE_FILTER_CONFIDENCE = 0.90
PATTERN_OVERRIDE_CONFIDENCE = 0.9
SAFETY_NET_CONFIDENCE = 0.1
CACHED_DEFAULT_CONFIDENCE = 0.7

DEFAULT_PASS_CONFIDENCE = {"pass1": 0.8, "pass2": 0.7, "pass3": 0.6}


class TabStatus(str, Enum):
    UNRESOLVED = "unresolved"
    CACHED = "cached"
    PREFILTERED = "prefiltered"
    PASS1 = "pass1"
    PASS2 = "pass2"
    PASS3 = "pass3"
    FALLBACK = "fallback"
    SAFETYNET = "safetynet"


@dataclass(frozen=True)
class Assignment:
    key: str
    category: str
    confidence: float
    source: str
    needs_review: bool = False
    corrected: bool = False


@dataclass
class TabRecord:
    descriptor: TabDescriptor
    key: str
    status: TabStatus = TabStatus.UNRESOLVED
    assignment: Assignment | None = None


@dataclass(frozen=True)
class BatchOutcome:
    ok: bool
    keys: tuple[str, ...] = ()
    accepted: int = 0
    error: str | None = None


@dataclass
class PipelineResult:
    assignments: dict[str, Assignment]
    groups: dict[str, list[Any]]
    used_remote: bool
    statuses: dict[str, TabStatus] = field(default_factory=dict)
    recategorized: int = 0


class _RunState:
    """
    Arena of tab records plus a key index, and the counters of one run.

    Keys keep first-seen order.
    """

    def __init__(self, descriptors: Sequence[TabDescriptor]):
        self.records = [TabRecord(d, make_tab_key(d)) for d in descriptors]
        self.by_key: dict[str, list[int]] = {}
        for index, record in enumerate(self.records):
            self.by_key.setdefault(record.key, []).append(index)
        self.calls_made = 0
        self.used_remote = False
        self.pending_review: list[dict] = []

    def first(self, key: str) -> TabRecord:
        return self.records[self.by_key[key][0]]

    def context(self, key: str) -> TabContext:
        d = self.first(key).descriptor
        return TabContext(title=d.title, url=d.url, domain=d.domain)

    def unresolved_keys(self) -> list[str]:
        return [key for key in self.by_key if self.first(key).status is TabStatus.UNRESOLVED]

    def resolve(self, key: str, assignment: Assignment, status: TabStatus) -> None:
        for index in self.by_key[key]:
            record = self.records[index]
            record.assignment = assignment
            record.status = status


def _chunks(items: Sequence[str], size: int) -> Iterable[list[str]]:
    size = max(1, size)
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def _as_descriptor(tab: TabDescriptor | Mapping[str, Any]) -> TabDescriptor:
    if isinstance(tab, TabDescriptor):
        return tab
    return TabDescriptor.from_tab(tab)


class CategorizationPipeline:
    """
    Coordinates cache, pre-filter, remote passes and deterministic fallbacks.

    ``classifier`` may be None, in which case every remote pass is skipped.
    ``sleep`` and ``now`` are injectable so tests run without real delays.
    """

    def __init__(
        self,
        classifier: ClassifierClient | None,
        cache: CacheStore,
        taxonomy: Taxonomy,
        profile: ProviderProfile,
        settings: Settings,
        low_confidence_queue: LowConfidenceQueue | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        now: Callable[[], int] = now_ms,
    ):
        self.classifier = classifier
        self.cache = cache
        self.taxonomy = taxonomy
        self.profile = profile
        self.settings = settings
        self.low_confidence_queue = low_confidence_queue
        self._sleep = sleep
        self._now = now

    @property
    def call_timeout(self) -> float:
        """Upper bound for one remote call including its in-call retries."""
        retries = max(1, self.settings.MAX_RETRIES)
        return float(
            self.settings.REQUEST_TIMEOUT * retries
            + self.settings.MAX_RETRY_BACKOFF_SECONDS * (retries - 1)
        )

    async def run(
        self,
        tabs: Iterable[TabDescriptor | Mapping[str, Any]],
        cancel: asyncio.Event | None = None,
    ) -> PipelineResult:
        """Categorize ``tabs``. Every tab receives exactly one label."""
        descriptors = [_as_descriptor(tab) for tab in tabs]
        return await self._run(descriptors, cancel, use_cache=True)

    async def _run(
        self,
        descriptors: Sequence[TabDescriptor],
        cancel: asyncio.Event | None,
        use_cache: bool,
    ) -> PipelineResult:
        state = _RunState(descriptors)
        now = self._now()

        self.cache.load()
        if use_cache:
            self._apply_cache(state, now)
        if self.settings.CLASSIFY_DOMAIN_PREFILTER:
            self._apply_pre_filter(state, now)

        log.info(
            "Categorization started",
            tabs=len(state.records),
            keys=len(state.by_key),
            to_query=len(state.unresolved_keys()),
            profile=self.profile.name,
        )

        if self.classifier is not None:
            await self._remote_passes(state, cancel)

        self._apply_fallback(state, now)
        self._apply_safety_net(state)

        self.cache.save()
        if self.low_confidence_queue is not None:
            self.low_confidence_queue.extend(state.pending_review)
            self.low_confidence_queue.save()

        result = self._result(state)
        log.info(
            "Categorization finished",
            tabs=len(state.records),
            used_remote=result.used_remote,
            remote_calls=state.calls_made,
            statuses=_status_counts(state),
        )
        return result

    # --- Init / PreFilter ---------------------------------------------------

    def _apply_cache(self, state: _RunState, now: int) -> None:
        for key in state.unresolved_keys():
            entry = self.cache.get(key)
            if not is_valid(entry, now):
                continue
            category = normalize_category(entry.category, self.taxonomy)
            verdict = validate_category_strict(category, state.context(key), self.taxonomy)
            if not verdict.allowed:
                log.debug("Cached label rejected", key=key, category=category, reason=verdict.reason)
                continue
            confidence = (
                entry.confidence if entry.confidence is not None else CACHED_DEFAULT_CONFIDENCE
            )
            assignment = Assignment(
                key,
                category,
                confidence,
                entry.source or SOURCE_CACHE,
                needs_review=entry.needs_review,
                corrected=entry.corrected,
            )
            state.resolve(key, assignment, TabStatus.CACHED)

    def _apply_pre_filter(self, state: _RunState, now: int) -> None:
        for key in state.unresolved_keys():
            category = strict_domain_only(state.first(key).descriptor.domain, self.taxonomy)
            if not category:
                continue
            assignment = Assignment(key, category, PRE_FILTER_CONFIDENCE, SOURCE_PRE_FILTER)
            state.resolve(key, assignment, TabStatus.PREFILTERED)
            self._remember(assignment, now)

    # --- Remote passes ------------------------------------------------------

    async def _remote_passes(self, state: _RunState, cancel: asyncio.Event | None) -> None:
        profile = self.profile

        await self._run_pass(
            state, cancel, "pass1", profile.pass1_batch_size, lambda: profile.pass1_delay
        )
        if state.unresolved_keys() and not _cancelled(cancel):
            await self._run_pass(
                state, cancel, "pass2", profile.pass2_batch_size, lambda: profile.pass2_delay
            )

        for round_number in range(1, profile.pass3_rounds + 1):
            if not state.unresolved_keys() or _cancelled(cancel):
                break
            delay = profile.pass3_delay_for_round(round_number)
            log.info("Pass3 round", round=round_number, unresolved=len(state.unresolved_keys()))
            await self._run_pass(state, cancel, "pass3", profile.pass3_batch_size, lambda: delay)

    async def _run_pass(
        self,
        state: _RunState,
        cancel: asyncio.Event | None,
        pass_name: str,
        batch_size: int,
        delay: Callable[[], float],
    ) -> list[BatchOutcome]:
        keys = state.unresolved_keys()
        outcomes = []
        for batch in _chunks(keys, batch_size):
            if _cancelled(cancel):
                log.info("Categorization cancelled", pass_name=pass_name)
                break
            if state.calls_made > 0:
                await self._sleep(delay())
            outcome = await self._run_batch(state, pass_name, batch)
            outcomes.append(outcome)

        failed = sum(1 for o in outcomes if not o.ok)
        log.info(
            "Pass finished",
            pass_name=pass_name,
            batches=len(outcomes),
            failed_batches=failed,
            accepted=sum(o.accepted for o in outcomes),
            unresolved=len(state.unresolved_keys()),
        )
        return outcomes

    async def _run_batch(self, state: _RunState, pass_name: str, keys: list[str]) -> BatchOutcome:
        tracker = self.profile.usage_tracker
        if tracker is not None:
            decision = tracker.can_make_request()
            if not decision.allowed:
                log.warning("Usage limit refused batch", pass_name=pass_name, reason=decision.reason)
                return BatchOutcome(ok=False, keys=tuple(keys), error=decision.reason)

        items = []
        for key in keys:
            d = state.first(key).descriptor
            items.append(ClassifierInput(key=key, title=d.title, url=d.url, domain=d.domain))

        state.calls_made += 1
        try:
            raw = await asyncio.wait_for(
                self.classifier.classify_batch(items), timeout=self.call_timeout
            )
        except ClassifierError as e:
            log.warning(
                "Batch failed",
                pass_name=pass_name,
                batch_size=len(keys),
                error=str(e),
                error_type=type(e).__name__,
            )
            return BatchOutcome(ok=False, keys=tuple(keys), error=str(e))
        except asyncio.TimeoutError:
            log.warning("Batch timed out", pass_name=pass_name, batch_size=len(keys))
            return BatchOutcome(ok=False, keys=tuple(keys), error="timeout")
        except Exception as e:
            log.exception("Unexpected classifier failure", pass_name=pass_name)
            return BatchOutcome(ok=False, keys=tuple(keys), error=str(e))
        finally:
            if tracker is not None:
                tracker.record_request()

        accepted = self._accept(state, pass_name, keys, raw)
        return BatchOutcome(ok=True, keys=tuple(keys), accepted=accepted)

    def _accept(
        self,
        state: _RunState,
        pass_name: str,
        keys: list[str],
        raw: Sequence[RawAssignment],
    ) -> int:
        """Validate and record the batch's assignments; returns how many stuck."""
        batch_keys = set(keys)
        now = self._now()
        accepted = 0
        for item in raw:
            if item.key not in batch_keys or state.first(item.key).status is not TabStatus.UNRESOLVED:
                log.debug("Assignment for unknown or resolved key dropped", key=item.key)
                continue

            assignment = self._decide(state, pass_name, item)
            if assignment is None:
                continue

            state.resolve(item.key, assignment, TabStatus(pass_name))
            self._remember(assignment, now)
            state.used_remote = True
            accepted += 1
            if assignment.confidence < LOW_CONFIDENCE_THRESHOLD:
                d = state.first(item.key).descriptor
                state.pending_review.append(
                    {
                        "key": item.key,
                        "ts": now,
                        "meta": {"title": d.title, "url": d.url, "domain": d.domain},
                    }
                )
        return accepted

    def _decide(self, state: _RunState, pass_name: str, item: RawAssignment) -> Assignment | None:
        context = state.context(item.key)
        category = normalize_category(item.category, self.taxonomy)
        verdict = validate_category_strict(category, context, self.taxonomy)
        if not verdict.allowed:
            log.debug(
                "Assignment rejected",
                key=item.key,
                category=category,
                reason=verdict.reason,
                pass_name=pass_name,
            )
            return None

        confidence = item.confidence
        if confidence is None:
            confidence = DEFAULT_PASS_CONFIDENCE[pass_name]
        if verdict.confidence is not None:
            confidence = verdict.confidence

        source = f"remote_{pass_name}"
        hard = hard_correction(context.domain, category, self.taxonomy)
        if hard is not None:
            return Assignment(item.key, hard.category, hard.confidence, source, corrected=True)

        if pass_name == "pass2" and not self.taxonomy.is_custom(category):
            signal = strict_domain_only(context.domain, self.taxonomy) or title_signal(context.title)
            if signal and signal != category:
                log.info("Pattern override", key=item.key, proposed=category, category=signal)
                return Assignment(
                    item.key, signal, PATTERN_OVERRIDE_CONFIDENCE, source, corrected=True
                )

        check = validate_category(
            context.url, context.title, category, confidence, self.taxonomy, domain=context.domain
        )
        return Assignment(
            item.key,
            check.category,
            check.confidence,
            source,
            needs_review=check.needs_review,
            corrected=check.corrected,
        )

    # --- Fallback / SafetyNet -----------------------------------------------

    def _apply_fallback(self, state: _RunState, now: int) -> None:
        for key in state.unresolved_keys():
            result = fallback_category(state.first(key).descriptor, self.taxonomy)
            assignment = Assignment(key, result.category, result.confidence, result.source)
            state.resolve(key, assignment, TabStatus.FALLBACK)
            self._remember(assignment, now)

    def _apply_safety_net(self, state: _RunState) -> None:
        for key in state.unresolved_keys():
            log.warning("Safety net assignment", key=key)
            assignment = Assignment(key, UNCATEGORIZED, SAFETY_NET_CONFIDENCE, SOURCE_SAFETY_NET)
            state.resolve(key, assignment, TabStatus.SAFETYNET)

    # --- Helpers ------------------------------------------------------------

    def _remember(self, assignment: Assignment, now: int) -> None:
        self.cache.put(
            assignment.key,
            CacheEntry(
                category=assignment.category,
                confidence=assignment.confidence,
                timestamp=now,
                needs_review=assignment.needs_review,
                corrected=assignment.corrected,
                source=assignment.source,
            ),
        )

    def _result(self, state: _RunState) -> PipelineResult:
        assignments: dict[str, Assignment] = {}
        groups: dict[str, list[Any]] = {}
        statuses: dict[str, TabStatus] = {}
        for record in state.records:
            assignments[record.key] = record.assignment
            statuses[record.key] = record.status
            groups.setdefault(record.assignment.category, []).append(record.descriptor.id)
        return PipelineResult(assignments, groups, state.used_remote, statuses)

    async def smart_recategorize(
        self,
        tabs: Iterable[TabDescriptor | Mapping[str, Any]],
        cancel: asyncio.Event | None = None,
    ) -> PipelineResult:
        """
        Re-run only the tabs whose cached answer is stale, weak or flagged.

        Confident cached answers are kept as-is. ``recategorized`` on the
        result counts the tabs that went through the pipeline again.
        """
        descriptors = [_as_descriptor(tab) for tab in tabs]
        now = self._now()
        self.cache.load()

        kept: dict[str, Assignment] = {}
        redo: list[TabDescriptor] = []
        for d in descriptors:
            key = make_tab_key(d)
            if key in kept:
                continue
            entry = self.cache.get(key)
            if not should_recategorize(entry, now):
                category = normalize_category(entry.category, self.taxonomy)
                context = TabContext(title=d.title, url=d.url, domain=d.domain)
                if validate_category_strict(category, context, self.taxonomy).allowed:
                    kept[key] = Assignment(
                        key, category, entry.confidence, entry.source or SOURCE_CACHE
                    )
                    continue
            redo.append(d)

        log.info("Smart recategorization", kept=len(kept), recategorize=len(redo))
        if redo:
            partial = await self._run(redo, cancel, use_cache=False)
        else:
            partial = PipelineResult({}, {}, False)

        assignments: dict[str, Assignment] = {}
        statuses: dict[str, TabStatus] = {}
        groups: dict[str, list[Any]] = {}
        for d in descriptors:
            key = make_tab_key(d)
            assignment = kept.get(key) or partial.assignments[key]
            assignments[key] = assignment
            statuses[key] = TabStatus.CACHED if key in kept else partial.statuses[key]
            groups.setdefault(assignment.category, []).append(d.id)

        return PipelineResult(
            assignments,
            groups,
            partial.used_remote,
            statuses,
            recategorized=len(redo),
        )


def _cancelled(cancel: asyncio.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


def _status_counts(state: _RunState) -> dict[str, int]:
    counts: dict[str, int] = {}
    for record in state.records:
        counts[record.status.value] = counts.get(record.status.value, 0) + 1
    return counts
