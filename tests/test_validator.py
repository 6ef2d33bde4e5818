import pytest

from categorizer.taxonomy import Taxonomy
from categorizer.validator import (
    TabContext,
    hard_correction,
    validate_category,
    validate_category_strict,
    validate_restricted_category,
)


@pytest.fixture
def taxonomy():
    return Taxonomy.default(custom=["Recipes"])


def _ctx(title="", url="", domain=""):
    return TabContext(title=title, url=url, domain=domain)


def test_strict_rejects_empty(taxonomy):
    verdict = validate_category_strict("  ", _ctx(), taxonomy)

    assert not verdict.allowed
    assert verdict.reason == "Empty category name"


def test_strict_accepts_custom_even_if_unknown(taxonomy):
    verdict = validate_category_strict("recipes", _ctx(), taxonomy)

    assert verdict.allowed
    assert verdict.reason == "Custom category"


@pytest.mark.parametrize("label", ["Other", "misc", "Uncategorized", "Tools", "n/a"])
def test_strict_rejects_banned_labels(taxonomy, label):
    verdict = validate_category_strict(label, _ctx(), taxonomy)

    assert not verdict.allowed
    assert "banned" in verdict.reason
    assert verdict.suggest_uncategorized


def test_strict_accepts_canonical(taxonomy):
    verdict = validate_category_strict("Development", _ctx(), taxonomy)

    assert verdict.allowed
    assert verdict.reason == "Category approved"


def test_strict_rejects_labels_outside_taxonomy(taxonomy):
    verdict = validate_category_strict("Gardening", _ctx(), taxonomy)

    assert not verdict.allowed
    assert verdict.reason == "Not in allowed taxonomy"


def test_restricted_label_rejected_for_wikipedia(taxonomy):
    context = _ctx(
        title="JavaScript - Wikipedia",
        url="https://en.wikipedia.org/wiki/JavaScript",
        domain="en.wikipedia.org",
    )

    verdict = validate_category_strict("Research", context, taxonomy)

    assert not verdict.allowed
    assert "not academic/scholarly content" in verdict.reason
    assert verdict.suggest_alternatives == ("Development", "Work", "News")


def test_restricted_label_accepted_for_arxiv(taxonomy):
    context = _ctx(
        title="Attention Is All You Need",
        url="https://arxiv.org/abs/1706.03762",
        domain="arxiv.org",
    )

    verdict = validate_category_strict("Research", context, taxonomy)

    assert verdict.allowed
    assert verdict.confidence >= 0.85


@pytest.mark.parametrize(
    "title",
    ["Peer-reviewed study of sleep", "Journal of Applied Physics", "Scientific study on bees"],
)
def test_restricted_label_accepted_by_academic_pattern(taxonomy, title):
    verdict = validate_restricted_category(
        "Research", _ctx(title=title, url="https://example.com/x", domain="example.com"), taxonomy
    )

    assert verdict.allowed
    assert verdict.confidence == 0.85


def test_critical_domain_is_overridden(taxonomy):
    check = validate_category(
        "https://www.imdb.com/title/tt0111161/", "The Shawshank Redemption", "News", 0.8, taxonomy
    )

    assert check.category == "Entertainment"
    assert check.confidence == 0.95
    assert check.corrected


def test_domain_hint_mismatch_caps_confidence(taxonomy):
    check = validate_category("https://www.bbc.com/sport", "Football", "Entertainment", 0.9, taxonomy)

    assert check.category == "Entertainment"
    assert check.confidence == 0.5
    assert check.needs_review
    assert not check.corrected


def test_title_pattern_mismatch_caps_confidence(taxonomy):
    check = validate_category(
        "https://shop.example.com/checkout", "Checkout - Example", "Work", 0.9, taxonomy
    )

    assert check.category == "Work"
    assert check.confidence == 0.6
    assert check.needs_review


def test_agreeing_label_is_unchanged(taxonomy):
    check = validate_category("https://github.com/a/b", "a/b", "Development", 0.8, taxonomy)

    assert (check.category, check.confidence, check.needs_review, check.corrected) == (
        "Development",
        0.8,
        False,
        False,
    )


def test_custom_labels_are_never_overridden(taxonomy):
    check = validate_category("https://github.com/a/recipes", "Recipes repo", "Recipes", 0.8, taxonomy)

    assert check.category == "Recipes"
    assert hard_correction("github.com", "Recipes", taxonomy) is None
