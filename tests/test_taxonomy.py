import pytest

from categorizer.taxonomy import (
    CANONICAL_CATEGORIES,
    CustomCategory,
    Taxonomy,
    normalize_category,
)


@pytest.fixture
def taxonomy():
    return Taxonomy.default(custom=[("Recipes", "Cooking sites"), "Gardening"])


def test_default_taxonomy_lists_canonical_then_custom(taxonomy):
    allowed = taxonomy.allowed_categories()

    assert allowed[: len(CANONICAL_CATEGORIES)] == list(CANONICAL_CATEGORIES)
    assert allowed[-2:] == ["Recipes", "Gardening"]
    assert taxonomy.custom[0] == CustomCategory("Recipes", "Cooking sites")


def test_custom_categories_colliding_with_canonical_are_dropped():
    taxonomy = Taxonomy.default(custom=["news", "  ", "Recipes", "recipes"])

    assert [c.name for c in taxonomy.custom] == ["Recipes"]


def test_label_predicates(taxonomy):
    assert taxonomy.canonical_name("development") == "Development"
    assert taxonomy.canonical_name("Recipes") is None
    assert taxonomy.is_custom("recipes")
    assert taxonomy.is_banned("Misc")
    assert taxonomy.is_banned("  ")
    assert not taxonomy.is_banned("Utilities")
    assert taxonomy.is_restricted("RESEARCH")
    assert not taxonomy.is_restricted("News")


def test_domain_lookup_matches_subdomains_only(taxonomy):
    assert taxonomy.domain_category("github.com") == "Development"
    assert taxonomy.domain_category("gist.github.com") == "Development"
    assert taxonomy.domain_category("en.wikipedia.org") == "Utilities"
    assert taxonomy.domain_category("notgithub.com") is None
    assert taxonomy.domain_category("") is None
    assert taxonomy.critical_category("www2.imdb.com") == "Entertainment"
    assert taxonomy.critical_category("youtube.com") is None


def test_academic_domains(taxonomy):
    assert taxonomy.is_academic_domain("arxiv.org")
    assert taxonomy.is_academic_domain("export.arxiv.org")
    assert taxonomy.is_academic_domain("cs.stanford.edu")
    assert not taxonomy.is_academic_domain("wikipedia.org")
    assert not taxonomy.is_academic_domain("")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("development", "Development"),
        ("  NEWS  ", "News"),
        ("Work/Projects", "Work"),
        ("programming", "Development"),
        ("Social Media", "Social"),
        ("Online Banking Portal", "Finance"),
        ("recipes", "Recipes"),
        ("Quantum Widgets Galore Inc", "Quantum Widgets Galore"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_category(taxonomy, raw, expected):
    assert normalize_category(raw, taxonomy) == expected


def test_normalize_category_keeps_banned_labels_recognisable(taxonomy):
    assert normalize_category("misc", taxonomy) == "misc"
    assert taxonomy.is_banned(normalize_category("Other", taxonomy))


def test_normalize_category_does_not_match_inside_words(taxonomy):
    # "ai" is a synonym but must not match inside "domain".
    assert normalize_category("Domain Parking", taxonomy) == "Domain Parking"
