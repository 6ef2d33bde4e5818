from categorizer.tabs import TabDescriptor, make_tab_key, parse_domain


def test_parse_domain_strips_www_and_lowercases():
    assert parse_domain("https://WWW.GitHub.com/foo") == "github.com"
    assert parse_domain("https://en.wikipedia.org/wiki/X") == "en.wikipedia.org"
    assert parse_domain("") == ""
    assert parse_domain(None) == ""
    assert parse_domain("not a url") == ""
    assert parse_domain("http://[::1") == ""


def test_from_tab_defaults_title_and_domain():
    tab = TabDescriptor.from_tab({"id": 7, "title": "  ", "url": " https://www.bbc.com/news "})

    assert tab.id == 7
    assert tab.title == "Untitled"
    assert tab.url == "https://www.bbc.com/news"
    assert tab.domain == "bbc.com"


def test_make_tab_key_prefers_url():
    tab = TabDescriptor.from_tab({"id": 1, "title": "X", "url": "HTTPS://Example.com/A"})

    assert make_tab_key(tab) == "https://example.com/a"


def test_make_tab_key_without_url_uses_id_and_title():
    title = "A" * 100
    tab = TabDescriptor.from_tab({"id": 3, "title": title, "url": ""})
    anonymous = TabDescriptor.from_tab({"title": "New Tab"})

    assert make_tab_key(tab) == "id:3|t:" + "a" * 64
    assert make_tab_key(anonymous) == "id:na|t:new tab"
