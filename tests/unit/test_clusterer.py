import pytest

from har_openapi import cluster, load_capture, merge_templates
from har_openapi.clusterer import flatten, is_id_like, servers, singular

from har_factory import make_entry, make_har


def exchanges_for(*paths, method="GET", host="https://api.example.com"):
    return load_capture(make_har(*[make_entry(url=f"{host}{path}", method=method) for path in paths]))


def paths_of(templates):
    return [template.path for template in templates]


@pytest.mark.parametrize("segment,expected", [
    ("42", True),
    ("123e4567-e89b-12d3-a456-426614174000", True),
    ("5f4dcc3b5aa765d61d8327deb882cf99", True),
    ("items", False),
    ("v1", False),
    ("deadbeefdeadbeef", False),
    ("[REDACTED]", True),
    ("[HASH-0123456789ab]", True),
])
def test_is_id_like(segment, expected):
    assert is_id_like(segment) is expected


def test_singular():
    assert singular("items") == "item"
    assert singular("categories") == "category"
    assert singular("addresses") == "address"
    assert singular("data") == "data"


def test_numeric_segments_become_one_template():
    templates = cluster(exchanges_for("/items/1", "/items/2"))

    assert paths_of(templates) == ["/items/{id}"]
    assert len(templates[0].exchanges) == 2
    assert templates[0].path_parameter_names == ["id"]


def test_singleton_with_id_is_still_templated():
    templates = cluster(exchanges_for("/orders/123e4567-e89b-12d3-a456-426614174000"))
    assert paths_of(templates) == ["/orders/{id}"]


def test_nested_placeholders_are_named_after_their_collection():
    templates = cluster(exchanges_for("/users/5/posts/9", "/users/6/posts/10"))
    assert paths_of(templates) == ["/users/{user_id}/posts/{post_id}"]


def test_varying_literal_segment_becomes_placeholder():
    templates = cluster(exchanges_for("/users/alice/repos", "/users/bob/repos"))
    assert paths_of(templates) == ["/users/{user}/repos"]


def test_min_variants_keeps_literals():
    templates = cluster(exchanges_for("/users/alice/repos", "/users/bob/repos"), min_variants=3)
    assert paths_of(templates) == ["/users/alice/repos", "/users/bob/repos"]


def test_literal_next_to_placeholder_stays_literal():
    templates = cluster(exchanges_for("/items/1", "/items/latest", "/items/2"))

    assert paths_of(templates) == ["/items/{id}", "/items/latest"]
    assert [e.path for e in templates[0].exchanges] == ["/items/1", "/items/2"]


def test_methods_are_clustered_separately():
    exchanges = load_capture(make_har(
        make_entry(url="https://api.example.com/items/1", method="GET"),
        make_entry(url="https://api.example.com/items/1", method="DELETE"),
        make_entry(url="https://api.example.com/items/2", method="GET"),
    ))
    templates = cluster(exchanges)

    assert [(t.method, t.path, len(t.exchanges)) for t in templates] == [
        ("GET", "/items/{id}", 2),
        ("DELETE", "/items/{id}", 1),
    ]


def test_unmatched_exchange_is_kept_as_singleton():
    templates = cluster(exchanges_for("/health", "/items/1", "/items/2"))
    assert paths_of(templates) == ["/health", "/items/{id}"]


def test_unanchored_literals_are_not_generalised():
    templates = cluster(exchanges_for("/health", "/status", "/1/info", "/2/info", "/1/stats"))
    assert paths_of(templates) == ["/health", "/status", "/{id}/info", "/{id}/stats"]


def test_root_path():
    assert paths_of(cluster(exchanges_for("/"))) == ["/"]


def test_tie_break_generalises_one_position():
    """Only one of two competing positions is generalised, keeping the other literal"""
    templates = cluster(exchanges_for("/a/b/c/d", "/a/x/c/d", "/a/b/y/d"))

    assert paths_of(templates) == ["/a/b/{b}/d", "/a/x/c/d"]
    assert [e.path for e in templates[0].exchanges] == ["/a/b/c/d", "/a/b/y/d"]


def test_sibling_collections_stay_literal():
    templates = cluster(exchanges_for("/api/users", "/api/orders", "/api/users"))
    assert paths_of(templates) == ["/api/users", "/api/orders"]


def test_trailing_varying_literal_after_id_stays_literal():
    templates = cluster(exchanges_for("/items/1/comments", "/items/2/likes"))
    assert paths_of(templates) == ["/items/{id}/comments", "/items/{id}/likes"]


def test_redacted_segments_are_placeholders():
    templates = cluster(exchanges_for("/users/[REDACTED]/orders", "/users/[REDACTED]/orders"))
    assert paths_of(templates) == ["/users/{id}/orders"]


def test_placeholder_names_agree_across_methods():
    exchanges = load_capture(make_har(
        make_entry(url="https://api.example.com/users/alice/repos", method="GET"),
        make_entry(url="https://api.example.com/users/bob/repos", method="GET"),
        make_entry(url="https://api.example.com/users/42/repos", method="DELETE"),
    ))
    templates = cluster(exchanges)

    assert [(t.method, t.path) for t in templates] == [
        ("GET", "/users/{id}/repos"),
        ("DELETE", "/users/{id}/repos"),
    ]
    assert all(t.segments == ("users", "{id}", "repos") for t in templates)


def test_clustering_is_idempotent():
    exchanges = exchanges_for("/items/1", "/users/alice/repos", "/items/2", "/users/bob/repos", "/health")
    first = cluster(exchanges)
    second = cluster(flatten(first))

    assert [(t.method, t.path, [e.index for e in t.exchanges]) for t in first] == \
        [(t.method, t.path, [e.index for e in t.exchanges]) for t in second]


def test_clustering_ignores_input_order():
    exchanges = exchanges_for("/items/1", "/users/alice/repos", "/items/2", "/users/bob/repos")
    forward = {t.path: sorted(e.index for e in t.exchanges) for t in cluster(exchanges)}
    backward = {t.path: sorted(e.index for e in t.exchanges) for t in cluster(list(reversed(exchanges)))}
    assert forward == backward


def test_merge_templates_combines_captures():
    first = cluster(exchanges_for("/items/1", "/health"))
    second = cluster(exchanges_for("/items/7", "/items/8", "/status"))
    merged = merge_templates(first, second)

    assert paths_of(merged) == ["/items/{id}", "/health", "/status"]
    assert [e.path for e in merged[0].exchanges] == ["/items/1", "/items/7", "/items/8"]


def test_merge_templates_harmonises_names_across_captures():
    first = cluster(exchanges_for("/users/alice/repos", "/users/bob/repos"))
    second = cluster(exchanges_for("/users/7/repos"))
    assert paths_of(first) == ["/users/{user}/repos"]

    merged = merge_templates(first, second)

    assert paths_of(merged) == ["/users/{id}/repos"]
    assert len(merged[0].exchanges) == 3


def test_servers_are_listed_in_first_seen_order():
    exchanges = exchanges_for("/a", host="https://one.example.com") + exchanges_for("/b", host="https://two.example.com")
    assert servers(exchanges + exchanges) == ["https://one.example.com", "https://two.example.com"]
