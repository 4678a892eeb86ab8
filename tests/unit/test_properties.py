"""Randomised checks of ordering, merge and sanitisation guarantees, with fixed seeds."""

import json
import random

import pytest

from har_openapi import Sanitiser, cluster, infer_all, load_capture
from har_openapi.clusterer import flatten
from har_openapi.sanitiser import DEFAULT_DENY_TERMS, REDACTED
from har_openapi.schema import NUMBER, infer_schema, merge, merge_all

from har_factory import make_entry, make_har

SEEDS = range(5)
WORDS = ["users", "items", "orders", "repos", "tags", "alpha", "beta"]


def random_value(rng, depth=0):
    choice = rng.randrange(7 if depth < 2 else 5)
    if choice == 0:
        return rng.randint(-5, 5)
    if choice == 1:
        return rng.choice([0.5, 2.25, -1.5])
    if choice == 2:
        return rng.choice(WORDS)
    if choice == 3:
        return rng.choice([True, False])
    if choice == 4:
        return None
    if choice == 5:
        return [random_value(rng, depth + 1) for _ in range(rng.randrange(3))]
    return {rng.choice(WORDS): random_value(rng, depth + 1) for _ in range(rng.randrange(4))}


def random_path(rng):
    segments = []
    for _ in range(rng.randint(1, 3)):
        segments.append(rng.choice(WORDS))
        if rng.random() < 0.5:
            segments.append(str(rng.randint(1, 50)))
    return "/" + "/".join(segments)


def random_exchanges(rng, count=30):
    entries = [
        make_entry(url=f"https://api.example.com{random_path(rng)}", method=rng.choice(["GET", "POST"]))
        for _ in range(count)
    ]
    return load_capture(make_har(*entries))


def shape(templates):
    return sorted((t.method, t.path, tuple(sorted(e.index for e in t.exchanges))) for t in templates)


@pytest.mark.parametrize("seed", SEEDS)
def test_loader_preserves_order_and_count(seed):
    rng = random.Random(seed)
    urls = [f"https://api.example.com{random_path(rng)}" for _ in range(20)]
    exchanges = load_capture(make_har(*[make_entry(url=url) for url in urls]))

    assert [e.url for e in exchanges] == urls


@pytest.mark.parametrize("seed", SEEDS)
def test_clustering_is_idempotent(seed):
    templates = cluster(random_exchanges(random.Random(seed)))
    assert shape(cluster(flatten(templates))) == shape(templates)


@pytest.mark.parametrize("seed", SEEDS)
def test_clustering_partitions_exchanges(seed):
    exchanges = random_exchanges(random.Random(seed))
    indexes = sorted(e.index for e in flatten(cluster(exchanges)))
    assert indexes == [e.index for e in exchanges]


@pytest.mark.parametrize("seed", SEEDS)
def test_clustering_ignores_input_order(seed):
    rng = random.Random(seed)
    exchanges = random_exchanges(rng)
    shuffled = list(exchanges)
    rng.shuffle(shuffled)

    assert shape(cluster(shuffled)) == shape(cluster(exchanges))


@pytest.mark.parametrize("seed", SEEDS)
def test_schema_merge_is_commutative_and_associative(seed):
    rng = random.Random(seed)
    a, b, c = (infer_schema(random_value(rng)) for _ in range(3))

    assert merge(a, b) == merge(b, a)
    assert merge(merge(a, b), c) == merge(a, merge(b, c))


@pytest.mark.parametrize("seed", SEEDS)
def test_merge_all_ignores_order(seed):
    rng = random.Random(seed)
    nodes = [infer_schema({"a": random_value(rng), "b": random_value(rng)}) for _ in range(6)]
    shuffled = list(nodes)
    rng.shuffle(shuffled)

    assert merge_all(nodes) == merge_all(shuffled)


@pytest.mark.parametrize("seed", SEEDS)
def test_omitted_field_is_optional(seed):
    """A field missing from any observation is never required; one present everywhere is"""
    rng = random.Random(seed)
    skipped = rng.randrange(10)
    bodies = [{"id": i, "note": "n"} if i != skipped else {"id": i} for i in range(10)]
    rng.shuffle(bodies)
    entries = [make_entry(url=f"https://api.example.com/items/{i + 1}?page={i}" + ("&q=x" if i != skipped else ""),
                          response_json=body)
               for i, body in enumerate(bodies)]

    template = infer_all(cluster(load_capture(make_har(*entries))))[0]
    schema = template.responses[200]["application/json"].schema
    parameters = {p.name: p for p in template.parameters}

    assert schema.required == frozenset(["id"])
    assert "note" in schema.property_map
    assert parameters["page"].required is True
    assert parameters["q"].required is False


def test_integer_and_fractional_counts_merge_to_number():
    template = infer_all(cluster(load_capture(make_har(
        make_entry(url="https://api.example.com/stats/1", response_json={"count": 5}),
        make_entry(url="https://api.example.com/stats/2", response_json={"count": 5.5}),
    ))))[0]
    schema = template.responses[200]["application/json"].schema
    assert schema.property_map["count"].types == frozenset([NUMBER])


@pytest.mark.parametrize("term", DEFAULT_DENY_TERMS)
def test_sanitisation_covers_every_deny_term(term):
    """No value under a deny-listed name survives, wherever the name appears"""
    secret = f"leak-{term}-value"
    field = f"user_{term}".upper() if len(term) % 2 else f"my{term}"
    entry = make_entry(
        url=f"https://api.example.com/items/1?{field}={secret}",
        request_headers=[(f"X-{field}", secret)],
        request_json={"outer": {field: secret}},
        response_json=[{field: secret}],
    )
    har_data = make_har(entry)

    sanitised = Sanitiser().sanitise_har(har_data)
    assert secret not in json.dumps(sanitised)

    exchange = Sanitiser().sanitise_exchanges(load_capture(har_data))[0]
    assert exchange.request_headers.get(f"x-{field}") == REDACTED
    assert exchange.query_values(field) == [REDACTED]
    assert secret not in exchange.request_body.text()
    assert secret not in exchange.response_body.text()
