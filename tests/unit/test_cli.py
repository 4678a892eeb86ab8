import json
import os

import pytest
import yaml

from har_openapi import main
from har_openapi.cli import parse_args
from har_openapi.pipeline import analyze_files
from har_openapi.sanitiser import REDACTED
from har_openapi.validator import load_document

from har_factory import make_entry, make_har, write_har


def strip_examples(node):
    if isinstance(node, dict):
        return {key: strip_examples(value) for key, value in node.items() if key != "example"}
    if isinstance(node, list):
        return [strip_examples(item) for item in node]
    return node


@pytest.fixture
def capture(tmp_path):
    return write_har(tmp_path / "capture.har", make_har(
        make_entry(url="https://api.example.com/items/1?token=abc",
                   request_headers=[("Authorization", "Bearer secret")],
                   response_json={"id": 1, "email": "a@b.com"}),
        make_entry(url="https://api.example.com/items/2", response_json={"id": 2, "email": "c@d.com"}),
    ))


def test_parse_args_sanitize_alias():
    args = parse_args(["sanitize", "in.har"])
    assert args.command == "sanitize"
    assert args.input_file == "in.har"
    assert args.output_file is None


def test_analyze_writes_document(tmp_path, capture, capsys):
    output = str(tmp_path / "api.yaml")
    assert main(["analyze", capture, "-o", output, "--title", "Shop"]) == 0

    document = load_document(output)
    assert document["info"]["title"] == "Shop"
    assert list(document["paths"]) == ["/items/{id}"]
    example = document["paths"]["/items/{id}"]["get"]["responses"]["200"]["content"]["application/json"]["example"]
    assert example == {"id": 1, "email": REDACTED}
    assert "Wrote OpenAPI document with 1 paths" in capsys.readouterr().out


def test_analyze_prints_yaml_without_output(capture, capsys):
    assert main(["analyze", capture, "--no-sanitise"]) == 0

    document = yaml.safe_load(capsys.readouterr().out)
    example = document["paths"]["/items/{id}"]["get"]["responses"]["200"]["content"]["application/json"]["example"]
    assert example == {"id": 1, "email": "a@b.com"}


def test_analyze_merges_several_captures(tmp_path, capture):
    other = write_har(tmp_path / "other.har", make_har(make_entry(url="https://api.example.com/health")))
    output = str(tmp_path / "api.json")

    assert main(["analyze", capture, other, "-o", output]) == 0
    with open(output) as f:
        assert sorted(json.load(f)["paths"]) == ["/health", "/items/{id}"]


@pytest.mark.parametrize("command", ["sanitise", "sanitize"])
def test_sanitise_command(tmp_path, capture, capsys, command):
    output = str(tmp_path / "clean.har")
    assert main([command, capture, output]) == 0

    with open(output) as f:
        result = json.load(f)
    entry = result["log"]["entries"][0]
    assert entry["request"]["headers"] == [{"name": "Authorization", "value": REDACTED}]
    assert entry["request"]["url"] == "https://api.example.com/items/1?token=[REDACTED]"
    assert "_meta" in result["log"]
    assert "Successfully sanitised HAR file" in capsys.readouterr().out


def test_sanitise_default_output_filename(tmp_path, capture, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    assert main(["sanitise", capture]) == 0

    assert os.path.exists(tmp_path / "capture_sanitised.har")
    assert "using default: capture_sanitised.har" in capsys.readouterr().out


@pytest.mark.parametrize("content", ["", "{broken", json.dumps({"log": {}})])
def test_malformed_capture_exits_non_zero(tmp_path, content):
    bad = tmp_path / "bad.har"
    bad.write_text(content)

    assert main(["analyze", str(bad)]) == 1
    assert main(["sanitise", str(bad), str(tmp_path / "out.har")]) == 1


def test_missing_file_exits_non_zero(tmp_path):
    assert main(["analyze", str(tmp_path / "missing.har")]) == 1


def test_bad_config_exits_non_zero(tmp_path, capture, capsys):
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"rules": {"token": "shred"}}))

    assert main(["--config", str(config), "analyze", capture]) == 1
    assert "Configuration error" in capsys.readouterr().out


def test_yaml_config_is_applied(tmp_path, capture):
    config = tmp_path / "config.yaml"
    config.write_text("title: From Config\napi_version: '3.0'\nrules:\n  email: hash\n")
    output = str(tmp_path / "api.json")

    assert main(["--config", str(config), "analyze", capture, "-o", output]) == 0
    document = load_document(output)
    assert document["info"] == {"title": "From Config", "version": "3.0",
                                "description": document["info"]["description"]}
    example = document["paths"]["/items/{id}"]["get"]["responses"]["200"]["content"]["application/json"]["example"]
    assert example["email"].startswith("[HASH-")


def test_validate_command(tmp_path, capture, capsys):
    output = str(tmp_path / "api.yaml")
    assert main(["analyze", capture, "-o", output]) == 0
    assert main(["validate", output]) == 0
    assert f"{output}: OK" in capsys.readouterr().out

    broken = tmp_path / "broken.yaml"
    broken.write_text("openapi: '2.0'\npaths: {}\n")
    assert main(["validate", str(broken)]) == 1
    assert "structural errors" in capsys.readouterr().out


def test_sanitise_streams_large_captures(tmp_path, capture, caplog):
    config = tmp_path / "config.yaml"
    config.write_text("streaming_threshold_mb: 0.00001\n")
    output = str(tmp_path / "clean.har")

    with caplog.at_level("INFO"):
        assert main(["--config", str(config), "sanitise", capture, output]) == 0

    with open(output) as f:
        result = json.load(f)
    assert "using streaming parser" in caplog.text
    assert [e["request"]["url"] for e in result["log"]["entries"]] == [
        "https://api.example.com/items/1?token=[REDACTED]",
        "https://api.example.com/items/2",
    ]
    assert result["log"]["creator"] == {"name": "test", "version": "1.0"}
    assert result["log"]["_meta"]["skipped_entries"] == 0


def test_streamed_sanitise_of_broken_json_exits_non_zero(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text("streaming_threshold_mb: 0.00001\n")
    bad = tmp_path / "bad.har"
    bad.write_text('{"log": {"entries": [{"request": ')

    assert main(["--config", str(config), "sanitise", str(bad), str(tmp_path / "out.har")]) == 1


def test_non_utf8_capture_exits_non_zero(tmp_path):
    bad = tmp_path / "latin1.har"
    bad.write_bytes(b'\xff\xfe{"log": {"entries": []}}')

    assert main(["sanitise", str(bad), str(tmp_path / "out.har")]) == 1
    assert main(["analyze", str(bad)]) == 1


def test_path_pii_never_reaches_the_document(tmp_path):
    capture = write_har(tmp_path / "users.har", make_har(
        make_entry(url="https://api.example.com/users/alice@example.com/orders"),
        make_entry(url="https://api.example.com/users/bob@example.com/orders"),
    ))
    output = str(tmp_path / "api.json")

    assert main(["analyze", capture, "-o", output]) == 0
    with open(output) as f:
        text = f.read()
    assert "@example.com" not in text
    assert list(json.loads(text)["paths"]) == ["/users/{id}/orders"]


def test_capture_order_does_not_change_the_document(tmp_path):
    first = write_har(tmp_path / "first.har", make_har(
        make_entry(url="https://api.example.com/items/1?page=1",
                   request_headers=[("X-Request-Id", "r1"), ("Authorization", "Bearer a")],
                   response_json={"id": 1, "name": "lamp"}),
        make_entry(url="https://api.example.com/users/alice/repos", response_json=[{"repo": "a"}]),
        make_entry(url="https://api.example.com/users/bob/repos", response_json=[]),
    ))
    second = write_har(tmp_path / "second.har", make_har(
        make_entry(url="https://api.example.com/items/2?sort=asc",
                   request_headers=[("X-Debug", "1"), ("Cookie", "sid=x")],
                   response_json={"id": 2, "price": 9.5}),
        make_entry(url="https://api.example.com/items/3", status=404, response_json={"error": "missing"},
                   response_mime="application/problem+json"),
        make_entry(url="https://api.example.com/users/7/repos", method="DELETE", status=204),
    ))

    forward, _, _ = analyze_files([first, second])
    backward, _, _ = analyze_files([second, first])

    assert list(forward["paths"]) == ["/items/{id}", "/users/{id}/repos"]
    assert strip_examples(forward["paths"]) == strip_examples(backward["paths"])
    assert strip_examples(forward["components"]) == strip_examples(backward["components"])
