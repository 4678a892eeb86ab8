#!/usr/bin/env python
"""
Example usage of har-openapi as a library.
"""

import json
import os

from har_openapi import (
    RunReport, Sanitiser, build_document, cluster, dump_document, infer_all, load_capture,
    read_har_file, validate_document, write_har_file,
)
from har_openapi.clusterer import flatten, servers

OUTPUT_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "output")


def sample_capture():
    """A small capture of a shop API"""
    def entry(url, method="GET", status=200, body=None, headers=None):
        return {
            "request": {
                "method": method,
                "url": url,
                "headers": [{"name": k, "value": v} for k, v in (headers or {}).items()],
            },
            "response": {
                "status": status,
                "headers": [],
                "content": {"mimeType": "application/json", "text": json.dumps(body or {})},
            },
        }

    return {
        "log": {
            "version": "1.2",
            "creator": {"name": "example", "version": "1.0"},
            "entries": [
                entry("https://shop.example.com/items/1", body={"id": 1, "name": "lamp", "price": 20},
                      headers={"Authorization": "Bearer abc123"}),
                entry("https://shop.example.com/items/2", body={"id": 2, "name": "desk", "price": 99.5, "tag": "new"}),
                entry("https://shop.example.com/users/7/orders?page=1",
                      body={"orders": [{"id": 10, "email": "ann@example.com"}]}),
                entry("https://shop.example.com/items/3", status=404, body={"error": "not found"}),
            ],
        }
    }


def example_analyze():
    """Capture in, OpenAPI document out"""
    print("=== Analyze Example ===")
    report = RunReport()
    sanitiser = Sanitiser()

    exchanges = sanitiser.sanitise_exchanges(load_capture(sample_capture(), report))
    templates = infer_all(cluster(exchanges), report)
    document = build_document(templates, title="Shop API", servers=servers(flatten(templates)))

    output_file = os.path.join(OUTPUT_DIR, "shop.yaml")
    dump_document(document, output_file)
    print(f"Endpoints: {', '.join(f'{t.method} {t.path}' for t in templates)}")
    print(f"Structural errors: {validate_document(document) or 'none'}")
    print(f"Done! OpenAPI document saved to {output_file}")
    print()


def example_sanitise_with_custom_config():
    """Sanitise a HAR document with custom rules"""
    print("=== Custom Configuration Example ===")
    config = {
        "rules": {"^price$": "hash"},
        "sensitive_params": ["page"],
        "sanitisation_options": {"credit_cards": True, "email_addresses": True, "jwt_tokens": True},
    }
    sanitiser = Sanitiser(config=config)

    input_file = os.path.join(OUTPUT_DIR, "capture.har")
    write_har_file(input_file, sample_capture())
    sanitised_har = sanitiser.sanitise(read_har_file(input_file))

    output_file = os.path.join(OUTPUT_DIR, "capture_sanitised.har")
    write_har_file(output_file, sanitised_har)

    found = sanitiser.metrics["sensitive_data_found"]
    print(f"Sensitive data found: {sum(found.values())} instances")
    for data_type, count in found.items():
        if count > 0:
            print(f"    - {data_type}: {count}")
    print(f"Done! Sanitised HAR file saved to {output_file}")
    print()


if __name__ == "__main__":
    os.makedirs(OUTPUT_DIR, exist_ok=True)

    example_analyze()
    example_sanitise_with_custom_config()

    print("All examples completed successfully!")
