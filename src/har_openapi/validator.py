"""Structural checks for generated OpenAPI documents."""

import json
import re
from typing import Any, Dict, List

import yaml


HTTP_METHODS = {'get', 'put', 'post', 'delete', 'options', 'head', 'patch', 'trace'}
PARAMETER_LOCATIONS = {'path', 'query', 'header', 'cookie'}
PATH_ITEM_KEYS = HTTP_METHODS | {'$ref', 'summary', 'description', 'servers', 'parameters'}
PLACEHOLDER = re.compile(r'\{([^{}/]+)\}')
SCHEMA_REF = '#/components/schemas/'


def load_document(file_path: str) -> Dict[str, Any]:
    """Read an OpenAPI document from a YAML or JSON file."""
    with open(file_path, 'r', encoding='utf-8') as f:
        if file_path.lower().endswith('.json'):
            return json.load(f)
        return yaml.safe_load(f)


def _collect_refs(node: Any, refs: List[str]) -> None:
    if isinstance(node, dict):
        for key, value in node.items():
            if key == '$ref' and isinstance(value, str):
                refs.append(value)
            else:
                _collect_refs(value, refs)
    elif isinstance(node, list):
        for item in node:
            _collect_refs(item, refs)


def _validate_parameters(where: str, path: str, parameters: Any) -> List[str]:
    errors = []
    if not isinstance(parameters, list):
        return [f"{where}: parameters must be a list"]

    seen = set()
    path_names = set()
    for parameter in parameters:
        if not isinstance(parameter, dict):
            errors.append(f"{where}: parameter must be an object")
            continue
        name, location = parameter.get('name'), parameter.get('in')
        if not name:
            errors.append(f"{where}: parameter without a name")
        if location not in PARAMETER_LOCATIONS:
            errors.append(f"{where}: parameter '{name}' has invalid location '{location}'")
        if (name, location) in seen:
            errors.append(f"{where}: duplicate parameter '{name}' in {location}")
        seen.add((name, location))
        if 'schema' not in parameter and 'content' not in parameter:
            errors.append(f"{where}: parameter '{name}' has no schema")
        if location == 'path':
            path_names.add(name)
            if parameter.get('required') is not True:
                errors.append(f"{where}: path parameter '{name}' must be required")

    for placeholder in PLACEHOLDER.findall(path):
        if placeholder not in path_names:
            errors.append(f"{where}: path placeholder '{{{placeholder}}}' has no path parameter")
    for name in path_names - set(PLACEHOLDER.findall(path)):
        errors.append(f"{where}: path parameter '{name}' does not appear in the path")
    return errors


def _validate_operation(where: str, path: str, operation: Any) -> List[str]:
    if not isinstance(operation, dict):
        return [f"{where}: operation must be an object"]

    errors = _validate_parameters(where, path, operation.get('parameters', []))

    responses = operation.get('responses')
    if not isinstance(responses, dict) or not responses:
        errors.append(f"{where}: operation has no responses")
        return errors
    for status, response in responses.items():
        status = str(status)
        if status != 'default' and not re.match(r'^[1-5](?:\d\d|XX)$', status):
            errors.append(f"{where}: invalid response status '{status}'")
        if not isinstance(response, dict) or '$ref' not in response and not response.get('description'):
            errors.append(f"{where}: response {status} has no description")
    return errors


def validate_document(document: Any) -> List[str]:
    """
    Check an OpenAPI 3.x document for structural errors.

    Covers the parts a generator derives mechanically: version, info,
    paths, operations, parameters, responses and schema references.
    Paths that differ only in placeholder names and repeated
    operationIds are reported too.

    Returns list of error messages; empty when the document is valid.
    """
    if not isinstance(document, dict):
        return ["Document must be a mapping"]

    errors = []
    version = document.get('openapi')
    if not isinstance(version, str) or not version.startswith('3.'):
        errors.append(f"Unsupported or missing openapi version: {version!r}")

    info = document.get('info')
    if not isinstance(info, dict):
        errors.append("Missing info object")
    else:
        for key in ('title', 'version'):
            if not info.get(key):
                errors.append(f"info.{key} is required")

    paths = document.get('paths')
    if not isinstance(paths, dict):
        errors.append("Missing paths object")
        paths = {}

    templated: Dict[str, str] = {}
    operation_ids: Dict[str, str] = {}
    for path, item in paths.items():
        # Paths differing only in placeholder names are the same path
        skeleton = PLACEHOLDER.sub('{}', str(path))
        if skeleton in templated:
            errors.append(f"Paths '{templated[skeleton]}' and '{path}' are equivalent")
        else:
            templated[skeleton] = str(path)

        if not str(path).startswith('/'):
            errors.append(f"Path '{path}' must start with '/'")
        if not isinstance(item, dict):
            errors.append(f"Path item '{path}' must be an object")
            continue
        for key, operation in item.items():
            if key not in PATH_ITEM_KEYS and not str(key).startswith('x-'):
                errors.append(f"{path}: unknown method '{key}'")
            elif key in HTTP_METHODS:
                where = f"{key.upper()} {path}"
                errors.extend(_validate_operation(where, str(path), operation))
                operation_id = operation.get('operationId') if isinstance(operation, dict) else None
                if operation_id in operation_ids:
                    errors.append(f"{where}: operationId '{operation_id}' is already used by {operation_ids[operation_id]}")
                elif operation_id is not None:
                    operation_ids[operation_id] = where

    schemas = (document.get('components') or {}).get('schemas') or {}
    refs: List[str] = []
    _collect_refs(document, refs)
    for ref in refs:
        if ref.startswith(SCHEMA_REF) and ref[len(SCHEMA_REF):] not in schemas:
            errors.append(f"Dangling reference: {ref}")

    return errors
