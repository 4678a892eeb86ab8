"""
OpenAPI document generation from inferred endpoint templates.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

import yaml

from .models import BodySpec, EndpointTemplate, Exchange, ParameterSpec, media_type
from .schema import to_openapi
from .utils import ensure_parent_dir, pascal_case, snake_case


logger = logging.getLogger(__name__)

OPENAPI_VERSION = '3.0.3'
METHOD_ORDER = ('get', 'put', 'post', 'delete', 'options', 'head', 'patch', 'trace')

PLACEHOLDER_DESCRIPTION = 'TODO: describe this API'
PLACEHOLDER_SUMMARY = 'TODO: summarise this operation'
PLACEHOLDER_RESPONSE = 'TODO: describe this response'
PLACEHOLDER_SECURITY = 'TODO: confirm this security scheme'


class _NoAliasDumper(yaml.SafeDumper):
    """SafeDumper that never emits anchors for repeated values"""

    def ignore_aliases(self, data):
        return True


def _parameter_object(parameter: ParameterSpec) -> Dict[str, Any]:
    schema: Dict[str, Any] = {'type': parameter.type}
    if parameter.format:
        schema['format'] = parameter.format
    if parameter.type == 'array':
        schema['items'] = {'type': parameter.items or 'string'}

    result = {
        'name': parameter.name,
        'in': parameter.location,
        'required': True if parameter.location == 'path' else parameter.required,
        'schema': schema,
    }
    if parameter.example is not None:
        result['example'] = parameter.example
    return result


def _opaque_schema(media: str) -> Dict[str, Any]:
    media = media_type(media)
    if media.startswith('text/') or media.endswith(('json', 'xml', 'javascript')):
        return {'type': 'string'}
    return {'type': 'string', 'format': 'binary'}


class _SchemaRegistry:
    """Hoists body schemas into components/schemas under unique names"""

    def __init__(self):
        self.schemas: Dict[str, Any] = {}

    def add(self, name: str, schema: Dict[str, Any]) -> str:
        candidate = name
        suffix = 2
        while candidate in self.schemas:
            candidate = f"{name}_{suffix}"
            suffix += 1
        self.schemas[candidate] = schema
        return f"#/components/schemas/{candidate}"


def _content(bodies: Dict[str, BodySpec], base_name: str, registry: _SchemaRegistry) -> Dict[str, Any]:
    content = {}
    for media, spec in bodies.items():
        if spec.schema is None:
            content[media] = {'schema': _opaque_schema(media)}
            continue
        ref = registry.add(base_name, to_openapi(spec.schema))
        entry: Dict[str, Any] = {'schema': {'$ref': ref}}
        if spec.example is not None:
            entry['example'] = spec.example
        content[media] = entry
    return content


def _security_schemes(exchanges: Iterable[Exchange]) -> Dict[str, Dict[str, Any]]:
    schemes: Dict[str, Dict[str, Any]] = {}
    cookie_names = set()
    for exchange in exchanges:
        authorization = exchange.request_headers.get('authorization')
        if authorization is not None:
            scheme = authorization.split(' ', 1)[0].lower()
            if scheme == 'bearer':
                schemes.setdefault('bearerAuth', {'type': 'http', 'scheme': 'bearer'})
            elif scheme == 'basic':
                schemes.setdefault('basicAuth', {'type': 'http', 'scheme': 'basic'})
            else:
                schemes.setdefault('authorizationHeader', {'type': 'apiKey', 'in': 'header', 'name': 'Authorization'})

        cookie = exchange.request_headers.get('cookie')
        if cookie is not None:
            name = cookie.split('=', 1)[0].strip() if '=' in cookie else ''
            cookie_names.add(name or 'session')
    if cookie_names:
        schemes['cookieAuth'] = {'type': 'apiKey', 'in': 'cookie', 'name': min(cookie_names)}

    for scheme in schemes.values():
        scheme['description'] = PLACEHOLDER_SECURITY
    return {name: schemes[name] for name in sorted(schemes)}


def operation_id(template: EndpointTemplate) -> str:
    return snake_case(f"{template.method} {template.path}") or template.method.lower()


def build_operation(template: EndpointTemplate, registry: _SchemaRegistry) -> Dict[str, Any]:
    """
    Build one OpenAPI operation object from an inferred template.

    Args:
        template: Template returned by the inferrer
        registry: Collects hoisted schemas

    Returns:
        The operation object
    """
    base_name = pascal_case(f"{template.method.lower()} {template.path}")
    operation: Dict[str, Any] = {
        'operationId': operation_id(template),
        'summary': PLACEHOLDER_SUMMARY,
    }

    if template.parameters:
        operation['parameters'] = [_parameter_object(parameter) for parameter in template.parameters]

    if template.request_body:
        operation['requestBody'] = {
            'required': all(not exchange.request_body.is_empty for exchange in template.exchanges),
            'content': _content(template.request_body, f"{base_name}Request", registry),
        }

    responses: Dict[str, Any] = {}
    for status, bodies in template.responses.items():
        key = str(status) if status else 'default'
        response: Dict[str, Any] = {'description': PLACEHOLDER_RESPONSE}
        if bodies:
            response['content'] = _content(bodies, f"{base_name}Response{status or 'Default'}", registry)
        responses[key] = response
    operation['responses'] = responses or {'default': {'description': PLACEHOLDER_RESPONSE}}

    security = _security_schemes(template.exchanges)
    if security:
        operation['security'] = [{name: []} for name in security]
    return operation


def build_document(templates: Sequence[EndpointTemplate], title: str = 'Inferred API', version: str = '1.0.0',
                   servers: Optional[List[str]] = None, description: str = PLACEHOLDER_DESCRIPTION) -> Dict[str, Any]:
    """
    Build an OpenAPI 3.0 document.

    Paths are sorted and operations follow the OpenAPI method order, so the
    document does not depend on the order templates were produced in.

    Args:
        templates: Inferred endpoint templates
        title: API title
        version: API version
        servers: Server URLs, e.g. ``https://api.example.com``
        description: API description

    Returns:
        OpenAPI document as a dictionary
    """
    registry = _SchemaRegistry()
    paths: Dict[str, Dict[str, Any]] = {}
    all_schemes: Dict[str, Dict[str, Any]] = {}
    operation_ids = set()

    ordered = sorted(
        templates,
        key=lambda t: (t.path, METHOD_ORDER.index(t.method.lower()) if t.method.lower() in METHOD_ORDER else len(METHOD_ORDER)),
    )
    for template in ordered:
        method = template.method.lower()
        if method not in METHOD_ORDER:
            logger.warning(f"Skipping {template.method} {template.path}: method not expressible in OpenAPI 3.0")
            continue
        operation = build_operation(template, registry)
        candidate, suffix = operation['operationId'], 2
        while candidate in operation_ids:
            candidate = f"{operation['operationId']}_{suffix}"
            suffix += 1
        operation_ids.add(candidate)
        operation['operationId'] = candidate
        paths.setdefault(template.path, {})[method] = operation
        all_schemes.update(_security_schemes(template.exchanges))
    all_schemes = {name: all_schemes[name] for name in sorted(all_schemes)}

    document: Dict[str, Any] = {
        'openapi': OPENAPI_VERSION,
        'info': {
            'title': title,
            'version': version,
            'description': description,
        },
    }
    if servers:
        document['servers'] = [{'url': url} for url in servers]
    document['paths'] = paths

    components: Dict[str, Any] = {}
    if registry.schemas:
        components['schemas'] = registry.schemas
    if all_schemes:
        components['securitySchemes'] = all_schemes
    if components:
        document['components'] = components

    logger.info(f"Built OpenAPI document with {len(paths)} paths and {len(registry.schemas)} schemas")
    return document


def to_yaml(document: Dict[str, Any]) -> str:
    return yaml.dump(document, Dumper=_NoAliasDumper, sort_keys=False, allow_unicode=True, default_flow_style=False)


def dump_document(document: Dict[str, Any], file_path: str) -> None:
    """
    Write a document as YAML (``.yaml``/``.yml``) or JSON (anything else).

    Raises:
        OSError: If the file cannot be written
    """
    ensure_parent_dir(file_path)
    with open(file_path, 'w', encoding='utf-8') as f:
        if file_path.lower().endswith(('.yaml', '.yml')):
            f.write(to_yaml(document))
        else:
            json.dump(document, f, indent=2)
    logger.info(f"Wrote OpenAPI document to {file_path}")
