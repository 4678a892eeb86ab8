"""
Parameter and body inference for endpoint templates.
"""

import json
import logging
import re
from collections import OrderedDict
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .clusterer import UUID_SEGMENT
from .errors import SchemaConflictWarning, UnsupportedBodyEncodingError
from .models import Body, BodySpec, EndpointTemplate, Exchange, ParameterSpec
from .report import RunReport
from .schema import SchemaNode, find_conflicts, infer_schema, merge


logger = logging.getLogger(__name__)

# Headers a client sets on its own, or that OpenAPI forbids as header parameters
IGNORED_REQUEST_HEADERS = {
    'accept', 'accept-encoding', 'accept-language', 'authorization', 'cache-control',
    'connection', 'content-length', 'content-type', 'cookie', 'dnt', 'host',
    'if-modified-since', 'if-none-match', 'keep-alive', 'origin', 'pragma',
    'priority', 'referer', 'te', 'upgrade-insecure-requests', 'user-agent',
}
IGNORED_HEADER_PREFIXES = (':', 'sec-', 'proxy-')

INTEGER_VALUE = re.compile(r'^-?\d+$')
NUMBER_VALUE = re.compile(r'^-?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][-+]?\d+)?$')
BOOLEAN_VALUES = {'true', 'false'}


def scalar_type(values: Sequence[str]) -> str:
    """
    Infer the parameter type shared by every observed string value.

    Returns ``integer``, ``number``, ``boolean`` or ``string``.
    """
    values = [value for value in values if value != '']
    if not values:
        return 'string'
    if all(INTEGER_VALUE.match(value) for value in values):
        return 'integer'
    if all(NUMBER_VALUE.match(value) for value in values):
        return 'number'
    if all(value.lower() in BOOLEAN_VALUES for value in values):
        return 'boolean'
    if all(value.startswith('{') for value in values) and _all_json_objects(values):
        return 'object'
    return 'string'


def _all_json_objects(values: Sequence[str]) -> bool:
    for value in values:
        try:
            if not isinstance(json.loads(value), dict):
                return False
        except ValueError:
            return False
    return True


def _example(value: str, type_name: str) -> Any:
    if type_name == 'integer':
        return int(value)
    if type_name == 'number':
        return float(value)
    if type_name == 'boolean':
        return value.lower() == 'true'
    if type_name == 'object':
        return json.loads(value)
    return value


def _path_parameters(template: EndpointTemplate) -> List[ParameterSpec]:
    parameters = []
    for position, segment in enumerate(template.segments):
        if not (segment.startswith('{') and segment.endswith('}')):
            continue
        values = [exchange.segments[position] for exchange in template.exchanges]
        type_name = scalar_type(values)
        if type_name == 'object':
            type_name = 'string'
        value_format = None
        if type_name == 'string' and values and all(UUID_SEGMENT.match(value) for value in values):
            value_format = 'uuid'
        parameters.append(ParameterSpec(
            name=segment[1:-1],
            location='path',
            type=type_name,
            required=True,
            example=_example(values[0], type_name) if values else None,
            format=value_format,
        ))
    return parameters


def _query_parameters(exchanges: Sequence[Exchange]) -> List[ParameterSpec]:
    names: List[str] = []
    for exchange in exchanges:
        for name in exchange.query_names():
            if name not in names:
                names.append(name)

    parameters = []
    for name in sorted(names):
        observed = [exchange.query_values(name) for exchange in exchanges]
        present = [values for values in observed if values]
        flat = [value for values in present for value in values]
        item_type = scalar_type(flat)
        first = present[0]
        if any(len(values) > 1 for values in present):
            parameters.append(ParameterSpec(
                name=name,
                location='query',
                type='array',
                required=len(present) == len(exchanges),
                example=[_example(value, item_type) for value in first],
                items=item_type,
            ))
        else:
            parameters.append(ParameterSpec(
                name=name,
                location='query',
                type=item_type,
                required=len(present) == len(exchanges),
                example=_example(first[0], item_type),
            ))
    return parameters


def is_parameter_header(name: str) -> bool:
    name = name.lower()
    return name not in IGNORED_REQUEST_HEADERS and not name.startswith(IGNORED_HEADER_PREFIXES)


def _header_parameters(exchanges: Sequence[Exchange]) -> List[ParameterSpec]:
    names: List[str] = []
    display: Dict[str, str] = {}
    for exchange in exchanges:
        for name, _ in exchange.request_headers:
            lowered = name.lower()
            if is_parameter_header(lowered):
                if lowered not in names:
                    names.append(lowered)
                display[lowered] = min(display.get(lowered, name), name)

    parameters = []
    for name in sorted(names):
        present = [exchange.request_headers.get(name) for exchange in exchanges
                   if exchange.request_headers.get(name) is not None]
        type_name = scalar_type(present)
        if type_name == 'object':
            type_name = 'string'
        parameters.append(ParameterSpec(
            name=display[name],
            location='header',
            type=type_name,
            required=len(present) == len(exchanges),
            example=_example(present[0], type_name),
        ))
    return parameters


def infer_parameters(template: EndpointTemplate) -> Tuple[ParameterSpec, ...]:
    """
    Infer path, query and header parameters of a template.

    A query or header parameter is required only when every contributing
    exchange carries it.
    """
    exchanges = template.exchanges
    return tuple(_path_parameters(template) + _query_parameters(exchanges) + _header_parameters(exchanges))


class _BodyAccumulator:
    """Merges the bodies seen for one media type, keeping the first example"""

    def __init__(self, media_type: str):
        self.media_type = media_type
        self.schema: Optional[SchemaNode] = None
        self.example: Any = None
        self.has_example = False
        self.opaque = False

    def add(self, value: Any) -> None:
        node = infer_schema(value)
        self.schema = node if self.schema is None else merge(self.schema, node)
        if not self.has_example:
            self.example = value
            self.has_example = True

    def build(self) -> BodySpec:
        return BodySpec(
            media_type=self.media_type,
            schema=self.schema,
            example=self.example if self.has_example else None,
            opaque=self.schema is None,
        )


def _observe_body(accumulators: 'OrderedDict[str, _BodyAccumulator]', body: Body, where: str,
                  report: RunReport) -> None:
    if body.is_empty:
        return
    media = body.mime_type or 'application/octet-stream'
    accumulator = accumulators.setdefault(media, _BodyAccumulator(media))
    if not (body.is_json or body.is_form):
        return
    try:
        value = body.json()
    except UnsupportedBodyEncodingError as e:
        report.opaque_body(where, str(e))
        return
    except ValueError as e:
        report.opaque_body(where, f"invalid JSON ({e})")
        return
    accumulator.add(value)


def _record_conflicts(spec: BodySpec, location: str, report: RunReport) -> None:
    if spec.schema is None:
        return
    for path, types in find_conflicts(spec.schema):
        report.schema_conflict(SchemaConflictWarning(location, path, types))


def infer_endpoint(template: EndpointTemplate, report: Optional[RunReport] = None) -> EndpointTemplate:
    """
    Infer parameters and body schemas for one template.

    Bodies are merged per media type for requests, and per status code and
    media type for responses. A body that cannot be decoded is treated as
    opaque for that exchange only.

    Args:
        template: Template produced by the clusterer
        report: Run report collecting opaque bodies and schema conflicts

    Returns:
        A new EndpointTemplate with parameters, request_body and responses
    """
    report = report if report is not None else RunReport()
    label = f"{template.method} {template.path}"

    requests: 'OrderedDict[str, _BodyAccumulator]' = OrderedDict()
    responses: 'OrderedDict[int, OrderedDict[str, _BodyAccumulator]]' = OrderedDict()

    for exchange in template.exchanges:
        _observe_body(requests, exchange.request_body, f"{label} request (entry {exchange.index})", report)
        per_status = responses.setdefault(exchange.status, OrderedDict())
        _observe_body(per_status, exchange.response_body,
                      f"{label} response {exchange.status} (entry {exchange.index})", report)

    request_body = {media: accumulator.build() for media, accumulator in sorted(requests.items())}
    response_bodies = {
        status: {media: accumulator.build() for media, accumulator in sorted(bodies.items())}
        for status, bodies in sorted(responses.items())
    }

    for spec in request_body.values():
        _record_conflicts(spec, f"{label} request", report)
    for status, bodies in response_bodies.items():
        for spec in bodies.values():
            _record_conflicts(spec, f"{label} response {status}", report)

    return replace(
        template,
        parameters=infer_parameters(template),
        request_body=request_body,
        responses=response_bodies,
    )


def infer_all(templates: Sequence[EndpointTemplate], report: Optional[RunReport] = None) -> List[EndpointTemplate]:
    """Infer every template, in order"""
    report = report if report is not None else RunReport()
    inferred = [infer_endpoint(template, report) for template in templates]
    report.metrics["endpoints"] = len(inferred)
    logger.debug(f"Inferred {len(inferred)} endpoints")
    return inferred
