"""
Schema inference from observed JSON values.

A :class:`SchemaNode` records every JSON type seen at one position of a
document. Merging two nodes unions their evidence, so merging is
associative and commutative: the order in which bodies are observed never
changes the merged result.
"""

from dataclasses import dataclass
from functools import reduce
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple


NULL = 'null'
BOOLEAN = 'boolean'
INTEGER = 'integer'
NUMBER = 'number'
STRING = 'string'
ARRAY = 'array'
OBJECT = 'object'

# Output order for unions
TYPE_ORDER = (OBJECT, ARRAY, STRING, INTEGER, NUMBER, BOOLEAN, NULL)


@dataclass(frozen=True)
class SchemaNode:
    """
    Inferred shape of a JSON value.

    Attributes:
        types: JSON types observed at this position
        properties: Field schemas, for object observations
        required: Fields present in every object observation
        items: Element schema, for array observations with elements
    """
    types: FrozenSet[str] = frozenset()
    properties: Tuple[Tuple[str, 'SchemaNode'], ...] = ()
    required: FrozenSet[str] = frozenset()
    items: Optional['SchemaNode'] = None

    @property
    def property_map(self) -> Dict[str, 'SchemaNode']:
        return dict(self.properties)

    @property
    def nullable(self) -> bool:
        return NULL in self.types

    @property
    def concrete_types(self) -> List[str]:
        """Observed types other than null, in output order"""
        return [t for t in TYPE_ORDER if t in self.types and t != NULL]

    @property
    def is_union(self) -> bool:
        return len(self.concrete_types) > 1


EMPTY = SchemaNode()


def _normalise_types(types: Iterable[str]) -> FrozenSet[str]:
    types = set(types)
    if INTEGER in types and NUMBER in types:
        types.discard(INTEGER)
    return frozenset(types)


def _scalar_type(value: Any) -> str:
    if value is None:
        return NULL
    if isinstance(value, bool):
        return BOOLEAN
    if isinstance(value, int):
        return INTEGER
    if isinstance(value, float):
        return INTEGER if value.is_integer() else NUMBER
    return STRING


def infer_schema(value: Any) -> SchemaNode:
    """
    Infer the schema of a single JSON value.

    Args:
        value: Parsed JSON value

    Returns:
        SchemaNode describing the value
    """
    if isinstance(value, dict):
        properties = tuple(sorted((str(key), infer_schema(item)) for key, item in value.items()))
        return SchemaNode(
            types=frozenset([OBJECT]),
            properties=properties,
            required=frozenset(str(key) for key in value),
        )
    if isinstance(value, list):
        items = merge_all(infer_schema(item) for item in value) if value else None
        return SchemaNode(types=frozenset([ARRAY]), items=items)
    return SchemaNode(types=frozenset([_scalar_type(value)]))


def merge(left: SchemaNode, right: SchemaNode) -> SchemaNode:
    """
    Union two schemas.

    A field is required only if every object observation on both sides
    carried it. Conflicting types are kept side by side; integer and
    number collapse to number.
    """
    if left is right or left == right:
        return left

    left_object = OBJECT in left.types
    right_object = OBJECT in right.types

    properties: Dict[str, SchemaNode] = left.property_map
    for name, node in right.properties:
        properties[name] = merge(properties[name], node) if name in properties else node

    if left_object and right_object:
        required = left.required & right.required
    elif left_object:
        required = left.required
    else:
        required = right.required

    if left.items is None:
        items = right.items
    elif right.items is None:
        items = left.items
    else:
        items = merge(left.items, right.items)

    return SchemaNode(
        types=_normalise_types(left.types | right.types),
        properties=tuple(sorted(properties.items())),
        required=required,
        items=items,
    )


def merge_all(nodes: Iterable[SchemaNode]) -> Optional[SchemaNode]:
    """Merge any number of schemas; None when there are none"""
    nodes = list(nodes)
    if not nodes:
        return None
    return reduce(merge, nodes)


def find_conflicts(node: SchemaNode, path: str = '$') -> List[Tuple[str, List[str]]]:
    """
    List the positions where more than one concrete type was observed.

    Args:
        node: Schema to inspect
        path: JSON path of ``node``

    Returns:
        ``(json_path, types)`` pairs in depth-first order
    """
    conflicts = []
    if node.is_union:
        conflicts.append((path, node.concrete_types))
    for name, child in node.properties:
        conflicts.extend(find_conflicts(child, f"{path}.{name}"))
    if node.items is not None:
        conflicts.extend(find_conflicts(node.items, f"{path}[]"))
    return conflicts


def _single_type_schema(node: SchemaNode, type_name: str) -> Dict[str, Any]:
    schema: Dict[str, Any] = {'type': type_name}
    if type_name == OBJECT:
        schema['properties'] = {name: to_openapi(child) for name, child in node.properties}
        required = sorted(node.required)
        if required:
            schema['required'] = required
    elif type_name == ARRAY:
        schema['items'] = to_openapi(node.items) if node.items is not None else {}
    return schema


def to_openapi(node: Optional[SchemaNode]) -> Dict[str, Any]:
    """
    Render a SchemaNode as an OpenAPI 3.0 schema object.

    Unions become ``anyOf``; an observed null becomes ``nullable: true``.
    """
    if node is None:
        return {}

    concrete = node.concrete_types
    if not concrete:
        # Only nulls were observed
        return {'nullable': True} if node.nullable else {}

    if len(concrete) == 1:
        schema = _single_type_schema(node, concrete[0])
    else:
        schema = {'anyOf': [_single_type_schema(node, type_name) for type_name in concrete]}

    if node.nullable:
        schema['nullable'] = True
    return schema
