"""
Endpoint clustering: group exchanges into path templates.
"""

import logging
import re
from collections import defaultdict
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import EndpointTemplate, Exchange
from .utils import snake_case


logger = logging.getLogger(__name__)

INTEGER_SEGMENT = re.compile(r'^\d+$')
UUID_SEGMENT = re.compile(r'^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$')
HEX_SEGMENT = re.compile(r'^(?=[^/]*\d)[0-9a-fA-F]{16,}$')
# Values the sanitiser put in place of a sensitive segment
REDACTED_SEGMENT = re.compile(r'^\[(?:REDACTED|HASH-[0-9a-f]{12})\]$')

# A shape is a tuple of literal segments, with None for placeholders
Shape = Tuple[Optional[str], ...]


def is_id_like(segment: str) -> bool:
    """Whether a path segment is a number, a UUID, a long hex digest or a redacted value"""
    return bool(INTEGER_SEGMENT.match(segment) or UUID_SEGMENT.match(segment) or HEX_SEGMENT.match(segment)
                or REDACTED_SEGMENT.match(segment))


def singular(word: str) -> str:
    if word.endswith('ies') and len(word) > 3:
        return word[:-3] + 'y'
    if word.endswith('sses'):
        return word[:-2]
    if word.endswith('s') and not word.endswith('ss') and len(word) > 1:
        return word[:-1]
    return word


def _sort_key(shape: Shape) -> Tuple[str, ...]:
    # Segments are never empty, so '' is free to stand for a placeholder
    return tuple(segment or '' for segment in shape)


def _next_generalisation(shapes: Iterable[Shape], min_variants: int) -> Optional[Tuple[int, Shape]]:
    """
    Pick the single position/context to turn into a placeholder.

    Candidates are positions whose literal values vary across shapes that
    agree everywhere else. The candidate with the most distinct values
    wins, then the right-most position, then the lexically smallest
    context; generalising one position at a time keeps as many literal
    segments as possible.
    """
    best = None
    best_key = None
    shapes = list(shapes)
    width = len(shapes[0]) if shapes else 0

    for position in range(width):
        contexts = defaultdict(set)
        for shape in shapes:
            if shape[position] is None:
                continue
            context = shape[:position] + (None,) + shape[position + 1:]
            contexts[context].add(shape[position])

        for context, values in contexts.items():
            # A varying literal needs a literal anchor after it: /users/{user}/repos
            # generalises, /api/users and /api/orders do not
            if len(values) < min_variants or all(segment is None for segment in context[position + 1:]):
                continue
            key = (-len(values), -position, _sort_key(context))
            if best_key is None or key < best_key:
                best_key = key
                best = (position, context)
    return best


def infer_shapes(segment_lists: Sequence[Tuple[str, ...]], min_variants: int = 2) -> List[Shape]:
    """
    Infer the generalised shape of each path in a same-length group.

    Args:
        segment_lists: Path segments of each exchange, all the same length
        min_variants: Distinct literal values needed at one position before
            it becomes a placeholder

    Returns:
        One shape per input, in input order
    """
    shapes = [tuple(None if is_id_like(segment) else segment for segment in segments)
              for segments in segment_lists]

    while True:
        choice = _next_generalisation(set(shapes), min_variants)
        if choice is None:
            return shapes
        position, context = choice
        logger.debug(f"Generalising position {position} of {_sort_key(context)}")
        shapes = [
            context if shape[position] is not None and shape[:position] + (None,) + shape[position + 1:] == context
            else shape
            for shape in shapes
        ]


def _placeholder_names(shape: Shape, members: Sequence[Exchange]) -> Dict[int, str]:
    names = {}
    id_positions = []
    for position, segment in enumerate(shape):
        if segment is not None:
            continue
        id_kind = any(is_id_like(exchange.segments[position]) for exchange in members)
        previous = shape[position - 1] if position > 0 else None
        base = snake_case(singular(previous)) if previous else ''
        if id_kind:
            id_positions.append(position)
            names[position] = f"{base}_id" if base else 'id'
        else:
            names[position] = base or 'param'

    if len(names) == 1 and id_positions:
        names[id_positions[0]] = 'id'

    seen: Dict[str, int] = {}
    for position in sorted(names):
        name = names[position]
        if name in seen:
            seen[name] += 1
            names[position] = f"{name}{seen[name]}"
        else:
            seen[name] = 1
    return names


def _template_path(shape: Shape, names: Dict[int, str]) -> Tuple[str, Tuple[str, ...]]:
    segments = tuple(
        segment if segment is not None else f"{{{names[position]}}}"
        for position, segment in enumerate(shape)
    )
    return '/' + '/'.join(segments), segments


def _skeleton(template: EndpointTemplate) -> Shape:
    return tuple(None if segment.startswith('{') and segment.endswith('}') else segment
                 for segment in template.segments)


def harmonise_names(templates: Sequence[EndpointTemplate]) -> List[EndpointTemplate]:
    """
    Give the same placeholder names to every template sharing a skeleton.

    Templates of different methods can generalise the same literal
    skeleton from different exchanges; ``GET /users/{user}`` and
    ``DELETE /users/{id}`` would be two path items for one resource.
    Names are chosen again from the exchanges of all methods together.
    """
    by_skeleton: Dict[Shape, List[Exchange]] = defaultdict(list)
    for template in templates:
        by_skeleton[_skeleton(template)].extend(template.exchanges)

    harmonised = []
    for template in templates:
        shape = _skeleton(template)
        path, segments = _template_path(shape, _placeholder_names(shape, by_skeleton[shape]))
        if path != template.path:
            logger.debug(f"Renaming {template.method} {template.path} to {path}")
            template = replace(template, path=path, segments=segments)
        harmonised.append(template)
    return harmonised


def cluster(exchanges: Sequence[Exchange], min_variants: int = 2) -> List[EndpointTemplate]:
    """
    Group exchanges into endpoint templates.

    Exchanges are grouped by method and segment count, then by inferred
    shape. An exchange that matches nothing else becomes a singleton
    template. Templates come out in first-seen order and each keeps its
    exchanges in input order.

    Args:
        exchanges: Exchanges in capture order
        min_variants: Distinct literal values needed before a segment
            becomes a placeholder

    Returns:
        List of EndpointTemplates
    """
    groups: Dict[Tuple[str, int], List[int]] = defaultdict(list)
    for position, exchange in enumerate(exchanges):
        groups[(exchange.method, len(exchange.segments))].append(position)

    found = []
    for (method, _), positions in groups.items():
        shapes = infer_shapes([exchanges[p].segments for p in positions], min_variants)

        by_shape: Dict[Shape, List[int]] = defaultdict(list)
        for position, shape in zip(positions, shapes):
            by_shape[shape].append(position)

        for shape, members in by_shape.items():
            member_exchanges = [exchanges[p] for p in members]
            path, segments = _template_path(shape, _placeholder_names(shape, member_exchanges))
            template = EndpointTemplate(
                method=method,
                path=path,
                segments=segments,
                exchanges=tuple(member_exchanges),
            )
            found.append((members[0], template))

    found.sort(key=lambda item: item[0])
    templates = harmonise_names([template for _, template in found])
    logger.info(f"Clustered {len(exchanges)} exchanges into {len(templates)} endpoints")
    return templates


def flatten(templates: Iterable[EndpointTemplate]) -> List[Exchange]:
    """All exchanges of the given templates, template by template"""
    return [exchange for template in templates for exchange in template.exchanges]


def merge_templates(*template_sets: Iterable[EndpointTemplate]) -> List[EndpointTemplate]:
    """
    Merge endpoint templates clustered from independent captures.

    Placeholder names are harmonised across every capture first, then
    templates with the same method and path are combined; the merged
    template holds the exchanges of every contributor and must be
    re-inferred, which applies the same union merge as a single capture.

    Returns:
        Merged templates without inferred parameters or bodies
    """
    merged: Dict[Tuple[str, str], EndpointTemplate] = {}
    collected: Dict[Tuple[str, str], List[Exchange]] = defaultdict(list)
    for template in harmonise_names([template for templates in template_sets for template in templates]):
        merged.setdefault(template.key, template)
        collected[template.key].extend(template.exchanges)

    return [
        EndpointTemplate(
            method=template.method,
            path=template.path,
            segments=template.segments,
            exchanges=tuple(collected[key]),
        )
        for key, template in merged.items()
    ]


def servers(exchanges: Iterable[Exchange]) -> List[str]:
    """Distinct ``scheme://host`` origins in first-seen order"""
    origins = []
    for exchange in exchanges:
        if exchange.origin and exchange.origin not in origins:
            origins.append(exchange.origin)
    return origins
