"""
End-to-end runs: capture files in, OpenAPI document or sanitised HAR out.
"""

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import ijson

from .clusterer import cluster, flatten, merge_templates, servers
from .config import DEFAULTS
from .emitter import build_document
from .errors import MalformedCaptureError
from .inferrer import infer_all
from .loader import read_capture
from .models import EndpointTemplate, Exchange
from .report import RunReport
from .sanitiser import Sanitiser
from .utils import read_har_file, write_har_file


logger = logging.getLogger(__name__)


def _streaming_threshold(config: Dict[str, Any]) -> int:
    return int(float(config.get('streaming_threshold_mb', DEFAULTS['streaming_threshold_mb'])) * 1024 * 1024)


def templates_for_captures(captures: Sequence[Sequence[Exchange]], config: Optional[Dict[str, Any]] = None,
                           sanitiser: Optional[Sanitiser] = None, report: Optional[RunReport] = None,
                           show_progress: bool = False) -> List[EndpointTemplate]:
    """
    Sanitise, cluster and infer one or more loaded captures.

    Each capture is clustered on its own; the template sets are merged
    afterwards and inferred once, so the order of captures only affects
    which example is kept.

    Args:
        captures: Exchanges of each capture, in capture order
        config: Configuration dictionary
        sanitiser: Sanitiser to apply once before clustering; None skips it
        report: Run report
        show_progress: Display progress bars

    Returns:
        Inferred endpoint templates
    """
    config = config or DEFAULTS
    report = report if report is not None else RunReport()
    min_variants = config.get('min_variants', DEFAULTS['min_variants'])

    template_sets = []
    for exchanges in captures:
        if sanitiser is not None:
            exchanges = sanitiser.sanitise_exchanges(exchanges, show_progress=show_progress)
        template_sets.append(cluster(exchanges, min_variants=min_variants))

    if not template_sets:
        return []
    merged = template_sets[0] if len(template_sets) == 1 else merge_templates(*template_sets)
    return infer_all(merged, report)


def analyze_files(input_files: Sequence[str], config: Optional[Dict[str, Any]] = None, sanitise: bool = True,
                  report: Optional[RunReport] = None,
                  show_progress: bool = False) -> Tuple[Dict[str, Any], RunReport, Optional[Sanitiser]]:
    """
    Build an OpenAPI document from HAR files.

    Returns:
        Tuple of (document, report, sanitiser used or None)

    Raises:
        MalformedCaptureError: If a file is not a HAR capture
    """
    config = config or dict(DEFAULTS)
    report = report if report is not None else RunReport()
    threshold = _streaming_threshold(config)

    captures = [read_capture(path, report, show_progress, streaming_threshold=threshold) for path in input_files]
    sanitiser = Sanitiser(config=config) if sanitise else None
    if sanitiser is None:
        logger.warning("Sanitisation disabled: examples in the document may contain sensitive data")

    templates = templates_for_captures(captures, config, sanitiser, report, show_progress)
    document = build_document(
        templates,
        title=config.get('title', DEFAULTS['title']),
        version=str(config.get('api_version', DEFAULTS['api_version'])),
        servers=servers(flatten(templates)),
    )
    return document, report, sanitiser


def sanitise_file(input_file: str, output_file: str, config: Optional[Dict[str, Any]] = None,
                  report: Optional[RunReport] = None, show_progress: bool = False) -> Tuple[float, RunReport, Sanitiser]:
    """
    Write a sanitised copy of a HAR file.

    Files at or above the streaming threshold are sanitised entry by
    entry with ijson and written incrementally.

    Returns:
        Tuple of (duration in seconds, report, sanitiser)

    Raises:
        MalformedCaptureError: If the file is not a HAR capture
        OSError: If a file cannot be read or written
    """
    config = config or dict(DEFAULTS)
    report = report if report is not None else RunReport()
    start_time = datetime.now()
    sanitiser = Sanitiser(config=config)

    file_size = os.path.getsize(input_file)
    if file_size == 0:
        raise MalformedCaptureError(f"Input file is empty: {input_file}")
    report.metrics["input_size"] += file_size

    if file_size < _streaming_threshold(config):
        try:
            har_data = read_har_file(input_file)
        except ValueError as e:
            # JSONDecodeError and UnicodeDecodeError
            raise MalformedCaptureError(f"HAR file is not valid JSON: {e}")
        sanitised = sanitiser.sanitise_har(har_data, report, show_progress=show_progress)
        write_har_file(output_file, sanitised)
    else:
        logger.info(f"File size is {file_size / 1024 / 1024:.2f}MB, using streaming parser with incremental writing")
        try:
            with open(output_file, 'w', encoding='utf-8') as out_file:
                entries_written = sanitiser.sanitise_har_streaming(input_file, out_file, report, show_progress)
        except (ijson.JSONError, UnicodeDecodeError) as e:
            raise MalformedCaptureError(f"HAR file is not valid JSON: {e}")
        logger.info(f"Wrote {entries_written} sanitised entries")
    report.metrics["output_size"] = os.path.getsize(output_file)

    duration = (datetime.now() - start_time).total_seconds()
    return duration, report, sanitiser
