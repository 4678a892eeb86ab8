"""
Capture loading: turn HAR documents into Exchange records.
"""

import base64
import binascii
import json
import logging
import os
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import parse_qsl, urlsplit

import ijson
from tqdm import tqdm

from .errors import MalformedCaptureError
from .models import Body, Exchange, Headers, media_type
from .report import RunReport


logger = logging.getLogger(__name__)

DEFAULT_STREAMING_THRESHOLD = 10 * 1024 * 1024


def validate_har(har_data: Any) -> List[Any]:
    """
    Check the top-level HAR structure and return its entries.

    Args:
        har_data: Parsed HAR document

    Returns:
        The ``log.entries`` list

    Raises:
        MalformedCaptureError: If the log/entries shape is missing
    """
    if not isinstance(har_data, dict):
        raise MalformedCaptureError("HAR file must contain a JSON object at the root level")
    if 'log' not in har_data:
        raise MalformedCaptureError("HAR file must contain a 'log' key at the root level")
    if not isinstance(har_data['log'], dict):
        raise MalformedCaptureError("HAR file 'log' must be a JSON object")
    if 'entries' not in har_data['log']:
        raise MalformedCaptureError("HAR file must contain an 'entries' key in the 'log' object")
    if not isinstance(har_data['log']['entries'], list):
        raise MalformedCaptureError("HAR file 'entries' must be a JSON array")

    if 'version' not in har_data['log']:
        logger.debug("HAR file does not contain version information")
    return har_data['log']['entries']


def _content_bytes(text: Any, encoding: Any) -> bytes:
    if text is None:
        return b''
    if not isinstance(text, str):
        text = json.dumps(text)
    if encoding == 'base64':
        try:
            return base64.b64decode(text, validate=False)
        except (binascii.Error, ValueError):
            logger.debug("Body marked as base64 could not be decoded, keeping the raw text")
    return text.encode('utf-8', errors='surrogatepass')


def _build_body(content: Any, headers: Headers) -> Body:
    if not isinstance(content, dict):
        content = {}

    params = []
    for param in content.get('params') or []:
        if isinstance(param, dict) and 'name' in param:
            params.append((str(param['name']), str(param.get('value', ''))))

    return Body(
        data=_content_bytes(content.get('text'), content.get('encoding')),
        mime_type=media_type(content.get('mimeType') or headers.get('content-type', '')),
        content_encoding=(headers.get('content-encoding') or '').strip().lower(),
        params=tuple(params),
    )


def parse_entry(index: int, entry: Any) -> Exchange:
    """
    Build an Exchange from one HAR entry.

    Missing optional fields are replaced by empty defaults.

    Args:
        index: Position of the entry in the capture
        entry: HAR entry dictionary

    Returns:
        The Exchange

    Raises:
        ValueError: If the entry has no request URL
    """
    if not isinstance(entry, dict):
        raise ValueError(f"Entry is not a dictionary: {type(entry).__name__}")

    request = entry.get('request')
    if not isinstance(request, dict):
        raise ValueError("Entry missing 'request' object")
    url = request.get('url')
    if not url or not isinstance(url, str):
        raise ValueError("Request missing 'url' field")

    response = entry.get('response')
    if not isinstance(response, dict):
        response = {}

    parts = urlsplit(url)
    request_headers = Headers.from_har(request.get('headers'))
    response_headers = Headers.from_har(response.get('headers'))

    try:
        status = int(response.get('status') or 0)
    except (TypeError, ValueError):
        status = 0

    return Exchange(
        index=index,
        method=str(request.get('method') or 'GET').upper(),
        url=url,
        scheme=parts.scheme,
        host=parts.netloc,
        path=parts.path or '/',
        query=tuple(parse_qsl(parts.query, keep_blank_values=True)),
        request_headers=request_headers,
        request_body=_build_body(request.get('postData'), request_headers),
        status=status,
        response_headers=response_headers,
        response_body=_build_body(response.get('content'), response_headers),
        started=str(entry.get('startedDateTime') or ''),
    )


def load_entries(entries: Iterable[Any], report: Optional[RunReport] = None,
                 show_progress: bool = False, total: int = None) -> List[Exchange]:
    """
    Convert HAR entries into Exchanges, keeping capture order.

    A malformed entry is skipped and recorded; it never aborts the load.
    """
    report = report if report is not None else RunReport()
    exchanges = []
    for index, entry in enumerate(tqdm(entries, total=total, desc="Loading entries", disable=not show_progress)):
        report.metrics["total_entries"] += 1
        try:
            exchanges.append(parse_entry(index, entry))
        except ValueError as e:
            report.skipped_entry(index, str(e))
    logger.debug(f"Loaded {len(exchanges)} exchanges")
    return exchanges


def load_capture(har_data: Dict[str, Any], report: Optional[RunReport] = None,
                 show_progress: bool = False) -> List[Exchange]:
    """
    Parse a HAR document into an ordered list of Exchanges.

    Args:
        har_data: Parsed HAR document
        report: Run report collecting skipped entries
        show_progress: Display a progress bar

    Returns:
        Exchanges in capture order

    Raises:
        MalformedCaptureError: If the log/entries shape is missing
    """
    entries = validate_har(har_data)
    return load_entries(entries, report, show_progress, total=len(entries))


def stream_entries(input_file: str) -> Iterable[Any]:
    with open(input_file, 'rb') as f:
        # use_float keeps numbers as float instead of Decimal
        for entry in ijson.items(f, 'log.entries.item', use_float=True):
            yield entry


def has_entries_array(input_file: str) -> bool:
    with open(input_file, 'rb') as f:
        for prefix, event, _ in ijson.parse(f):
            if prefix == 'log.entries' and event == 'start_array':
                return True
    return False


def read_capture(input_file: str, report: Optional[RunReport] = None, show_progress: bool = False,
                 streaming_threshold: int = DEFAULT_STREAMING_THRESHOLD) -> List[Exchange]:
    """
    Read a HAR file into Exchanges.

    Files smaller than ``streaming_threshold`` bytes are parsed in one go;
    larger ones are streamed entry by entry with ijson.

    Args:
        input_file: Path to the HAR file
        report: Run report collecting skipped entries
        show_progress: Display a progress bar
        streaming_threshold: Size in bytes above which the file is streamed

    Returns:
        Exchanges in capture order

    Raises:
        MalformedCaptureError: If the file is empty, not JSON, or not a HAR
        OSError: If the file cannot be read
    """
    report = report if report is not None else RunReport()
    logger.info(f"Reading HAR file: {input_file}")

    file_size = os.path.getsize(input_file)
    if file_size == 0:
        raise MalformedCaptureError(f"Input file is empty: {input_file}")
    report.metrics["input_size"] += file_size

    if file_size < streaming_threshold:
        try:
            with open(input_file, 'r', encoding='utf-8', errors='replace') as f:
                har_data = json.load(f)
        except json.JSONDecodeError as e:
            raise MalformedCaptureError(f"HAR file is not valid JSON: {e}")
        exchanges = load_capture(har_data, report, show_progress)
    else:
        logger.info(f"File size is {file_size / 1024 / 1024:.2f}MB, using streaming parser")
        try:
            if not has_entries_array(input_file):
                raise MalformedCaptureError("HAR file must contain a 'log.entries' array")
            exchanges = load_entries(stream_entries(input_file), report, show_progress)
        except (ijson.JSONError, UnicodeDecodeError) as e:
            raise MalformedCaptureError(f"HAR file is not valid JSON: {e}")

    logger.info(f"Found {len(exchanges)} exchanges in {input_file}")
    return exchanges
