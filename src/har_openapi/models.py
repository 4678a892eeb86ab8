"""
Data model shared by the loader, clusterer, inferrer and sanitiser.

All records are frozen dataclasses. Nothing downstream of the loader
mutates an Exchange; derived structures are built with
:func:`dataclasses.replace`.
"""

import gzip
import json
import zlib
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple
from urllib.parse import parse_qsl

from .errors import UnsupportedBodyEncodingError


JSON_MEDIA_TYPES = ('application/json', 'text/json')
FORM_MEDIA_TYPE = 'application/x-www-form-urlencoded'


def media_type(value: str) -> str:
    """Strip parameters from a Content-Type value: ``text/html; charset=x`` -> ``text/html``"""
    return (value or '').split(';', 1)[0].strip().lower()


def is_json_media_type(value: str) -> bool:
    value = media_type(value)
    return value in JSON_MEDIA_TYPES or value.endswith('+json')


@dataclass(frozen=True)
class Headers:
    """
    Ordered header pairs with case-insensitive lookup.

    Original name case is preserved for output.
    """
    pairs: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def from_har(cls, headers: Any) -> 'Headers':
        if not isinstance(headers, list):
            return cls()
        pairs = []
        for header in headers:
            if isinstance(header, dict) and 'name' in header:
                pairs.append((str(header['name']), str(header.get('value', ''))))
        return cls(tuple(pairs))

    def get(self, name: str, default: str = None) -> Optional[str]:
        name = name.lower()
        for key, value in self.pairs:
            if key.lower() == name:
                return value
        return default

    def get_all(self, name: str) -> List[str]:
        name = name.lower()
        return [value for key, value in self.pairs if key.lower() == name]

    def names(self) -> List[str]:
        """Distinct lower-cased header names in first-seen order"""
        seen = []
        for key, _ in self.pairs:
            if key.lower() not in seen:
                seen.append(key.lower())
        return seen

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        return iter(self.pairs)

    def __len__(self) -> int:
        return len(self.pairs)

    def to_har(self) -> List[Dict[str, str]]:
        return [{'name': key, 'value': value} for key, value in self.pairs]


@dataclass(frozen=True)
class Body:
    """
    A request or response body as captured.

    ``data`` holds the raw bytes; base64 content from the capture is already
    decoded. ``content_encoding`` is the HTTP content coding the body may
    still carry.
    """
    data: bytes = b''
    mime_type: str = ''
    content_encoding: str = ''
    params: Tuple[Tuple[str, str], ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.data and not self.params

    @property
    def is_json(self) -> bool:
        return is_json_media_type(self.mime_type)

    @property
    def is_form(self) -> bool:
        return media_type(self.mime_type) == FORM_MEDIA_TYPE

    def decoded(self) -> bytes:
        """
        Return the body bytes with any content coding removed.

        Browsers usually record bodies already decoded, so a coding is only
        undone when the bytes actually carry it.

        Raises:
            UnsupportedBodyEncodingError: For codings that cannot be undone
        """
        encoding = self.content_encoding
        data = self.data
        if not data or encoding in ('', 'identity'):
            return data

        if encoding in ('gzip', 'x-gzip'):
            if data[:2] != b'\x1f\x8b':
                return data
            try:
                return gzip.decompress(data)
            except (OSError, EOFError) as e:
                raise UnsupportedBodyEncodingError(f"Corrupt gzip body: {e}", encoding)

        if encoding == 'deflate':
            for wbits in (zlib.MAX_WBITS, -zlib.MAX_WBITS):
                try:
                    return zlib.decompress(data, wbits)
                except zlib.error:
                    continue
            return data

        # Unknown coding: accept it only if the capture already holds text
        try:
            data.decode('utf-8')
        except UnicodeDecodeError:
            raise UnsupportedBodyEncodingError(f"Unsupported content encoding: {encoding}", encoding)
        return data

    def text(self) -> str:
        """
        Decode the body as UTF-8 text.

        Raises:
            UnsupportedBodyEncodingError: If the bytes are not decodable
        """
        data = self.decoded()
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError:
            raise UnsupportedBodyEncodingError("Body is not valid UTF-8 text", self.content_encoding or None)

    def json(self) -> Any:
        """
        Parse the body as JSON, or as an object of strings for form bodies.

        Raises:
            UnsupportedBodyEncodingError: If the bytes cannot be decoded
            ValueError: If the text is not JSON
        """
        if self.is_form:
            if self.params:
                return {name: value for name, value in self.params}
            return {name: value for name, value in parse_qsl(self.text(), keep_blank_values=True)}
        return json.loads(self.text())


@dataclass(frozen=True)
class Exchange:
    """One captured request/response pair"""
    index: int
    method: str
    url: str
    scheme: str = ''
    host: str = ''
    path: str = '/'
    query: Tuple[Tuple[str, str], ...] = ()
    request_headers: Headers = field(default_factory=Headers)
    request_body: Body = field(default_factory=Body)
    status: int = 0
    response_headers: Headers = field(default_factory=Headers)
    response_body: Body = field(default_factory=Body)
    started: str = ''

    @property
    def origin(self) -> str:
        if not self.host:
            return ''
        return f"{self.scheme}://{self.host}" if self.scheme else self.host

    @property
    def segments(self) -> Tuple[str, ...]:
        return tuple(segment for segment in self.path.split('/') if segment)

    def query_names(self) -> List[str]:
        names = []
        for name, _ in self.query:
            if name not in names:
                names.append(name)
        return names

    def query_values(self, name: str) -> List[str]:
        return [value for key, value in self.query if key == name]


@dataclass(frozen=True)
class ParameterSpec:
    """An inferred operation parameter"""
    name: str
    location: str
    type: str = 'string'
    required: bool = False
    example: Any = None
    items: Optional[str] = None
    format: Optional[str] = None


@dataclass(frozen=True)
class BodySpec:
    """Inferred schema and first-seen example for one body media type"""
    media_type: str
    schema: Any = None
    example: Any = None
    opaque: bool = False


@dataclass(frozen=True)
class EndpointTemplate:
    """
    A generalised path pattern and the exchanges it groups.

    The clusterer fills ``method``, ``path``, ``segments`` and
    ``exchanges``; the inferrer returns a copy with the rest populated.
    """
    method: str
    path: str
    segments: Tuple[str, ...]
    exchanges: Tuple[Exchange, ...]
    parameters: Tuple[ParameterSpec, ...] = ()
    request_body: Dict[str, BodySpec] = field(default_factory=dict)
    responses: Dict[int, Dict[str, BodySpec]] = field(default_factory=dict)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.method, self.path)

    @property
    def path_parameter_names(self) -> List[str]:
        return [segment[1:-1] for segment in self.segments if segment.startswith('{') and segment.endswith('}')]
