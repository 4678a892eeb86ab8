"""
Sanitisation of captures and exchanges.

Sensitive values are matched by header name, query key, JSON field name or
by the shape of the value itself, and are redacted, hashed or dropped.
Ambiguous matches are always sanitised: a false positive costs a
placeholder, a false negative leaks a credential.
"""

import base64
import binascii
import copy
import hashlib
import json
import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Pattern, Sequence, Tuple, Union
from urllib.parse import unquote, unquote_plus, urlsplit, urlunsplit

import ijson
from ijson.common import ObjectBuilder
from tqdm import tqdm

from . import __version__
from .errors import ConfigurationError, MalformedCaptureError, UnsupportedBodyEncodingError
from .loader import has_entries_array, stream_entries, validate_har
from .models import Body, Exchange, Headers, FORM_MEDIA_TYPE, is_json_media_type, media_type
from .report import RunReport


logger = logging.getLogger(__name__)

REDACTED = '[REDACTED]'
BINARY_REMOVED = '[BINARY-CONTENT-REMOVED]'
REDACTED_INTEGER = 0
REDACTED_NUMBER = 0.5

ACTIONS = ('redact', 'drop', 'hash')
TARGETS = ('header', 'query', 'field', 'value')

DEFAULT_SENSITIVE_HEADERS = (
    'authorization', 'cookie', 'set-cookie', 'proxy-authorization',
    'x-api-key', 'x-auth-token', 'x-csrf-token',
)

DEFAULT_DENY_TERMS = (
    'token', 'password', 'passwd', 'secret', 'key', 'session', 'email',
    'auth', 'credential', 'cookie', 'ssn', 'phone',
)

EMAIL_PATTERN = re.compile(r'[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}')
JWT_PATTERN = re.compile(r'eyJ[a-zA-Z0-9_-]+\.eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]*')
CREDIT_CARD_PATTERN = re.compile(r'\b(?:\d[ -]?){12,18}\d\b')


def luhn_check(card_number: str) -> bool:
    """
    Validate a card number with the Luhn algorithm.

    Args:
        card_number: Digits, optionally with separators

    Returns:
        True if the digits form a plausible card number
    """
    digits = ''.join(c for c in card_number if c.isdigit())
    if len(digits) < 13 or len(digits) > 19:
        return False

    checksum = 0
    for i, digit in enumerate(reversed(digits)):
        n = int(digit)
        if i % 2 == 1:
            n *= 2
            if n > 9:
                n -= 9
        checksum += n
    return checksum % 10 == 0


def hash_value(value: str) -> str:
    """Consistent short hash, so equal values stay recognisable as equal"""
    return hashlib.sha256(value.encode('utf-8', errors='surrogatepass')).hexdigest()[:12]


@dataclass(frozen=True)
class SanitisationRule:
    """
    A matcher plus an action.

    ``target`` says what the pattern is matched against: a header name, a
    query key, a JSON field or form parameter name, or the value itself.
    ``check`` optionally confirms a value match (e.g. a Luhn check).
    """
    target: str
    pattern: Pattern
    action: str = 'redact'
    name: str = ''
    check: Optional[Callable[[str], bool]] = None

    def __post_init__(self):
        if self.target not in TARGETS:
            raise ConfigurationError(f"Unknown rule target: {self.target}")
        if self.action not in ACTIONS:
            raise ConfigurationError(f"Unknown sanitisation action '{self.action}', expected one of {', '.join(ACTIONS)}")

    def matches(self, text: str) -> bool:
        if self.target == 'value':
            return any(self.check is None or self.check(m.group(0)) for m in self.pattern.finditer(text))
        return bool(self.pattern.search(text))


def name_rule(target: str, term: str, action: str = 'redact', exact: bool = False) -> SanitisationRule:
    """Build a case-insensitive name rule; partial matches count unless ``exact``"""
    expression = f"^{re.escape(term)}$" if exact else re.escape(term)
    return SanitisationRule(target, re.compile(expression, re.IGNORECASE), action, name=term)


def default_rules(options: Optional[Dict[str, bool]] = None) -> List[SanitisationRule]:
    """
    The default rule set.

    Args:
        options: ``sanitisation_options`` toggles for the value patterns
            (``email_addresses``, ``credit_cards``, ``jwt_tokens``)
    """
    options = options or {}
    rules = [name_rule('header', header, exact=True) for header in DEFAULT_SENSITIVE_HEADERS]
    for term in DEFAULT_DENY_TERMS:
        for target in ('header', 'query', 'field'):
            rules.append(name_rule(target, term))

    if options.get('jwt_tokens', True):
        rules.append(SanitisationRule('value', JWT_PATTERN, name='jwt'))
    if options.get('email_addresses', True):
        rules.append(SanitisationRule('value', EMAIL_PATTERN, name='email'))
    if options.get('credit_cards', True):
        rules.append(SanitisationRule('value', CREDIT_CARD_PATTERN, name='credit_card', check=luhn_check))
    return rules


def build_rules(config: Optional[Dict[str, Any]] = None) -> List[SanitisationRule]:
    """
    Build the rule list for a configuration.

    Configured rules come first, so they win over the defaults when both
    match.

    Raises:
        ConfigurationError: For unknown actions or invalid patterns
    """
    config = config or {}
    rules = []
    try:
        for expression, action in (config.get('rules') or {}).items():
            pattern = re.compile(expression, re.IGNORECASE)
            for target in ('header', 'query', 'field'):
                rules.append(SanitisationRule(target, pattern, str(action).lower(), name=expression))
        for header in config.get('sensitive_headers') or []:
            rules.append(name_rule('header', header, exact=True))
        for param in config.get('sensitive_params') or []:
            rules.append(name_rule('query', param))
            rules.append(name_rule('field', param))
        for label, expression in (config.get('value_patterns') or {}).items():
            rules.append(SanitisationRule('value', re.compile(expression), name=label))
    except re.error as e:
        raise ConfigurationError(f"Invalid pattern in configuration: {e}")

    if not config.get('replace_default_rules', False):
        rules.extend(default_rules(config.get('sanitisation_options')))
    return rules


class Sanitiser:
    """
    Applies sanitisation rules to exchanges and HAR documents.

    Every public method returns new data; inputs are never modified.
    ``metrics["sensitive_data_found"]`` counts what was sanitised.
    """

    def __init__(self, rules: Optional[Sequence[SanitisationRule]] = None, config: Dict[str, Any] = None):
        """
        Initialise the sanitiser.

        Args:
            rules: Explicit rules; built from ``config`` when omitted
            config: Dictionary containing configuration options
        """
        self.config = config or {}
        self.rules = list(rules) if rules is not None else build_rules(self.config)
        self.redact_binary = self.config.get('redact_binary_content', True)
        self.metrics = {
            "sensitive_data_found": {
                "headers": 0,
                "params": 0,
                "fields": 0,
                "binary": 0,
            }
        }

    def _count(self, kind: str) -> None:
        found = self.metrics["sensitive_data_found"]
        found[kind] = found.get(kind, 0) + 1

    def name_rule_for(self, target: str, name: str) -> Optional[SanitisationRule]:
        """First rule of ``target`` kind matching a name, if any"""
        for rule in self.rules:
            if rule.target == target and rule.matches(name):
                return rule
        return None

    def value_rule_for(self, value: str) -> Optional[SanitisationRule]:
        """First value rule matching anywhere in ``value``, if any"""
        for rule in self.rules:
            if rule.target == 'value' and rule.matches(value):
                return rule
        return None

    def _replace_string(self, value: str, rule: SanitisationRule) -> str:
        if rule.action == 'hash':
            return f'[HASH-{hash_value(value)}]'
        return REDACTED

    def _replace_json(self, value: Any, rule: SanitisationRule) -> Any:
        """Replace a JSON value keeping its type, so inference still sees it"""
        if isinstance(value, dict):
            return {key: self._replace_json(item, rule) for key, item in value.items()}
        if isinstance(value, list):
            return [self._replace_json(item, rule) for item in value]
        if value is None:
            return None
        if isinstance(value, bool):
            return False
        if isinstance(value, int):
            return REDACTED_INTEGER
        if isinstance(value, float):
            return float(REDACTED_INTEGER) if value.is_integer() else REDACTED_NUMBER
        return self._replace_string(str(value), rule)

    def sanitise_text(self, text: str) -> str:
        """
        Redact value-pattern matches inside free text.

        Only the matching substrings are replaced.
        """
        for rule in self.rules:
            if rule.target != 'value':
                continue

            def replace_match(match, rule=rule):
                if rule.check is not None and not rule.check(match.group(0)):
                    return match.group(0)
                self._count(rule.name or 'value')
                return self._replace_string(match.group(0), rule)

            text = rule.pattern.sub(replace_match, text)
        return text

    def sanitise_value(self, name: Optional[str], value: Any) -> Any:
        """
        Recursively sanitise a JSON value.

        Args:
            name: Field name the value sits under, if any
            value: Parsed JSON value

        Returns:
            Sanitised copy of the value
        """
        if name is not None:
            rule = self.name_rule_for('field', name)
            if rule is not None:
                self._count('fields')
                return self._replace_json(value, rule)

        if isinstance(value, dict):
            sanitised = {}
            for key, item in value.items():
                rule = self.name_rule_for('field', str(key))
                if rule is not None and rule.action == 'drop':
                    self._count('fields')
                    continue
                sanitised[key] = self.sanitise_value(str(key), item)
            return sanitised
        if isinstance(value, list):
            return [self.sanitise_value(None, item) for item in value]
        if isinstance(value, str):
            rule = self.value_rule_for(value)
            if rule is not None:
                self._count(rule.name or 'value')
                return self._replace_string(value, rule)
        elif isinstance(value, int) and not isinstance(value, bool):
            # Card numbers are often stored as bare JSON numbers
            rule = self.value_rule_for(str(value))
            if rule is not None:
                self._count(rule.name or 'value')
                return self._replace_json(value, rule)
        return value

    def sanitise_headers(self, headers: Sequence[Tuple[str, str]]) -> List[Tuple[str, str]]:
        """Sanitise header pairs by name, then by value"""
        sanitised = []
        for name, value in headers:
            rule = self.name_rule_for('header', name)
            if rule is None:
                rule = self.value_rule_for(value)
                if rule is not None:
                    self._count(rule.name or 'value')
            else:
                self._count('headers')

            if rule is None:
                sanitised.append((name, value))
            elif rule.action != 'drop':
                sanitised.append((name, self._replace_string(value, rule)))
        return sanitised

    def _param_rule(self, target: str, name: str, value: str) -> Optional[SanitisationRule]:
        rule = self.name_rule_for(target, name)
        if rule is not None:
            self._count('params')
            return rule
        rule = self.value_rule_for(value)
        if rule is not None:
            self._count(rule.name or 'value')
        return rule

    def sanitise_params(self, params: Sequence[Tuple[str, str]], target: str = 'query') -> List[Tuple[str, str]]:
        """Sanitise decoded ``(name, value)`` pairs from a query or form body"""
        sanitised = []
        for name, value in params:
            rule = self._param_rule(target, name, value)
            if rule is None:
                sanitised.append((name, value))
            elif rule.action != 'drop':
                sanitised.append((name, self._replace_string(value, rule)))
        return sanitised

    def sanitise_query_string(self, query: str, target: str = 'query') -> str:
        """
        Sanitise a raw ``a=1&b=2`` string.

        Pairs that need no change are kept byte for byte.
        """
        new_params = []
        for param in query.split('&'):
            if not param:
                continue
            key, sep, value = param.partition('=')
            rule = self._param_rule(target, unquote_plus(key), unquote_plus(value))
            if rule is None:
                new_params.append(param)
            elif rule.action != 'drop':
                new_params.append(f'{key}={self._replace_string(unquote_plus(value), rule)}')
        return '&'.join(new_params)

    def sanitise_path(self, path: str) -> str:
        """
        Redact URL path segments that match a value rule.

        Segments are matched after percent-decoding; untouched segments
        are kept as they were.
        """
        segments = path.split('/')
        for position, segment in enumerate(segments):
            if not segment:
                continue
            value = unquote(segment)
            rule = self.value_rule_for(value)
            if rule is not None:
                self._count(rule.name or 'value')
                segments[position] = self._replace_string(value, rule)
        return '/'.join(segments)

    def sanitise_url(self, url: str) -> str:
        """
        Sanitise URL path segments and query parameters

        Args:
            url: URL string

        Returns:
            Sanitised URL
        """
        url, hash_sign, fragment = url.partition('#')
        base_url, question, query = url.partition('?')

        parts = urlsplit(base_url)
        path = self.sanitise_path(parts.path)
        if path != parts.path:
            base_url = urlunsplit(parts._replace(path=path))

        if question:
            query = self.sanitise_query_string(query)
        url = f'{base_url}?{query}' if query else base_url
        return f'{url}{hash_sign}{fragment}'

    def sanitise_body_text(self, text: str, mime: str) -> str:
        """Sanitise body text as JSON, form data or free text depending on its media type"""
        if media_type(mime) == FORM_MEDIA_TYPE:
            return self.sanitise_query_string(text, target='field')
        try:
            data = json.loads(text)
        except ValueError:
            return self.sanitise_text(text)
        return json.dumps(self.sanitise_value(None, data))

    def sanitise_body(self, body: Body) -> Body:
        """Return a sanitised copy of an Exchange body"""
        if body.is_empty:
            return body

        params = tuple(self.sanitise_params(body.params, target='field')) if body.params else ()
        try:
            text = body.text()
        except UnsupportedBodyEncodingError:
            if not self.redact_binary:
                return replace(body, params=params)
            self._count('binary')
            return replace(body, data=BINARY_REMOVED.encode('utf-8'), content_encoding='', params=params)

        sanitised = self.sanitise_body_text(text, body.mime_type)
        return replace(body, data=sanitised.encode('utf-8'), content_encoding='', params=params)

    def sanitise_exchange(self, exchange: Exchange) -> Exchange:
        """Return a sanitised copy of an Exchange"""
        return replace(
            exchange,
            url=self.sanitise_url(exchange.url),
            path=self.sanitise_path(exchange.path),
            query=tuple(self.sanitise_params(exchange.query)),
            request_headers=Headers(tuple(self.sanitise_headers(exchange.request_headers.pairs))),
            request_body=self.sanitise_body(exchange.request_body),
            response_headers=Headers(tuple(self.sanitise_headers(exchange.response_headers.pairs))),
            response_body=self.sanitise_body(exchange.response_body),
        )

    def sanitise_exchanges(self, exchanges: Sequence[Exchange], show_progress: bool = False) -> List[Exchange]:
        """
        Sanitise a sequence of exchanges.

        Returns:
            A new list; the input sequence is left untouched
        """
        return [self.sanitise_exchange(exchange)
                for exchange in tqdm(exchanges, desc="Sanitising entries", disable=not show_progress)]

    # HAR documents

    def _sanitise_har_headers(self, headers: Any) -> Any:
        if not isinstance(headers, list):
            return headers
        pairs = Headers.from_har(headers).pairs
        return [{'name': name, 'value': value} for name, value in self.sanitise_headers(pairs)]

    def _sanitise_har_pairs(self, items: Any, target: str) -> Any:
        """Sanitise HAR ``queryString``/``params`` style lists, keeping extra keys"""
        if not isinstance(items, list):
            return items
        sanitised = []
        for item in items:
            if not isinstance(item, dict) or 'name' not in item:
                sanitised.append(item)
                continue
            pairs = self.sanitise_params([(str(item['name']), str(item.get('value', '')))], target)
            if pairs:
                sanitised.append(dict(item, value=pairs[0][1]))
        return sanitised

    def _sanitise_har_cookies(self, cookies: Any) -> Any:
        if not isinstance(cookies, list):
            return cookies
        sanitised = []
        for cookie in cookies:
            if isinstance(cookie, dict) and 'value' in cookie:
                self._count('headers')
                cookie = dict(cookie, value=REDACTED)
            sanitised.append(cookie)
        return sanitised

    def _sanitise_har_content(self, content: Any, headers: Any) -> None:
        if not isinstance(content, dict) or not isinstance(content.get('text'), str):
            return

        mime = content.get('mimeType') or Headers.from_har(headers).get('content-type', '')
        text = content['text']
        if content.get('encoding') == 'base64':
            try:
                decoded = base64.b64decode(text).decode('utf-8')
            except (binascii.Error, ValueError):
                if self.redact_binary:
                    self._count('binary')
                    content['text'] = BINARY_REMOVED
                    del content['encoding']
                return
            content['text'] = base64.b64encode(self.sanitise_body_text(decoded, mime).encode('utf-8')).decode('ascii')
            return

        content['text'] = self.sanitise_body_text(text, mime)

    def sanitise_entry(self, entry: Dict[str, Any]) -> None:
        """
        Sanitise a single HAR entry in place

        Args:
            entry: HAR entry dictionary (a copy owned by the caller)

        Raises:
            ValueError: If the entry is not a HAR entry
        """
        if not isinstance(entry, dict):
            raise ValueError(f"Entry is not a dictionary: {type(entry).__name__}")
        request = entry.get('request')
        if not isinstance(request, dict):
            raise ValueError("Entry missing 'request' object")

        if isinstance(request.get('url'), str):
            request['url'] = self.sanitise_url(request['url'])
        if 'queryString' in request:
            request['queryString'] = self._sanitise_har_pairs(request['queryString'], 'query')
        if 'headers' in request:
            request['headers'] = self._sanitise_har_headers(request['headers'])
        if 'cookies' in request:
            request['cookies'] = self._sanitise_har_cookies(request['cookies'])

        post_data = request.get('postData')
        if isinstance(post_data, dict):
            if 'params' in post_data:
                post_data['params'] = self._sanitise_har_pairs(post_data['params'], 'field')
            self._sanitise_har_content(post_data, request.get('headers'))

        response = entry.get('response')
        if not isinstance(response, dict):
            return
        if 'headers' in response:
            response['headers'] = self._sanitise_har_headers(response['headers'])
        if 'cookies' in response:
            response['cookies'] = self._sanitise_har_cookies(response['cookies'])
        if isinstance(response.get('redirectURL'), str):
            response['redirectURL'] = self.sanitise_url(response['redirectURL'])
        self._sanitise_har_content(response.get('content'), response.get('headers'))

    def sanitise_har(self, har_data: Dict[str, Any], report: Optional[RunReport] = None,
                     show_progress: bool = False) -> Dict[str, Any]:
        """
        Sanitise an entire HAR document

        Entries that cannot be sanitised are removed rather than passed
        through, and recorded in the report.

        Args:
            har_data: HAR file data
            report: Run report collecting skipped entries
            show_progress: Display a progress bar

        Returns:
            Sanitised deep copy of the HAR data

        Raises:
            MalformedCaptureError: If the log/entries shape is missing
        """
        report = report if report is not None else RunReport()
        validate_har(har_data)
        sanitised_har = copy.deepcopy(har_data)

        entries = []
        for index, entry in enumerate(tqdm(sanitised_har['log']['entries'], desc="Sanitising entries",
                                           disable=not show_progress)):
            report.metrics["total_entries"] += 1
            try:
                self.sanitise_entry(entry)
            except (ValueError, TypeError, AttributeError) as e:
                report.skipped_entry(index, str(e))
                continue
            entries.append(entry)
        sanitised_har['log']['entries'] = entries

        sanitised_har['log']['_meta'] = self._har_meta(report)
        return sanitised_har

    def _har_meta(self, report: RunReport) -> Dict[str, Any]:
        return {
            'sanitised_at': datetime.now(timezone.utc).isoformat(),
            'sanitiser_version': __version__,
            'skipped_entries': report.metrics["skipped_entries"],
            'metrics': report.as_dict(self.metrics["sensitive_data_found"]),
        }

    def _read_log_members_streaming(self, input_file: str) -> List[Tuple[str, Any]]:
        """
        Read the members of ``log`` other than ``entries`` without loading the entries.

        Returns:
            ``(key, value)`` pairs in file order
        """
        members = []
        key, builder = None, None
        with open(input_file, 'rb') as f:
            for prefix, event, value in ijson.parse(f, use_float=True):
                if prefix == 'log' and event in ('map_key', 'end_map'):
                    if builder is not None:
                        members.append((key, builder.value))
                    builder = None
                    if event == 'map_key' and value not in ('entries', '_meta'):
                        key = value
                        builder = ObjectBuilder()
                elif builder is not None:
                    builder.event(event, value)
        return members

    def sanitise_har_streaming(self, input_file: str, out_file: Any, report: Optional[RunReport] = None,
                               show_progress: bool = False) -> int:
        """
        Sanitise a HAR file entry by entry, writing the result incrementally

        Only one entry is held in memory at a time. Members of ``log`` other
        than ``entries`` are copied ahead of the entries; any ``_meta`` from
        an earlier run is replaced.

        Args:
            input_file: Path to the input HAR file
            out_file: Output file object
            report: Run report collecting skipped entries
            show_progress: Display a progress bar

        Returns:
            Number of entries written

        Raises:
            MalformedCaptureError: If the file has no 'log.entries' array
        """
        report = report if report is not None else RunReport()
        if not has_entries_array(input_file):
            raise MalformedCaptureError("HAR file must contain a 'log.entries' array")

        # Write the opening of the HAR file and the non-entries members
        out_file.write('{\n  "log": {\n')
        for key, value in self._read_log_members_streaming(input_file):
            out_file.write(f'    {json.dumps(key)}: {json.dumps(value)},\n')
        out_file.write('    "entries": [\n')

        entries_written = 0
        for index, entry in enumerate(tqdm(stream_entries(input_file), desc="Sanitising entries",
                                           disable=not show_progress)):
            report.metrics["total_entries"] += 1
            try:
                self.sanitise_entry(entry)
            except (ValueError, TypeError, AttributeError) as e:
                report.skipped_entry(index, str(e))
                continue
            if entries_written > 0:
                out_file.write(',\n')
            out_file.write(json.dumps(entry, indent=2))
            entries_written += 1

        # Close the entries array and add sanitisation metadata
        out_file.write('\n    ],\n')
        out_file.write(f'    "_meta": {json.dumps(self._har_meta(report), indent=2)}\n')
        out_file.write('  }\n}')
        return entries_written

    def sanitise(self, har_data: Union[str, Dict[str, Any]], report: Optional[RunReport] = None) -> Dict[str, Any]:
        """
        Sanitise HAR data that can be provided as either a JSON string or a dictionary

        Args:
            har_data: HAR data as either a JSON string or a dictionary
            report: Run report collecting skipped entries

        Returns:
            Sanitised HAR data as a dictionary
        """
        if isinstance(har_data, str):
            try:
                har_data = json.loads(har_data)
            except json.JSONDecodeError as e:
                logger.error(f"Error parsing HAR JSON: {str(e)}")
                raise
        return self.sanitise_har(har_data, report)
