"""
HAR to OpenAPI - infer OpenAPI documents from captured HTTP traffic, and sanitise the captures.
"""

__version__ = "1.0.0"

from .errors import MalformedCaptureError, UnsupportedBodyEncodingError, SchemaConflictWarning, ConfigurationError
from .loader import load_capture, read_capture
from .clusterer import cluster, merge_templates
from .inferrer import infer_endpoint, infer_all
from .sanitiser import Sanitiser, SanitisationRule
from .emitter import build_document, dump_document
from .validator import validate_document
from .report import RunReport
from .utils import read_har_file, write_har_file
from .cli import main
