"""
Error taxonomy for HAR analysis.
"""


class HarOpenApiError(Exception):
    """Base class for errors raised by har-openapi"""


class MalformedCaptureError(HarOpenApiError):
    """
    The capture does not have the HAR ``log.entries`` shape.

    Fatal: the run is aborted with a non-zero exit code.
    """


class UnsupportedBodyEncodingError(HarOpenApiError):
    """
    A body uses an encoding that cannot be decoded.

    Recovered per exchange: the body is treated as opaque and schema
    inference is skipped for it.
    """

    def __init__(self, message: str, encoding: str = None):
        super().__init__(message)
        self.encoding = encoding


class ConfigurationError(HarOpenApiError):
    """The configuration file or one of its values is invalid"""


class SchemaConflictWarning(UserWarning):
    """
    A field was observed with more than one JSON type.

    Never raised; recorded in the run report and emitted as a union type.
    """

    def __init__(self, location: str, path: str, types):
        self.location = location
        self.path = path
        self.types = tuple(sorted(types))
        super().__init__(f"{location}: field '{path}' observed as {' | '.join(self.types)}")
