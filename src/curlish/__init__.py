"""curl-style HTTP request execution as a library call."""

import logging

from ._version import __version__
from .networking.config import RequestConfiguration
from .networking.errors import (
    ConfigurationError,
    CurlishError,
    ExitCode,
    NetworkError,
    RequestTimeoutError,
    Stage,
    TooManyRedirectsError,
)
from .networking.pipeline import describe_failure, execute
from .networking.render import ResponseOutcome

# Silent until the embedding application configures logging.
logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "ConfigurationError",
    "CurlishError",
    "ExitCode",
    "NetworkError",
    "RequestConfiguration",
    "RequestTimeoutError",
    "ResponseOutcome",
    "Stage",
    "TooManyRedirectsError",
    "__version__",
    "describe_failure",
    "execute",
]
