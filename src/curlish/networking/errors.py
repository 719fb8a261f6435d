"""Error taxonomy for the curlish request pipeline."""

from __future__ import annotations

from enum import Enum, IntEnum


class Stage(str, Enum):
    """Pipeline stage an error originated from."""

    REQUEST = "request build"
    TLS = "TLS setup"
    TRANSPORT = "transport"
    EXECUTION = "execution"
    RENDERING = "rendering"


class ExitCode(IntEnum):
    """Process-visible outcome of one invocation."""

    OK = 0
    FAILURE = 1
    # curl reports HTTP errors under --fail with 22
    HTTP_ERROR = 22


class CurlishError(Exception):
    """Base class for every fatal pipeline failure."""

    exit_code = ExitCode.FAILURE

    def __init__(self, message: str, *, stage: Stage) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        return f"{self.stage.value} failed: {self.message}"


class ConfigurationError(CurlishError, ValueError):
    """Bad or unreadable local input: files, URL, TLS material, proxy."""


class NetworkError(CurlishError):
    """DNS, connect, TLS handshake or protocol failure."""


class RequestTimeoutError(NetworkError):
    """Connect timeout or overall time budget exhausted."""


class TooManyRedirectsError(NetworkError):
    """Redirect chain exceeded the configured maximum."""

    def __init__(self, max_redirects: int, *, stage: Stage) -> None:
        super().__init__(f"stopped after {max_redirects} redirects", stage=stage)
        self.max_redirects = max_redirects
