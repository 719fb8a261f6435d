"""Assembly of the outbound request descriptor from configuration.

Resolves the method, the body source and the header set. Files named by
the configuration are read (or, for uploads, opened) here so that a bad
local input fails before any network activity.
"""

from __future__ import annotations

from contextlib import ExitStack
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO

import requests

from .._version import __version__
from ..observability.logging import get_logger
from .config import RequestConfiguration
from .errors import ConfigurationError, Stage

DEFAULT_USER_AGENT = f"curlish/{__version__} (HTTP mode)"
DEFAULT_CONTENT_TYPE = "application/json"
COMPRESSED_ACCEPT_ENCODING = "gzip, deflate"
SUPPORTED_SCHEMES = frozenset({"http", "https"})
STDIN_MARKER = "@"
FILE_PREFIX = "@"

logger = get_logger(__name__)


class BodySource(str, Enum):
    """Origin of the request payload; exactly one is active."""

    NONE = "none"
    INLINE = "inline"
    FILE = "file"
    STDIN = "stdin"
    UPLOAD = "upload"


@dataclass(frozen=True)
class RequestSpec:
    """Immutable outbound-request descriptor."""

    method: str
    url: str
    headers: tuple[tuple[str, str], ...]
    body_source: BodySource = BodySource.NONE
    body: bytes | BinaryIO | None = field(default=None, compare=False, repr=False)

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers:
            if key.lower() == wanted:
                return value
        return None

    def prepare(self) -> requests.PreparedRequest:
        """Build the wire-level request, mapping invalid input to errors."""
        request = requests.Request(
            method=self.method,
            url=self.url,
            headers=dict(self.headers),
            data=self.body,
        )
        try:
            return request.prepare()
        except (
            requests.exceptions.InvalidURL,
            requests.exceptions.MissingSchema,
            requests.exceptions.InvalidHeader,
            ValueError,
        ) as exc:
            raise ConfigurationError(
                f"cannot create request for {self.url!r}: {exc}",
                stage=Stage.REQUEST,
            ) from exc


def infer_method(config: RequestConfiguration) -> str:
    """Return the explicit method or the one implied by the body flags."""
    if config.method:
        return config.method.upper()
    if config.headers_only:
        return "HEAD"
    if config.upload_file:
        return "PUT"
    if config.data:
        return "POST"
    return "GET"


def resolve_body(
    config: RequestConfiguration,
    resources: ExitStack,
    stdin: BinaryIO,
) -> tuple[BodySource, bytes | BinaryIO | None]:
    """Pick the single active body source.

    An upload file is opened inside ``resources`` so the caller controls
    when it is closed.
    """
    if config.upload_file:
        try:
            handle = resources.enter_context(open(config.upload_file, "rb"))
        except OSError as exc:
            raise ConfigurationError(
                f"failed to open upload file {config.upload_file}: {exc}",
                stage=Stage.REQUEST,
            ) from exc
        return BodySource.UPLOAD, handle

    if not config.data:
        return BodySource.NONE, None
    if config.data == STDIN_MARKER:
        return BodySource.STDIN, stdin
    if config.data.startswith(FILE_PREFIX):
        path = config.data[len(FILE_PREFIX) :]
        try:
            return BodySource.FILE, Path(path).read_bytes()
        except OSError as exc:
            raise ConfigurationError(
                f"failed to read data file {path}: {exc}",
                stage=Stage.REQUEST,
            ) from exc
    return BodySource.INLINE, config.data.encode("utf-8")


def parse_header_lines(lines: tuple[str, ...]) -> list[list[str]]:
    """Split ``Name: value`` lines, combining repeated names."""
    merged: list[list[str]] = []
    for line in lines:
        name, sep, value = line.partition(":")
        name = name.strip()
        if not sep or not name:
            logger.warning("header_line_skipped", component="request", line=line)
            continue
        value = value.strip()
        for existing in merged:
            if existing[0].lower() == name.lower():
                existing[1] = f"{existing[1]}, {value}"
                break
        else:
            merged.append([name, value])
    return merged


def _read_cookie(cookie: str) -> str:
    if not cookie.startswith(FILE_PREFIX):
        return cookie
    path = cookie[len(FILE_PREFIX) :]
    try:
        return Path(path).read_text(encoding="utf-8").rstrip("\r\n")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigurationError(
            f"failed to read cookie file {path}: {exc}", stage=Stage.REQUEST
        ) from exc


def _validate_url(url: str) -> None:
    candidate = requests.PreparedRequest()
    try:
        candidate.prepare_url(url, None)
    except (
        requests.exceptions.InvalidURL,
        requests.exceptions.MissingSchema,
    ) as exc:
        raise ConfigurationError(
            f"cannot parse URL {url!r}: {exc}", stage=Stage.REQUEST
        ) from exc
    scheme = url.split("://", 1)[0].lower()
    if scheme not in SUPPORTED_SCHEMES:
        raise ConfigurationError(
            f"unsupported URL scheme {scheme!r} in {url!r}",
            stage=Stage.REQUEST,
        )


def build_request_spec(
    config: RequestConfiguration,
    url: str,
    resources: ExitStack,
    stdin: BinaryIO,
) -> RequestSpec:
    """Resolve method, body and headers into a :class:`RequestSpec`.

    Args:
        config: Invocation configuration.
        url: Target URL after transport-level rewriting.
        resources: Scope that owns any file opened for the body.
        stdin: Stream used when the body comes from standard input.

    Returns:
        The immutable request descriptor.

    Raises:
        ConfigurationError: A local input could not be read or the URL
            cannot be turned into a request.
    """
    _validate_url(url)
    method = infer_method(config)
    body_source, body = resolve_body(config, resources, stdin)

    headers = parse_header_lines(tuple(config.headers))
    explicit = {name.lower() for name, _ in headers}

    def default(name: str, value: str | None) -> None:
        if value is not None and name.lower() not in explicit:
            headers.append([name, value])

    default("User-Agent", config.user_agent or DEFAULT_USER_AGENT)
    default("Referer", config.referer or None)
    if config.cookie and "cookie" not in explicit:
        default("Cookie", _read_cookie(config.cookie))
    default("Range", f"bytes={config.range}" if config.range else None)
    default(
        "Content-Type",
        DEFAULT_CONTENT_TYPE if body_source is not BodySource.NONE else None,
    )
    default(
        "Accept-Encoding",
        COMPRESSED_ACCEPT_ENCODING if config.compressed else None,
    )

    spec = RequestSpec(
        method=method,
        url=url,
        headers=tuple((name, value) for name, value in headers),
        body_source=body_source,
        body=body,
    )
    logger.debug(
        "request_spec_built",
        component="request",
        method=spec.method,
        body_source=spec.body_source.value,
    )
    return spec
