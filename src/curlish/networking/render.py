"""Response rendering, verbose tracing and cookie-jar persistence."""

from __future__ import annotations

from contextlib import ExitStack
from dataclasses import dataclass
from typing import BinaryIO, Iterable
from urllib.parse import urlsplit

import requests

from ..observability.logging import get_logger
from .client import Exchange
from .config import RequestConfiguration
from .errors import (
    ConfigurationError,
    ExitCode,
    NetworkError,
    RequestTimeoutError,
    Stage,
)

DEFAULT_CHUNK_SIZE = 64 * 1024
HTTP_STATUS_BAD_REQUEST = 400
SET_COOKIE = "set-cookie"

_HTTP_VERSIONS = {9: "0.9", 10: "1.0", 11: "1.1", 20: "2", 30: "3"}

logger = get_logger(__name__)


@dataclass(frozen=True)
class CookieJarRecord:
    """Serialized cookies, one entry per line."""

    entries: tuple[str, ...]

    def __bool__(self) -> bool:
        return bool(self.entries)

    def write(self, path: str) -> None:
        """Replace the contents of ``path`` with the entries."""
        try:
            with open(path, "w", encoding="utf-8", newline="\n") as jar:
                for entry in self.entries:
                    jar.write(f"{entry}\n")
        except OSError as exc:
            raise ConfigurationError(
                f"failed to create cookie jar {path}: {exc}",
                stage=Stage.RENDERING,
            ) from exc


@dataclass(frozen=True)
class ResponseOutcome:
    """What the caller learns about a completed exchange."""

    status_code: int
    reason: str
    http_version: str
    headers: tuple[tuple[str, str], ...]
    cookies: CookieJarRecord
    hops: int
    exit_code: ExitCode

    @property
    def status_line(self) -> str:
        return f"HTTP/{self.http_version} {self.status_code} {self.reason}".rstrip()


def response_headers(response: requests.Response) -> list[tuple[str, str]]:
    """Headers in received order with repeated names kept separate."""
    # HTTPHeaderDict groups repeated names; the parsed message keeps wire order.
    original = getattr(response.raw, "_original_response", None)
    message = getattr(original, "msg", None)
    if message is not None:
        return [(str(k), str(v)) for k, v in message.items()]
    raw_headers = getattr(response.raw, "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "items"):
        return [(str(k), str(v)) for k, v in raw_headers.items()]
    return list(response.headers.items())


def http_version(response: requests.Response) -> str:
    return _HTTP_VERSIONS.get(getattr(response.raw, "version", 11), "1.1")


def collect_cookies(headers: Iterable[tuple[str, str]]) -> CookieJarRecord:
    return CookieJarRecord(
        tuple(
            value.strip()
            for name, value in headers
            if name.lower() == SET_COOKIE and value.strip()
        )
    )


def exit_code_for(config: RequestConfiguration, status_code: int) -> ExitCode:
    """Fail-on-error turns an HTTP error status into a distinct exit code."""
    if config.fail_on_error and status_code >= HTTP_STATUS_BAD_REQUEST:
        return ExitCode.HTTP_ERROR
    return ExitCode.OK


def _encode(line: str) -> bytes:
    return f"{line}\n".encode("latin-1", errors="replace")


class ResponseRenderer:
    """Writes traces, headers and body to the configured destinations."""

    def __init__(
        self,
        config: RequestConfiguration,
        *,
        stdout: BinaryIO,
        stderr: BinaryIO,
    ) -> None:
        self._config = config
        self._stdout = stdout
        self._stderr = stderr
        self._log = logger.bind(component="render")

    def _write(self, stream: BinaryIO, data: bytes) -> None:
        try:
            stream.write(data)
        except OSError as exc:
            raise ConfigurationError(
                f"failed to write output: {exc}", stage=Stage.RENDERING
            ) from exc

    def trace_request(self, request: requests.PreparedRequest) -> None:
        """Echo the request line, host and headers when verbose."""
        if not self._config.verbose:
            return
        host = request.headers.get("Host") or urlsplit(request.url or "").hostname or ""
        port = urlsplit(request.url or "").port
        if "Host" not in request.headers and port is not None:
            host = f"{host}:{port}"
        lines = [f"> {request.method} {request.path_url} HTTP/1.1", f"> Host: {host}"]
        lines.extend(
            f"> {name}: {value}"
            for name, value in request.headers.items()
            if name.lower() != "host"
        )
        lines.append(">")
        self._write(self._stderr, b"".join(_encode(line) for line in lines))

    def trace_response(self, response: requests.Response) -> None:
        """Echo the status line and headers when verbose."""
        if not self._config.verbose:
            return
        lines = [
            f"< HTTP/{http_version(response)} {response.status_code} "
            f"{response.reason or ''}".rstrip()
        ]
        lines.extend(f"< {name}: {value}" for name, value in response_headers(response))
        lines.append("<")
        self._write(self._stderr, b"".join(_encode(line) for line in lines))

    def _open_output(self, resources: ExitStack) -> BinaryIO:
        if self._config.writes_to_stdout:
            return self._stdout
        path = self._config.output_file or ""
        try:
            return resources.enter_context(open(path, "wb"))
        except OSError as exc:
            raise ConfigurationError(
                f"failed to create output file {path}: {exc}",
                stage=Stage.RENDERING,
            ) from exc

    def _stream_body(self, exchange: Exchange, output: BinaryIO) -> int:
        written = 0
        try:
            for chunk in exchange.response.iter_content(chunk_size=DEFAULT_CHUNK_SIZE):
                exchange.deadline.check(Stage.RENDERING)
                self._write(output, chunk)
                written += len(chunk)
        except requests.exceptions.RequestException as exc:
            timed_out = isinstance(exc, requests.exceptions.Timeout)
            if timed_out or exchange.deadline.expired():
                raise RequestTimeoutError(
                    f"timed out reading response: {exc}", stage=Stage.RENDERING
                ) from exc
            raise NetworkError(
                f"failed to read response: {exc}", stage=Stage.RENDERING
            ) from exc
        # A cut-off read-until-close body ends without an error.
        exchange.deadline.check(Stage.RENDERING)
        return written

    def render(self, exchange: Exchange, resources: ExitStack) -> ResponseOutcome:
        """Render the final response and persist cookies.

        Args:
            exchange: Result of the execution engine.
            resources: Scope that owns the output file, if any.

        Returns:
            The outcome with its exit code.

        Raises:
            ConfigurationError: Output or cookie jar cannot be written.
            NetworkError: The body could not be read to completion.
        """
        config = self._config
        response = exchange.response
        headers = response_headers(response)
        outcome = ResponseOutcome(
            status_code=response.status_code,
            reason=response.reason or "",
            http_version=http_version(response),
            headers=tuple(headers),
            cookies=collect_cookies(headers),
            hops=exchange.hops,
            exit_code=exit_code_for(config, response.status_code),
        )

        if config.renders_headers:
            block = [outcome.status_line]
            block.extend(f"{name}: {value}" for name, value in headers)
            block.append("")
            self._write(self._stdout, b"".join(_encode(line) for line in block))

        body_bytes = 0
        if not config.headers_only and not config.silent:
            output = self._open_output(resources)
            body_bytes = self._stream_body(exchange, output)
            if config.writes_to_stdout:
                self._write(output, b"\n")
            output.flush()
        self._stdout.flush()

        if config.cookie_jar and outcome.cookies:
            outcome.cookies.write(config.cookie_jar)

        self._log.debug(
            "response_rendered",
            status_code=outcome.status_code,
            bytes=body_bytes,
            cookies=len(outcome.cookies.entries),
            exit_code=int(outcome.exit_code),
        )
        return outcome
