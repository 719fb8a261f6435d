"""Configuration model for one curl-style HTTP exchange."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from .errors import ConfigurationError, Stage

DEFAULT_MAX_REDIRECTS = 50


def _default_headers() -> Sequence[str]:
    """Return immutable empty header lines."""

    return ()


@dataclass(frozen=True)
class RequestConfiguration:
    """Everything needed to run a single request.

    Built once by the caller (usually a flag parser) and never mutated.
    Empty strings and ``None`` both mean "not set" for the optional
    string fields, matching how command-line defaults arrive.
    """

    url: str
    method: str | None = None
    headers: Sequence[str] = field(default_factory=_default_headers)
    data: str | None = None
    upload_file: str | None = None

    insecure: bool = False
    cacert: str | None = None
    cert: str | None = None
    key: str | None = None

    verbose: bool = False
    silent: bool = False
    show_error: bool = False
    include_headers: bool = False
    headers_only: bool = False
    output_file: str | None = None

    user_agent: str | None = None
    referer: str | None = None
    cookie: str | None = None
    cookie_jar: str | None = None
    range: str | None = None
    compressed: bool = False

    connect_timeout: float | None = None
    max_time: float | None = None
    unix_socket: str | None = None
    proxy: str | None = None
    no_proxy: str | None = None
    ipv4_only: bool = False
    ipv6_only: bool = False

    follow_redirects: bool = False
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    location_trusted: bool = False
    fail_on_error: bool = False

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigurationError("no URL specified", stage=Stage.REQUEST)
        if self.max_redirects < 0:
            raise ConfigurationError(
                "max_redirects must be >= 0", stage=Stage.REQUEST
            )
        if self.connect_timeout is not None and self.connect_timeout < 0:
            raise ConfigurationError(
                "connect_timeout must be >= 0 when provided",
                stage=Stage.REQUEST,
            )
        if self.max_time is not None and self.max_time < 0:
            raise ConfigurationError(
                "max_time must be >= 0 when provided", stage=Stage.REQUEST
            )
        if self.ipv4_only and self.ipv6_only:
            raise ConfigurationError(
                "ipv4_only and ipv6_only are mutually exclusive",
                stage=Stage.REQUEST,
            )

        # Freeze copied header lines to avoid post-init mutation side effects.
        object.__setattr__(self, "headers", tuple(self.headers))

    @property
    def follows_redirects(self) -> bool:
        """Trusted location following implies following redirects."""
        return self.follow_redirects or self.location_trusted

    @property
    def writes_to_stdout(self) -> bool:
        return not self.output_file or self.output_file == "-"

    @property
    def renders_headers(self) -> bool:
        return self.verbose or self.include_headers or self.headers_only
