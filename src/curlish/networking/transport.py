"""Transport configuration: timeouts, proxying and alternate dial targets.

Connections are made through a ``requests`` adapter that carries the TLS
context built for the exchange. When a Unix socket, an address-family
restriction or a socket watchdog is configured, the adapter's connection
pools use a dialer that replaces urllib3's default TCP connect.
"""

from __future__ import annotations

import socket
import threading
import time
import weakref
from dataclasses import dataclass, field, replace
from typing import Any, Callable, ClassVar, Mapping

import requests
from requests.adapters import DEFAULT_POOLBLOCK, HTTPAdapter
from requests.utils import get_environ_proxies, should_bypass_proxies
from urllib3 import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.exceptions import (
    ConnectTimeoutError,
    LocationParseError,
    NameResolutionError,
    NewConnectionError,
)
from urllib3.poolmanager import PoolManager
from urllib3.util import parse_url

from ..observability.logging import get_logger
from .config import RequestConfiguration
from .errors import ConfigurationError, RequestTimeoutError, Stage
from .tls import TLSTrustConfig

UNIX_SOCKET_BASE_URL = "http://localhost"
PROXY_SCHEMES = frozenset({"http", "https", "socks4", "socks4a", "socks5", "socks5h"})

logger = get_logger(__name__)


def resolve_target_url(config: RequestConfiguration) -> str:
    """Return the URL the request is built for.

    With a Unix socket the host part is irrelevant, so a bare path is
    rewritten onto a synthetic local host.
    """
    url = config.url
    if config.unix_socket and not url.lower().startswith(("http://", "https://")):
        path = url if url.startswith("/") else f"/{url}"
        return f"{UNIX_SOCKET_BASE_URL}{path}"
    return url


@dataclass(frozen=True)
class Deadline:
    """Overall time budget for an exchange, redirects and body included."""

    budget: float | None
    started: float = field(default_factory=time.monotonic)

    def remaining(self) -> float | None:
        if self.budget is None:
            return None
        return self.budget - (time.monotonic() - self.started)

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, stage: Stage) -> None:
        """Raise once the budget is spent."""
        if self.expired():
            raise RequestTimeoutError(
                f"operation timed out after {self.budget} seconds", stage=stage
            )

    def send_timeout(
        self, connect_timeout: float | None
    ) -> tuple[float | None, float | None] | None:
        """Timeout argument for one ``Session.send`` call."""
        self.check(Stage.EXECUTION)
        remaining = self.remaining()
        if remaining is None:
            if connect_timeout is None:
                return None
            return (connect_timeout, None)
        if connect_timeout is None:
            return (remaining, remaining)
        return (min(connect_timeout, remaining), remaining)


class SocketWatchdog:
    """Cuts off every tracked socket once a deadline passes.

    Per-read timeouts cannot stop a peer that keeps trickling bytes, so
    when the timer fires the sockets are shut down and any blocked read
    returns immediately.
    """

    def __init__(self) -> None:
        self._sockets: weakref.WeakSet[socket.socket] = weakref.WeakSet()
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self.fired = False

    def arm(self, deadline: Deadline) -> None:
        remaining = deadline.remaining()
        if remaining is None:
            return
        self.cancel()
        self._timer = threading.Timer(max(remaining, 0.0), self._fire)
        self._timer.daemon = True
        self._timer.start()

    def track(self, sock: socket.socket) -> None:
        with self._lock:
            if not self.fired:
                self._sockets.add(sock)
                return
        _shutdown(sock)

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self) -> None:
        with self._lock:
            self.fired = True
            sockets = list(self._sockets)
        for sock in sockets:
            _shutdown(sock)


def _shutdown(sock: socket.socket) -> None:
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        # Already closed or never connected.
        pass


def _connect_timeout(conn: HTTPConnection) -> float | None:
    timeout = conn.timeout
    if isinstance(timeout, (int, float)):
        return float(timeout)
    return socket.getdefaulttimeout()


@dataclass(frozen=True)
class Dialer:
    """Opens the raw socket for every connection of an exchange.

    ``unix_socket`` routes all connections to that path regardless of
    the URL's host and port. Otherwise addresses are resolved restricted
    to ``family`` and only addresses of that family are tried.
    """

    unix_socket: str | None = None
    family: int = socket.AF_UNSPEC
    on_connect: Callable[[socket.socket], None] | None = field(
        default=None, compare=False, repr=False
    )

    def dial(self, conn: HTTPConnection) -> socket.socket:
        sock = self._open(conn)
        if self.on_connect is not None:
            self.on_connect(sock)
        return sock

    def _open(self, conn: HTTPConnection) -> socket.socket:
        host = getattr(conn, "_dns_host", conn.host)
        timeout = _connect_timeout(conn)
        try:
            if self.unix_socket:
                return self._dial_unix(timeout)
            return self._dial_tcp(host, conn.port, timeout, conn.socket_options)
        except socket.gaierror as exc:
            raise NameResolutionError(host, conn, exc) from exc
        except TimeoutError as exc:
            raise ConnectTimeoutError(
                conn,
                f"Connection to {host} timed out. (connect timeout={timeout})",
            ) from exc
        except OSError as exc:
            raise NewConnectionError(
                conn, f"Failed to establish a new connection: {exc}"
            ) from exc

    def _dial_unix(self, timeout: float | None) -> socket.socket:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.settimeout(timeout)
            sock.connect(self.unix_socket)
        except OSError:
            sock.close()
            raise
        return sock

    def _dial_tcp(
        self,
        host: str,
        port: int | None,
        timeout: float | None,
        socket_options: Any,
    ) -> socket.socket:
        last_error: OSError | None = None
        for family, socktype, proto, _, address in socket.getaddrinfo(
            host, port, self.family, socket.SOCK_STREAM
        ):
            sock = None
            try:
                sock = socket.socket(family, socktype, proto)
                for option in socket_options or ():
                    sock.setsockopt(*option)
                sock.settimeout(timeout)
                sock.connect(address)
                return sock
            except OSError as exc:
                last_error = exc
                if sock is not None:
                    sock.close()
        if last_error is not None:
            raise last_error
        raise OSError(f"no address of the requested family for {host}")

    def pool_classes(self) -> dict[str, type[HTTPConnectionPool]]:
        """Connection pool classes whose connections use this dialer."""
        http_conn = type(
            "DialerHTTPConnection", (DialerHTTPConnection,), {"dialer": self}
        )
        https_conn = type(
            "DialerHTTPSConnection", (DialerHTTPSConnection,), {"dialer": self}
        )
        return {
            "http": type(
                "DialerHTTPConnectionPool",
                (HTTPConnectionPool,),
                {"ConnectionCls": http_conn},
            ),
            "https": type(
                "DialerHTTPSConnectionPool",
                (HTTPSConnectionPool,),
                {"ConnectionCls": https_conn},
            ),
        }


class DialerHTTPConnection(HTTPConnection):
    dialer: ClassVar[Dialer]

    def _new_conn(self) -> socket.socket:
        return self.dialer.dial(self)


class DialerHTTPSConnection(HTTPSConnection):
    dialer: ClassVar[Dialer]

    def _new_conn(self) -> socket.socket:
        return self.dialer.dial(self)


class TLSAdapter(HTTPAdapter):
    """HTTP adapter that uses a prebuilt SSL context and optional dialer."""

    def __init__(
        self,
        ssl_context: Any,
        dialer: Dialer | None = None,
        **kwargs: Any,
    ) -> None:
        self._ssl_context = ssl_context
        self._dialer = dialer
        super().__init__(**kwargs)

    def init_poolmanager(
        self,
        connections: int,
        maxsize: int,
        block: bool = DEFAULT_POOLBLOCK,
        **pool_kwargs: Any,
    ) -> None:
        pool_kwargs["ssl_context"] = self._ssl_context
        super().init_poolmanager(connections, maxsize, block, **pool_kwargs)
        self._install_dialer(self.poolmanager)

    def proxy_manager_for(self, proxy: str, **proxy_kwargs: Any) -> PoolManager:
        proxy_kwargs.setdefault("ssl_context", self._ssl_context)
        manager = super().proxy_manager_for(proxy, **proxy_kwargs)
        # SOCKS managers resolve and connect through their own pool classes.
        if not proxy.lower().startswith("socks"):
            self._install_dialer(manager)
        return manager

    def _install_dialer(self, manager: PoolManager) -> None:
        if self._dialer is not None:
            manager.pool_classes_by_scheme = self._dialer.pool_classes()


def _normalize_proxy(proxy: str) -> str:
    candidate = proxy if "://" in proxy else f"http://{proxy}"
    try:
        parsed = parse_url(candidate)
    except LocationParseError as exc:
        raise ConfigurationError(
            f"invalid proxy {proxy!r}: {exc}", stage=Stage.TRANSPORT
        ) from exc
    if (parsed.scheme or "").lower() not in PROXY_SCHEMES or not parsed.host:
        raise ConfigurationError(f"invalid proxy {proxy!r}", stage=Stage.TRANSPORT)
    return candidate


@dataclass(frozen=True)
class TransportConfig:
    """Dial and transport settings owned by one exchange."""

    tls: TLSTrustConfig
    connect_timeout: float | None = None
    max_time: float | None = None
    proxy: str | None = None
    no_proxy: str | None = None
    unix_socket: str | None = None
    family: int = socket.AF_UNSPEC

    @property
    def dialer(self) -> Dialer | None:
        if self.unix_socket:
            return Dialer(unix_socket=self.unix_socket)
        if self.family != socket.AF_UNSPEC:
            return Dialer(family=self.family)
        return None

    def start_deadline(self) -> Deadline:
        return Deadline(budget=self.max_time)

    def proxies_for(self, url: str) -> Mapping[str, str]:
        """Proxy mapping for a request to ``url``."""
        if self.unix_socket:
            return {}
        if self.proxy:
            if should_bypass_proxies(url, no_proxy=self.no_proxy):
                return {}
            return {"http": self.proxy, "https": self.proxy}
        return get_environ_proxies(url, no_proxy=self.no_proxy)

    def build_session(
        self, on_connect: Callable[[socket.socket], None] | None = None
    ) -> requests.Session:
        """Create a session that sends only the headers it is given.

        ``on_connect`` sees every socket the session dials.
        """
        session = requests.Session()
        session.headers.clear()
        session.trust_env = False
        dialer = self.dialer
        if on_connect is not None:
            dialer = replace(dialer or Dialer(), on_connect=on_connect)
        adapter = TLSAdapter(self.tls.ssl_context, dialer=dialer)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session


def build_transport(
    config: RequestConfiguration, tls: TLSTrustConfig
) -> TransportConfig:
    """Derive the transport settings for one exchange.

    Raises:
        ConfigurationError: An explicit proxy was given but cannot be
            parsed.
    """
    family = socket.AF_UNSPEC
    if config.ipv4_only:
        family = socket.AF_INET
    elif config.ipv6_only:
        family = socket.AF_INET6

    transport = TransportConfig(
        tls=tls,
        connect_timeout=config.connect_timeout or None,
        max_time=config.max_time or None,
        proxy=_normalize_proxy(config.proxy) if config.proxy else None,
        no_proxy=config.no_proxy or None,
        unix_socket=config.unix_socket or None,
        family=family,
    )
    logger.debug(
        "transport_built",
        component="transport",
        connect_timeout=transport.connect_timeout,
        max_time=transport.max_time,
        unix_socket=transport.unix_socket,
        family=socket.AddressFamily(family).name,
        proxy=transport.proxy is not None,
    )
    return transport
