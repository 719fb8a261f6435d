"""Execution engine for one logical HTTP exchange.

A single exchange may span several physical requests when redirects are
followed. Transport failures surface once as a :class:`NetworkError`;
nothing is retried.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import TracebackType
from typing import Callable

import requests

from ..observability.logging import get_logger
from .errors import (
    ConfigurationError,
    NetworkError,
    RequestTimeoutError,
    Stage,
)
from .redact import redact_headers, redact_url_credentials
from .redirects import RedirectPolicy, RedirectVerdict, build_redirect_request
from .request import RequestSpec
from .transport import Deadline, SocketWatchdog, TransportConfig

logger = get_logger(__name__)

RequestHook = Callable[[requests.PreparedRequest], None]
ResponseHook = Callable[[requests.Response], None]


@dataclass(frozen=True)
class Exchange:
    """Final response of an exchange and what it took to get there."""

    response: requests.Response
    hops: int
    deadline: Deadline


def _replayable(request: requests.PreparedRequest) -> bool:
    return request.body is None or isinstance(request.body, (bytes, str))


class CurlClient:
    """Issues requests over a transport owned by this client.

    Use as a context manager so the underlying session is closed on every
    exit path.
    """

    def __init__(self, transport: TransportConfig) -> None:
        """Create a new CurlClient.

        Args:
            transport: Timeouts, proxy, TLS and dial settings.
        """
        self._transport = transport
        self._watchdog = SocketWatchdog()
        self._session = transport.build_session(on_connect=self._watchdog.track)
        self._log = logger.bind(component="client")

    def __enter__(self) -> CurlClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._watchdog.cancel()
        self._session.close()

    def _map_request_exception(
        self,
        request: requests.PreparedRequest,
        e: requests.exceptions.RequestException,
        deadline: Deadline,
    ) -> Exception:
        """Map requests exceptions to curlish errors."""
        url = redact_url_credentials(request.url or "")
        self._log.warning(
            "exchange_failed",
            method=request.method,
            url=url,
            final_error=type(e).__name__,
        )
        if isinstance(e, requests.exceptions.Timeout) or deadline.expired():
            return RequestTimeoutError(
                f"request to {url} timed out: {e}", stage=Stage.EXECUTION
            )
        if isinstance(
            e,
            (requests.exceptions.InvalidSchema, requests.exceptions.InvalidURL),
        ):
            return ConfigurationError(
                f"cannot send request to {url}: {e}", stage=Stage.REQUEST
            )
        return NetworkError(f"request failed: {e}", stage=Stage.EXECUTION)

    def _send(
        self,
        request: requests.PreparedRequest,
        deadline: Deadline,
        on_request: RequestHook | None,
    ) -> requests.Response:
        timeout = deadline.send_timeout(self._transport.connect_timeout)
        if on_request is not None:
            on_request(request)
        self._log.debug(
            "request_sent",
            method=request.method,
            url=redact_url_credentials(request.url or ""),
            timeout_s=timeout,
            headers=redact_headers(request.headers.items()),
        )
        try:
            return self._session.send(
                request,
                stream=True,
                allow_redirects=False,
                timeout=timeout,
                verify=self._transport.tls.verify,
                proxies=self._transport.proxies_for(request.url or ""),
            )
        except requests.exceptions.RequestException as exc:
            raise self._map_request_exception(request, exc, deadline) from exc

    def execute(
        self,
        spec: RequestSpec,
        policy: RedirectPolicy,
        *,
        on_request: RequestHook | None = None,
        on_response: ResponseHook | None = None,
    ) -> Exchange:
        """Run one exchange, following redirects as the policy allows.

        Args:
            spec: The request to send.
            policy: Redirect rules; consulted at every redirect response.
            on_request: Called with each physical request before it is sent.
            on_response: Called with each physical response as it arrives.

        Returns:
            The final response, which the caller must close.

        Raises:
            NetworkError: Transport failure, timeout, or too many redirects.
            ConfigurationError: The request cannot be built or routed.
        """
        deadline = self._transport.start_deadline()
        self._watchdog.arm(deadline)
        request = spec.prepare()
        response = self._send(request, deadline, on_request)
        try:
            while True:
                if on_response is not None:
                    on_response(response)
                location = self._session.get_redirect_target(response)
                if location is None:
                    break

                decision = policy.decide(response, body_replayable=_replayable(request))
                if decision.verdict is RedirectVerdict.STOP_SILENTLY:
                    self._log.debug(
                        "redirect_not_followed",
                        status_code=response.status_code,
                        reason=decision.reason,
                    )
                    break
                if decision.verdict is RedirectVerdict.STOP_WITH_ERROR:
                    error = policy.too_many()
                    self._log.warning(
                        "exchange_failed",
                        method=request.method,
                        url=redact_url_credentials(request.url or ""),
                        final_error=type(error).__name__,
                    )
                    raise error

                request = build_redirect_request(request, response, location, decision)
                response.close()
                policy = policy.advance()
                self._log.info(
                    "redirect_followed",
                    hop=policy.hops,
                    status_code=response.status_code,
                    location=redact_url_credentials(request.url or ""),
                )
                response = self._send(request, deadline, on_request)
        except BaseException:
            response.close()
            raise

        self._log.info(
            "exchange_complete",
            method=request.method,
            url=redact_url_credentials(response.url or request.url or ""),
            status_code=response.status_code,
            hops=policy.hops,
        )
        return Exchange(response=response, hops=policy.hops, deadline=deadline)
