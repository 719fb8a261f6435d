"""Per-hop redirect decisions.

The policy is an immutable value: the execution engine asks it for a
decision at every redirect response and advances it after each followed
hop, so no state hides in a callback.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from urllib.parse import urljoin

import requests

from .config import RequestConfiguration
from .errors import Stage, TooManyRedirectsError

AUTHORIZATION = "Authorization"
BODY_HEADERS = ("Content-Type", "Content-Length", "Transfer-Encoding")
BODY_PRESERVING_STATUSES = frozenset({307, 308})
METHOD_REWRITING_STATUSES = frozenset({301, 302, 303})


class RedirectVerdict(str, Enum):
    FOLLOW = "follow"
    STOP_WITH_ERROR = "stop_with_error"
    STOP_SILENTLY = "stop_silently"


@dataclass(frozen=True)
class RedirectDecision:
    """Verdict for one hop plus headers to re-attach to the next request."""

    verdict: RedirectVerdict
    carry_headers: tuple[tuple[str, str], ...] = ()
    reason: str | None = None


@dataclass(frozen=True)
class RedirectPolicy:
    """Redirect following rules and the number of hops taken so far."""

    enabled: bool = False
    max_redirects: int = 0
    location_trusted: bool = False
    original_authorization: str | None = field(default=None, repr=False)
    hops: int = 0

    @classmethod
    def from_config(
        cls,
        config: RequestConfiguration,
        original_authorization: str | None = None,
    ) -> RedirectPolicy:
        return cls(
            enabled=config.follows_redirects,
            max_redirects=config.max_redirects,
            location_trusted=config.location_trusted,
            original_authorization=original_authorization,
        )

    def decide(
        self,
        response: requests.Response,
        body_replayable: bool = True,
    ) -> RedirectDecision:
        """Decide what to do with a redirect response."""
        if not self.enabled:
            return RedirectDecision(
                RedirectVerdict.STOP_SILENTLY, reason="redirects disabled"
            )
        if self.hops >= self.max_redirects:
            return RedirectDecision(
                RedirectVerdict.STOP_WITH_ERROR,
                reason=f"stopped after {self.max_redirects} redirects",
            )
        if response.status_code in BODY_PRESERVING_STATUSES and not body_replayable:
            # The body was a one-shot stream; hand the redirect back as-is.
            return RedirectDecision(
                RedirectVerdict.STOP_SILENTLY, reason="body not replayable"
            )

        carry: tuple[tuple[str, str], ...] = ()
        if self.location_trusted and self.original_authorization:
            carry = ((AUTHORIZATION, self.original_authorization),)
        return RedirectDecision(RedirectVerdict.FOLLOW, carry_headers=carry)

    def advance(self) -> RedirectPolicy:
        return replace(self, hops=self.hops + 1)

    def too_many(self) -> TooManyRedirectsError:
        return TooManyRedirectsError(self.max_redirects, stage=Stage.EXECUTION)


def redirect_method(status_code: int, method: str) -> str:
    """Method for the next hop.

    301, 302 and 303 turn anything but GET and HEAD into a bodiless GET;
    307 and 308 keep the method.
    """
    if status_code in METHOD_REWRITING_STATUSES and method not in ("GET", "HEAD"):
        return "GET"
    return method


def build_redirect_request(
    previous: requests.PreparedRequest,
    response: requests.Response,
    location: str,
    decision: RedirectDecision,
) -> requests.PreparedRequest:
    """Prepare the request for the next hop.

    Authorization is dropped unless the decision carries it forward; the
    body is kept only for 307 and 308.
    """
    next_request = previous.copy()
    base = response.url or previous.url or ""
    next_request.prepare_url(urljoin(base, location), None)
    next_request.method = redirect_method(
        response.status_code, previous.method or "GET"
    )

    if response.status_code not in BODY_PRESERVING_STATUSES:
        for name in BODY_HEADERS:
            next_request.headers.pop(name, None)
        next_request.body = None

    next_request.headers.pop(AUTHORIZATION, None)
    for name, value in decision.carry_headers:
        next_request.headers[name] = value
    return next_request
