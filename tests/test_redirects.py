# pyright: reportUnknownParameterType=false, reportMissingParameterType=false
from unittest.mock import Mock

import pytest
import requests

from curlish.networking.config import RequestConfiguration
from curlish.networking.errors import Stage, TooManyRedirectsError
from curlish.networking.redirects import (
    RedirectDecision,
    RedirectPolicy,
    RedirectVerdict,
    build_redirect_request,
    redirect_method,
)


def _mock_response(*, status: int = 302, url: str = "http://example.com/start"):
    response = Mock()
    response.status_code = status
    response.url = url
    return response


def _prepared(method="GET", url="http://example.com/start", data=None, headers=None):
    return requests.Request(
        method=method, url=url, data=data, headers=headers or {}
    ).prepare()


def test_disabled_policy_stops_silently():
    policy = RedirectPolicy.from_config(RequestConfiguration(url="http://x"))

    decision = policy.decide(_mock_response())

    assert decision.verdict is RedirectVerdict.STOP_SILENTLY


def test_policy_follows_until_limit():
    policy = RedirectPolicy(enabled=True, max_redirects=3)
    verdicts = []
    for _ in range(4):
        decision = policy.decide(_mock_response())
        verdicts.append(decision.verdict)
        if decision.verdict is RedirectVerdict.FOLLOW:
            policy = policy.advance()

    assert verdicts == [
        RedirectVerdict.FOLLOW,
        RedirectVerdict.FOLLOW,
        RedirectVerdict.FOLLOW,
        RedirectVerdict.STOP_WITH_ERROR,
    ]
    assert policy.hops == 3
    error = policy.too_many()
    assert isinstance(error, TooManyRedirectsError)
    assert error.stage is Stage.EXECUTION
    assert "stopped after 3 redirects" in str(error)


def test_zero_max_redirects_fails_on_first_redirect():
    policy = RedirectPolicy(enabled=True, max_redirects=0)

    assert policy.decide(_mock_response()).verdict is RedirectVerdict.STOP_WITH_ERROR


def test_advance_returns_new_policy():
    policy = RedirectPolicy(enabled=True, max_redirects=5)

    advanced = policy.advance()

    assert policy.hops == 0
    assert advanced.hops == 1


def test_trusted_policy_carries_original_authorization():
    config = RequestConfiguration(url="http://x", location_trusted=True)
    policy = RedirectPolicy.from_config(config, original_authorization="Bearer t")

    decision = policy.decide(_mock_response())

    assert policy.enabled
    assert decision.verdict is RedirectVerdict.FOLLOW
    assert decision.carry_headers == (("Authorization", "Bearer t"),)


def test_untrusted_policy_carries_nothing():
    config = RequestConfiguration(url="http://x", follow_redirects=True)
    policy = RedirectPolicy.from_config(config, original_authorization="Bearer t")

    assert policy.decide(_mock_response()).carry_headers == ()


@pytest.mark.parametrize("status", [307, 308])
def test_stream_body_is_not_replayed(status):
    policy = RedirectPolicy(enabled=True, max_redirects=5)

    decision = policy.decide(_mock_response(status=status), body_replayable=False)

    assert decision.verdict is RedirectVerdict.STOP_SILENTLY


def test_stream_body_does_not_block_method_changing_redirect():
    policy = RedirectPolicy(enabled=True, max_redirects=5)

    decision = policy.decide(_mock_response(status=303), body_replayable=False)

    assert decision.verdict is RedirectVerdict.FOLLOW


@pytest.mark.parametrize(
    ("status", "method", "expected"),
    [
        (301, "POST", "GET"),
        (302, "POST", "GET"),
        (302, "PUT", "GET"),
        (301, "PATCH", "GET"),
        (301, "HEAD", "HEAD"),
        (302, "GET", "GET"),
        (303, "PUT", "GET"),
        (303, "HEAD", "HEAD"),
        (307, "POST", "POST"),
        (308, "PUT", "PUT"),
    ],
)
def test_redirect_method(status, method, expected):
    assert redirect_method(status, method) == expected


def test_redirect_request_joins_relative_location_and_drops_auth():
    previous = _prepared(headers={"Authorization": "Bearer t", "X-Keep": "1"})

    following = build_redirect_request(
        previous,
        _mock_response(url="http://example.com/a/start"),
        "next?x=1",
        RedirectDecision(RedirectVerdict.FOLLOW),
    )

    assert following.url == "http://example.com/a/next?x=1"
    assert "Authorization" not in following.headers
    assert following.headers["X-Keep"] == "1"
    assert previous.headers["Authorization"] == "Bearer t"


def test_redirect_request_reattaches_carried_headers():
    previous = _prepared()

    following = build_redirect_request(
        previous,
        _mock_response(),
        "http://other.example/",
        RedirectDecision(
            RedirectVerdict.FOLLOW, carry_headers=(("Authorization", "Bearer t"),)
        ),
    )

    assert following.url == "http://other.example/"
    assert following.headers["Authorization"] == "Bearer t"


def test_redirect_request_drops_body_on_302_post():
    previous = _prepared(
        method="POST", data=b"payload", headers={"Content-Type": "application/json"}
    )

    following = build_redirect_request(
        previous, _mock_response(status=302), "/landing", RedirectDecision(RedirectVerdict.FOLLOW)
    )

    assert following.method == "GET"
    assert following.body is None
    assert "Content-Type" not in following.headers
    assert "Content-Length" not in following.headers


def test_redirect_request_keeps_body_on_307():
    previous = _prepared(method="POST", data=b"payload")

    following = build_redirect_request(
        previous, _mock_response(status=307), "/again", RedirectDecision(RedirectVerdict.FOLLOW)
    )

    assert following.method == "POST"
    assert following.body == b"payload"
    assert following.headers["Content-Length"] == "7"


def test_redirect_request_turns_put_into_bodiless_get_on_301():
    previous = _prepared(method="PUT", data=b"upload")

    following = build_redirect_request(
        previous,
        _mock_response(status=301),
        "/moved",
        RedirectDecision(RedirectVerdict.FOLLOW),
    )

    assert following.method == "GET"
    assert following.body is None
    assert "Content-Length" not in following.headers
