"""Wiring from a :class:`RequestConfiguration` to a rendered outcome."""

from __future__ import annotations

import sys
import uuid
from contextlib import ExitStack
from typing import BinaryIO

from ..observability.logging import (
    bind_exchange_context,
    clear_exchange_context,
    get_logger,
)
from .client import CurlClient
from .config import RequestConfiguration
from .errors import CurlishError
from .redirects import AUTHORIZATION, RedirectPolicy
from .render import ResponseOutcome, ResponseRenderer
from .request import build_request_spec
from .tls import build_tls_trust
from .transport import build_transport, resolve_target_url

logger = get_logger(__name__)


def execute(
    config: RequestConfiguration,
    *,
    stdin: BinaryIO | None = None,
    stdout: BinaryIO | None = None,
    stderr: BinaryIO | None = None,
) -> ResponseOutcome:
    """Run one curl-style exchange.

    Every file and connection opened along the way belongs to a single
    scope and is released on every exit path. Any failure aborts the
    remaining stages.

    Args:
        config: The invocation configuration.
        stdin: Body stream for ``data="@"``; defaults to process stdin.
        stdout: Primary output; defaults to process stdout.
        stderr: Verbose trace output; defaults to process stderr.

    Returns:
        The response outcome; ``outcome.exit_code`` is the value the
        process should exit with.

    Raises:
        ConfigurationError: Local input, URL, TLS material or proxy is bad.
        NetworkError: The exchange failed at the transport level.
    """
    renderer = ResponseRenderer(
        config,
        stdout=stdout if stdout is not None else sys.stdout.buffer,
        stderr=stderr if stderr is not None else sys.stderr.buffer,
    )
    bind_exchange_context(uuid.uuid4().hex)
    try:
        with ExitStack() as resources:
            spec = build_request_spec(
                config,
                resolve_target_url(config),
                resources,
                stdin if stdin is not None else sys.stdin.buffer,
            )
            tls = build_tls_trust(config)
            transport = build_transport(config, tls)
            policy = RedirectPolicy.from_config(
                config, original_authorization=spec.header(AUTHORIZATION)
            )

            client = resources.enter_context(CurlClient(transport))
            exchange = client.execute(
                spec,
                policy,
                on_request=renderer.trace_request,
                on_response=renderer.trace_response,
            )
            resources.callback(exchange.response.close)
            return renderer.render(exchange, resources)
    except CurlishError as exc:
        logger.info(
            "pipeline_aborted",
            component="pipeline",
            stage=exc.stage.value,
            error=type(exc).__name__,
        )
        raise
    finally:
        clear_exchange_context()


def describe_failure(error: CurlishError, config: RequestConfiguration) -> str | None:
    """Message an error reporter should print, honoring silent mode.

    Silent mode hides errors unless ``show_error`` is also set.
    """
    if config.silent and not config.show_error:
        return None
    return f"curlish: {error}"
