"""TLS trust and client identity derived from file-based inputs."""

from __future__ import annotations

import ssl
from dataclasses import dataclass, field

from ..observability.logging import get_logger
from .config import RequestConfiguration
from .errors import ConfigurationError, Stage

logger = get_logger(__name__)


@dataclass(frozen=True)
class TLSTrustConfig:
    """Verification mode, trust anchors and client identity.

    ``ssl_context`` is fully built; the other fields record where it came
    from for tracing and tests.
    """

    verify: bool
    ca_bundle: str | None
    client_identity: tuple[str, str] | None
    ssl_context: ssl.SSLContext = field(compare=False, repr=False)


def _insecure_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def _trusting_context(ca_bundle: str | None) -> ssl.SSLContext:
    if ca_bundle is None:
        return ssl.create_default_context()
    try:
        return ssl.create_default_context(cafile=ca_bundle)
    except (OSError, ssl.SSLError) as exc:
        raise ConfigurationError(
            f"failed to load CA certificate {ca_bundle}: {exc}",
            stage=Stage.TLS,
        ) from exc


def build_tls_trust(config: RequestConfiguration) -> TLSTrustConfig:
    """Build the TLS configuration for one exchange.

    Insecure mode disables verification entirely and never reads the CA
    bundle, even when one is configured. Missing CA bundle or client
    identity falls back to system trust and no client certificate.

    Raises:
        ConfigurationError: The CA bundle is unreadable or holds no valid
            certificate, or the client certificate/key pair cannot be
            loaded.
    """
    log = logger.bind(component="tls")
    ca_bundle = config.cacert or None
    if config.insecure:
        if ca_bundle:
            log.debug("ca_bundle_ignored", reason="insecure", cacert=ca_bundle)
        context = _insecure_context()
        ca_bundle = None
    else:
        context = _trusting_context(ca_bundle)

    identity: tuple[str, str] | None = None
    if config.cert and config.key:
        try:
            context.load_cert_chain(certfile=config.cert, keyfile=config.key)
        except (OSError, ssl.SSLError) as exc:
            raise ConfigurationError(
                f"failed to load client certificate {config.cert} "
                f"with key {config.key}: {exc}",
                stage=Stage.TLS,
            ) from exc
        identity = (config.cert, config.key)
    elif config.cert or config.key:
        log.warning(
            "client_identity_incomplete",
            cert=config.cert,
            key=config.key,
        )

    return TLSTrustConfig(
        verify=not config.insecure,
        ca_bundle=ca_bundle,
        client_identity=identity,
        ssl_context=context,
    )
