import json
import os
import shutil
import socketserver
import ssl
import subprocess
import tempfile
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

FIXED_DATE = "Thu, 01 Jan 2026 00:00:00 GMT"
DRIP_BODY = b"0123456789abcdefghij"
DRIP_INTERVAL = 0.25


class _Handler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def log_message(self, format, *args):  # noqa: A002
        pass

    def date_time_string(self, timestamp=None):
        # Fixed so identical exchanges render byte-identical headers.
        return FIXED_DATE

    def _read_body(self) -> bytes:
        if self.headers.get("Transfer-Encoding", "").lower() == "chunked":
            chunks = []
            while True:
                size = int(self.rfile.readline().split(b";")[0].strip(), 16)
                if size == 0:
                    self.rfile.readline()
                    break
                chunks.append(self.rfile.read(size))
                self.rfile.readline()
            return b"".join(chunks)
        length = int(self.headers.get("Content-Length") or 0)
        return self.rfile.read(length) if length else b""

    def _reply(self, status, body=b"", headers=()):
        self.send_response(status)
        for name, value in headers:
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def _handle(self):
        body = self._read_body()
        self.server.seen.append(
            {
                "method": self.command,
                "path": self.path,
                "headers": dict(self.headers.items()),
                "body": body,
            }
        )
        path = self.path.split("?", 1)[0]
        if path.startswith("/redirect/"):
            remaining = int(path.rsplit("/", 1)[1])
            if remaining > 0:
                return self._reply(
                    302, headers=[("Location", f"/redirect/{remaining - 1}")]
                )
            return self._reply(200, b"done")
        if path == "/see-other":
            return self._reply(303, headers=[("Location", "/echo")])
        if path == "/moved":
            return self._reply(301, headers=[("Location", "/echo")])
        if path == "/temporary":
            return self._reply(307, headers=[("Location", "/echo")])
        if path == "/status/404":
            return self._reply(404, b"not found")
        if path == "/cookies":
            return self._reply(
                200,
                b"cookies",
                headers=[
                    ("Set-Cookie", "session=abc; Path=/; HttpOnly"),
                    ("Set-Cookie", "theme=dark"),
                ],
            )
        if path == "/echo":
            payload = {
                "method": self.command,
                "headers": dict(self.headers.items()),
                "body": body.decode("utf-8", "replace"),
            }
            return self._reply(
                200,
                json.dumps(payload, sort_keys=True).encode(),
                headers=[("Content-Type", "application/json")],
            )
        if path == "/drip":
            return self._drip()
        if path == "/slow":
            time.sleep(1.0)
            return self._reply(200, b"late")
        return self._reply(200, b"hello")

    def _drip(self):
        self.send_response(200)
        self.send_header("Content-Length", str(len(DRIP_BODY)))
        self.end_headers()
        self.wfile.flush()
        for index in range(len(DRIP_BODY)):
            time.sleep(DRIP_INTERVAL)
            try:
                self.wfile.write(DRIP_BODY[index : index + 1])
                self.wfile.flush()
            except OSError:
                return

    do_GET = _handle
    do_POST = _handle
    do_PUT = _handle
    do_HEAD = _handle
    do_DELETE = _handle


class _RecordingMixin:
    daemon_threads = True

    def handle_error(self, request, client_address):
        # Client went away (timeouts); nothing to report.
        pass


class RecordingHTTPServer(_RecordingMixin, ThreadingHTTPServer):
    scheme = "http"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.seen = []

    @property
    def url(self):
        host, port = self.server_address[:2]
        return f"{self.scheme}://{host}:{port}"


class RecordingUnixHTTPServer(
    _RecordingMixin, socketserver.ThreadingMixIn, socketserver.UnixStreamServer
):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.seen = []


def _serve(server):
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return thread


@pytest.fixture
def http_server():
    server = RecordingHTTPServer(("127.0.0.1", 0), _Handler)
    _serve(server)
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def unix_server():
    # AF_UNIX paths are length-limited; keep the directory short.
    with tempfile.TemporaryDirectory(dir="/tmp") as directory:
        path = os.path.join(directory, "http.sock")
        server = RecordingUnixHTTPServer(path, _Handler)
        _serve(server)
        yield server
        server.shutdown()
        server.server_close()


_OPENSSL_CONFIG = """\
[req]
distinguished_name = dn
x509_extensions = v3
prompt = no

[dn]
CN = localhost

[v3]
basicConstraints = critical,CA:TRUE
keyUsage = critical,digitalSignature,keyEncipherment,keyCertSign
extendedKeyUsage = serverAuth,clientAuth
subjectAltName = DNS:localhost,IP:127.0.0.1
subjectKeyIdentifier = hash
authorityKeyIdentifier = keyid:always
"""


@pytest.fixture(scope="session")
def tls_material(tmp_path_factory):
    """Self-signed certificate and key valid for 127.0.0.1 and localhost."""
    openssl = shutil.which("openssl")
    if openssl is None:
        pytest.skip("openssl command not available")
    directory = tmp_path_factory.mktemp("tls")
    config = directory / "openssl.cnf"
    config.write_text(_OPENSSL_CONFIG)
    cert = directory / "cert.pem"
    key = directory / "key.pem"
    subprocess.run(
        [
            openssl, "req", "-x509", "-newkey", "rsa:2048", "-nodes",
            "-keyout", str(key), "-out", str(cert), "-days", "2",
            "-config", str(config),
        ],
        check=True,
        capture_output=True,
    )
    return {"cert": str(cert), "key": str(key)}


def _https_server(tls_material, *, require_client_cert):
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(tls_material["cert"], tls_material["key"])
    if require_client_cert:
        context.verify_mode = ssl.CERT_REQUIRED
        context.load_verify_locations(cafile=tls_material["cert"])
    server = RecordingHTTPServer(("127.0.0.1", 0), _Handler)
    server.scheme = "https"
    server.socket = context.wrap_socket(server.socket, server_side=True)
    return server


@pytest.fixture
def https_server(tls_material):
    server = _https_server(tls_material, require_client_cert=False)
    _serve(server)
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def mutual_tls_server(tls_material):
    server = _https_server(tls_material, require_client_cert=True)
    _serve(server)
    yield server
    server.shutdown()
    server.server_close()
