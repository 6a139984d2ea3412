"""
Echo Server - reflects HTTP requests back to the caller as JSON.

Serves the same app on two listeners:
- HTTP on HTTP_PORT (default 8080)
- HTTPS on HTTPS_PORT (default 8443)

HTTPS credentials come from HTTPS_KEY_FILE/HTTPS_CERT_FILE, then
privkey.pem/fullchain.pem, then a self-signed certificate generated in
memory. The process refuses to start without usable credentials.
"""

import asyncio
import signal
import ssl
import sys
from contextlib import contextmanager
from typing import Optional

import uvicorn

from echo_server.app import create_app
from echo_server.config import (
    HOST, HTTP_PORT, HTTPS_PORT, MAX_HEADER_SIZE, MTLS_CA_FILE, MTLS_ENABLE,
    EchoSettings, logger, setup_logging,
)
from echo_server.credentials import materialize_credentials, resolve_https_credentials
from echo_server.der import DerEncodingError
from echo_server.models import HttpsCredentials
from echo_server.x509 import CertificateError


class _Server(uvicorn.Server):
    """uvicorn server that leaves signal handling to ``serve()``.

    Two servers share one loop, so neither may install its own handlers.
    """

    @contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass


def _tls_options() -> dict:
    if not MTLS_ENABLE:
        return {}
    if not MTLS_CA_FILE:
        # An empty trust store would reject every presented client certificate
        logger.warning("MTLS_ENABLE is set without MTLS_CA_FILE; client certificates will not be requested")
        return {}
    return {"ssl_cert_reqs": ssl.CERT_OPTIONAL, "ssl_ca_certs": MTLS_CA_FILE}


async def serve(settings: Optional[EchoSettings], credentials: HttpsCredentials) -> None:
    app = create_app(settings)
    common = {
        "host": HOST,
        "access_log": False,
        "log_config": None,
        "h11_max_incomplete_event_size": MAX_HEADER_SIZE,
    }

    with materialize_credentials(credentials) as (certfile, keyfile):
        http_server = _Server(uvicorn.Config(app, port=HTTP_PORT, **common))
        https_server = _Server(uvicorn.Config(
            app,
            port=HTTPS_PORT,
            ssl_certfile=certfile,
            ssl_keyfile=keyfile,
            **_tls_options(),
            **common,
        ))
        servers = [http_server, https_server]

        def shut_down():
            logger.info("Got a kill signal. Trying to exit gracefully.")
            for server in servers:
                server.should_exit = True

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, shut_down)

        logger.info("Listening on ports %d for http, and %d for https.", HTTP_PORT, HTTPS_PORT)
        try:
            await asyncio.gather(*(server.serve() for server in servers))
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

    logger.info("HTTP and HTTPS servers closed.")


def main() -> None:
    setup_logging()
    try:
        credentials = resolve_https_credentials()
    except (CertificateError, DerEncodingError):
        logger.exception("Unable to obtain HTTPS credentials, not starting")
        sys.exit(1)
    logger.info("HTTPS credentials source: %s", credentials.source)
    asyncio.run(serve(EchoSettings.from_env(), credentials))


if __name__ == "__main__":
    main()
