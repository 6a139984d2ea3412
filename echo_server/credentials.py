"""HTTPS credential resolution.

Evaluated once at startup, in order:

1. ``HTTPS_KEY_FILE`` + ``HTTPS_CERT_FILE`` when both are set and readable
2. ``privkey.pem`` + ``fullchain.pem`` in the working directory
3. a self-signed certificate generated in memory

File read failures fall through to the next step. Generation has no
fallback: its errors propagate and the HTTPS listener must not start.
"""

import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Tuple

from echo_server.config import (
    DEFAULT_CERT_FILE, DEFAULT_KEY_FILE, HTTPS_CERT_FILE, HTTPS_KEY_FILE,
)
from echo_server.models import CertificateProfile, HttpsCredentials
from echo_server.x509 import generate_self_signed_certificate

logger = logging.getLogger(__name__)


def _read_pair(key_file: str, cert_file: str, source: str) -> HttpsCredentials:
    """Read both files or raise OSError."""
    return HttpsCredentials(
        key=Path(key_file).read_bytes(),
        cert=Path(cert_file).read_bytes(),
        source=source,
        key_path=str(Path(key_file).resolve()),
        cert_path=str(Path(cert_file).resolve()),
    )


def resolve_https_credentials(
    key_file: Optional[str] = HTTPS_KEY_FILE,
    cert_file: Optional[str] = HTTPS_CERT_FILE,
    default_key_file: str = DEFAULT_KEY_FILE,
    default_cert_file: str = DEFAULT_CERT_FILE,
    profile: Optional[CertificateProfile] = None,
) -> HttpsCredentials:
    if key_file and cert_file:
        try:
            credentials = _read_pair(key_file, cert_file, "configured")
            logger.info("Using HTTPS credentials from %s and %s", key_file, cert_file)
            return credentials
        except OSError as e:
            logger.info("Could not read cert files (%s), trying default locations", e)

    try:
        credentials = _read_pair(default_key_file, default_cert_file, "default")
        logger.info("Using HTTPS credentials from %s and %s", default_key_file, default_cert_file)
        return credentials
    except OSError:
        logger.info("Generating self-signed certificate in memory...")

    generated = generate_self_signed_certificate(profile)
    return HttpsCredentials(
        key=generated.key_pem,
        cert=generated.cert_pem.encode("ascii"),
        source="generated",
    )


@contextmanager
def materialize_credentials(credentials: HttpsCredentials) -> Iterator[Tuple[str, str]]:
    """Yield ``(cert_path, key_path)`` usable by ``ssl.SSLContext.load_cert_chain``.

    File-backed credentials yield their own paths. In-memory credentials are
    written to a private temporary directory that is removed on exit.
    """
    if credentials.cert_path and credentials.key_path:
        yield credentials.cert_path, credentials.key_path
        return

    with tempfile.TemporaryDirectory(prefix="echo-server-tls-") as tmpdir:
        cert_path = os.path.join(tmpdir, "cert.pem")
        key_path = os.path.join(tmpdir, "key.pem")
        for path, data in ((cert_path, credentials.cert), (key_path, credentials.key)):
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
        yield cert_path, key_path
