"""Self-signed X.509 certificate generation.

The certificate is assembled by hand from DER primitives (see
``echo_server.der``); the ``cryptography`` package is only used for RSA key
generation and for the signature itself.

    Certificate ::= SEQUENCE {
        tbsCertificate       TBSCertificate,
        signatureAlgorithm   AlgorithmIdentifier,
        signatureValue       BIT STRING }

Certificates are labelled v3 but carry no extensions (no SAN), so clients
that insist on a hostname match will still reject them.
"""

import base64
import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from echo_server import der
from echo_server.models import CertificateProfile, SelfSignedCertificate

logger = logging.getLogger(__name__)

SHA256_WITH_RSA_ENCRYPTION = "1.2.840.113549.1.1.11"
X509_VERSION_3 = b"\x02"
SERIAL_NUMBER_LENGTH = 8
PEM_LINE_WIDTH = 64


class CertificateError(RuntimeError):
    """Key generation or signing failed."""


# ---------------------------------------------------------------------------
# Name / Validity / AlgorithmIdentifier
# ---------------------------------------------------------------------------

def build_rdn(oid: str, value: str) -> bytes:
    """SET { SEQUENCE { attributeType, PrintableString value } }"""
    return der.set_of(der.sequence(der.oid(oid), der.printable_string(value)))


def build_name(profile: Optional[CertificateProfile] = None) -> bytes:
    profile = profile or CertificateProfile()
    return der.sequence(*(build_rdn(oid, value) for oid, value in profile.name_attributes()))


def build_validity(not_before: datetime, not_after: datetime) -> bytes:
    if not_after < not_before:
        raise ValueError("notAfter must not precede notBefore")
    return der.sequence(der.utc_time(not_before), der.utc_time(not_after))


def build_algorithm_identifier() -> bytes:
    # sha256WithRSAEncryption requires an explicit NULL parameter (RFC 4055)
    return der.sequence(der.oid(SHA256_WITH_RSA_ENCRYPTION), der.null())


# ---------------------------------------------------------------------------
# TBSCertificate and final assembly
# ---------------------------------------------------------------------------

def build_tbs_certificate(
    serial_number: bytes,
    not_before: datetime,
    not_after: datetime,
    public_key_der: bytes,
    profile: Optional[CertificateProfile] = None,
) -> bytes:
    """Assemble the to-be-signed certificate body.

    Field order is fixed by X.509: version, serialNumber, signature, issuer,
    validity, subject, subjectPublicKeyInfo. ``public_key_der`` is an
    already-encoded SubjectPublicKeyInfo and is embedded verbatim.
    """
    name = build_name(profile)
    return der.sequence(
        der.explicit(0, der.integer(X509_VERSION_3)),
        der.integer(serial_number),
        build_algorithm_identifier(),
        name,
        build_validity(not_before, not_after),
        name,
        bytes(public_key_der),
    )


def sign_tbs_certificate(tbs_certificate: bytes, private_key: rsa.RSAPrivateKey) -> bytes:
    """RSASSA-PKCS1-v1_5 signature over the TBS bytes; SHA-256 is applied by the primitive."""
    try:
        return private_key.sign(tbs_certificate, padding.PKCS1v15(), hashes.SHA256())
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise CertificateError(f"Failed to sign certificate: {exc}") from exc


def build_certificate(tbs_certificate: bytes, signature: bytes) -> bytes:
    return der.sequence(
        tbs_certificate,
        build_algorithm_identifier(),
        der.bit_string(signature),
    )


def pem_encode(der_bytes: bytes, label: str = "CERTIFICATE") -> str:
    b64 = base64.b64encode(der_bytes).decode("ascii")
    lines = [b64[i:i + PEM_LINE_WIDTH] for i in range(0, len(b64), PEM_LINE_WIDTH)]
    return f"-----BEGIN {label}-----\n" + "\n".join(lines) + f"\n-----END {label}-----\n"


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def generate_private_key(profile: CertificateProfile) -> rsa.RSAPrivateKey:
    try:
        return rsa.generate_private_key(
            public_exponent=profile.public_exponent,
            key_size=profile.key_size,
        )
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise CertificateError(f"Failed to generate RSA key pair: {exc}") from exc


def generate_self_signed_certificate(
    profile: Optional[CertificateProfile] = None,
    *,
    private_key: Optional[rsa.RSAPrivateKey] = None,
    serial_number: Optional[bytes] = None,
    now: Optional[datetime] = None,
) -> SelfSignedCertificate:
    """Generate an RSA key pair and a self-signed certificate for it.

    Args:
        profile: Subject name, validity period and key size. Defaults to
                 ``CertificateProfile()``.
        private_key: Existing RSA key to certify instead of generating one.
        serial_number: Serial bytes; random 8 bytes when omitted.
        now: Start of the validity window; the current UTC time when omitted.

    With all optional inputs pinned the DER output is byte-identical across
    calls.

    Raises:
        CertificateError: key generation or signing failed, or the key is not RSA.
        DerEncodingError: a value could not be encoded.
    """
    profile = profile or CertificateProfile()
    if private_key is None:
        private_key = generate_private_key(profile)
    elif not isinstance(private_key, rsa.RSAPrivateKey):
        raise CertificateError(f"Only RSA keys are supported, got {type(private_key).__name__}")

    if serial_number is None:
        serial_number = secrets.token_bytes(SERIAL_NUMBER_LENGTH)
    not_before = now or datetime.now(timezone.utc)
    not_after = not_before + timedelta(days=profile.validity_days)

    public_key_der = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    tbs = build_tbs_certificate(serial_number, not_before, not_after, public_key_der, profile)
    cert_der = build_certificate(tbs, sign_tbs_certificate(tbs, private_key))

    key_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )

    logger.info(
        "Generated self-signed certificate serial=%s sha256=%s",
        serial_number.hex(), hashlib.sha256(cert_der).hexdigest(),
    )
    return SelfSignedCertificate(
        key_pem=key_pem,
        cert_pem=pem_encode(cert_der),
        cert_der=cert_der,
        serial_number=serial_number,
        not_before=not_before,
        not_after=not_after,
    )
