"""Tests for HTTPS credential resolution."""

import os
import ssl
import stat

import pytest
from cryptography import x509 as cx509

from echo_server import credentials as credentials_module
from echo_server.credentials import materialize_credentials, resolve_https_credentials
from echo_server.models import HttpsCredentials
from echo_server.x509 import CertificateError, generate_self_signed_certificate


@pytest.fixture
def pem_pair(rsa_key, fixed_now):
    cert = generate_self_signed_certificate(private_key=rsa_key, now=fixed_now)
    return cert.key_pem, cert.cert_pem.encode("ascii")


@pytest.fixture
def fast_generation(monkeypatch, rsa_key):
    """Generate with the shared session key instead of a fresh 2048-bit one."""
    calls = []

    def _generate(profile=None):
        calls.append(profile)
        return generate_self_signed_certificate(profile, private_key=rsa_key)

    monkeypatch.setattr(credentials_module, "generate_self_signed_certificate", _generate)
    return calls


class TestResolveHttpsCredentials:
    """Configured files -> default files -> generated."""

    def test_configured_files(self, tmp_path, pem_pair, fast_generation):
        key, cert = pem_pair
        (tmp_path / "k.pem").write_bytes(key)
        (tmp_path / "c.pem").write_bytes(cert)

        creds = resolve_https_credentials(str(tmp_path / "k.pem"), str(tmp_path / "c.pem"))
        assert creds.source == "configured"
        assert creds.key == key
        assert creds.cert == cert
        assert creds.key_path == str((tmp_path / "k.pem").resolve())
        assert fast_generation == []

    def test_unreadable_configured_falls_back_to_defaults(self, tmp_path, monkeypatch, pem_pair, fast_generation):
        key, cert = pem_pair
        monkeypatch.chdir(tmp_path)
        (tmp_path / "privkey.pem").write_bytes(key)
        (tmp_path / "fullchain.pem").write_bytes(cert)

        creds = resolve_https_credentials("/nonexistent/key.pem", "/nonexistent/cert.pem")
        assert creds.source == "default"
        assert creds.cert == cert
        assert fast_generation == []

    def test_only_one_configured_file_is_ignored(self, tmp_path, monkeypatch, pem_pair, fast_generation):
        key, cert = pem_pair
        monkeypatch.chdir(tmp_path)
        (tmp_path / "k.pem").write_bytes(key)
        (tmp_path / "privkey.pem").write_bytes(key)
        (tmp_path / "fullchain.pem").write_bytes(cert)

        creds = resolve_https_credentials(str(tmp_path / "k.pem"), None)
        assert creds.source == "default"

    def test_missing_files_generate(self, tmp_path, monkeypatch, fast_generation):
        monkeypatch.chdir(tmp_path)
        creds = resolve_https_credentials(None, None)
        assert creds.source == "generated"
        assert creds.key_path is None
        assert len(fast_generation) == 1

        parsed = cx509.load_pem_x509_certificate(creds.cert)
        assert parsed.subject.rfc4514_string() == "CN=my.example.com,O=Mendhak,L=London,ST=London,C=GB"

    def test_partial_defaults_generate(self, tmp_path, monkeypatch, pem_pair, fast_generation):
        """A default key without its certificate is not usable."""
        monkeypatch.chdir(tmp_path)
        (tmp_path / "privkey.pem").write_bytes(pem_pair[0])

        creds = resolve_https_credentials(None, None)
        assert creds.source == "generated"

    def test_generation_failure_propagates(self, tmp_path, monkeypatch):
        def broken(profile=None):
            raise CertificateError("signing failed")

        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(credentials_module, "generate_self_signed_certificate", broken)
        with pytest.raises(CertificateError):
            resolve_https_credentials(None, None)

    def test_read_failure_is_logged(self, tmp_path, monkeypatch, caplog, fast_generation):
        monkeypatch.chdir(tmp_path)
        with caplog.at_level("INFO", logger="echo_server.credentials"):
            resolve_https_credentials("/nonexistent/key.pem", "/nonexistent/cert.pem")
        messages = [r.getMessage() for r in caplog.records]
        assert any("Could not read cert files" in m for m in messages)
        assert any("Generating self-signed certificate" in m for m in messages)


class TestMaterializeCredentials:
    """Paths handed to the TLS listener."""

    def test_file_backed_credentials_use_original_paths(self, tmp_path, pem_pair):
        creds = HttpsCredentials(
            key=pem_pair[0], cert=pem_pair[1], source="configured",
            key_path=str(tmp_path / "k.pem"), cert_path=str(tmp_path / "c.pem"),
        )
        with materialize_credentials(creds) as (cert_path, key_path):
            assert cert_path == str(tmp_path / "c.pem")
            assert key_path == str(tmp_path / "k.pem")

    def test_generated_credentials_written_and_removed(self, pem_pair):
        creds = HttpsCredentials(key=pem_pair[0], cert=pem_pair[1], source="generated")
        with materialize_credentials(creds) as (cert_path, key_path):
            with open(cert_path, "rb") as fh:
                assert fh.read() == pem_pair[1]
            assert stat.S_IMODE(os.stat(key_path).st_mode) == 0o600

            ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            ctx.load_cert_chain(cert_path, key_path)

        assert not os.path.exists(cert_path)
        assert not os.path.exists(key_path)
