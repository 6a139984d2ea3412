import logging
import os
from typing import Mapping, Optional

from pydantic import BaseModel

logger = logging.getLogger("echo_server")

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        return default


# Process settings (read once at import)
HOST = os.environ.get("HOST", "0.0.0.0")
HTTP_PORT = _int_env("HTTP_PORT", 8080)
HTTPS_PORT = _int_env("HTTPS_PORT", 8443)
MAX_HEADER_SIZE = _int_env("MAX_HEADER_SIZE", 1048576) or 1048576
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# TLS material
HTTPS_KEY_FILE = os.environ.get("HTTPS_KEY_FILE") or None
HTTPS_CERT_FILE = os.environ.get("HTTPS_CERT_FILE") or None
DEFAULT_KEY_FILE = "privkey.pem"
DEFAULT_CERT_FILE = "fullchain.pem"
MTLS_ENABLE = bool(os.environ.get("MTLS_ENABLE"))
MTLS_CA_FILE = os.environ.get("MTLS_CA_FILE") or None


def setup_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)


class EchoSettings(BaseModel):
    """Request-handling switches for the echo app."""

    echo_back_to_client: bool = True
    include_env_vars: bool = False
    override_response_body_file_path: Optional[str] = None
    jwt_header: Optional[str] = None

    cors_allow_origin: Optional[str] = None
    cors_allow_methods: Optional[str] = None
    cors_allow_headers: Optional[str] = None
    cors_allow_credentials: Optional[str] = None

    disable_request_logs: bool = False
    log_ignore_path: Optional[str] = None
    log_without_newline: bool = False

    prometheus_enabled: bool = False
    prometheus_metrics_path: str = "/metrics"
    prometheus_with_path: bool = False
    prometheus_with_method: bool = True
    prometheus_with_status: bool = True
    prometheus_metric_type: str = "summary"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EchoSettings":
        """Build settings from environment variables.

        Flags like ``ECHO_INCLUDE_ENV_VARS`` are on when set to any non-empty
        value; ``*_ENABLED``/``DISABLE_*``/``WITH_*`` flags require ``true``.
        """
        env = os.environ if environ is None else environ

        def _opt(name: str) -> Optional[str]:
            return env.get(name) or None

        return cls(
            echo_back_to_client=env.get("ECHO_BACK_TO_CLIENT") != "false",
            include_env_vars=bool(env.get("ECHO_INCLUDE_ENV_VARS")),
            override_response_body_file_path=_opt("OVERRIDE_RESPONSE_BODY_FILE_PATH"),
            jwt_header=_opt("JWT_HEADER"),
            cors_allow_origin=_opt("CORS_ALLOW_ORIGIN"),
            cors_allow_methods=_opt("CORS_ALLOW_METHODS"),
            cors_allow_headers=_opt("CORS_ALLOW_HEADERS"),
            cors_allow_credentials=_opt("CORS_ALLOW_CREDENTIALS"),
            disable_request_logs=env.get("DISABLE_REQUEST_LOGS") == "true",
            log_ignore_path=_opt("LOG_IGNORE_PATH"),
            log_without_newline=bool(env.get("LOG_WITHOUT_NEWLINE")),
            prometheus_enabled=env.get("PROMETHEUS_ENABLED") == "true",
            prometheus_metrics_path=env.get("PROMETHEUS_METRICS_PATH", "/metrics"),
            prometheus_with_path=env.get("PROMETHEUS_WITH_PATH") == "true",
            prometheus_with_method=env.get("PROMETHEUS_WITH_METHOD", "true") == "true",
            prometheus_with_status=env.get("PROMETHEUS_WITH_STATUS", "true") == "true",
            prometheus_metric_type=env.get("PROMETHEUS_METRIC_TYPE", "summary"),
        )
