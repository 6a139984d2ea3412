import asyncio
import gzip
import ipaddress
import json
import logging
import os
import re
import socket
import zlib
from pathlib import Path
from typing import List, Optional

import jwt
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse, JSONResponse, Response

from echo_server.config import EchoSettings

logger = logging.getLogger(__name__)

router = APIRouter()

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

STATUS_HEADER = "x-set-response-status-code"
DELAY_HEADER = "x-set-response-delay-ms"
CONTENT_TYPE_HEADER = "x-set-response-content-type"


class PrettyJSONResponse(JSONResponse):
    """JSON with two-space indentation."""

    def render(self, content) -> bytes:
        return json.dumps(content, indent=2, ensure_ascii=False).encode("utf-8")


# ---------------------------------------------------------------------------
# Proxy-aware request details
# ---------------------------------------------------------------------------

TRUSTED_PROXY_NETWORKS = [
    ipaddress.ip_network(cidr) for cidr in (
        # loopback
        "127.0.0.0/8", "::1/128",
        # link-local
        "169.254.0.0/16", "fe80::/10",
        # unique local
        "10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7",
    )
]


def is_trusted_proxy(host: Optional[str]) -> bool:
    """Loopback, link-local and unique-local peers may set X-Forwarded-*."""
    if not host:
        return False
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    if ip.version == 6 and ip.ipv4_mapped:
        ip = ip.ipv4_mapped
    return any(ip in network for network in TRUSTED_PROXY_NETWORKS if network.version == ip.version)


def _forwarded_for(request: Request) -> List[str]:
    xff = request.headers.get("x-forwarded-for", "")
    return [p.strip() for p in xff.split(",") if p.strip()]


def _trusted_chain(request: Request) -> List[str]:
    """Peer address followed by X-Forwarded-For entries, nearest first.

    The walk stops at (and includes) the first address that is not a
    trusted proxy; entries further left could have been forged by the client.
    """
    peer = request.client.host if request.client else None
    if not peer:
        return []
    chain = [peer]
    for addr in reversed(_forwarded_for(request)):
        if not is_trusted_proxy(chain[-1]):
            break
        chain.append(addr)
    return chain


def get_client_ips(request: Request) -> List[str]:
    """Forwarded client addresses, furthest first, excluding the peer."""
    return list(reversed(_trusted_chain(request)[1:]))


def get_client_ip(request: Request) -> Optional[str]:
    chain = _trusted_chain(request)
    return chain[-1] if chain else None


def get_protocol(request: Request) -> str:
    peer = request.client.host if request.client else None
    proto = request.headers.get("x-forwarded-proto")
    if proto and is_trusted_proxy(peer):
        return proto.split(",")[0].strip()
    return request.url.scheme


def get_hostname(request: Request) -> Optional[str]:
    peer = request.client.host if request.client else None
    host = request.headers.get("x-forwarded-host") if is_trusted_proxy(peer) else None
    host = host or request.headers.get("host")
    if not host:
        return None
    host = host.split(",")[0].strip()
    if host.startswith("["):
        # IPv6 literal, e.g. [::1]:8080
        return host[:host.index("]") + 1]
    return host.split(":")[0]


def get_subdomains(hostname: Optional[str]) -> List[str]:
    if not hostname:
        return []
    try:
        ipaddress.ip_address(hostname.strip("[]"))
        return []
    except ValueError:
        pass
    return list(reversed(hostname.split(".")))[2:]


def decode_body(raw: bytes, content_encoding: Optional[str]) -> str:
    if content_encoding and content_encoding.lower() == "gzip":
        try:
            raw = gzip.decompress(raw)
        except (OSError, EOFError, zlib.error) as e:
            raise HTTPException(400, f"Invalid gzip body: {e}")
    return raw.decode("utf-8", errors="replace")


def decode_jwt(value: Optional[str]):
    """Decode a JWT without verifying it; ``None`` when it is not a JWT."""
    if not value:
        return value
    token = value.split(" ")[-1]
    try:
        return {
            "header": jwt.get_unverified_header(token),
            "payload": jwt.decode(token, options={"verify_signature": False}),
            "signature": token.rsplit(".", 1)[-1],
        }
    except jwt.InvalidTokenError:
        return None


def _control(request: Request, name: str) -> Optional[str]:
    """Per-request control value: header first, then query parameter."""
    return request.headers.get(name) or request.query_params.get(name)


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    match = re.match(r"\s*[+-]?\d+", value)
    return int(match.group()) if match else None


def _joined_headers(request: Request) -> dict:
    headers: dict = {}
    for key, value in request.headers.items():
        headers[key] = f"{headers[key]}, {value}" if key in headers else value
    return headers


def _cors_headers(settings: EchoSettings) -> dict:
    if not settings.cors_allow_origin:
        return {}
    headers = {"Access-Control-Allow-Origin": settings.cors_allow_origin}
    if settings.cors_allow_methods:
        headers["Access-Control-Allow-Methods"] = settings.cors_allow_methods
    if settings.cors_allow_headers:
        headers["Access-Control-Allow-Headers"] = settings.cors_allow_headers
    if settings.cors_allow_credentials:
        headers["Access-Control-Allow-Credentials"] = settings.cors_allow_credentials
    return headers


def _body_allowed(status_code: int) -> bool:
    return status_code not in (204, 304)


def _log_echo(settings: EchoSettings, path: str, echo: dict) -> None:
    if settings.log_ignore_path and re.search(settings.log_ignore_path, path):
        return
    indent = None if settings.log_without_newline else 4
    logger.info(json.dumps(echo, indent=indent, ensure_ascii=False))


# ---------------------------------------------------------------------------
# Catch-all route
# ---------------------------------------------------------------------------

@router.api_route("/{path:path}", methods=ALL_METHODS)
async def echo(request: Request, path: str):
    """Reflect the request back as JSON."""
    settings: EchoSettings = request.app.state.settings

    if settings.override_response_body_file_path:
        file_path = Path(settings.override_response_body_file_path)
        if not file_path.is_file():
            raise HTTPException(404, f"Override file not found: {file_path}")
        return FileResponse(file_path)

    body = decode_body(await request.body(), request.headers.get("content-encoding"))
    hostname = get_hostname(request)

    echo = {
        "path": request.url.path,
        "headers": _joined_headers(request),
        "method": request.method,
        "body": body,
        "cookies": dict(request.cookies),
        "hostname": hostname,
        "ip": get_client_ip(request),
        "ips": get_client_ips(request),
        "protocol": get_protocol(request),
        "query": dict(request.query_params),
        "subdomains": get_subdomains(hostname),
        "xhr": request.headers.get("x-requested-with", "").lower() == "xmlhttprequest",
        "os": {"hostname": socket.gethostname()},
    }

    if settings.include_env_vars:
        echo["env"] = dict(os.environ)

    content_type = request.headers.get("content-type", "")
    if content_type.split(";")[0].strip().lower() == "application/json":
        try:
            echo["json"] = json.loads(body)
        except ValueError as e:
            logger.warning("Invalid JSON Body received with Content-Type: application/json: %s", e)

    if settings.jwt_header:
        token = request.headers.get(settings.jwt_header.lower())
        if token:
            echo["jwt"] = decode_jwt(token)

    status_code = 200
    requested_status = _parse_int(_control(request, STATUS_HEADER))
    # 1xx cannot be sent as a final response
    if requested_status is not None and 200 <= requested_status < 600:
        status_code = requested_status

    delay_ms = _parse_int(_control(request, DELAY_HEADER))
    if delay_ms and delay_ms > 0:
        await asyncio.sleep(delay_ms / 1000)

    media_type = _control(request, CONTENT_TYPE_HEADER)
    headers = _cors_headers(settings)

    if not settings.echo_back_to_client or not _body_allowed(status_code):
        response = Response(status_code=status_code, headers=headers, media_type=media_type)
    elif request.query_params.get("response_body_only") == "true":
        response = Response(
            content=body, status_code=status_code, headers=headers,
            media_type=media_type or "text/html",
        )
    else:
        response = PrettyJSONResponse(
            echo, status_code=status_code, headers=headers,
            media_type=media_type or "application/json",
        )

    _log_echo(settings, request.url.path, echo)
    return response
