"""Apache "combined" access log lines for every request.

    127.0.0.1 - - [10/Oct/2000:13:55:36 +0000] "GET /a?b=c HTTP/1.1" 200 512 "-" "curl/8.0"
"""

import logging
import re
from datetime import datetime, timezone

from fastapi import FastAPI, Request

from echo_server.config import EchoSettings
from echo_server.routes.echo import get_client_ip

access_logger = logging.getLogger("echo_server.access")

CLF_DATE_FORMAT = "%d/%b/%Y:%H:%M:%S %z"


def format_combined(request: Request, status_code: int, content_length, when: datetime) -> str:
    target = request.url.path
    if request.url.query:
        target = f"{target}?{request.url.query}"
    http_version = request.scope.get("http_version", "1.1")
    return '%s - - [%s] "%s %s HTTP/%s" %s %s "%s" "%s"' % (
        get_client_ip(request) or "-",
        when.strftime(CLF_DATE_FORMAT),
        request.method,
        target,
        http_version,
        status_code,
        content_length or "-",
        request.headers.get("referer", "-"),
        request.headers.get("user-agent", "-"),
    )


def install_access_log(app: FastAPI, settings: EchoSettings) -> None:
    """Register the access log middleware unless request logs are disabled."""
    if settings.disable_request_logs:
        return
    ignore = re.compile(settings.log_ignore_path) if settings.log_ignore_path else None

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        response = await call_next(request)
        if ignore is None or not ignore.search(request.url.path):
            access_logger.info(format_combined(
                request,
                response.status_code,
                response.headers.get("content-length"),
                datetime.now(timezone.utc),
            ))
        return response
