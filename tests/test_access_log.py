"""Tests for the combined-format access log."""

import re

import pytest

ACCESS_LOGGER = "echo_server.access"
COMBINED_RE = re.compile(
    r'^(?P<addr>\S+) - - \[(?P<date>[^\]]+)\] "(?P<request>[^"]*)" (?P<status>\d{3}) (?P<length>\S+) '
    r'"(?P<referer>[^"]*)" "(?P<agent>[^"]*)"$'
)


def _access_lines(caplog):
    return [r.getMessage() for r in caplog.records if r.name == ACCESS_LOGGER]


class TestAccessLog:
    """Access log middleware."""

    @pytest.fixture(autouse=True)
    def _capture(self, caplog):
        caplog.set_level("INFO", logger=ACCESS_LOGGER)

    def test_combined_format(self, client, caplog):
        client.get("/a/b?x=1", headers={"User-Agent": "pytest-agent", "Referer": "http://ref.example"})
        lines = _access_lines(caplog)
        assert len(lines) == 1
        match = COMBINED_RE.match(lines[0])
        assert match is not None, lines[0]
        assert match["addr"] == "testclient"
        assert match["request"] == "GET /a/b?x=1 HTTP/1.1"
        assert match["status"] == "200"
        assert int(match["length"]) > 0
        assert match["referer"] == "http://ref.example"
        assert match["agent"] == "pytest-agent"
        assert re.match(r"\d{2}/\w{3}/\d{4}:\d{2}:\d{2}:\d{2} \+0000", match["date"])

    def test_status_override_logged(self, client, caplog):
        client.get("/", headers={"x-set-response-status-code": "404"})
        assert '" 404 ' in _access_lines(caplog)[0]

    def test_missing_referer_is_dash(self, client, caplog):
        client.get("/")
        match = COMBINED_RE.match(_access_lines(caplog)[0])
        assert match["referer"] == "-"

    def test_disabled(self, make_client, caplog):
        make_client(disable_request_logs=True).get("/")
        assert _access_lines(caplog) == []

    def test_ignored_path(self, make_client, caplog):
        client = make_client(log_ignore_path="^/healthz$")
        client.get("/healthz")
        client.get("/ready")
        lines = _access_lines(caplog)
        assert len(lines) == 1
        assert "GET /ready " in lines[0]

    def test_forwarded_client_address(self):
        from datetime import datetime, timezone

        from starlette.requests import Request

        from echo_server.access_log import format_combined

        request = Request({
            "type": "http",
            "method": "GET",
            "path": "/",
            "query_string": b"",
            "headers": [(b"x-forwarded-for", b"8.8.8.8, 1.2.3.4")],
            "client": ("127.0.0.1", 40000),
            "scheme": "http",
            "server": ("testserver", 80),
        })
        line = format_combined(request, 200, "2", datetime(2024, 1, 1, tzinfo=timezone.utc))
        assert line.startswith("1.2.3.4 - - [01/Jan/2024:00:00:00 +0000]")
