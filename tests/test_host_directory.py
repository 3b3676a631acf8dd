import asyncio

import pytest
import requests

from tambola.services.errors import AuthUnavailable
from tambola.services.host_directory import HttpHostDirectory, StaticHostDirectory


class FakeResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, headers=None, timeout=None):
        self.calls.append((url, headers, timeout))
        if self.error is not None:
            raise self.error
        return self.response


def _directory(session):
    return HttpHostDirectory("http://auth.local/api/", session=session, timeout=(1.0, 2.0))


def test_http_directory_resolves_token():
    session = FakeSession(FakeResponse(200, {"id": "host-9", "name": "Kiran", "subscription_end_date": "2099-01-01T00:00:00Z"}))
    host = asyncio.run(_directory(session).fetch_by_token("abc"))

    assert host.id == "host-9"
    assert host.can_act()
    url, headers, timeout = session.calls[0]
    assert url == "http://auth.local/api/me"
    assert headers == {"Authorization": "Bearer abc"}
    assert timeout == (1.0, 2.0)


def test_http_directory_unknown_host_is_none():
    session = FakeSession(FakeResponse(404))
    assert asyncio.run(_directory(session).fetch_host("ghost")) is None


@pytest.mark.parametrize(
    "session",
    [
        FakeSession(error=requests.Timeout("slow")),
        FakeSession(error=requests.ConnectionError("down")),
        FakeSession(FakeResponse(500)),
        FakeSession(FakeResponse(200)),
    ],
)
def test_http_directory_failures_become_auth_unavailable(session):
    with pytest.raises(AuthUnavailable):
        asyncio.run(_directory(session).fetch_host("host-1"))


def test_static_directory_reads_file(tmp_path):
    path = tmp_path / "hosts.json"
    path.write_text('{"hosts": [{"id": "h", "token": "t", "subscription_end_date": null}]}', encoding="utf-8")
    directory = StaticHostDirectory(path=path)

    host = directory.authenticate("t")
    assert host.id == "h"
    assert host.can_act() is False
    assert directory.authenticate("other") is None
    assert directory.get_host("missing") is None
