"""Pytest fixtures for portal client tests."""

from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from csu_portal.config import ClientSettings

FIXTURES_DIR = Path(__file__).parent / "fixtures"
CAS_LOGIN_URL = "https://ca.csu.edu.cn/authserver/login"

JWC_LANDING = "http://csujwc.its.csu.edu.cn/sso.jsp?ticket=ST-1-jwc"
ECARD_BRIDGE = "https://ecard.csu.edu.cn/berserker-auth/cas/login/wisedu?ticket=ST-2-ecard"
ECARD_LANDING = "https://ecard.csu.edu.cn/plat-pc/?name=loginTransit&synjones-auth=TOKEN123"
LIBRARY_LANDING = "https://lib.csu.edu.cn/system/resource/code/auth/clogin.jsp?ticket=ST-3-lib"
OPAC_LANDING = "https://opac.lib.csu.edu.cn/csu_sso/login_auth/cas/csu/index?ticket=ST-4-opac"


def route_key(url: httpx.URL) -> str:
    return f"{url.scheme}://{url.host}{url.path}"


class FakeUpstream:
    """Answers requests by (method, URL without query) and records them."""

    def __init__(self):
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        method: str,
        url: str,
        handler: Callable[[httpx.Request], httpx.Response] | None = None,
        *,
        status: int = 200,
        text: str = "",
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        if handler is None:

            def handler(request: httpx.Request) -> httpx.Response:
                if json is not None:
                    return httpx.Response(status, json=json, headers=headers)
                return httpx.Response(status, text=text, headers=headers)

        self.routes[(method, route_key(httpx.URL(url)))] = handler

    def redirect(self, method: str, url: str, location: str, headers: dict[str, str] | None = None) -> None:
        self.add(method, url, status=302, headers={"location": location, **(headers or {})})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, route_key(request.url)))
        if handler is None:
            return httpx.Response(404, text=f"no route for {request.method} {request.url}")
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def sent(self, method: str, url: str) -> list[httpx.Request]:
        """Requests recorded for a route, in order."""
        key = route_key(httpx.URL(url))
        return [r for r in self.requests if r.method == method and route_key(r.url) == key]

    def add_cas(self, login_html: str, location: str | None) -> None:
        """CAS login page plus a credentials POST that redirects to ``location``.

        With ``location`` None the POST re-renders the login page, which is
        what CAS does for a wrong password.
        """
        self.add("GET", CAS_LOGIN_URL, text=login_html)
        if location is None:
            self.add("POST", CAS_LOGIN_URL, text=login_html)
        else:
            self.redirect("POST", CAS_LOGIN_URL, location)


@pytest.fixture
def fixtures_dir() -> Path:
    """Return path to fixtures directory."""
    return FIXTURES_DIR


@pytest.fixture
def load_fixture():
    """Factory fixture to read HTML fixtures as text."""

    def _load(name: str) -> str:
        return (FIXTURES_DIR / name).read_text(encoding="utf-8")

    return _load


@pytest.fixture
def login_html(load_fixture) -> str:
    return load_fixture("cas_login.html")


@pytest.fixture
def settings() -> ClientSettings:
    """Default settings, independent of the test environment."""
    return ClientSettings()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def jwc_upstream(upstream, login_html) -> FakeUpstream:
    """Upstream with a working CAS login for the academic affairs portal."""
    upstream.add_cas(login_html, JWC_LANDING)
    upstream.add("GET", JWC_LANDING, text="<html>ok</html>", headers={"set-cookie": "JSESSIONID=jwc-session; Path=/"})
    return upstream


@pytest.fixture
def ecard_upstream(upstream, login_html) -> FakeUpstream:
    """Upstream with a working CAS login for the campus card platform."""
    upstream.add_cas(login_html, ECARD_BRIDGE)
    upstream.redirect("GET", ECARD_BRIDGE, ECARD_LANDING)
    upstream.add("GET", ECARD_LANDING, text="<html>plat-pc</html>")
    return upstream


@pytest.fixture
def opac_upstream(upstream, login_html) -> FakeUpstream:
    """Upstream with a working CAS login for the OPAC."""
    upstream.add_cas(login_html, OPAC_LANDING)
    upstream.add("GET", OPAC_LANDING, text="ok", headers={"set-cookie": "opac_sid=abc; Path=/"})
    upstream.add("GET", "https://opac.lib.csu.edu.cn/find/unify/index", text="index")
    upstream.add("GET", "https://opac.lib.csu.edu.cn/", text="home")
    return upstream
