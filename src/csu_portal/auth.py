"""CSU unified authentication (CAS) login.

One state machine serves every portal; the portal-specific parts come from a
PortalConfig:

    INIT -> FETCH_LOGIN_PAGE -> PARSE_FORM -> SUBMIT_CREDENTIALS
         -> VALIDATE_REDIRECT -> AUTHENTICATED | FAILED
"""

import enum
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator
from urllib.parse import parse_qs, urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from .cipher import encrypt_password
from .config import ClientSettings, Credential
from .exceptions import AuthParseError, AuthRejected
from .portals import PortalConfig
from .session import HttpSession

logger = logging.getLogger(__name__)


class LoginState(enum.Enum):
    INIT = "init"
    FETCH_LOGIN_PAGE = "fetch_login_page"
    PARSE_FORM = "parse_form"
    SUBMIT_CREDENTIALS = "submit_credentials"
    VALIDATE_REDIRECT = "validate_redirect"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass(frozen=True)
class LoginForm:
    """Hidden fields scraped from the CAS login page."""

    execution: str
    salt: str
    lt: str = ""
    event_id: str = "submit"
    cllt: str = "userNameLogin"
    dllt: str = "generalLogin"

    def form_data(self, username: str, encrypted_password: str) -> dict[str, str]:
        """Build the urlencoded login body."""
        return {
            "username": username,
            "password": encrypted_password,
            "passwordText": "",
            "lt": self.lt,
            "execution": self.execution,
            "_eventId": self.event_id,
            "cllt": self.cllt,
            "dllt": self.dllt,
        }


def _input_value(soup: BeautifulSoup, selector: str, default: str = "") -> str:
    element = soup.select_one(selector)
    if element is None or element.get("value") is None:
        return default
    return element["value"].strip()


def parse_login_form(html: str) -> LoginForm:
    """Extract hidden login fields and the encryption salt.

    Args:
        html: CAS login page

    Returns:
        LoginForm with defaults filled in for optional fields.

    Raises:
        AuthParseError: If ``execution`` or the salt is absent.
    """
    soup = BeautifulSoup(html, "lxml")

    execution = _input_value(soup, "input[name=execution]")
    salt = _input_value(soup, "#pwdEncryptSalt")
    if not execution or not salt:
        missing = [name for name, value in (("execution", execution), ("pwdEncryptSalt", salt)) if not value]
        raise AuthParseError(f"Login page parse failed, missing: {', '.join(missing)}")

    return LoginForm(
        execution=execution,
        salt=salt,
        lt=_input_value(soup, "input[name=lt]"),
        event_id=_input_value(soup, "input[name=_eventId]", "submit"),
        cllt=_input_value(soup, "input[name=cllt][value=userNameLogin]", "userNameLogin"),
        dllt=_input_value(soup, "input[name=dllt]", "generalLogin"),
    )


class SsoAuthenticator:
    """Perform one portal's CAS login and hand back the authenticated session.

    Use one instance per login sequence; ``state`` tracks that sequence.
    """

    def __init__(
        self,
        portal: PortalConfig,
        settings: ClientSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize authenticator.

        Args:
            portal: Portal whose ``service`` the login targets
            settings: Client settings. If None, loads from environment.
            transport: Optional httpx transport for the created session
        """
        self.portal = portal
        self.settings = settings or ClientSettings.from_env()
        self.transport = transport
        self.state = LoginState.INIT

    async def login(self, credential: Credential) -> HttpSession:
        """Run the full login flow.

        Args:
            credential: Student ID and raw password

        Returns:
            HttpSession holding the portal's cookies. ``final_url`` and
            ``token`` are set from the last login redirect.

        Raises:
            NetworkError: If any request fails.
            AuthParseError: If the login page lacks required fields.
            AuthRejected: If CAS did not redirect to the portal.
        """
        logger.info("[%s] login start for %s", self.portal.name, credential.masked_id)
        session = HttpSession(self.settings, self.transport)
        try:
            page = await self._fetch_login_page(session)
            form = self._parse_form(page.text)
            post_url = str(page.url)
            response = await self._submit_credentials(session, post_url, form, credential)
            final_url = self._validate_redirect(response, post_url)

            session.final_url = final_url
            session.token = self._extract_token(final_url)
            await self._prime(session, final_url)
        except Exception:
            self.state = LoginState.FAILED
            await session.aclose()
            raise

        self.state = LoginState.AUTHENTICATED
        logger.info(
            "[%s] session established for %s at %s",
            self.portal.name,
            credential.masked_id,
            urlparse(session.final_url).hostname,
        )
        logger.debug("[%s] cookies: %s", self.portal.name, session.cookie_summary())
        return session

    async def _fetch_login_page(self, session: HttpSession) -> httpx.Response:
        self.state = LoginState.FETCH_LOGIN_PAGE
        response = await session.get(self.portal.login_url(self.settings.cas_login_url))
        logger.debug("[%s] login page %s, %d bytes", self.portal.name, response.status_code, len(response.text))
        return response

    def _parse_form(self, html: str) -> LoginForm:
        self.state = LoginState.PARSE_FORM
        return parse_login_form(html)

    async def _submit_credentials(
        self,
        session: HttpSession,
        post_url: str,
        form: LoginForm,
        credential: Credential,
    ) -> httpx.Response:
        self.state = LoginState.SUBMIT_CREDENTIALS
        encrypted = encrypt_password(credential.password, form.salt)
        # Post to where the login page ended up, not where it started
        return await session.post(
            post_url,
            data=form.form_data(credential.student_id, encrypted),
            follow_redirects=self.portal.follow_login_redirects,
        )

    def _validate_redirect(self, response: httpx.Response, post_url: str) -> str:
        self.state = LoginState.VALIDATE_REDIRECT
        if self.portal.follow_login_redirects:
            final_url = str(response.url)
        else:
            location = response.headers.get("location", "")
            final_url = urljoin(post_url, location) if location else ""

        host = urlparse(final_url).hostname or ""
        if self.portal.expected_host not in host:
            logger.warning("[%s] login did not reach %s (landed on %r)", self.portal.name, self.portal.expected_host, host)
            raise AuthRejected(f"{self.portal.name}: bad credentials or portal unreachable")
        return final_url

    def _extract_token(self, final_url: str) -> str:
        if not self.portal.token_param:
            return ""
        values = parse_qs(urlparse(final_url).query).get(self.portal.token_param, [])
        if not values:
            logger.warning("[%s] no %s on landing URL", self.portal.name, self.portal.token_param)
            return ""
        return values[0]

    async def _prime(self, session: HttpSession, final_url: str) -> None:
        for step in self.portal.priming:
            response = await session.get(step.resolve(final_url))
            logger.debug("[%s] primed %s", self.portal.name, response.url.host)


@asynccontextmanager
async def portal_session(
    portal: PortalConfig,
    student_id: str,
    password: str,
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[HttpSession]:
    """Log in to a portal and close the session on exit.

    Args:
        portal: Target portal
        student_id: Student ID
        password: Raw unified-auth password
        settings: Client settings. If None, loads from environment.
        transport: Optional httpx transport

    Yields:
        Authenticated HttpSession
    """
    authenticator = SsoAuthenticator(portal, settings, transport)
    session = await authenticator.login(Credential(student_id, password))
    async with session:
        yield session


@asynccontextmanager
async def anonymous_session(
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[HttpSession]:
    """Fresh, unauthenticated session for public endpoints."""
    async with HttpSession(settings, transport) as session:
        yield session
