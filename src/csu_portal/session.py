"""Cookie-bound async HTTP session shared by the SSO flow and portal clients."""

import logging
from typing import Any

import httpx

from .config import ClientSettings
from .exceptions import NetworkError

logger = logging.getLogger(__name__)


def _loggable(url: httpx.URL) -> str:
    # Query strings carry CAS tickets and card tokens
    return str(url.copy_with(query=None, fragment=None))


class HttpSession:
    """HTTP session bound to exactly one cookie jar.

    Every request made through the same instance replays cookies it received
    earlier (domain/path scoped, standard cookie-jar semantics). Two sessions
    never share state. A session belongs to the login sequence that created it
    and may be reused sequentially by the operation that owns it.

    Failed transport calls and non-success statuses raise NetworkError. There
    are no retries.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize session.

        Args:
            settings: Client settings. If None, loads from environment.
            transport: Optional httpx transport (tests pass httpx.MockTransport).
        """
        self.settings = settings or ClientSettings.from_env()
        self._client = httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.settings.timeout,
            verify=self.settings.verify_ssl,
            headers={"User-Agent": self.settings.user_agent},
            transport=transport,
            event_hooks={
                "request": [self._on_request],
                "response": [self._on_response],
            },
        )
        # Filled in by SsoAuthenticator after a successful login
        self.final_url: str = ""
        self.token: str = ""

    async def _on_request(self, request: httpx.Request) -> None:
        logger.debug("-> %s %s", request.method, _loggable(request.url))

    async def _on_response(self, response: httpx.Response) -> None:
        request = response.request
        logger.debug("<- %s %s %s", response.status_code, request.method, _loggable(request.url))

    @property
    def cookies(self) -> httpx.Cookies:
        """Cookie jar bound to this session."""
        return self._client.cookies

    def cookie_summary(self) -> list[tuple[str, str]]:
        """Cookie (name, domain) pairs, without values."""
        return [(c.name, c.domain) for c in self._client.cookies.jar]

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        follow_redirects: bool | None = None,
    ) -> httpx.Response:
        """Send a request through the session's cookie jar.

        Args:
            method: HTTP method
            url: Absolute URL
            params: Query parameters
            data: Form fields (sent urlencoded)
            json: JSON body
            headers: Extra headers
            follow_redirects: Override the session default (follow)

        Returns:
            Response with body already read.

        Raises:
            NetworkError: On transport failure or HTTP status >= 400.
        """
        try:
            response = await self._client.request(
                method,
                url,
                params=params,
                data=data,
                json=json,
                headers=headers,
                follow_redirects=(
                    httpx.USE_CLIENT_DEFAULT if follow_redirects is None else follow_redirects
                ),
            )
        except httpx.HTTPError as exc:
            raise NetworkError(f"{method} {url} failed: {exc}", url=url) from exc

        if response.status_code >= 400:
            raise NetworkError(
                f"HTTP {response.status_code}: {method} {_loggable(response.url)}",
                status_code=response.status_code,
                url=str(response.url),
            )
        return response

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        """Make GET request."""
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        """Make POST request."""
        return await self.request("POST", url, **kwargs)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "HttpSession":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()
