"""Per-portal CAS login parameters.

Every portal behind the unified CAS server logs in through the same state
machine (see auth.SsoAuthenticator). The differences live here: the
``service`` target CAS redirects back to, the host that redirect must land on,
and any priming requests needed before protected endpoints set their cookies.
"""

from dataclasses import dataclass
from urllib.parse import urlencode

# Placeholder in PrimingStep.url replaced with the login redirect URL
LOGIN_REDIRECT = "{redirect}"


@dataclass(frozen=True)
class PrimingStep:
    """GET issued after login only to make the server set extra cookies."""

    url: str

    def resolve(self, redirect_url: str) -> str:
        """Substitute the login redirect URL into the step URL."""
        return self.url.replace(LOGIN_REDIRECT, redirect_url)


@dataclass(frozen=True)
class PortalConfig:
    """Static CAS parameters for one portal."""

    name: str
    service_url: str
    expected_host: str
    priming: tuple[PrimingStep, ...] = ()
    # False: stop at the CAS 302 and validate its Location instead
    follow_login_redirects: bool = True
    # Query parameter on the final redirect URL carrying an API token
    token_param: str | None = None

    def login_url(self, cas_login_url: str) -> str:
        """CAS login URL with this portal's service target."""
        return f"{cas_login_url}?{urlencode({'service': self.service_url})}"


JWC = PortalConfig(
    name="jwc",
    service_url="http://csujwc.its.csu.edu.cn/sso.jsp",
    expected_host="csujwc.its.csu.edu.cn",
)

ECARD = PortalConfig(
    name="ecard",
    service_url=(
        "https://ecard.csu.edu.cn/berserker-auth/cas/login/wisedu"
        "?targetUrl=https://ecard.csu.edu.cn/plat-pc/?name=loginTransit"
    ),
    expected_host="ecard.csu.edu.cn",
    # Revisit the landing page so the card platform stores its session
    priming=(PrimingStep(LOGIN_REDIRECT),),
    token_param="synjones-auth",
)

LIBRARY = PortalConfig(
    name="library",
    service_url="https://lib.csu.edu.cn/system/resource/code/auth/clogin.jsp",
    expected_host="lib.csu.edu.cn",
)

# OPAC cookies are scoped to opac.lib.csu.edu.cn paths the ticket redirect
# alone does not cover; the unified search index and site root set them.
OPAC = PortalConfig(
    name="opac",
    service_url="https://opac.lib.csu.edu.cn/csu_sso/login_auth/cas/csu/index",
    expected_host="opac.lib.csu.edu.cn",
    priming=(
        PrimingStep(LOGIN_REDIRECT),
        PrimingStep("https://opac.lib.csu.edu.cn/find/unify/index"),
        PrimingStep("https://opac.lib.csu.edu.cn/"),
    ),
    follow_login_redirects=False,
)

PORTALS = {portal.name: portal for portal in (JWC, ECARD, LIBRARY, OPAC)}
