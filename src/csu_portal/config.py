"""Configuration handling for the CSU portal clients."""

import os
from dataclasses import dataclass, field

DEFAULT_CAS_LOGIN_URL = "https://ca.csu.edu.cn/authserver/login"
DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Gecko/20100101 Firefox/145.0"


@dataclass
class ClientSettings:
    """Settings shared by every portal client.

    Configuration can be loaded from:
    1. Environment variables (CSU_CAS_URL, CSU_TIMEOUT, CSU_VERIFY_SSL, CSU_USER_AGENT)
    2. Explicit parameters
    """

    cas_login_url: str = DEFAULT_CAS_LOGIN_URL
    timeout: float = 30.0
    verify_ssl: bool = True
    user_agent: str = DEFAULT_USER_AGENT

    @classmethod
    def from_env(cls) -> "ClientSettings":
        """Load settings from environment variables.

        Environment variables:
            CSU_CAS_URL: CAS login endpoint
            CSU_TIMEOUT: Request timeout in seconds
            CSU_VERIFY_SSL: Set to "false" to disable certificate checks
            CSU_USER_AGENT: User-Agent header sent to every portal

        Returns:
            ClientSettings instance
        """
        return cls(
            cas_login_url=os.environ.get("CSU_CAS_URL", DEFAULT_CAS_LOGIN_URL),
            timeout=float(os.environ.get("CSU_TIMEOUT", "30")),
            verify_ssl=os.environ.get("CSU_VERIFY_SSL", "").lower() != "false",
            user_agent=os.environ.get("CSU_USER_AGENT", DEFAULT_USER_AGENT),
        )


@dataclass(frozen=True)
class Credential:
    """Student ID and unified-auth password for a single call."""

    student_id: str
    password: str = field(repr=False)

    @classmethod
    def from_env(cls) -> "Credential":
        """Load credentials from environment variables."""
        student_id = os.environ.get("CSU_STUDENT_ID")
        password = os.environ.get("CSU_PASSWORD")

        if not student_id or not password:
            raise ValueError("CSU_STUDENT_ID and CSU_PASSWORD must be set in environment")

        return cls(student_id=student_id, password=password)

    @property
    def masked_id(self) -> str:
        """Student ID safe for log lines."""
        return mask(self.student_id)


def mask(value: str) -> str:
    """Mask all but the first two and last characters."""
    if not value:
        return ""
    if len(value) <= 2:
        return "***"
    return f"{value[:2]}***{value[-1]}"
