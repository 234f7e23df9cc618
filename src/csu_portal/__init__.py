"""CSU unified-auth portal clients.

Logs in to Central South University's CAS server on a student's behalf and
extracts data from the portals behind it: academic affairs (grades, rank,
schedule, profile, minor program), the campus card, the library catalog,
OPAC and seat system, and the shuttle bus timetable.
"""

from .auth import LoginState, SsoAuthenticator, parse_login_form, portal_session
from .bus import BusDeparture, search_bus
from .cipher import encrypt_password
from .config import ClientSettings, Credential
from .ecard import CardSnapshot, TurnoverPage, fetch_card_info, fetch_card_turnover
from .exceptions import (
    AuthenticationError,
    AuthParseError,
    AuthRejected,
    EmptyField,
    MissingSaltError,
    NetworkError,
    PageMarkerMissing,
    PortalError,
)
from .jwc import (
    fetch_grades,
    fetch_level_exams,
    fetch_minor_program,
    fetch_rank,
    fetch_student_plan,
    fetch_student_profile,
    fetch_timetable,
)
from .library import (
    fetch_book_copies,
    fetch_seat_campuses,
    library_request,
    search_books,
    search_library_db,
)
from .portals import ECARD, JWC, LIBRARY, OPAC, PortalConfig
from .session import HttpSession
from .summary import fetch_grade_summary, grade_summary_markdown

__all__ = [
    "ClientSettings",
    "Credential",
    "HttpSession",
    "PortalConfig",
    "JWC",
    "ECARD",
    "LIBRARY",
    "OPAC",
    "LoginState",
    "SsoAuthenticator",
    "parse_login_form",
    "portal_session",
    "encrypt_password",
    "PortalError",
    "NetworkError",
    "MissingSaltError",
    "AuthenticationError",
    "AuthParseError",
    "AuthRejected",
    "PageMarkerMissing",
    "EmptyField",
    "fetch_grades",
    "fetch_rank",
    "fetch_timetable",
    "fetch_level_exams",
    "fetch_student_profile",
    "fetch_minor_program",
    "fetch_student_plan",
    "fetch_grade_summary",
    "grade_summary_markdown",
    "CardSnapshot",
    "TurnoverPage",
    "fetch_card_info",
    "fetch_card_turnover",
    "search_library_db",
    "search_books",
    "fetch_book_copies",
    "fetch_seat_campuses",
    "library_request",
    "BusDeparture",
    "search_bus",
]
