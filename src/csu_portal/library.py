"""Library clients: catalog database search, OPAC search, and seat availability.

Two authentication domains are involved. The general library portal
(lib.csu.edu.cn) and the OPAC (opac.lib.csu.edu.cn) each need their own CAS
login; the database list and the seat system are public.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, replace
from typing import Any
from urllib.parse import urljoin

import httpx
from bs4 import Tag

from .auth import anonymous_session, portal_session
from .config import ClientSettings, mask
from .exceptions import PortalError
from .parsing import clean_text, load_html
from .portals import LIBRARY, OPAC
from .session import HttpSession

logger = logging.getLogger(__name__)

OPAC_BASE = "https://opac.lib.csu.edu.cn"
OPAC_SEARCH_URL = f"{OPAC_BASE}/find/unify/search"
OPAC_GROUP_ITEMS_URL = f"{OPAC_BASE}/find/physical/groupitems"
OPAC_DETAIL_URL = f"{OPAC_BASE}/#/searchDetail?recordId={{record_id}}"
# Tenant id of the CSU library in the shared OPAC platform
OPAC_GROUP_CODE = "800388"

LIBDB_BASE = "https://libdb.csu.edu.cn/"
LIBDB_SEARCH_URL = urljoin(LIBDB_BASE, "accessData")

SEAT_BASE = "https://libzw.csu.edu.cn"
SEAT_HOME_URL = f"{SEAT_BASE}/home/web/f_second"
SEAT_PAGE_URL = f"{SEAT_BASE}/home/web/seat/area/{{area_id}}"
SEAT_AREA_API_URL = f"{SEAT_BASE}/api.php/v3areas/{{area_id}}"

QUOTA_PATTERN = re.compile(r"今日剩余\s*(\d+)[^0-9]+总量\s*(\d+)")
AREA_ID_PATTERN = re.compile(r"area/(\d+)")
ACCESS_ID_PATTERN = re.compile(r"jinru\('[^']*','([^']+)'")


def _opac_headers() -> dict[str, str]:
    return {
        "accept": "application/json, text/plain, */*",
        "origin": OPAC_BASE,
        "referer": f"{OPAC_BASE}/",
        "x-lang": "CHI",
        "groupcode": OPAC_GROUP_CODE,
    }


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


def _string_list(value: Any) -> tuple[str, ...]:
    if isinstance(value, list):
        return tuple(str(v) for v in value if v)
    if value is None or value == "":
        return ()
    return (str(value),)


# =============================================================================
# Catalog database search (libdb)
# =============================================================================


@dataclass(frozen=True)
class DatabaseEntry:
    """One electronic resource database listed by libdb."""

    index: str
    name: str
    detail_url: str
    access_id: str


@dataclass(frozen=True)
class DatabaseSearchResult:
    local: tuple[DatabaseEntry, ...]
    foreign: tuple[DatabaseEntry, ...]


def _parse_database_list(block: Tag | None, base: str) -> tuple[DatabaseEntry, ...]:
    if block is None:
        return ()

    entries: list[DatabaseEntry] = []
    for row in block.select(".lib-data-body .row"):
        anchor = row.select_one("a[title]")
        if anchor is None:
            continue
        name = clean_text(anchor)
        if not name:
            continue

        href = anchor.get("href", "")
        access_id = ""
        access_link = row.select_one("a[href^='javascript:jinru']")
        if access_link is not None:
            match = ACCESS_ID_PATTERN.search(access_link["href"])
            if match:
                access_id = match.group(1)
        elif "id=" in href:
            access_id = href.rsplit("id=", 1)[-1]

        num = row.select_one(".num")
        index = clean_text(num) if num is not None else ""
        entries.append(
            DatabaseEntry(
                index=index or str(len(entries) + 1),
                name=name,
                detail_url=urljoin(base, href) if href else "",
                access_id=access_id,
            )
        )
    return tuple(entries)


def parse_database_search(html: str, base: str = LIBDB_BASE) -> DatabaseSearchResult:
    """Parse the accessData page: first list is local, second is foreign."""
    soup = load_html(html)
    lists = soup.select(".lib-data-list")
    return DatabaseSearchResult(
        local=_parse_database_list(lists[0] if len(lists) > 0 else None, base),
        foreign=_parse_database_list(lists[1] if len(lists) > 1 else None, base),
    )


async def search_library_db(
    elec_name: str,
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> DatabaseSearchResult:
    """Search the library's electronic database list by name.

    Args:
        elec_name: Database name keyword

    Returns:
        Local and foreign matches
    """
    form = {
        "elecName": elec_name,
        "typeZm": "",
        "sortType": "-1",
        "elecMuTypes": "",
        "category": "",
        "language": "",
        "subject": "",
    }
    async with anonymous_session(settings=settings, transport=transport) as session:
        response = await session.post(LIBDB_SEARCH_URL, data=form)
    result = parse_database_search(response.text)
    logger.debug("libdb %r: %d local, %d foreign", elec_name, len(result.local), len(result.foreign))
    return result


# =============================================================================
# OPAC unified search
# =============================================================================


@dataclass(frozen=True)
class BookHit:
    """One title from the OPAC unified search."""

    record_id: int
    title: str
    author: str
    publisher: str
    isbns: tuple[str, ...]
    publish_year: str
    call_numbers: tuple[str, ...]
    doc_type: str
    physical_count: int
    on_shelf_count: int
    language: str
    country: str
    subjects: str
    abstract: str
    picture: str

    @property
    def detail_url(self) -> str:
        return OPAC_DETAIL_URL.format(record_id=self.record_id)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "BookHit":
        return cls(
            record_id=_as_int(data.get("recordId")),
            title=_as_str(data.get("title")),
            author=_as_str(data.get("author")),
            publisher=_as_str(data.get("publisher")),
            isbns=_string_list(data.get("isbns")),
            publish_year=_as_str(data.get("publishYear")),
            call_numbers=_string_list(data.get("callNo")),
            doc_type=_as_str(data.get("docName")),
            physical_count=_as_int(data.get("physicalCount")),
            on_shelf_count=_as_int(data.get("onShelfCountI")),
            language=_as_str(data.get("langCode")),
            country=_as_str(data.get("countryCode")),
            subjects=_as_str(data.get("subjectWord")),
            abstract=_as_str(data.get("adstract") or data.get("ddAbstract")),
            picture=_as_str(data.get("pic")),
        )


@dataclass(frozen=True)
class BookSearchResult:
    total: int
    hits: tuple[BookHit, ...]

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "BookSearchResult":
        """Create from a search envelope; ``success`` other than true is empty."""
        if raw.get("success") is not True:
            logger.info("OPAC search not successful: %s", raw.get("message") or raw.get("errCode"))
            return cls(total=0, hits=())
        data = raw.get("data") or {}
        rows = data.get("searchResult") if isinstance(data.get("searchResult"), list) else []
        hits = tuple(BookHit.from_api(r) for r in rows if isinstance(r, dict))
        return cls(total=_as_int(data.get("numFound", len(hits))), hits=hits)


@dataclass(frozen=True)
class BookCopy:
    """One physical copy of a title."""

    item_id: int
    call_number: str
    barcode: str
    lib_code: str
    lib_name: str
    location_id: int
    location_name: str
    current_location_id: int
    current_location_name: str
    volume: str
    in_date: str
    process_type: str
    item_policy: str
    shelf_number: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "BookCopy":
        return cls(
            item_id=_as_int(data.get("itemId")),
            call_number=_as_str(data.get("callNo")),
            barcode=_as_str(data.get("barcode")),
            lib_code=_as_str(data.get("libCode")),
            lib_name=_as_str(data.get("libName")),
            location_id=_as_int(data.get("locationId")),
            location_name=_as_str(data.get("locationName")),
            current_location_id=_as_int(data.get("curLocationId")),
            current_location_name=_as_str(data.get("curLocationName")),
            volume=_as_str(data.get("vol")),
            in_date=_as_str(data.get("inDate")),
            process_type=_as_str(data.get("processType")),
            item_policy=_as_str(data.get("itemPolicyName")),
            shelf_number=_as_str(data.get("shelfNo")),
        )


@dataclass(frozen=True)
class BookCopiesResult:
    total: int
    copies: tuple[BookCopy, ...]

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "BookCopiesResult":
        if raw.get("success") is not True:
            logger.info("OPAC copies not successful: %s", raw.get("message") or raw.get("errCode"))
            return cls(total=0, copies=())
        data = raw.get("data") or {}
        rows = data.get("list") if isinstance(data.get("list"), list) else []
        copies = tuple(BookCopy.from_api(r) for r in rows if isinstance(r, dict))
        return cls(total=_as_int(data.get("totalCount", len(copies))), copies=copies)


def book_search_payload(keyword: str, page: int = 1, rows: int = 10) -> dict[str, Any]:
    """Unified search body for a keyword query sorted by relevance."""
    payload: dict[str, Any] = {
        "docCode": [None],
        "searchFieldContent": keyword,
        "searchField": "keyWord",
        "matchMode": "2",
        "publishBegin": None,
        "publishEnd": None,
        "sortField": "relevance",
        "sortClause": "asc",
        "page": page,
        "rows": rows,
        "onlyOnShelf": None,
        "searchItems": None,
        "indexSearch": 1,
    }
    for facet in (
        "resourceType", "subject", "discode1", "publisher", "libCode",
        "locationId", "eCollectionIds", "neweCollectionIds", "curLocationId",
        "campusId", "kindNo", "collectionName", "author", "langCode",
        "countryCode", "coreInclude", "ddType", "verifyStatus", "group",
        "newCoreInclude", "customSub", "customSub0",
    ):
        payload[facet] = []
    return payload


def _json_or_empty(response: httpx.Response, what: str) -> dict[str, Any]:
    try:
        body = response.json()
    except json.JSONDecodeError:
        logger.warning("%s returned non-JSON body (%d bytes)", what, len(response.text))
        return {}
    return body if isinstance(body, dict) else {}


async def search_books(
    student_id: str,
    password: str,
    keyword: str,
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BookSearchResult:
    """Search the OPAC catalog.

    Args:
        student_id: Student ID
        password: Unified-auth password
        keyword: Free-text keyword

    Returns:
        First page of hits; empty when the OPAC reports ``success: false``.
    """
    async with portal_session(OPAC, student_id, password, settings=settings, transport=transport) as session:
        response = await session.post(
            OPAC_SEARCH_URL,
            json=book_search_payload(keyword),
            headers=_opac_headers(),
        )
    result = BookSearchResult.from_api(_json_or_empty(response, "OPAC search"))
    logger.debug("OPAC search %r for %s: %d of %d", keyword, mask(student_id), len(result.hits), result.total)
    return result


async def fetch_book_copies(
    student_id: str,
    password: str,
    record_id: str | int,
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BookCopiesResult:
    """List physical copies of a catalog record."""
    payload = {
        "page": 1,
        "rows": 10,
        "entrance": None,
        "recordId": str(record_id),
        "isUnify": True,
        "sortType": 0,
    }
    async with portal_session(OPAC, student_id, password, settings=settings, transport=transport) as session:
        response = await session.post(OPAC_GROUP_ITEMS_URL, json=payload, headers=_opac_headers())
    return BookCopiesResult.from_api(_json_or_empty(response, "OPAC group items"))


# =============================================================================
# Seat availability (libzw)
# =============================================================================


@dataclass(frozen=True)
class SeatFloor:
    floor_id: int
    name: str
    total: int
    unavailable: int
    remaining: int
    seat_url: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "SeatFloor":
        floor_id = _as_int(data.get("id"))
        total = _as_int(data.get("TotalCount"))
        unavailable = _as_int(data.get("UnavailableSpace"))
        return cls(
            floor_id=floor_id,
            name=_as_str(data.get("name")),
            total=total,
            unavailable=unavailable,
            remaining=max(0, total - unavailable),
            seat_url=SEAT_PAGE_URL.format(area_id=floor_id),
        )


@dataclass(frozen=True)
class SeatCampus:
    """Seat quota of one campus library, with per-floor detail."""

    name: str
    area_id: str
    remaining: int
    total: int
    floors: tuple[SeatFloor, ...] = ()

    @property
    def seat_api(self) -> str:
        return SEAT_AREA_API_URL.format(area_id=self.area_id)


def parse_seat_campuses(html: str) -> list[SeatCampus]:
    """Parse campus blocks from the seat system home page.

    Blocks without a name or an area link are skipped. Quota text such as
    "今日剩余1208，总量2416" that does not match leaves both counts at 0.
    """
    soup = load_html(html)
    campuses = []
    for block in soup.select(".xiaoqu .rooms"):
        labels = block.select(".zh b")
        name = clean_text(labels[0]) if labels else ""
        quota = clean_text(labels[1]) if len(labels) > 1 else ""

        remaining = total = 0
        match = QUOTA_PATTERN.search(quota)
        if match:
            remaining, total = int(match.group(1)), int(match.group(2))

        link = block.select_one(".seat a")
        area = AREA_ID_PATTERN.search(link.get("href", "")) if link is not None else None
        if name and area:
            campuses.append(SeatCampus(name=name, area_id=area.group(1), remaining=remaining, total=total))
    return campuses


def parse_seat_floors(raw: dict[str, Any]) -> tuple[SeatFloor, ...]:
    """Floors from a v3areas response (``data.list.childArea``)."""
    listing = (raw.get("data") or {}).get("list") or {}
    children = listing.get("childArea") if isinstance(listing, dict) else None
    if not isinstance(children, list):
        return ()
    return tuple(SeatFloor.from_api(f) for f in children if isinstance(f, dict))


async def _fetch_floors(session: HttpSession, campus: SeatCampus) -> tuple[SeatFloor, ...]:
    seat_page = SEAT_PAGE_URL.format(area_id=campus.area_id)
    # Seat page sets the area-scoped PHPSESSID the API checks
    await session.get(seat_page)
    response = await session.get(
        campus.seat_api,
        headers={
            "accept": "application/json, text/javascript, */*; q=0.01",
            "referer": seat_page,
            "x-requested-with": "XMLHttpRequest",
        },
    )
    return parse_seat_floors(response.json())


async def fetch_seat_campuses(
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[SeatCampus]:
    """Fetch seat availability for every campus library.

    Floor lookups run concurrently. A campus whose lookup fails keeps its
    overview counts with no floors.
    """
    async with anonymous_session(settings=settings, transport=transport) as session:
        response = await session.get(SEAT_HOME_URL)
        campuses = parse_seat_campuses(response.text)
        results = await asyncio.gather(
            *(_fetch_floors(session, campus) for campus in campuses),
            return_exceptions=True,
        )

    filled = []
    for campus, result in zip(campuses, results):
        if isinstance(result, (PortalError, ValueError, AttributeError)):
            logger.warning("seat area %s (%s) unavailable: %s", campus.area_id, campus.name, result)
            filled.append(campus)
        elif isinstance(result, BaseException):
            raise result
        else:
            filled.append(replace(campus, floors=result))
    logger.debug("seat campuses: %d", len(filled))
    return filled


# =============================================================================
# General library portal
# =============================================================================


async def library_request(
    student_id: str,
    password: str,
    method: str,
    url: str,
    data: dict[str, str] | None = None,
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Send one request through a logged-in lib.csu.edu.cn session.

    Args:
        student_id: Student ID
        password: Unified-auth password
        method: HTTP method
        url: Absolute URL on the library portal
        data: Optional form fields

    Returns:
        Response body text
    """
    async with portal_session(LIBRARY, student_id, password, settings=settings, transport=transport) as session:
        response = await session.request(method.upper(), url, data=data)
    logger.debug("library %s %s -> %d", method.upper(), response.url.path, response.status_code)
    return response.text
