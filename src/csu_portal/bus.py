"""Campus shuttle bus (校车) timetable search."""

import json
import logging
from dataclasses import dataclass
from datetime import date as date_type, datetime
from typing import Any
from urllib.parse import urlencode

import httpx

from .auth import anonymous_session
from .config import ClientSettings
from .exceptions import PageMarkerMissing

logger = logging.getLogger(__name__)

BUS_BASE = "https://wxxy.csu.edu.cn/regularbus/wap/default"
BUS_SEARCH_URL = f"{BUS_BASE}/index-ajax"
BUS_DETAIL_URL = f"{BUS_BASE}/detail"
BUS_LINE_ID = "2"


@dataclass(frozen=True)
class BusDeparture:
    start_time: str
    stations: tuple[str, ...]
    bus_id: str = ""
    detail_url: str = ""


def _normalized_date(value: str) -> str:
    """Return ``value`` as YYYY-MM-DD, or "" if it is not a date."""
    for fmt in ("%Y-%m-%d", "%Y/%m/%d", "%Y%m%d"):
        try:
            return datetime.strptime(value.strip(), fmt).date().isoformat()
        except ValueError:
            continue
    return ""


def detail_link(bus_id: str, date: str) -> str:
    """Departure detail page URL; empty unless both id and date are usable."""
    day = _normalized_date(date) if bus_id else ""
    if not day:
        return ""
    return f"{BUS_DETAIL_URL}?{urlencode({'id': bus_id, 'date': day})}"


def parse_departures(raw: dict[str, Any], date: str) -> list[BusDeparture]:
    """Map ``d.data[]`` entries to departures."""
    body = raw.get("d")
    entries = body.get("data") if isinstance(body, dict) else None
    if not isinstance(entries, list):
        entries = []
    departures = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        stations = entry.get("station")
        bus_id = "" if entry.get("id") is None else str(entry["id"])
        departures.append(
            BusDeparture(
                start_time=str(entry.get("start") or ""),
                stations=tuple(str(s) for s in stations) if isinstance(stations, list) else (),
                bus_id=bus_id,
                detail_url=detail_link(bus_id, date),
            )
        )
    return departures


async def search_bus(
    date: str | date_type,
    start_station: str,
    end_station: str,
    start_time_left: str = "",
    start_time_right: str = "",
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[BusDeparture]:
    """Search shuttle departures between two stations.

    Args:
        date: Travel date, e.g. "2025-09-01"
        start_station: Departure station name
        end_station: Arrival station name
        start_time_left: Earliest departure time ("HH:MM"), optional
        start_time_right: Latest departure time ("HH:MM"), optional

    Returns:
        Departures in the order the service lists them

    Raises:
        NetworkError: If the service answers with a non-success status.
        PageMarkerMissing: If the body is not JSON.
    """
    if isinstance(date, date_type):
        date = date.isoformat()
    form = {
        "bus_id": BUS_LINE_ID,
        "type": "",
        "date": date,
        "cfz": start_station,
        "ddz": end_station,
        "fcsjStart": start_time_left,
        "fcsjEnd": start_time_right,
    }
    async with anonymous_session(settings=settings, transport=transport) as session:
        response = await session.post(BUS_SEARCH_URL, data=form)

    try:
        raw = response.json()
    except json.JSONDecodeError as exc:
        raise PageMarkerMissing("bus search returned non-JSON body") from exc
    departures = parse_departures(raw if isinstance(raw, dict) else {}, date)
    logger.debug("bus %s -> %s on %s: %d departures", start_station, end_station, date, len(departures))
    return departures
