"""Tests for bus.py: shuttle timetable search."""

import asyncio
import datetime
from urllib.parse import parse_qs

import pytest

from csu_portal import bus
from csu_portal.bus import BusDeparture, detail_link, parse_departures
from csu_portal.exceptions import NetworkError, PageMarkerMissing

RESPONSE = {
    "e": 0,
    "m": "操作成功",
    "d": {
        "data": [
            {"id": 318, "start": "07:20", "station": ["南校区", "校本部", "新校区"]},
            {"start": "12:10", "station": ["南校区", "新校区"]},
        ]
    },
}


class TestDetailLink:
    def test_id_and_date(self):
        assert detail_link("318", "2025-09-01") == f"{bus.BUS_DETAIL_URL}?id=318&date=2025-09-01"

    def test_other_date_format_normalized(self):
        assert detail_link("318", "2025/9/1").endswith("date=2025-09-01")

    def test_missing_id(self):
        assert detail_link("", "2025-09-01") == ""

    def test_unparsable_date(self):
        assert detail_link("318", "tomorrow") == ""


class TestParseDepartures:
    def test_entries(self):
        departures = parse_departures(RESPONSE, "2025-09-01")

        assert departures[0] == BusDeparture(
            start_time="07:20",
            stations=("南校区", "校本部", "新校区"),
            bus_id="318",
            detail_url=f"{bus.BUS_DETAIL_URL}?id=318&date=2025-09-01",
        )
        assert departures[1].bus_id == ""
        assert departures[1].detail_url == ""

    def test_empty(self):
        assert parse_departures({"d": None}, "2025-09-01") == []
        assert parse_departures({}, "2025-09-01") == []

    @pytest.mark.parametrize("raw", [{"d": ["oops"]}, {"d": "oops"}, {"d": {"data": "oops"}}, {"d": {"data": {"id": 1}}}])
    def test_malformed_envelope(self, raw):
        assert parse_departures(raw, "2025-09-01") == []


class TestSearchBus:
    def test_posts_form(self, settings, upstream):
        upstream.add("POST", bus.BUS_SEARCH_URL, json=RESPONSE)

        departures = asyncio.run(
            bus.search_bus(
                datetime.date(2025, 9, 1),
                "南校区",
                "新校区",
                "07:00",
                "13:00",
                settings=settings,
                transport=upstream.transport,
            )
        )

        assert [d.start_time for d in departures] == ["07:20", "12:10"]
        form = parse_qs(upstream.requests[0].content.decode(), keep_blank_values=True)
        assert form == {
            "bus_id": ["2"],
            "type": [""],
            "date": ["2025-09-01"],
            "cfz": ["南校区"],
            "ddz": ["新校区"],
            "fcsjStart": ["07:00"],
            "fcsjEnd": ["13:00"],
        }

    def test_error_status(self, settings, upstream):
        upstream.add("POST", bus.BUS_SEARCH_URL, status=500, text="error")
        with pytest.raises(NetworkError):
            asyncio.run(bus.search_bus("2025-09-01", "a", "b", settings=settings, transport=upstream.transport))

    def test_non_json(self, settings, upstream):
        upstream.add("POST", bus.BUS_SEARCH_URL, text="<html></html>")
        with pytest.raises(PageMarkerMissing):
            asyncio.run(bus.search_bus("2025-09-01", "a", "b", settings=settings, transport=upstream.transport))
