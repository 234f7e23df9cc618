"""Campus card (校园卡) client.

The card platform has its own CAS ``service`` target. Its landing URL carries
a ``synjones-auth`` token that the JSON API expects as a header; monetary
fields come back in cents.
"""

import json
import logging
import math
from dataclasses import dataclass
from typing import Any

import httpx

from .auth import portal_session
from .config import ClientSettings, mask
from .exceptions import PageMarkerMissing
from .portals import ECARD
from .session import HttpSession

logger = logging.getLogger(__name__)

ECARD_BASE = "https://ecard.csu.edu.cn"
CARD_INFO_URL = f"{ECARD_BASE}/berserker-app/ykt/tsm/queryCard"
TURNOVER_URL = f"{ECARD_BASE}/berserker-search/search/personal/turnover"
ECARD_REFERER = f"{ECARD_BASE}/plat-pc/"
TURNOVER_PAGE_SIZE = 100


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves toward positive infinity."""
    return math.floor(value + 0.5)


def cents_to_amount(value: Any) -> float:
    """Convert a minor-unit amount to major units; non-numbers become 0."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return round_half_up(value) / 100


@dataclass(frozen=True)
class SubAccount:
    name: str
    account_type: str
    balance: float

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "SubAccount":
        return cls(
            name=data.get("name") or "",
            account_type=str(data.get("type") or ""),
            balance=cents_to_amount(data.get("balance")),
        )


@dataclass(frozen=True)
class AutoTransfer:
    enabled: bool
    amount: float
    limit: float


@dataclass(frozen=True)
class Card:
    """One campus card with balances in yuan."""

    student_id: str
    name: str
    phone: str
    account: str
    card_name: str
    card_type: str
    balance: float
    elec_balance: float
    unsettled: float
    debit: float
    auto_transfer: AutoTransfer
    frozen: bool
    lost: bool
    expire_date: str
    cert: str
    sub_accounts: tuple[SubAccount, ...]

    @classmethod
    def from_api(cls, data: dict[str, Any], fallback_sno: str = "") -> "Card":
        """Create from a ``data.card[]`` entry of queryCard."""
        accinfo = data.get("accinfo")
        return cls(
            student_id=str(data.get("card_name_en") or data.get("sno") or fallback_sno or data.get("account") or ""),
            name=data.get("name") or "",
            phone=data.get("phone") or "",
            account=str(data.get("account") or ""),
            card_name=data.get("card_name") or "",
            card_type=str(data.get("cardtype") or ""),
            balance=cents_to_amount(data.get("db_balance")),
            elec_balance=cents_to_amount(data.get("elec_accamt")),
            unsettled=cents_to_amount(data.get("unsettle_amount")),
            debit=cents_to_amount(data.get("debitamt")),
            auto_transfer=AutoTransfer(
                enabled=data.get("autotrans_flag") == 1,
                amount=cents_to_amount(data.get("autotrans_amt")),
                limit=cents_to_amount(data.get("autotrans_limite")),
            ),
            frozen=data.get("freezeflag") == 1,
            lost=data.get("lostflag") == 1,
            expire_date=data.get("expdate") or "",
            cert=data.get("cert") or "",
            sub_accounts=tuple(SubAccount.from_api(a) for a in accinfo if isinstance(a, dict))
            if isinstance(accinfo, list)
            else (),
        )


@dataclass(frozen=True)
class CardSnapshot:
    code: Any
    success: bool
    retcode: str
    cards: tuple[Card, ...]

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "CardSnapshot":
        """Create from the queryCard JSON envelope."""
        data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
        cards = data.get("card") if isinstance(data.get("card"), list) else []
        sno = str(data.get("sno") or "")
        return cls(
            code=raw.get("code"),
            success=bool(raw.get("success", False)),
            retcode=str(data.get("retcode") or ""),
            cards=tuple(Card.from_api(c, sno) for c in cards if isinstance(c, dict)),
        )


@dataclass(frozen=True)
class TurnoverRecord:
    """One card transaction."""

    from_account: str
    transaction_time: str
    effect_date: str
    effect_date_str: str
    transaction_time_str: str
    resume: str
    turnover_type: str
    pay_name: str
    pay_icon: str
    amount: float
    remark: str
    user_name: str
    to_merchant: str
    sno: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "TurnoverRecord":
        def text(key: str) -> str:
            value = data.get(key)
            return "" if value is None else str(value)

        return cls(
            from_account=text("fromAccount"),
            transaction_time=text("jndatetime"),
            effect_date=text("effectdate"),
            effect_date_str=text("effectdateStr"),
            transaction_time_str=text("jndatetimeStr"),
            resume=text("resume"),
            turnover_type=text("turnoverType"),
            pay_name=text("payName"),
            pay_icon=text("payIcon"),
            amount=cents_to_amount(data.get("tranamt")),
            remark=text("remark"),
            user_name=text("userName"),
            to_merchant=text("toMerchant"),
            sno=text("sno"),
        )


@dataclass(frozen=True)
class TurnoverPage:
    code: Any
    success: bool
    total: int
    size: int
    current: int
    pages: int
    records: tuple[TurnoverRecord, ...]

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "TurnoverPage":
        """Create from the turnover search JSON envelope."""
        data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
        rows = data.get("records") if isinstance(data.get("records"), list) else []
        records = tuple(TurnoverRecord.from_api(r) for r in rows if isinstance(r, dict))
        return cls(
            code=raw.get("code"),
            success=bool(raw.get("success", False)),
            total=int(data.get("total") or len(records)),
            size=int(data.get("size") or 0),
            current=int(data.get("current") or 0),
            pages=int(data.get("pages") or 0),
            records=records,
        )


def _json_body(response: httpx.Response, what: str) -> dict[str, Any]:
    try:
        body = response.json()
    except json.JSONDecodeError as exc:
        raise PageMarkerMissing(f"{what} returned non-JSON body (session rejected?)") from exc
    if not isinstance(body, dict):
        raise PageMarkerMissing(f"{what} returned unexpected JSON")
    return body


def _auth_headers(session: HttpSession, bearer: bool) -> dict[str, str]:
    headers = {"referer": ECARD_REFERER}
    if session.token:
        value = f"bearer {session.token}" if bearer else session.token
        headers["synjones-auth"] = value
        headers["authorization"] = value
    else:
        # Upstream will reject the call; let it say so
        logger.warning("ecard token missing, calling API unauthenticated")
    return headers


async def fetch_card_info(
    student_id: str,
    password: str,
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CardSnapshot:
    """Fetch card balances.

    Args:
        student_id: Student ID
        password: Unified-auth password

    Returns:
        CardSnapshot with amounts in yuan

    Raises:
        PageMarkerMissing: If the API does not answer with JSON.
    """
    async with portal_session(ECARD, student_id, password, settings=settings, transport=transport) as session:
        response = await session.get(
            CARD_INFO_URL,
            params={"scene": "recharge", "synAccessSource": "pc"},
            headers=_auth_headers(session, bearer=False),
        )
    snapshot = CardSnapshot.from_api(_json_body(response, "queryCard"))
    logger.debug("card info for %s: %d cards, success=%s", mask(student_id), len(snapshot.cards), snapshot.success)
    return snapshot


def turnover_params(
    time_from: str,
    time_to: str,
    amount_from: float | None = None,
    amount_to: float | None = None,
) -> dict[str, str]:
    """Query string for the turnover search; amounts are given in yuan."""
    params: dict[str, str] = {}
    if time_from:
        params["timeFrom"] = time_from
    if time_to:
        params["timeTo"] = time_to
    if amount_from is not None:
        params["amountFrom"] = str(round_half_up(amount_from * 100))
    if amount_to is not None:
        params["amountTo"] = str(round_half_up(amount_to * 100))
    params["size"] = str(TURNOVER_PAGE_SIZE)
    params["current"] = "1"
    params["synAccessSource"] = "pc"
    return params


async def fetch_card_turnover(
    student_id: str,
    password: str,
    time_from: str,
    time_to: str,
    amount_from: float | None = None,
    amount_to: float | None = None,
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TurnoverPage:
    """Fetch card transactions in a time window.

    Args:
        student_id: Student ID
        password: Unified-auth password
        time_from: Start date, e.g. "2025-09-01"
        time_to: End date, e.g. "2025-09-30"
        amount_from: Minimum amount in yuan
        amount_to: Maximum amount in yuan

    Returns:
        First page (up to 100 records) of matching transactions
    """
    async with portal_session(ECARD, student_id, password, settings=settings, transport=transport) as session:
        response = await session.get(
            TURNOVER_URL,
            params=turnover_params(time_from, time_to, amount_from, amount_to),
            headers=_auth_headers(session, bearer=True),
        )
    page = TurnoverPage.from_api(_json_body(response, "turnover"))
    logger.debug("turnover for %s: %d of %d records", mask(student_id), len(page.records), page.total)
    return page
